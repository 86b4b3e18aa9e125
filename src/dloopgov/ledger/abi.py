"""
dloopgov/ledger/abi.py

ABI fragments for the AssetDAO governance contract.

Only the four functions the voting node uses are declared. getProposal is
declared with an anonymous tuple of twelve words so both deployed field
orders decode; dloopgov.governance.records works out which order it got.
"""

from typing import List, Dict, Any


def _function(name: str, inputs: List[Dict[str, str]], outputs: List[Dict[str, str]],
              mutability: str = "view") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


PROPOSAL_WORD_TYPES = [
    "uint256",   # id
    "uint8",     # proposal type
    "address",   # asset or proposer
    "uint256",   # amount (wei)
    "string",    # description
    "address",   # proposer or asset
    "uint256",
    "uint256",
    "uint256",
    "uint256",
    "uint8",     # state
    "bool",      # executed
]

ASSET_DAO_ABI: List[Dict[str, Any]] = [
    _function(
        "getProposalCount",
        inputs=[],
        outputs=[{"name": "", "type": "uint256"}],
    ),
    _function(
        "getProposal",
        inputs=[{"name": "proposalId", "type": "uint256"}],
        outputs=[{"name": "", "type": t} for t in PROPOSAL_WORD_TYPES],
    ),
    _function(
        "hasVoted",
        inputs=[
            {"name": "proposalId", "type": "uint256"},
            {"name": "voter", "type": "address"},
        ],
        outputs=[{"name": "", "type": "bool"}],
    ),
    _function(
        "vote",
        inputs=[
            {"name": "proposalId", "type": "uint256"},
            {"name": "support", "type": "bool"},
        ],
        outputs=[],
        mutability="nonpayable",
    ),
]
