"""
dloopgov/ledger/client.py

AssetDAO contract client.

Provides methods for:
- Proposal count and proposal reads
- hasVoted lookups
- Signed vote submission

Every method takes the Provider to talk to as its first argument, so the
client is meant to be driven through ResilientExecutor.execute().
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from web3 import Web3

from ..governance.records import RawRecord, wrap_raw
from ..rpc.registry import Provider
from .abi import ASSET_DAO_ABI
from .connection import ConnectionPool, LedgerError, run_blocking
from .gas import GasPricer

if TYPE_CHECKING:
    from ..identity.signer import VotingIdentity

logger = logging.getLogger("dloopgov.ledger.client")


# Lower-cased node replies for a transaction that is already in the pool or mined
KNOWN_TRANSACTION_PATTERNS = (
    "already known",
    "known transaction",
    "already imported",
    "nonce too low",
)


def is_known_transaction_error(error: BaseException) -> bool:
    message = str(error).lower()
    return any(pattern in message for pattern in KNOWN_TRANSACTION_PATTERNS)


@dataclass(frozen=True)
class SignedVote:
    """A signed vote transaction, ready to broadcast."""
    proposal_id: int
    support: bool
    identity_index: int
    nonce: int
    raw_transaction: bytes
    tx_ref: str


class AssetDaoClient:
    """
    Typed access to the AssetDAO governance contract.

    Example:
        client = AssetDaoClient(pool, "0xa87e...3529")

        result = await executor.execute(
            lambda p: client.get_proposal(p, 7),
            max_attempts=2,
            timeout=3.0,
        )
    """

    def __init__(
        self,
        connections: ConnectionPool,
        contract_address: str,
        gas: Optional[GasPricer] = None,
        receipt_timeout: float = 25.0,
    ):
        if not Web3.is_address(contract_address):
            raise LedgerError(f"Invalid contract address: {contract_address}")
        self.connections = connections
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.gas = gas or GasPricer()
        self.receipt_timeout = receipt_timeout

    def _contract(self, provider: Provider):
        w3 = self.connections.get(provider)
        return w3, w3.eth.contract(address=self.contract_address, abi=ASSET_DAO_ABI)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def ping(self, provider: Provider) -> bool:
        """Liveness probe for the resilience layer."""
        return await self.connections.ping(provider)

    async def get_proposal_count(self, provider: Provider) -> int:
        _, contract = self._contract(provider)
        count = await run_blocking(contract.functions.getProposalCount().call)
        return int(count)

    async def get_proposal(self, provider: Provider, proposal_id: int) -> RawRecord:
        """
        Read one proposal as a raw record.

        Returns:
            PositionalRecord or NamedRecord, not yet normalized
        """
        _, contract = self._contract(provider)
        raw = await run_blocking(contract.functions.getProposal(int(proposal_id)).call)
        return wrap_raw(raw)

    async def has_voted(self, provider: Provider, proposal_id: int, voter: str) -> bool:
        _, contract = self._contract(provider)
        voted = await run_blocking(
            contract.functions.hasVoted(int(proposal_id), Web3.to_checksum_address(voter)).call
        )
        return bool(voted)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def prepare_vote(
        self,
        provider: Provider,
        identity: "VotingIdentity",
        proposal_id: int,
        support: bool,
    ) -> SignedVote:
        """
        Build and sign a vote transaction without sending it.

        The nonce is fixed here, so broadcasting the result more than once
        can never produce a second vote.

        Raises:
            ContractLogicError: if gas estimation reverts (e.g. already voted)
        """
        return await run_blocking(self._prepare_vote, provider, identity, int(proposal_id), bool(support))

    def _prepare_vote(self, provider: Provider, identity: "VotingIdentity",
                      proposal_id: int, support: bool) -> SignedVote:
        w3, contract = self._contract(provider)
        fn = contract.functions.vote(proposal_id, support)

        estimate = fn.estimate_gas({"from": identity.address})
        nonce = w3.eth.get_transaction_count(identity.address, "pending")
        tx = fn.build_transaction({
            "from": identity.address,
            "nonce": nonce,
            "gas": self.gas.gas_limit(estimate),
            "chainId": w3.eth.chain_id,
            **self.gas.fee_fields(w3),
        })

        signed = identity.sign_transaction(tx)
        return SignedVote(
            proposal_id=proposal_id,
            support=support,
            identity_index=identity.index,
            nonce=nonce,
            raw_transaction=bytes(signed.raw_transaction),
            tx_ref=Web3.to_hex(signed.hash),
        )

    async def broadcast(self, provider: Provider, vote: SignedVote) -> str:
        """
        Send a signed vote. Safe to repeat: the node reports an already
        known transaction, which counts as sent.

        Returns:
            Transaction hash as 0x-prefixed hex
        """
        return await run_blocking(self._broadcast, provider, vote)

    def _broadcast(self, provider: Provider, vote: SignedVote) -> str:
        w3 = self.connections.get(provider)
        try:
            w3.eth.send_raw_transaction(vote.raw_transaction)
        except Exception as e:
            if not is_known_transaction_error(e):
                raise
            logger.info(f"Vote {vote.tx_ref} already known to {provider.name}")
            return vote.tx_ref
        logger.info(
            f"Node {vote.identity_index} submitted vote on proposal {vote.proposal_id} "
            f"({'for' if vote.support else 'against'}): {vote.tx_ref}"
        )
        return vote.tx_ref

    async def wait_for_receipt(self, provider: Provider, tx_ref: str) -> bool:
        """
        Wait for a vote transaction to be mined.

        Returns:
            True if the transaction succeeded, False if it failed on chain

        Raises:
            TimeExhausted: if it is not mined within receipt_timeout
        """
        w3 = self.connections.get(provider)
        receipt = await run_blocking(
            w3.eth.wait_for_transaction_receipt, tx_ref, self.receipt_timeout
        )
        return receipt["status"] == 1

    async def vote(
        self,
        provider: Provider,
        identity: "VotingIdentity",
        proposal_id: int,
        support: bool,
    ) -> str:
        """
        Sign and send a vote, then wait for the receipt.

        Returns:
            Transaction hash as 0x-prefixed hex

        Raises:
            LedgerError: if the transaction was mined but failed
        """
        signed = await self.prepare_vote(provider, identity, proposal_id, support)
        tx_ref = await self.broadcast(provider, signed)
        if not await self.wait_for_receipt(provider, tx_ref):
            raise LedgerError(f"Vote transaction {tx_ref} failed on chain")
        return tx_ref
