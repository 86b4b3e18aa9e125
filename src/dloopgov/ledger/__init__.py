"""
dloopgov/ledger - web3 access to the AssetDAO governance contract.

Proposal reads, hasVoted lookups and signed vote submission, plus gas
selection and per-provider connection handling.
"""

from .client import AssetDaoClient, SignedVote, is_known_transaction_error
from .connection import ConnectionPool, LedgerError, run_blocking
from .gas import GasPricer, FALLBACK_GAS_PRICE, MAX_GAS_LIMIT

__all__ = [
    "AssetDaoClient",
    "SignedVote",
    "is_known_transaction_error",
    "ConnectionPool",
    "LedgerError",
    "GasPricer",
    "FALLBACK_GAS_PRICE",
    "MAX_GAS_LIMIT",
    "run_blocking",
]
