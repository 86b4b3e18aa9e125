"""
dloopgov/identity - Voting identities for the governance nodes.

Each node signs its own votes with a local Ethereum account loaded from
AI_NODE_{n}_PRIVATE_KEY.
"""

from .signer import (
    IdentityError,
    IdentitySet,
    VotingIdentity,
    normalize_private_key,
)

__all__ = [
    "IdentityError",
    "IdentitySet",
    "VotingIdentity",
    "normalize_private_key",
]
