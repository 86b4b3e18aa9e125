"""
dloopgov/identity/signer.py

Voting identities backed by local Ethereum accounts.

Each governance node votes with its own key, read from the environment as
AI_NODE_{n}_PRIVATE_KEY (n = 1..N, with or without a 0x prefix). Node n
becomes identity index n-1.

Usage:
    from dloopgov.identity import IdentitySet

    identities = IdentitySet.from_env(node_count=5)
    for identity in identities:
        print(identity.index, identity.address)
"""

import logging
import os
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

logger = logging.getLogger("dloopgov.identity")

PRIVATE_KEY_ENV = "AI_NODE_{n}_PRIVATE_KEY"

_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class IdentityError(Exception):
    """Exception raised for missing or malformed voting keys."""
    pass


def normalize_private_key(key: str) -> str:
    """
    Return the key as 0x-prefixed hex.

    Raises:
        IdentityError: if the key is not 32 bytes of hex
    """
    key = (key or "").strip()
    if not _HEX_KEY.match(key):
        raise IdentityError("Private key must be 64 hex characters (0x prefix optional)")
    return key if key.startswith("0x") else "0x" + key


class VotingIdentity:
    """
    One voting node: an index and the account that signs its votes.

    The private key never leaves the wrapped LocalAccount.
    """

    def __init__(self, index: int, account: LocalAccount):
        self.index = index
        self._account = account

    @classmethod
    def from_private_key(cls, index: int, private_key: str) -> "VotingIdentity":
        return cls(index, Account.from_key(normalize_private_key(private_key)))

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, transaction: Dict[str, Any]):
        """Sign a transaction dict; returns eth_account's SignedTransaction."""
        return self._account.sign_transaction(transaction)

    def to_dict(self) -> dict:
        return {"index": self.index, "address": self.address}

    def __repr__(self) -> str:
        return f"VotingIdentity(index={self.index}, address={self.address})"


class IdentitySet:
    """
    Ordered, contiguous set of voting identities.

    Raises:
        IdentityError: if indexes are not 0..N-1 or an address repeats
    """

    def __init__(self, identities: List[VotingIdentity]):
        ordered = sorted(identities, key=lambda i: i.index)
        indexes = [i.index for i in ordered]
        if indexes != list(range(len(ordered))):
            raise IdentityError(f"Identity indexes must be contiguous from 0, got {indexes}")
        addresses = [i.address.lower() for i in ordered]
        if len(set(addresses)) != len(addresses):
            raise IdentityError("Two voting identities share the same key")
        self._identities = ordered

    @classmethod
    def from_keys(cls, keys: List[str]) -> "IdentitySet":
        return cls([VotingIdentity.from_private_key(i, k) for i, k in enumerate(keys)])

    @classmethod
    def from_env(
        cls,
        node_count: int,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "IdentitySet":
        """
        Load AI_NODE_1_PRIVATE_KEY .. AI_NODE_{node_count}_PRIVATE_KEY.

        Raises:
            IdentityError: if a key is missing or malformed
        """
        env = os.environ if environ is None else environ
        identities = []
        for n in range(1, node_count + 1):
            name = PRIVATE_KEY_ENV.format(n=n)
            key = env.get(name, "").strip()
            if not key:
                raise IdentityError(f"Missing private key: {name}")
            try:
                identities.append(VotingIdentity.from_private_key(n - 1, key))
            except IdentityError as e:
                raise IdentityError(f"{name}: {e}")
        identity_set = cls(identities)
        logger.info(f"Loaded {len(identity_set)} voting identities")
        return identity_set

    def __iter__(self) -> Iterator[VotingIdentity]:
        return iter(self._identities)

    def __len__(self) -> int:
        return len(self._identities)

    def __getitem__(self, index: int) -> VotingIdentity:
        return self._identities[index]

    @property
    def addresses(self) -> List[str]:
        return [i.address for i in self._identities]
