"""
dloopgov/governance/assets.py

Registry of assets the governance node knows about.

A proposal's asset is identified by its target address first. Only when
the address is unknown does the registry fall back to looking for a known
symbol in the description (case-insensitive).
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

from .models import Proposal


@dataclass(frozen=True)
class Asset:
    """A known token."""
    symbol: str
    addresses: FrozenSet[str] = field(default_factory=frozenset)   # lower-case
    stable: bool = False
    growth: bool = False

    @classmethod
    def create(cls, symbol: str, addresses: Iterable[str], stable: bool = False,
               growth: bool = False) -> "Asset":
        return cls(
            symbol=symbol.upper(),
            addresses=frozenset(a.lower() for a in addresses),
            stable=stable,
            growth=growth,
        )


# Mainnet and Sepolia deployments
DEFAULT_ASSETS: List[Asset] = [
    Asset.create(
        "USDC",
        [
            "0xA0b86a33E6417c90D01C24a37cbc88a3e5556c97",
            "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
            "0x37d5cfe5f3d8b8be80ee7e521949daefac692a67",
            "0x3639d1f746a977775522221f53d0b1ea5749b8b9",
        ],
        stable=True,
    ),
    Asset.create("WBTC", ["0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599"], growth=True),
    Asset.create("PAXG", ["0x45804880De22913dAFE09f4980848ECE6EcbAf78"], growth=True),
    Asset.create("EURT", ["0xC581b735A1688071A1746c968e0798D642EDE491"], stable=True),
]


class AssetRegistry:
    """
    Lookup of known assets by address or symbol.

    Example:
        assets = AssetRegistry()
        assets.symbol_for(proposal)     # "USDC"
        assets.is_stable(proposal)      # True
    """

    def __init__(self, assets: Optional[Iterable[Asset]] = None):
        self._assets: List[Asset] = list(DEFAULT_ASSETS if assets is None else assets)

    @property
    def assets(self) -> List[Asset]:
        return list(self._assets)

    def get(self, symbol: str) -> Optional[Asset]:
        symbol = symbol.upper()
        for asset in self._assets:
            if asset.symbol == symbol:
                return asset
        return None

    def by_address(self, address: str) -> Optional[Asset]:
        if not address:
            return None
        address = address.lower()
        for asset in self._assets:
            if address in asset.addresses:
                return asset
        return None

    def mentioned(self, description: str) -> List[Asset]:
        """Known assets named in a description, in registry order."""
        text = (description or "").upper()
        return [a for a in self._assets if a.symbol in text]

    def resolve(self, proposal: Proposal) -> Optional[Asset]:
        """The asset a proposal is about, or None."""
        asset = self.by_address(proposal.target_asset)
        if asset is not None:
            return asset
        mentioned = self.mentioned(proposal.description)
        return mentioned[0] if mentioned else None

    def symbol_for(self, proposal: Proposal) -> Optional[str]:
        asset = self.resolve(proposal)
        return asset.symbol if asset else None

    def is_stable(self, proposal: Proposal) -> bool:
        asset = self.by_address(proposal.target_asset)
        if asset is not None:
            return asset.stable
        return any(a.stable for a in self.mentioned(proposal.description))

    def is_growth(self, proposal: Proposal) -> bool:
        asset = self.by_address(proposal.target_asset)
        if asset is not None:
            return asset.growth
        return any(a.growth for a in self.mentioned(proposal.description))

    def matches(self, proposal: Proposal, symbol: str) -> bool:
        """Whether the proposal concerns the given symbol."""
        asset = self.get(symbol)
        if asset is not None and proposal.target_asset.lower() in asset.addresses:
            return True
        return symbol.upper() in (proposal.description or "").upper()
