"""
dloopgov/governance/policies.py

Voting policies.

A policy turns a pre-analysed proposal (PolicyContext) into a verdict:
support or oppose, a confidence and a human-readable reason. Policies are
looked up by name, so new ones can be added with @register_policy.

Usage:
    from dloopgov.governance.policies import get_policy, register_policy, RiskPolicy

    policy = get_policy("conservative")

    @register_policy
    class MyPolicy(RiskPolicy):
        name = "mine"
        def decide(self, ctx):
            ...
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Type

from ..market import MarketAction, MarketContext, STRONG_SIGNAL_CONFIDENCE
from .models import Proposal, ProposalKind

logger = logging.getLogger("dloopgov.governance.policies")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class AmountBand:
    """Inclusive range of acceptable proposal amounts."""
    minimum: Decimal
    maximum: Decimal

    def contains(self, amount: Decimal) -> bool:
        return self.minimum <= amount <= self.maximum


@dataclass
class PolicyContext:
    """Everything a policy needs to know about one proposal."""
    proposal: Proposal
    amount: Decimal
    risk_score: float
    support_ratio: float
    total_votes: Decimal
    activity: str                       # "low", "medium" or "high"
    market: Optional[MarketContext]
    market_aligned: bool
    is_stable: bool
    is_growth: bool
    symbol: Optional[str]
    last_minute: bool

    @property
    def market_risk(self) -> float:
        return self.market.risk_score if self.market else 0.0


@dataclass
class PolicyVerdict:
    support: bool
    confidence: float
    reasoning: str


# ============================================================================
# BASE POLICY
# ============================================================================

class RiskPolicy(ABC):
    """
    Base class for voting policies.

    Subclasses set the class attributes and implement decide().
    """

    name: str = ""
    risk_tolerance: float = 0.5
    position_cap: Decimal = Decimal(1000)
    stable_band: AmountBand = AmountBand(Decimal("0.001"), Decimal(500000))
    standard_band: AmountBand = AmountBand(Decimal("0.01"), Decimal(10000))
    min_confidence: float = 0.1
    max_confidence: float = 0.9

    def band_for(self, is_stable: bool) -> AmountBand:
        return self.stable_band if is_stable else self.standard_band

    def clamp(self, confidence: float) -> float:
        return max(self.min_confidence, min(self.max_confidence, confidence))

    @abstractmethod
    def decide(self, ctx: PolicyContext) -> PolicyVerdict:
        """Produce a verdict for a proposal that passed validation."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, risk_tolerance={self.risk_tolerance})"


_POLICIES: Dict[str, Type[RiskPolicy]] = {}


def register_policy(cls: Type[RiskPolicy]) -> Type[RiskPolicy]:
    """Class decorator adding a policy to the registry under cls.name."""
    if not cls.name:
        raise ValueError(f"{cls.__name__} has no name")
    _POLICIES[cls.name.lower()] = cls
    return cls


def get_policy(name: str) -> RiskPolicy:
    """
    Instantiate a registered policy.

    Raises:
        KeyError: if no policy has that name
    """
    try:
        return _POLICIES[name.strip().lower()]()
    except KeyError:
        raise KeyError(f"Unknown voting policy {name!r}, available: {available_policies()}")


def available_policies() -> List[str]:
    return sorted(_POLICIES)


# ============================================================================
# CONSERVATIVE
# ============================================================================

@register_policy
class ConservativePolicy(RiskPolicy):
    """Capital preservation: back stable assets, avoid risk and size."""

    name = "conservative"
    risk_tolerance = 0.3
    position_cap = Decimal(1000)
    stable_band = AmountBand(Decimal("0.001"), Decimal(500000))
    standard_band = AmountBand(Decimal("0.01"), Decimal(10000))
    min_confidence = 0.1
    max_confidence = 0.9

    def decide(self, ctx: PolicyContext) -> PolicyVerdict:
        support, confidence, reasoning = self._rule(ctx)

        if ctx.activity == "high":
            if support == (ctx.support_ratio > 0.5):
                confidence += 0.1
                reasoning += " (aligned with voting majority)"
            else:
                confidence -= 0.1
                reasoning += " (against voting majority)"

        if ctx.last_minute:
            confidence *= 0.8
            reasoning += " (last-minute decision factor applied)"

        return PolicyVerdict(support, self.clamp(confidence), reasoning)

    def _rule(self, ctx: PolicyContext):
        kind = ctx.proposal.kind

        # Stable-asset investments are what this policy exists for.
        if kind is ProposalKind.INVEST and ctx.is_stable:
            return True, 0.8, "Supporting stable-asset investment - low risk"
        if ctx.risk_score > self.risk_tolerance:
            return False, 0.8, (
                f"High risk score ({ctx.risk_score:.2f}) exceeds tolerance ({self.risk_tolerance})"
            )
        if ctx.amount > self.position_cap:
            return False, 0.7, "Amount too large for conservative policy"
        if ctx.market_risk > 0.6:
            return False, 0.6, "High market volatility detected, avoiding new positions"

        if kind is ProposalKind.INVEST:
            if ctx.market_aligned and ctx.support_ratio > 0.6:
                return True, 0.6, "Market aligned investment with good community support"
            return False, 0.5, "Non-stable asset investment without strong market signals"

        if kind is ProposalKind.DIVEST:
            if ctx.market_risk > 0.5:
                return True, 0.8, "Supporting divestment during uncertain market conditions"
            if ctx.support_ratio > 0.5:
                return True, 0.6, "Supporting divestment with community consensus"
            return False, 0.4, "Divestment not justified by current market conditions"

        if ctx.market and ctx.market.portfolio_rebalance:
            return True, 0.7, "Supporting portfolio rebalancing based on market analysis"
        return False, 0.4, "Rebalancing not supported by current market analysis"


# ============================================================================
# AGGRESSIVE
# ============================================================================

@register_policy
class AggressivePolicy(RiskPolicy):
    """Growth seeking: follow momentum and accept volatility."""

    name = "aggressive"
    risk_tolerance = 0.8
    position_cap = Decimal(5000)
    stable_band = AmountBand(Decimal("0.001"), Decimal(500000))
    standard_band = AmountBand(Decimal("0.01"), Decimal(100000))
    min_confidence = 0.1
    max_confidence = 0.95

    def decide(self, ctx: PolicyContext) -> PolicyVerdict:
        support, confidence, reasoning = self._rule(ctx)

        if ctx.activity == "high":
            if ctx.support_ratio > 0.8:
                confidence += 0.1
                reasoning += " (riding strong momentum)"
            elif ctx.support_ratio < 0.3 and not support:
                confidence += 0.1
                reasoning += " (contrarian opportunity)"

        if 0.6 < ctx.market_risk < 0.8:
            confidence += 0.05
            reasoning += " (volatility opportunity)"

        if ctx.last_minute and support:
            confidence += 0.05
            reasoning += " (quick decisive action)"

        return PolicyVerdict(support, self.clamp(confidence), reasoning)

    def _rule(self, ctx: PolicyContext):
        kind = ctx.proposal.kind
        market = ctx.market

        if ctx.risk_score > self.risk_tolerance:
            return False, 0.6, f"Risk score ({ctx.risk_score:.2f}) exceeds even aggressive tolerance"
        if ctx.amount > self.position_cap:
            return False, 0.5, "Amount exceeds aggressive policy limits"

        if kind is ProposalKind.INVEST:
            if ctx.is_growth and ctx.market_aligned:
                return True, 0.9, "Supporting growth asset investment with strong market signals"
            if market and self.strong_trend(market):
                return True, 0.8, "Strong market trend detected - capitalizing on momentum"
            if ctx.support_ratio > 0.7:
                return True, 0.7, "Strong community support indicates potential opportunity"
            if ctx.is_stable:
                return True, 0.4, "Supporting stable-asset investment for portfolio balance"
            return False, 0.3, "Investment lacks strong growth potential or market support"

        if kind is ProposalKind.DIVEST:
            if ctx.market_risk > 0.8:
                return True, 0.8, "Supporting divestment due to extreme market risk"
            if self.downtrend(ctx):
                return True, 0.7, "Divestment aligned with bearish market conditions"
            if ctx.support_ratio > 0.6:
                return True, 0.5, "Following community consensus on divestment"
            return False, 0.6, "Divestment may reduce potential upside in current market"

        if market and market.portfolio_rebalance:
            return True, 0.8, "Supporting rebalancing to optimize for current market conditions"
        if self.volatility_opportunity(market):
            return True, 0.7, "Market volatility presents rebalancing opportunity"
        return False, 0.3, "Current market conditions do not justify rebalancing"

    @staticmethod
    def strong_trend(market: MarketContext) -> bool:
        """Several strong signals, clearly leaning one way."""
        buys = market.count(MarketAction.BUY, STRONG_SIGNAL_CONFIDENCE)
        sells = market.count(MarketAction.SELL, STRONG_SIGNAL_CONFIDENCE)
        return (buys >= 3 or sells >= 3) and abs(buys - sells) >= 2

    @staticmethod
    def downtrend(ctx: PolicyContext) -> bool:
        market = ctx.market
        if market is None:
            return False
        signal = market.signal_for(ctx.symbol)
        if signal is not None:
            return signal.action is MarketAction.SELL and signal.confidence > 0.6
        return market.count(MarketAction.SELL) >= 2

    @staticmethod
    def volatility_opportunity(market: Optional[MarketContext]) -> bool:
        if market is None or not 0.4 <= market.risk_score <= 0.7:
            return False
        return market.count(MarketAction.BUY) > 0 and market.count(MarketAction.SELL) > 0
