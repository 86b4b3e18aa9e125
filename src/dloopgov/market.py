"""
dloopgov/market.py

Market context consumed by the decision engine.

A MarketContext is a per-asset buy/sell/hold recommendation set plus an
overall risk score and a portfolio-rebalance signal. Providers return None
when they have nothing; the engine then votes without a market signal.

Usage:
    from dloopgov.market import StaticMarketContextProvider, PriceSnapshot

    provider = StaticMarketContextProvider.from_prices([
        PriceSnapshot("USDC", price=1.0, change_24h=0.1),
        PriceSnapshot("WBTC", price=64000.0, change_24h=6.2),
    ])
    context = await provider.fetch_context()
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger("dloopgov.market")


# ============================================================================
# CONSTANTS
# ============================================================================

# 24h change thresholds (percent) for buy / sell recommendations
BUY_THRESHOLD = 5.0
SELL_THRESHOLD = -5.0

# Average absolute 24h move (percent) that maps to risk score 1.0
FULL_RISK_MOVE = 10.0

# Confidence above which a signal counts as strong
STRONG_SIGNAL_CONFIDENCE = 0.7


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class MarketAction(Enum):
    """Recommended action for one asset."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass
class AssetSignal:
    """Recommendation for one asset."""
    action: MarketAction
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass
class MarketContext:
    """Snapshot of market conditions for one voting round."""
    recommendations: Dict[str, AssetSignal] = field(default_factory=dict)
    risk_score: float = 0.0
    portfolio_rebalance: bool = False
    timestamp: float = field(default_factory=time.time)

    def signal_for(self, symbol: Optional[str]) -> Optional[AssetSignal]:
        if not symbol:
            return None
        return self.recommendations.get(symbol.upper())

    def count(self, action: MarketAction, min_confidence: float = 0.0) -> int:
        return sum(
            1 for s in self.recommendations.values()
            if s.action is action and s.confidence > min_confidence
        )

    def to_dict(self) -> dict:
        return {
            "recommendations": {k: v.to_dict() for k, v in self.recommendations.items()},
            "risk_score": self.risk_score,
            "portfolio_rebalance": self.portfolio_rebalance,
            "timestamp": self.timestamp,
        }


@dataclass
class PriceSnapshot:
    """Price and 24h change (percent) for one asset."""
    symbol: str
    price: float
    change_24h: float = 0.0


def signal_from_change(change_24h: float) -> AssetSignal:
    """Momentum rule: strong moves recommend following them."""
    if change_24h > BUY_THRESHOLD:
        return AssetSignal(MarketAction.BUY, 0.8, f"Strong positive momentum: {change_24h:.2f}%")
    if change_24h < SELL_THRESHOLD:
        return AssetSignal(MarketAction.SELL, 0.7, f"Negative momentum: {change_24h:.2f}%")
    return AssetSignal(MarketAction.HOLD, 0.6, f"Stable price action: {change_24h:.2f}%")


def context_from_prices(prices: Iterable[PriceSnapshot]) -> MarketContext:
    """
    Derive a MarketContext from price snapshots.

    Risk is the mean absolute 24h move scaled so FULL_RISK_MOVE maps to 1.0.
    A rebalance is signalled when assets move in opposite directions.
    """
    snapshots: List[PriceSnapshot] = list(prices)
    recommendations = {p.symbol.upper(): signal_from_change(p.change_24h) for p in snapshots}
    if snapshots:
        mean_move = sum(abs(p.change_24h) for p in snapshots) / len(snapshots)
        risk = min(1.0, mean_move / FULL_RISK_MOVE)
    else:
        risk = 0.0
    actions = {s.action for s in recommendations.values()}
    rebalance = MarketAction.BUY in actions and MarketAction.SELL in actions
    return MarketContext(
        recommendations=recommendations,
        risk_score=risk,
        portfolio_rebalance=rebalance,
    )


# ============================================================================
# PROVIDERS
# ============================================================================

class MarketContextProvider(ABC):
    """Source of market context for a voting round."""

    @abstractmethod
    async def fetch_context(self) -> Optional[MarketContext]:
        """Return the current context, or None if unavailable."""


class StaticMarketContextProvider(MarketContextProvider):
    """Provider that always returns the same context."""

    def __init__(self, context: Optional[MarketContext] = None):
        self.context = context

    @classmethod
    def from_prices(cls, prices: Iterable[PriceSnapshot]) -> "StaticMarketContextProvider":
        return cls(context_from_prices(prices))

    async def fetch_context(self) -> Optional[MarketContext]:
        return self.context
