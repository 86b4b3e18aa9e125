"""
dloopgov/governance/engine.py

Decision engine: validates a proposal, scores it and asks the active
policy for a verdict.

Usage:
    from dloopgov.governance.engine import DecisionEngine

    engine = DecisionEngine("conservative")
    decision = engine.evaluate(proposal, market=context)
    if decision.choice is VoteChoice.SUPPORT:
        ...
"""

import logging
import time
from decimal import Decimal
from typing import Callable, Optional, Union

from ..market import MarketAction, MarketContext
from .assets import AssetRegistry
from .models import (
    Proposal,
    ProposalKind,
    ProposalState,
    VoteDecision,
    ZERO_ADDRESS,
    parse_decimal,
)
from .policies import PolicyContext, RiskPolicy, get_policy

logger = logging.getLogger("dloopgov.governance.engine")


# ============================================================================
# CONSTANTS
# ============================================================================

MIN_DESCRIPTION_LENGTH = 10

BASE_RISK = 0.5
LARGE_AMOUNT = Decimal(1000)
SMALL_AMOUNT = Decimal(10)
KIND_RISK = {
    ProposalKind.INVEST: 0.1,
    ProposalKind.DIVEST: -0.1,
    ProposalKind.REBALANCE: 0.05,
}
MARKET_RISK_WEIGHT = 0.3
FAILING_SUPPORT_RATIO = 0.3
FAILING_RISK = 0.2

HIGH_ACTIVITY_VOTES = Decimal(1000)
MEDIUM_ACTIVITY_VOTES = Decimal(100)

LAST_MINUTE_FRACTION = 0.1


class DecisionEngine:
    """
    Turns proposals into vote decisions under one policy.

    Args:
        policy: RiskPolicy instance or registered policy name
        assets: Known-asset registry for stable/growth classification
        min_confidence: Decisions below this confidence abstain
        clock: Wall clock returning unix seconds
    """

    def __init__(
        self,
        policy: Union[RiskPolicy, str] = "conservative",
        assets: Optional[AssetRegistry] = None,
        min_confidence: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        self.policy = get_policy(policy) if isinstance(policy, str) else policy
        self.assets = assets or AssetRegistry()
        self.min_confidence = min_confidence
        self._clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, proposal: Proposal, now: Optional[float] = None) -> Optional[str]:
        """
        Check whether a proposal can be voted on at all.

        Returns:
            None if valid, otherwise the reason it was rejected
        """
        now = self._clock() if now is None else now

        if proposal.state is not ProposalState.ACTIVE:
            return f"state is {proposal.state.value}"
        if proposal.end_time > 0 and now > proposal.end_time:
            return "voting period has ended"
        if proposal.executed or proposal.cancelled:
            return "already executed or cancelled"
        if len((proposal.description or "").strip()) < MIN_DESCRIPTION_LENGTH:
            return "insufficient description"
        if not proposal.target_asset or proposal.target_asset.lower() == ZERO_ADDRESS:
            return "invalid asset address"

        amount = proposal.amount_value
        if amount is None:
            return f"invalid amount {proposal.amount!r}"

        votes_for = parse_decimal(proposal.votes_for or "0")
        votes_against = parse_decimal(proposal.votes_against or "0")
        if votes_for is None or votes_against is None or votes_for < 0 or votes_against < 0:
            return "invalid voting data"

        band = self.policy.band_for(self.assets.is_stable(proposal))
        if not band.contains(amount):
            return f"amount {amount} outside [{band.minimum}, {band.maximum}]"
        return None

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    @staticmethod
    def risk_score(proposal: Proposal, amount: Decimal, market: Optional[MarketContext]) -> float:
        risk = BASE_RISK
        if amount > LARGE_AMOUNT:
            risk += 0.2
        elif amount < SMALL_AMOUNT:
            risk -= 0.1
        risk += KIND_RISK.get(proposal.kind, 0.0)
        if market is not None:
            risk += market.risk_score * MARKET_RISK_WEIGHT
        if proposal.total_votes > 0 and proposal.support_ratio < FAILING_SUPPORT_RATIO:
            risk += FAILING_RISK
        return round(max(0.0, min(1.0, risk)), 4)

    @staticmethod
    def voting_activity(total_votes: Decimal) -> str:
        if total_votes > HIGH_ACTIVITY_VOTES:
            return "high"
        if total_votes > MEDIUM_ACTIVITY_VOTES:
            return "medium"
        return "low"

    @staticmethod
    def is_last_minute(proposal: Proposal, now: float) -> bool:
        """Inside the final 10% of the voting window."""
        if proposal.start_time <= 0 or proposal.end_time <= proposal.start_time:
            return False
        period = proposal.end_time - proposal.start_time
        return (proposal.end_time - now) < period * LAST_MINUTE_FRACTION

    def market_aligned(self, proposal: Proposal, market: Optional[MarketContext]) -> bool:
        """Whether the market signal for the proposal's asset agrees with it."""
        if market is None:
            return True
        signal = market.signal_for(self.assets.symbol_for(proposal))
        if signal is None:
            return True
        if proposal.kind is ProposalKind.INVEST:
            return signal.action is MarketAction.BUY
        if proposal.kind is ProposalKind.DIVEST:
            return signal.action is MarketAction.SELL
        return signal.action is not MarketAction.HOLD

    def build_context(
        self,
        proposal: Proposal,
        market: Optional[MarketContext],
        now: float,
    ) -> PolicyContext:
        amount = proposal.amount_value or Decimal(0)
        total = proposal.total_votes
        return PolicyContext(
            proposal=proposal,
            amount=amount,
            risk_score=self.risk_score(proposal, amount, market),
            support_ratio=proposal.support_ratio,
            total_votes=total,
            activity=self.voting_activity(total),
            market=market,
            market_aligned=self.market_aligned(proposal, market),
            is_stable=self.assets.is_stable(proposal),
            is_growth=self.assets.is_growth(proposal),
            symbol=self.assets.symbol_for(proposal),
            last_minute=self.is_last_minute(proposal, now),
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        proposal: Proposal,
        market: Optional[MarketContext] = None,
        now: Optional[float] = None,
    ) -> VoteDecision:
        """
        Decide how to vote on a proposal.

        Never raises; analysis errors produce a non-evaluated decision.
        """
        now = self._clock() if now is None else now

        reason = self.validate(proposal, now)
        if reason is not None:
            logger.debug(f"Proposal {proposal.id} rejected: {reason}")
            return VoteDecision.rejected(reason, self.policy.name)

        try:
            ctx = self.build_context(proposal, market, now)
            verdict = self.policy.decide(ctx)
        except Exception as e:
            logger.error(f"{self.policy.name} analysis failed for proposal {proposal.id}: {e}")
            return VoteDecision(
                should_evaluate=False,
                support=False,
                confidence=0.0,
                reasoning=f"Analysis failed: {e}",
                policy=self.policy.name,
            )

        decision = VoteDecision(
            should_evaluate=True,
            support=verdict.support,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            policy=self.policy.name,
            risk_score=ctx.risk_score,
            min_confidence=self.min_confidence,
        )
        logger.info(
            f"Proposal {proposal.id}: {decision.choice.value} "
            f"(confidence {decision.confidence:.2f}, {self.policy.name}) - {decision.reasoning}"
        )
        return decision
