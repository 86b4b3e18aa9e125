"""
dloopgov/governance/models.py

Data model for AssetDAO governance: proposals, vote decisions, vote
records and round reports.

Proposals are read-only snapshots of on-chain state and are re-fetched on
every round. Amounts and vote tallies are decimal strings in human units.
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional, Any


# ============================================================================
# CONSTANTS
# ============================================================================

ZERO_ADDRESS = "0x" + "0" * 40


# ============================================================================
# ENUMS
# ============================================================================

class ProposalKind(Enum):
    """What a proposal asks the DAO to do."""
    INVEST = "invest"
    DIVEST = "divest"
    REBALANCE = "rebalance"

    @classmethod
    def from_code(cls, code: int) -> Optional["ProposalKind"]:
        return _KIND_CODES.get(code)


class ProposalState(Enum):
    """Lifecycle state of a proposal on chain."""
    PENDING = "pending"
    ACTIVE = "active"
    SUCCEEDED = "succeeded"
    DEFEATED = "defeated"
    QUEUED = "queued"
    EXECUTED = "executed"
    CANCELLED = "cancelled"

    @classmethod
    def from_code(cls, code: int) -> Optional["ProposalState"]:
        return _STATE_CODES.get(code)


_KIND_CODES = {
    0: ProposalKind.INVEST,
    1: ProposalKind.DIVEST,
    2: ProposalKind.REBALANCE,
}

_STATE_CODES = {
    0: ProposalState.PENDING,
    1: ProposalState.ACTIVE,
    2: ProposalState.SUCCEEDED,
    3: ProposalState.DEFEATED,
    4: ProposalState.QUEUED,
    5: ProposalState.EXECUTED,
    6: ProposalState.CANCELLED,
}


class VoteChoice(Enum):
    """Direction of a decision."""
    SUPPORT = "support"
    OPPOSE = "oppose"
    ABSTAIN = "abstain"


class VoteOutcome(Enum):
    """Result of one identity's attempt to vote."""
    SUCCESS = "success"
    ALREADY_VOTED = "already_voted"
    FAILED = "failed"
    PENDING = "pending"     # sent, receipt not seen before the deadline


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a decimal string, returning None for garbage, NaN or infinity."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class Proposal:
    """A normalized AssetDAO proposal."""
    id: str
    proposer: str
    kind: ProposalKind
    target_asset: str
    amount: str                       # human units, decimal string
    description: str
    votes_for: str
    votes_against: str
    start_time: int                   # unix seconds, 0 = unknown
    end_time: int                     # unix seconds, 0 = unknown
    state: ProposalState
    executed: bool = False
    cancelled: bool = False

    @property
    def amount_value(self) -> Optional[Decimal]:
        return parse_decimal(self.amount)

    @property
    def total_votes(self) -> Decimal:
        yes = parse_decimal(self.votes_for) or Decimal(0)
        no = parse_decimal(self.votes_against) or Decimal(0)
        return yes + no

    @property
    def support_ratio(self) -> float:
        """Share of votes in favour, 0.5 when nobody has voted."""
        total = self.total_votes
        if total <= 0:
            return 0.5
        return float((parse_decimal(self.votes_for) or Decimal(0)) / total)

    def is_votable(self, now: float) -> bool:
        """Active, has a real proposer and its window is still open."""
        return (
            self.state is ProposalState.ACTIVE
            and bool(self.proposer)
            and self.proposer.lower() != ZERO_ADDRESS
            and self.end_time > 0
            and self.end_time > now
        )

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            "kind": self.kind.value,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Proposal":
        data = dict(data)
        data["kind"] = ProposalKind(data["kind"])
        data["state"] = ProposalState(data["state"])
        return cls(**data)


@dataclass
class VoteDecision:
    """What the decision engine wants to do with one proposal."""
    should_evaluate: bool
    support: bool
    confidence: float
    reasoning: str
    policy: str = ""
    risk_score: float = 0.0
    min_confidence: float = 0.0

    @property
    def choice(self) -> VoteChoice:
        if not self.should_evaluate or self.confidence < self.min_confidence:
            return VoteChoice.ABSTAIN
        return VoteChoice.SUPPORT if self.support else VoteChoice.OPPOSE

    @classmethod
    def rejected(cls, reason: str, policy: str = "") -> "VoteDecision":
        return cls(
            should_evaluate=False,
            support=False,
            confidence=0.0,
            reasoning=f"Proposal failed basic validation: {reason}",
            policy=policy,
        )

    def to_dict(self) -> dict:
        return {
            "should_evaluate": self.should_evaluate,
            "support": self.support,
            "choice": self.choice.value,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "policy": self.policy,
            "risk_score": round(self.risk_score, 4),
        }


@dataclass
class VoteRecord:
    """Outcome of one identity voting on one proposal."""
    proposal_id: str
    identity_index: int
    outcome: VoteOutcome
    transaction_ref: Optional[str] = None
    error_detail: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            "outcome": self.outcome.value,
        }


@dataclass
class ProposalReport:
    """What happened to one proposal during a round."""
    proposal_id: str
    decision: Optional[VoteDecision] = None
    records: List[VoteRecord] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def votes_cast(self) -> int:
        return sum(1 for r in self.records if r.outcome is VoteOutcome.SUCCESS)

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "decision": self.decision.to_dict() if self.decision else None,
            "records": [r.to_dict() for r in self.records],
            "skipped_reason": self.skipped_reason,
            "votes_cast": self.votes_cast,
        }


@dataclass
class RunReport:
    """Summary of one voting round."""
    started_at: float
    finished_at: float = 0.0
    discovered: int = 0
    proposals: List[ProposalReport] = field(default_factory=list)
    brake_triggered: bool = False
    error: Optional[str] = None

    @property
    def total_votes_cast(self) -> int:
        return sum(p.votes_cast for p in self.proposals)

    def outcome_counts(self) -> Dict[str, int]:
        counts = {o.value: 0 for o in VoteOutcome}
        for proposal in self.proposals:
            for record in proposal.records:
                counts[record.outcome.value] += 1
        return counts

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration": round(max(0.0, self.finished_at - self.started_at), 3),
            "discovered": self.discovered,
            "proposals": [p.to_dict() for p in self.proposals],
            "total_votes_cast": self.total_votes_cast,
            "outcomes": self.outcome_counts(),
            "brake_triggered": self.brake_triggered,
            "error": self.error,
        }
