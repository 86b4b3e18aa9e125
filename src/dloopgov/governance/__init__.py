"""
dloopgov/governance - AssetDAO proposal discovery, decisions and voting.

Usage:
    from dloopgov.governance import (
        ProposalDiscovery,
        DecisionEngine,
        VotingCoordinator,
    )

    discovery = ProposalDiscovery(executor, client)
    engine = DecisionEngine("conservative")
    coordinator = VotingCoordinator(executor, client, discovery, engine, identities)
    report = await coordinator.run_voting_round()
"""

from .models import (
    Proposal,
    ProposalKind,
    ProposalState,
    ProposalReport,
    RunReport,
    VoteChoice,
    VoteDecision,
    VoteOutcome,
    VoteRecord,
    ZERO_ADDRESS,
)
from .records import (
    NamedRecord,
    PositionalRecord,
    RawRecord,
    RecordLayout,
    normalize_record,
    wrap_raw,
)
from .assets import Asset, AssetRegistry, DEFAULT_ASSETS
from .policies import (
    AggressivePolicy,
    AmountBand,
    ConservativePolicy,
    PolicyContext,
    PolicyVerdict,
    RiskPolicy,
    available_policies,
    get_policy,
    register_policy,
)
from .engine import DecisionEngine
from .discovery import ProposalDiscovery
from .coordinator import VotingCoordinator

__all__ = [
    # Models
    "Proposal",
    "ProposalKind",
    "ProposalState",
    "ProposalReport",
    "RunReport",
    "VoteChoice",
    "VoteDecision",
    "VoteOutcome",
    "VoteRecord",
    "ZERO_ADDRESS",
    # Raw records
    "NamedRecord",
    "PositionalRecord",
    "RawRecord",
    "RecordLayout",
    "normalize_record",
    "wrap_raw",
    # Assets
    "Asset",
    "AssetRegistry",
    "DEFAULT_ASSETS",
    # Policies
    "AggressivePolicy",
    "AmountBand",
    "ConservativePolicy",
    "PolicyContext",
    "PolicyVerdict",
    "RiskPolicy",
    "available_policies",
    "get_policy",
    "register_policy",
    # Components
    "DecisionEngine",
    "ProposalDiscovery",
    "VotingCoordinator",
]
