"""
dloopgov - Resilient multi-node governance voting for the AssetDAO contract

Built on trio and web3.py with:
- Provider health registry with rate-limit spacing and recovery
- Resilient RPC execution (failover, timeouts, backoff)
- Paced proposal discovery tolerant of both contract layouts
- Pluggable voting policies (conservative, aggressive)
- Sequential multi-identity voting with an emergency brake
- Prometheus metrics for monitoring

Usage:
    import trio
    from dloopgov import GovernanceConfig, GovernanceNode, IdentitySet

    config = GovernanceConfig.from_env()
    node = GovernanceNode(config, IdentitySet.from_env(config.node_count))

    report = trio.run(node.coordinator.run_voting_round)
    print(report.total_votes_cast)

Command line:
    dloopgov run --policy conservative
    dloopgov serve
    dloopgov providers
"""

__version__ = "0.1.0"

from .config import (
    ConfigError,
    DiscoveryConfig,
    GovernanceConfig,
    ProviderSpec,
    RpcConfig,
    VotingConfig,
)
from .rpc import (
    ErrorKind,
    Provider,
    ProviderRegistry,
    ResilientExecutor,
    RpcError,
    RpcResult,
)
from .governance import (
    DecisionEngine,
    Proposal,
    ProposalDiscovery,
    RunReport,
    VoteDecision,
    VoteOutcome,
    VotingCoordinator,
)
from .identity import IdentityError, IdentitySet, VotingIdentity
from .market import MarketContext, MarketContextProvider, StaticMarketContextProvider
from .node import GovernanceNode

__all__ = [
    "__version__",
    # Configuration
    "ConfigError",
    "DiscoveryConfig",
    "GovernanceConfig",
    "ProviderSpec",
    "RpcConfig",
    "VotingConfig",
    # RPC
    "ErrorKind",
    "Provider",
    "ProviderRegistry",
    "ResilientExecutor",
    "RpcError",
    "RpcResult",
    # Governance
    "DecisionEngine",
    "Proposal",
    "ProposalDiscovery",
    "RunReport",
    "VoteDecision",
    "VoteOutcome",
    "VotingCoordinator",
    # Identity
    "IdentityError",
    "IdentitySet",
    "VotingIdentity",
    # Market
    "MarketContext",
    "MarketContextProvider",
    "StaticMarketContextProvider",
    # Node
    "GovernanceNode",
]
