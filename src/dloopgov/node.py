"""
dloopgov/node.py

Wiring of a complete governance node from a GovernanceConfig.

Usage:
    config = GovernanceConfig.from_env()
    identities = IdentitySet.from_env(config.node_count)
    node = GovernanceNode(config, identities)

    await node.validate_providers()
    report = await node.coordinator.run_voting_round()
"""

import logging
from typing import Dict, Optional

from .config import GovernanceConfig, LOG_FORMAT
from .governance.coordinator import VotingCoordinator
from .governance.discovery import ProposalDiscovery
from .governance.engine import DecisionEngine
from .identity.signer import IdentitySet
from .ledger.client import AssetDaoClient
from .ledger.connection import ConnectionPool
from .market import MarketContextProvider
from .metrics import MetricsCollector
from .rpc.registry import ProviderRegistry
from .rpc.resilience import ResilientExecutor
from .scheduler import RoundScheduler

logger = logging.getLogger("dloopgov.node")


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


class GovernanceNode:
    """
    All components of one node, built and connected.

    Attributes:
        registry: Provider health registry
        executor: Resilience layer shared by every component
        client: AssetDAO contract client
        discovery, engine, coordinator, scheduler, metrics
    """

    def __init__(
        self,
        config: GovernanceConfig,
        identities: IdentitySet,
        market: Optional[MarketContextProvider] = None,
    ):
        self.config = config
        self.identities = identities

        rpc = config.rpc
        self.registry = ProviderRegistry.from_specs(
            rpc.providers,
            rate_limit_interval=rpc.rate_limit_interval,
            max_failures=rpc.max_failures,
        )
        self.connections = ConnectionPool(expected_chain_id=rpc.chain_id)
        self.client = AssetDaoClient(
            self.connections,
            config.asset_dao_address,
            receipt_timeout=config.voting.receipt_timeout,
        )
        self.executor = ResilientExecutor(self.registry, probe=self.client.ping, config=rpc)
        self.discovery = ProposalDiscovery(self.executor, self.client, config.discovery)
        self.engine = DecisionEngine(
            config.voting.policy,
            min_confidence=config.voting.min_confidence,
        )
        self.coordinator = VotingCoordinator(
            self.executor,
            self.client,
            self.discovery,
            self.engine,
            identities,
            config=config.voting,
            market=market,
        )
        self.scheduler = RoundScheduler(self.coordinator, interval=config.interval)
        self.metrics = MetricsCollector(self.executor, self.coordinator)

        logger.info(
            f"Governance node ready: {len(identities)} identities, "
            f"policy {self.engine.policy.name}, {len(self.registry.providers)} providers"
        )

    async def validate_providers(self) -> Dict[str, bool]:
        """Probe every provider once; unreachable ones start unhealthy."""
        results = await self.executor.validate_all()
        healthy = sum(results.values())
        if healthy == 0:
            logger.error("No RPC provider passed startup validation")
        else:
            logger.info(f"{healthy}/{len(results)} RPC providers reachable")
        return results
