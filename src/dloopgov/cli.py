"""
dloopgov/cli.py

Command line interface.

Commands:
    dloopgov run          one voting round, JSON report on stdout
    dloopgov serve        voting rounds on a fixed interval
    dloopgov providers    probe every RPC provider and print their status
"""

import json
import logging
import sys
from typing import Optional

import click
import trio

from . import __version__
from .config import ConfigError, GovernanceConfig
from .governance.policies import available_policies
from .identity.signer import IdentityError, IdentitySet

logger = logging.getLogger("dloopgov.cli")


def policy_option():
    """
    Click option decorator for --policy.

    Usage:
        @click.command()
        @policy_option()
        def my_command(policy):
            ...
    """
    def decorator(f):
        return click.option(
            "--policy",
            type=click.Choice(available_policies(), case_sensitive=False),
            default=None,
            help="Voting policy (overrides VOTING_POLICY)",
        )(f)
    return decorator


def _load(policy: Optional[str], node_count: Optional[int] = None):
    from .node import GovernanceNode, setup_logging

    try:
        config = GovernanceConfig.from_env()
        if policy:
            config.voting.policy = policy.lower()
        if node_count:
            config.node_count = node_count
        setup_logging(config.log_level)
        identities = IdentitySet.from_env(config.node_count)
    except (ConfigError, IdentityError) as e:
        raise click.ClickException(str(e))
    return GovernanceNode(config, identities)


@click.group()
@click.version_option(version=__version__, prog_name="dloopgov")
def main():
    """Multi-node governance voting for the AssetDAO contract."""


@main.command()
@policy_option()
@click.option("--nodes", type=int, default=None, help="Number of voting identities (overrides NODE_COUNT)")
@click.option("--skip-validation", is_flag=True, help="Do not probe providers before the round")
def run(policy, nodes, skip_validation):
    """Run a single voting round and print the report as JSON."""
    node = _load(policy, nodes)

    async def _main():
        if not skip_validation:
            await node.validate_providers()
        return await node.coordinator.run_voting_round()

    report = trio.run(_main)
    click.echo(json.dumps(report.to_dict(), indent=2))
    if report.error:
        sys.exit(1)


@main.command()
@policy_option()
@click.option("--interval", type=float, default=None, help="Seconds between rounds (overrides VOTING_INTERVAL_SECONDS)")
@click.option("--rounds", type=int, default=None, help="Stop after this many rounds")
def serve(policy, interval, rounds):
    """Run voting rounds on a fixed interval."""
    node = _load(policy)
    if interval:
        node.scheduler.interval = interval

    async def _main():
        await node.validate_providers()
        await node.scheduler.run_forever(max_rounds=rounds)

    try:
        trio.run(_main)
    except KeyboardInterrupt:
        logger.info("Interrupted")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print status as JSON")
def providers(as_json):
    """Probe every RPC provider once and show their health."""
    from .ledger.client import AssetDaoClient
    from .ledger.connection import ConnectionPool
    from .node import setup_logging
    from .rpc.registry import ProviderRegistry
    from .rpc.resilience import ResilientExecutor

    try:
        config = GovernanceConfig.from_env()
    except ConfigError as e:
        raise click.ClickException(str(e))
    setup_logging(config.log_level)

    registry = ProviderRegistry.from_specs(
        config.rpc.providers,
        rate_limit_interval=config.rpc.rate_limit_interval,
        max_failures=config.rpc.max_failures,
    )
    client = AssetDaoClient(ConnectionPool(expected_chain_id=config.rpc.chain_id),
                            config.asset_dao_address)
    executor = ResilientExecutor(registry, probe=client.ping, config=config.rpc)

    results = trio.run(executor.validate_all)

    if as_json:
        click.echo(json.dumps(executor.status(), indent=2))
        return
    for provider in registry.providers:
        mark = "ok  " if results.get(provider.name) else "DOWN"
        click.echo(f"{mark}  {provider.priority}  {provider.name:<12} {provider.url}")
    if not any(results.values()):
        sys.exit(1)
