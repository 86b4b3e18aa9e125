"""
dloopgov/metrics.py

Prometheus metrics export for a governance node.

Renders provider health, RPC call counters and the outcome of the last
voting round in Prometheus text exposition format.

Usage:
    from dloopgov.metrics import MetricsCollector

    collector = MetricsCollector(executor, coordinator)
    print(collector.collect())
"""

import logging
import time
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from . import __version__

if TYPE_CHECKING:
    from .governance.coordinator import VotingCoordinator
    from .rpc.resilience import ResilientExecutor

logger = logging.getLogger("dloopgov.metrics")


class MetricsCollector:
    """
    Collects node metrics in Prometheus format.

    Metrics exposed:
    - dloopgov_provider_healthy: 1 if the provider is healthy (per provider)
    - dloopgov_provider_failures: Consecutive failures (per provider)
    - dloopgov_rpc_calls_total: RPC attempts made
    - dloopgov_rpc_succeeded_total / dloopgov_rpc_failed_total
    - dloopgov_rpc_rate_limit_hits_total / dloopgov_rpc_timeouts_total
    - dloopgov_last_round_*: Summary of the most recent round
    """

    METRICS = {
        "dloopgov_provider_healthy": {
            "type": "gauge",
            "help": "Whether the RPC provider is healthy",
        },
        "dloopgov_provider_failures": {
            "type": "gauge",
            "help": "Consecutive failures of the RPC provider",
        },
        "dloopgov_providers_healthy": {
            "type": "gauge",
            "help": "Number of healthy RPC providers",
        },
        "dloopgov_rpc_calls_total": {
            "type": "counter",
            "help": "RPC call attempts",
        },
        "dloopgov_rpc_succeeded_total": {
            "type": "counter",
            "help": "RPC calls that succeeded",
        },
        "dloopgov_rpc_failed_total": {
            "type": "counter",
            "help": "RPC calls that failed after all attempts",
        },
        "dloopgov_rpc_rate_limit_hits_total": {
            "type": "counter",
            "help": "Rate-limited RPC responses",
        },
        "dloopgov_rpc_timeouts_total": {
            "type": "counter",
            "help": "RPC attempts that timed out",
        },
        "dloopgov_last_round_proposals": {
            "type": "gauge",
            "help": "Votable proposals discovered in the last round",
        },
        "dloopgov_last_round_votes": {
            "type": "gauge",
            "help": "Vote attempts in the last round by outcome",
        },
        "dloopgov_last_round_duration_seconds": {
            "type": "gauge",
            "help": "Wall-clock duration of the last round",
        },
        "dloopgov_last_round_brake": {
            "type": "gauge",
            "help": "1 if the last round hit the emergency brake",
        },
        "dloopgov_uptime_seconds": {
            "type": "gauge",
            "help": "Seconds since the node started",
        },
    }

    def __init__(
        self,
        executor: "ResilientExecutor",
        coordinator: Optional["VotingCoordinator"] = None,
    ):
        """
        Args:
            executor: Resilience layer whose registry and counters are exported
            coordinator: Coordinator whose last report is exported
        """
        self.executor = executor
        self.coordinator = coordinator
        self._start_time = time.time()

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []
        declared = set()

        def add_metric(name: str, value: float, labels: Dict[str, str] = None):
            if name not in declared:
                metric_def = self.METRICS.get(name, {})
                lines.append(f"# HELP {name} {metric_def.get('help', '')}")
                lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")
                declared.add(name)
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        try:
            registry = self.executor.registry
            for provider in registry.providers:
                labels = {"provider": provider.name}
                add_metric("dloopgov_provider_healthy", 1 if provider.is_healthy else 0, labels)
            for provider in registry.providers:
                labels = {"provider": provider.name}
                add_metric("dloopgov_provider_failures", provider.failure_count, labels)
            add_metric("dloopgov_providers_healthy", len(registry.healthy()))

            stats = self.executor.stats
            add_metric("dloopgov_rpc_calls_total", stats.total_calls)
            add_metric("dloopgov_rpc_succeeded_total", stats.succeeded)
            add_metric("dloopgov_rpc_failed_total", stats.failed)
            add_metric("dloopgov_rpc_rate_limit_hits_total", stats.rate_limit_hits)
            add_metric("dloopgov_rpc_timeouts_total", stats.timeouts)

            report = self.coordinator.last_report if self.coordinator else None
            if report is not None:
                add_metric("dloopgov_last_round_proposals", report.discovered)
                for outcome, count in report.outcome_counts().items():
                    add_metric("dloopgov_last_round_votes", count, {"outcome": outcome})
                duration = max(0.0, report.finished_at - report.started_at)
                add_metric("dloopgov_last_round_duration_seconds", round(duration, 3))
                add_metric("dloopgov_last_round_brake", 1 if report.brake_triggered else 0)

            add_metric("dloopgov_uptime_seconds", time.time() - self._start_time)

            lines.append("# HELP dloopgov_info Node information")
            lines.append("# TYPE dloopgov_info gauge")
            lines.append(f'dloopgov_info{{version="{__version__}"}} 1')

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON output).
        """
        report = self.coordinator.last_report if self.coordinator else None
        return {
            "rpc": self.executor.status(),
            "last_round": report.to_dict() if report else None,
            "uptime_seconds": time.time() - self._start_time,
        }
