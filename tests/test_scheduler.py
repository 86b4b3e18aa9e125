"""
Tests for dloopgov/scheduler.py and dloopgov/metrics.py
"""

import pytest

from dloopgov.governance.models import (
    ProposalReport,
    RunReport,
    VoteOutcome,
    VoteRecord,
)
from dloopgov.metrics import MetricsCollector
from dloopgov.rpc.registry import Provider, ProviderRegistry
from dloopgov.rpc.resilience import ResilientExecutor
from dloopgov.scheduler import RoundScheduler


# ============================================================================
# TEST DATA
# ============================================================================

def create_report() -> RunReport:
    """Create a finished round with two successes and one failure."""
    return RunReport(
        started_at=100.0,
        finished_at=112.5,
        discovered=2,
        proposals=[
            ProposalReport(
                proposal_id="1",
                records=[
                    VoteRecord("1", 0, VoteOutcome.SUCCESS, transaction_ref="0x01"),
                    VoteRecord("1", 1, VoteOutcome.SUCCESS, transaction_ref="0x02"),
                    VoteRecord("1", 2, VoteOutcome.FAILED, error_detail="timeout"),
                ],
            ),
        ],
    )


class FakeCoordinator:
    def __init__(self, error=None):
        self.rounds = 0
        self.error = error
        self.last_report = None

    async def run_voting_round(self):
        self.rounds += 1
        if self.error:
            raise self.error
        self.last_report = create_report()
        return self.last_report


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ============================================================================
# SCHEDULER TESTS
# ============================================================================

class TestRoundScheduler:
    """Tests for RoundScheduler."""

    @pytest.mark.trio
    async def test_run_once(self):
        reports = []
        scheduler = RoundScheduler(FakeCoordinator(), on_report=reports.append)

        report = await scheduler.run_once()

        assert report.total_votes_cast == 2
        assert reports == [report]
        assert scheduler.rounds_completed == 1
        assert scheduler.last_report is report

    @pytest.mark.trio
    async def test_callback_error_ignored(self):
        def explode(report):
            raise ValueError("sink closed")

        scheduler = RoundScheduler(FakeCoordinator(), on_report=explode)
        report = await scheduler.run_once()
        assert report is not None

    @pytest.mark.trio
    async def test_max_rounds(self):
        sleep = SleepRecorder()
        coordinator = FakeCoordinator()
        scheduler = RoundScheduler(coordinator, interval=60, sleep=sleep)

        await scheduler.run_forever(max_rounds=3)

        assert coordinator.rounds == 3
        assert sleep.delays == [60, 60]
        assert not scheduler.running

    @pytest.mark.trio
    async def test_failed_round_keeps_running(self):
        sleep = SleepRecorder()
        coordinator = FakeCoordinator(error=RuntimeError("boom"))
        scheduler = RoundScheduler(coordinator, interval=5, sleep=sleep)

        await scheduler.run_forever(max_rounds=2)

        assert coordinator.rounds == 2
        assert scheduler.rounds_completed == 0

    @pytest.mark.trio
    async def test_stop(self):
        sleep = SleepRecorder()
        scheduler = RoundScheduler(FakeCoordinator(), sleep=sleep)
        scheduler.on_report = lambda report: scheduler.stop()

        await scheduler.run_forever()

        assert scheduler.rounds_completed == 1
        assert sleep.delays == []


# ============================================================================
# METRICS TESTS
# ============================================================================

class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def setup_method(self):
        registry = ProviderRegistry([
            Provider(url="https://a.example", name="a", priority=1),
            Provider(url="https://b.example", name="b", priority=2),
        ])
        registry.get("b").is_healthy = False
        registry.get("b").failure_count = 3
        self.executor = ResilientExecutor(registry)
        self.executor.stats.total_calls = 9
        self.executor.stats.rate_limit_hits = 2
        self.coordinator = FakeCoordinator()
        self.coordinator.last_report = create_report()

    def test_provider_metrics(self):
        output = MetricsCollector(self.executor).collect()
        assert 'dloopgov_provider_healthy{provider="a"} 1' in output
        assert 'dloopgov_provider_healthy{provider="b"} 0' in output
        assert 'dloopgov_provider_failures{provider="b"} 3' in output
        assert "dloopgov_providers_healthy 1" in output
        assert "dloopgov_rpc_calls_total 9" in output
        assert "dloopgov_rpc_rate_limit_hits_total 2" in output
        assert "dloopgov_last_round_proposals" not in output

    def test_help_declared_once(self):
        output = MetricsCollector(self.executor, self.coordinator).collect()
        assert output.count("# HELP dloopgov_provider_healthy ") == 1
        assert output.count("# TYPE dloopgov_last_round_votes gauge") == 1

    def test_round_metrics(self):
        output = MetricsCollector(self.executor, self.coordinator).collect()
        assert "dloopgov_last_round_proposals 2" in output
        assert 'dloopgov_last_round_votes{outcome="success"} 2' in output
        assert 'dloopgov_last_round_votes{outcome="failed"} 1' in output
        assert 'dloopgov_last_round_votes{outcome="already_voted"} 0' in output
        assert "dloopgov_last_round_duration_seconds 12.5" in output
        assert "dloopgov_last_round_brake 0" in output
        assert output.endswith("\n")
        assert "dloopgov_info{version=" in output

    def test_get_stats(self):
        stats = MetricsCollector(self.executor, self.coordinator).get_stats()
        assert stats["rpc"]["healthy"] == 1
        assert stats["last_round"]["total_votes_cast"] == 2
