"""
Tests for dloopgov/rpc/resilience.py

Tests failover, error classification, backoff, recovery and startup
validation of the resilient executor.
"""

import pytest
import trio
from web3.exceptions import ContractLogicError

from dloopgov.config import RpcConfig
from dloopgov.rpc.registry import Provider, ProviderRegistry
from dloopgov.rpc.resilience import (
    ErrorKind,
    ResilientExecutor,
    RpcError,
    RpcResult,
    backoff_delay,
    classify_error,
    is_rate_limit_error,
)


# ============================================================================
# TEST DATA
# ============================================================================

def create_registry(count: int = 3, interval: float = 2.0) -> ProviderRegistry:
    """Create a registry with providers p1..pN."""
    return ProviderRegistry(
        [Provider(url=f"https://rpc{i}.example", name=f"p{i}", priority=i) for i in range(1, count + 1)],
        rate_limit_interval=interval,
    )


def create_call(failing: set, error: Exception = None, value="ok"):
    """Create a provider call that fails on the named providers."""
    calls = []

    async def call(provider):
        calls.append(provider.name)
        if provider.name in failing:
            raise error or ConnectionError(f"{provider.name} unreachable")
        return value

    call.calls = calls
    return call


def create_probe(down: set):
    """Create a liveness probe that fails for the named providers."""
    async def probe(provider):
        if provider.name in down:
            raise ConnectionError("probe failed")
        return True
    return probe


class SleepRecorder:
    """Async sleep replacement recording requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ============================================================================
# UTILITY FUNCTION TESTS
# ============================================================================

class TestBackoff:
    """Tests for backoff_delay."""

    def test_exponential_then_capped(self):
        """Test 1s, 2s, 4s then capped at 5s."""
        assert [backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_custom_base_and_cap(self):
        """Test custom base and cap."""
        assert backoff_delay(3, base=0.5, cap=10.0) == 2.0


class TestClassification:
    """Tests for classify_error and is_rate_limit_error."""

    @pytest.mark.parametrize("message", [
        "429 Client Error: Too Many Requests",
        "rate limit exceeded",
        "{'code': -32005, 'message': 'limit'}",
        "batch of more than 3 requests",
        "missing response for request",
        "BAD_DATA",
    ])
    def test_rate_limit_patterns(self, message):
        """Test each rate-limit pattern is recognised."""
        assert is_rate_limit_error(Exception(message))
        assert classify_error(Exception(message)) is ErrorKind.RATE_LIMITED

    def test_timeout(self):
        """Test trio timeouts classify as TIMEOUT."""
        assert classify_error(trio.TooSlowError()) is ErrorKind.TIMEOUT
        assert classify_error(TimeoutError()) is ErrorKind.TIMEOUT

    def test_revert(self):
        """Test contract reverts classify as REVERTED."""
        assert classify_error(ContractLogicError("execution reverted")) is ErrorKind.REVERTED

    def test_other(self):
        """Test anything else is a generic RPC error."""
        assert classify_error(ValueError("boom")) is ErrorKind.RPC_ERROR


class TestRpcResult:
    """Tests for RpcResult."""

    def test_unwrap_success(self):
        """Test unwrap returns the value."""
        assert RpcResult.success(42, "p1").unwrap() == 42

    def test_unwrap_failure_raises(self):
        """Test unwrap raises RpcError carrying the kind."""
        result = RpcResult.failure(ErrorKind.TIMEOUT, "slow")
        with pytest.raises(RpcError) as exc_info:
            result.unwrap()
        assert exc_info.value.kind is ErrorKind.TIMEOUT

    def test_to_dict(self):
        """Test serialization."""
        data = RpcResult.failure(ErrorKind.RATE_LIMITED, "429", "p2", 2).to_dict()
        assert data == {
            "ok": False,
            "error_kind": "rate_limited",
            "error": "429",
            "provider": "p2",
            "attempts": 2,
        }


# ============================================================================
# EXECUTE TESTS
# ============================================================================

class TestExecute:
    """Tests for ResilientExecutor.execute."""

    @pytest.mark.trio
    async def test_success_first_attempt(self):
        """Test a healthy provider answers on the first attempt."""
        executor = ResilientExecutor(create_registry())
        call = create_call(failing=set(), value=7)

        result = await executor.execute(call, max_attempts=3, timeout=1.0)

        assert result.ok
        assert result.value == 7
        assert result.provider == "p1"
        assert result.attempts == 1
        assert executor.stats.succeeded == 1

    @pytest.mark.trio
    async def test_failover_to_third_provider(self, autojump_clock):
        """Test providers 1-2 failing still succeeds through provider 3."""
        executor = ResilientExecutor(create_registry())
        call = create_call(failing={"p1", "p2"})

        result = await executor.execute(call, max_attempts=3, timeout=1.0)

        assert result.ok
        assert result.provider == "p3"
        assert result.attempts == 3
        assert call.calls == ["p1", "p2", "p3"]

    @pytest.mark.trio
    async def test_failing_providers_become_unhealthy(self, autojump_clock):
        """Test repeated calls mark providers 1-2 unhealthy while every call succeeds."""
        registry = create_registry()
        executor = ResilientExecutor(registry)
        call = create_call(failing={"p1", "p2"})

        for _ in range(5):
            result = await executor.execute(call, max_attempts=3, timeout=1.0)
            assert result.ok
            assert result.provider == "p3"

        assert not registry.get("p1").is_healthy
        assert not registry.get("p2").is_healthy
        assert registry.get("p1").failure_count >= registry.max_failures
        assert registry.get("p3").is_healthy

    @pytest.mark.trio
    async def test_rate_limited_provider_rotated(self, autojump_clock):
        """Test a 429 records a rate-limit hit and pushes the provider back."""
        registry = create_registry(interval=2.0)
        executor = ResilientExecutor(registry)
        call = create_call(failing={"p1"}, error=Exception("429 Too Many Requests"))

        start = trio.current_time()
        result = await executor.execute(call, max_attempts=2, timeout=1.0)

        assert result.ok
        assert result.provider == "p2"
        assert executor.stats.rate_limit_hits == 1
        assert registry.next_eligible_at(registry.get("p1")) - start >= 2 * registry.rate_limit_interval

    @pytest.mark.trio
    async def test_timeout_fails_over(self, autojump_clock):
        """Test a hung provider is abandoned after the timeout."""
        executor = ResilientExecutor(create_registry())

        async def call(provider):
            if provider.name == "p1":
                await trio.sleep_forever()
            return "late"

        result = await executor.execute(call, max_attempts=2, timeout=2.0)

        assert result.ok
        assert result.value == "late"
        assert executor.stats.timeouts == 1
        assert executor.registry.get("p1").failure_count == 1

    @pytest.mark.trio
    async def test_timeout_reported(self, autojump_clock):
        """Test a call that always hangs ends with TIMEOUT."""
        executor = ResilientExecutor(create_registry(count=1, interval=0.0))

        async def call(provider):
            await trio.sleep_forever()

        result = await executor.execute(call, max_attempts=2, timeout=0.5, label="slow")

        assert not result.ok
        assert result.error_kind is ErrorKind.TIMEOUT
        assert "timed out" in result.error

    @pytest.mark.trio
    async def test_revert_not_retried(self):
        """Test a contract revert returns immediately without hurting health."""
        registry = create_registry()
        executor = ResilientExecutor(registry)
        call = create_call(failing={"p1", "p2", "p3"},
                           error=ContractLogicError("execution reverted: Already voted"))

        result = await executor.execute(call, max_attempts=3, timeout=1.0)

        assert not result.ok
        assert result.error_kind is ErrorKind.REVERTED
        assert result.attempts == 1
        assert "already voted" in result.error.lower()
        assert call.calls == ["p1"]
        assert registry.get("p1").failure_count == 0
        assert registry.get("p1").is_healthy

    @pytest.mark.trio
    async def test_all_attempts_fail(self):
        """Test exhausting attempts returns the last error."""
        sleep = SleepRecorder()
        executor = ResilientExecutor(create_registry(count=1, interval=0.0), sleep=sleep)
        call = create_call(failing={"p1"})

        result = await executor.execute(call, max_attempts=3, timeout=1.0)

        assert not result.ok
        assert result.error_kind is ErrorKind.RPC_ERROR
        assert result.attempts == 3
        assert sleep.delays == [1.0, 2.0]
        assert executor.stats.failed == 1

    @pytest.mark.trio
    async def test_backoff_uses_config(self):
        """Test backoff base and cap come from RpcConfig."""
        sleep = SleepRecorder()
        config = RpcConfig(backoff_base=0.25, backoff_max=0.5)
        executor = ResilientExecutor(create_registry(count=1, interval=0.0), config=config, sleep=sleep)

        await executor.execute(create_call(failing={"p1"}), max_attempts=4, timeout=1.0)

        assert sleep.delays == [0.25, 0.5, 0.5]

    @pytest.mark.trio
    async def test_waits_for_cooling_provider(self, autojump_clock):
        """Test a resting provider is waited for instead of failing."""
        registry = create_registry(count=1, interval=3.0)
        executor = ResilientExecutor(registry)
        call = create_call(failing=set())

        await executor.execute(call, timeout=1.0)
        start = trio.current_time()
        result = await executor.execute(call, timeout=1.0)

        assert result.ok
        assert trio.current_time() - start >= 3.0


# ============================================================================
# RECOVERY TESTS
# ============================================================================

class TestRecovery:
    """Tests for probing unhealthy providers back into service."""

    @pytest.mark.trio
    async def test_provider_unavailable_when_probe_fails(self):
        """Test total outage yields PROVIDER_UNAVAILABLE."""
        registry = create_registry()
        for p in registry.providers:
            p.is_healthy = False
            p.failure_count = 3
        executor = ResilientExecutor(registry, probe=create_probe(down={"p1", "p2", "p3"}))
        call = create_call(failing=set())

        result = await executor.execute(call, max_attempts=3, timeout=1.0)

        assert not result.ok
        assert result.error_kind is ErrorKind.PROVIDER_UNAVAILABLE
        assert call.calls == []

    @pytest.mark.trio
    async def test_provider_unavailable_without_probe(self):
        """Test nothing is recovered without a probe."""
        registry = create_registry(count=1)
        registry.providers[0].is_healthy = False
        executor = ResilientExecutor(registry)

        result = await executor.execute(create_call(failing=set()), timeout=1.0)

        assert result.error_kind is ErrorKind.PROVIDER_UNAVAILABLE

    @pytest.mark.trio
    async def test_recovers_least_recently_failed(self):
        """Test the least recently failed provider is probed and used."""
        registry = create_registry()
        for i, p in enumerate(registry.providers):
            p.is_healthy = False
            p.failure_count = 3
            p.last_failure_at = [30.0, 10.0, 20.0][i]
        executor = ResilientExecutor(registry, probe=create_probe(down=set()))
        call = create_call(failing=set())

        result = await executor.execute(call, timeout=1.0)

        assert result.ok
        assert result.provider == "p2"
        assert registry.get("p2").is_healthy
        assert executor.stats.recoveries == 1

    @pytest.mark.trio
    async def test_validate_all(self):
        """Test startup validation marks unreachable providers unhealthy."""
        registry = create_registry()
        executor = ResilientExecutor(registry, probe=create_probe(down={"p2"}))

        results = await executor.validate_all()

        assert results == {"p1": True, "p2": False, "p3": True}
        assert not registry.get("p2").is_healthy
        assert registry.get("p1").is_healthy

    @pytest.mark.trio
    async def test_status_includes_stats(self):
        """Test status merges registry state and call counters."""
        executor = ResilientExecutor(create_registry())
        await executor.execute(create_call(failing=set()), timeout=1.0)
        status = executor.status()
        assert status["stats"]["succeeded"] == 1
        assert status["healthy"] == 3
