"""
dloopgov/rpc/resilience.py

Resilience layer for ledger calls.

Every call made against the ledger goes through ResilientExecutor.execute(),
which:
- picks a provider from the ProviderRegistry (waiting out a short
  rate-limit cooldown if every healthy provider is resting)
- probes an unhealthy provider back into service when nothing is healthy
- bounds each attempt with trio.fail_after
- classifies failures and feeds them back into the registry
- backs off exponentially between attempts

Results come back as RpcResult values. Only RpcResult.unwrap() raises.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Set, TypeVar

import trio
from web3.exceptions import ContractLogicError, TimeExhausted

from ..config import RpcConfig
from .registry import Provider, ProviderRegistry

logger = logging.getLogger("dloopgov.rpc.resilience")

T = TypeVar("T")

ProviderCall = Callable[[Provider], Awaitable[T]]
Probe = Callable[[Provider], Awaitable[Any]]


# ============================================================================
# CONSTANTS
# ============================================================================

# Lower-cased substrings that identify provider throttling
RATE_LIMIT_PATTERNS = (
    "429",
    "too many requests",
    "rate limit",
    "-32005",
    "batch of more than 3",
    "missing response for request",
    "bad_data",
)


# ============================================================================
# ENUMS
# ============================================================================

class ErrorKind(Enum):
    """Why a call failed."""
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    RPC_ERROR = "rpc_error"
    REVERTED = "reverted"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class RpcError(Exception):
    """Exception raised when an RpcResult is unwrapped after failing."""

    def __init__(self, message: str, kind: ErrorKind):
        super().__init__(message)
        self.kind = kind


@dataclass
class RpcResult(Generic[T]):
    """Outcome of a resilient call."""
    ok: bool
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    error: str = ""
    provider: str = ""
    attempts: int = 0

    @classmethod
    def success(cls, value: T, provider: str = "", attempts: int = 1) -> "RpcResult[T]":
        return cls(ok=True, value=value, provider=provider, attempts=attempts)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        error: str,
        provider: str = "",
        attempts: int = 0,
    ) -> "RpcResult[T]":
        return cls(ok=False, error_kind=kind, error=error, provider=provider, attempts=attempts)

    @property
    def rate_limited(self) -> bool:
        return self.error_kind is ErrorKind.RATE_LIMITED

    def unwrap(self) -> T:
        if not self.ok:
            raise RpcError(self.error, self.error_kind or ErrorKind.RPC_ERROR)
        return self.value

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "provider": self.provider,
            "attempts": self.attempts,
        }


@dataclass
class RpcStats:
    """Counters for calls routed through the executor."""
    total_calls: int = 0
    succeeded: int = 0
    failed: int = 0
    rate_limit_hits: int = 0
    timeouts: int = 0
    recoveries: int = 0

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rate_limit_hits": self.rate_limit_hits,
            "timeouts": self.timeouts,
            "recoveries": self.recoveries,
        }


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def is_rate_limit_error(error: BaseException) -> bool:
    message = str(error).lower()
    return any(pattern in message for pattern in RATE_LIMIT_PATTERNS)


def error_message(error: BaseException) -> str:
    """Readable message; web3 reverts keep theirs in .message."""
    if isinstance(error, ContractLogicError) and getattr(error, "message", None):
        return str(error.message)
    return str(error)


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised by a provider call onto an ErrorKind."""
    if isinstance(error, (trio.TooSlowError, TimeoutError, TimeExhausted)):
        return ErrorKind.TIMEOUT
    if isinstance(error, ContractLogicError):
        return ErrorKind.REVERTED
    if is_rate_limit_error(error):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.RPC_ERROR


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 5.0) -> float:
    """Delay after the given (1-based) failed attempt: base * 2^(attempt-1), capped."""
    return min(base * (2 ** (attempt - 1)), cap)


# ============================================================================
# RESILIENT EXECUTOR
# ============================================================================

class ResilientExecutor:
    """
    Runs provider-bound calls with failover, timeouts and backoff.

    Example:
        executor = ResilientExecutor(registry, probe=ledger.ping)

        result = await executor.execute(
            lambda provider: ledger.get_proposal_count(provider),
            max_attempts=3,
            timeout=10.0,
            label="getProposalCount",
        )
        if result.ok:
            count = result.value
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        probe: Optional[Probe] = None,
        config: Optional[RpcConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Args:
            registry: Providers to route calls to
            probe: Async liveness check, raises or returns falsy on failure.
                Without a probe unhealthy providers are never recovered.
            config: RPC settings (backoff, cooldown, liveness timeout)
            clock: Monotonic clock, defaults to trio.current_time
            sleep: Async sleep, defaults to trio.sleep
        """
        self.registry = registry
        self.config = config or RpcConfig()
        self.stats = RpcStats()
        self._probe = probe
        self._clock = clock or trio.current_time
        self._sleep = sleep or trio.sleep

    async def execute(
        self,
        call: ProviderCall,
        max_attempts: int = 3,
        timeout: float = 15.0,
        label: str = "rpc call",
    ) -> RpcResult:
        """
        Run `call(provider)` until it succeeds or attempts run out.

        Args:
            call: Async callable taking the selected Provider
            max_attempts: Upper bound on attempts (>= 1)
            timeout: Seconds allowed per attempt
            label: Name used in log lines

        Returns:
            RpcResult carrying either the value or the last failure
        """
        max_attempts = max(1, max_attempts)
        last_kind = ErrorKind.PROVIDER_UNAVAILABLE
        last_error = "All RPC providers are unavailable"
        last_provider = ""
        tried: Set[str] = set()

        for attempt in range(1, max_attempts + 1):
            provider = await self._acquire(tried)
            if provider is None:
                logger.error(f"{label}: no RPC provider available")
                self.stats.failed += 1
                return RpcResult.failure(
                    ErrorKind.PROVIDER_UNAVAILABLE,
                    "All RPC providers are unavailable",
                    attempts=attempt,
                )

            self.stats.total_calls += 1
            last_provider = provider.name
            tried.add(provider.name)
            try:
                with trio.fail_after(timeout):
                    value = await call(provider)
            except Exception as e:
                kind = classify_error(e)
                message = error_message(e) or f"{label} timed out after {timeout}s"
                now = self._clock()

                if kind is ErrorKind.REVERTED:
                    # The provider answered; the contract refused.
                    self.registry.record_success(provider, now)
                    self.stats.failed += 1
                    logger.warning(f"{label} reverted via {provider.name}: {message[:200]}")
                    return RpcResult.failure(kind, message, provider.name, attempt)

                if kind is ErrorKind.RATE_LIMITED:
                    self.stats.rate_limit_hits += 1
                elif kind is ErrorKind.TIMEOUT:
                    self.stats.timeouts += 1
                self.registry.record_failure(
                    provider, now, rate_limited=kind is ErrorKind.RATE_LIMITED
                )
                logger.warning(
                    f"{label} attempt {attempt}/{max_attempts} via {provider.name} "
                    f"failed ({kind.value}): {message[:100]}"
                )
                last_kind, last_error = kind, message

                if attempt < max_attempts:
                    await self._sleep(backoff_delay(
                        attempt, self.config.backoff_base, self.config.backoff_max
                    ))
                continue

            self.registry.record_success(provider, self._clock())
            self.stats.succeeded += 1
            if attempt > 1:
                logger.info(f"{label} succeeded via {provider.name} on attempt {attempt}")
            return RpcResult.success(value, provider.name, attempt)

        self.stats.failed += 1
        logger.error(f"{label} failed after {max_attempts} attempts: {last_error[:100]}")
        return RpcResult.failure(last_kind, last_error, last_provider, max_attempts)

    async def _acquire(self, tried: Set[str]) -> Optional[Provider]:
        now = self._clock()
        # Providers not yet tried by this call come first.
        candidate = self.registry.select_candidate(now, exclude=tried)
        if candidate is None:
            candidate = self.registry.select_candidate(now)
        if candidate is not None:
            return candidate

        wait = self.registry.earliest_eligible(now)
        if wait is not None:
            if wait > 0:
                bounded = min(wait, self.config.max_cooldown_wait)
                logger.debug(f"All healthy providers cooling down, waiting {bounded:.2f}s")
                await self._sleep(bounded)
            return self.registry.select_candidate(self._clock()) or self.registry.soonest_healthy()

        return await self._recover()

    async def _recover(self) -> Optional[Provider]:
        provider = self.registry.recovery_candidate()
        if provider is None:
            return None
        logger.info(f"No healthy providers, attempting recovery with {provider.name}")
        if await self.probe(provider):
            self.registry.recover(provider, self._clock())
            self.stats.recoveries += 1
            return provider
        logger.error(f"Recovery probe failed for {provider.name}")
        return None

    async def probe(self, provider: Provider) -> bool:
        """
        Run the liveness probe against one provider.

        A failed probe is recorded against the provider so the next
        recovery attempt picks a different one.
        """
        if self._probe is None:
            return False
        try:
            with trio.fail_after(self.config.timeouts.liveness):
                ok = await self._probe(provider)
        except Exception as e:
            logger.debug(f"Probe of {provider.name} failed: {e}")
            ok = False
        if ok is None:
            ok = True
        if not ok:
            self.registry.record_failure(provider, self._clock())
        return bool(ok)

    async def validate_all(self) -> Dict[str, bool]:
        """
        Probe every provider once.

        Providers that fail are marked unhealthy.

        Returns:
            Provider name -> probe result
        """
        results: Dict[str, bool] = {}
        for provider in self.registry.providers:
            ok = await self.probe(provider)
            if ok:
                self.registry.record_success(provider, self._clock())
            else:
                self.registry.mark_unhealthy(provider, self._clock())
            results[provider.name] = ok
            logger.info(f"Provider {provider.name}: {'ok' if ok else 'unreachable'}")
        return results

    def status(self) -> Dict[str, Any]:
        status = self.registry.status()
        status["stats"] = self.stats.to_dict()
        return status
