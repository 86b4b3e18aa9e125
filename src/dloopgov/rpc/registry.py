"""
dloopgov/rpc/registry.py

Registry of RPC providers with health and rate-limit bookkeeping.

The registry itself never performs I/O and never sleeps. Callers pass the
current monotonic time into every method so the same bookkeeping works
under trio's real clock and under a mock clock in tests.

Rules:
- A provider is usable when it is healthy and at least
  `rate_limit_interval` seconds have passed since it was last used.
- Candidates are ordered by priority (lower first), ties broken by least
  recently used.
- `max_failures` consecutive failures mark a provider unhealthy.
- A rate-limited failure pushes the next eligible use forward by an
  extra 2x the rate-limit interval.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Iterable, Any

from ..config import ProviderSpec

logger = logging.getLogger("dloopgov.rpc.registry")


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_RATE_LIMIT_INTERVAL = 2.0
DEFAULT_MAX_FAILURES = 3
RATE_LIMIT_PENALTY_FACTOR = 2


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class Provider:
    """One RPC endpoint and its mutable health record."""
    url: str
    name: str
    priority: int
    max_retries: int = 3
    failure_count: int = 0
    is_healthy: bool = True
    last_used_at: Optional[float] = None     # None = never used
    last_failure_at: Optional[float] = None

    @classmethod
    def from_spec(cls, spec: ProviderSpec) -> "Provider":
        return cls(
            url=spec.url,
            name=spec.name,
            priority=spec.priority,
            max_retries=spec.max_retries,
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "name": self.name,
            "priority": self.priority,
            "failure_count": self.failure_count,
            "is_healthy": self.is_healthy,
            "last_used_at": self.last_used_at,
            "last_failure_at": self.last_failure_at,
        }


# ============================================================================
# PROVIDER REGISTRY
# ============================================================================

class ProviderRegistry:
    """
    Ordered set of providers with health state.

    Example:
        registry = ProviderRegistry.from_specs(config.rpc.providers)
        provider = registry.select_candidate(trio.current_time())
        if provider is None:
            wait = registry.earliest_eligible(trio.current_time())
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        rate_limit_interval: float = DEFAULT_RATE_LIMIT_INTERVAL,
        max_failures: int = DEFAULT_MAX_FAILURES,
    ):
        self._providers: List[Provider] = sorted(providers, key=lambda p: p.priority)
        if not self._providers:
            raise ValueError("ProviderRegistry needs at least one provider")
        names = [p.name for p in self._providers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate provider names: {names}")
        self.rate_limit_interval = rate_limit_interval
        self.max_failures = max_failures

    @classmethod
    def from_specs(
        cls,
        specs: Iterable[ProviderSpec],
        rate_limit_interval: float = DEFAULT_RATE_LIMIT_INTERVAL,
        max_failures: int = DEFAULT_MAX_FAILURES,
    ) -> "ProviderRegistry":
        return cls(
            [Provider.from_spec(s) for s in specs],
            rate_limit_interval=rate_limit_interval,
            max_failures=max_failures,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def providers(self) -> List[Provider]:
        return list(self._providers)

    def get(self, name: str) -> Optional[Provider]:
        for provider in self._providers:
            if provider.name == name:
                return provider
        return None

    def healthy(self) -> List[Provider]:
        return [p for p in self._providers if p.is_healthy]

    def next_eligible_at(self, provider: Provider) -> float:
        """Earliest time the provider may be used again."""
        if provider.last_used_at is None:
            return float("-inf")
        return provider.last_used_at + self.rate_limit_interval

    def is_usable(self, provider: Provider, now: float) -> bool:
        return provider.is_healthy and now >= self.next_eligible_at(provider)

    def select_candidate(self, now: float, exclude: Iterable[str] = ()) -> Optional[Provider]:
        """
        Pick the best usable provider.

        Args:
            now: Current monotonic time
            exclude: Provider names to skip

        Returns:
            The healthy, rested provider with the lowest priority number
            (least recently used first on ties), or None.
        """
        skip = set(exclude)
        usable = [p for p in self._providers if p.name not in skip and self.is_usable(p, now)]
        if not usable:
            return None
        usable.sort(key=lambda p: (
            p.priority,
            p.last_used_at if p.last_used_at is not None else float("-inf"),
        ))
        return usable[0]

    def soonest_healthy(self) -> Optional[Provider]:
        """Healthy provider that becomes usable first."""
        healthy = self.healthy()
        if not healthy:
            return None
        return min(healthy, key=lambda p: (self.next_eligible_at(p), p.priority))

    def earliest_eligible(self, now: float) -> Optional[float]:
        """
        Seconds until some healthy provider becomes usable.

        Returns:
            0.0 if one is usable now, None if no provider is healthy.
        """
        provider = self.soonest_healthy()
        if provider is None:
            return None
        return max(0.0, self.next_eligible_at(provider) - now)

    def recovery_candidate(self) -> Optional[Provider]:
        """Unhealthy provider whose last failure is the oldest."""
        unhealthy = [p for p in self._providers if not p.is_healthy]
        if not unhealthy:
            return None
        return min(unhealthy, key=lambda p: (
            p.last_failure_at if p.last_failure_at is not None else float("-inf"),
            p.priority,
        ))

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def record_success(self, provider: Provider, now: float) -> None:
        provider.last_used_at = now
        provider.failure_count = 0
        if not provider.is_healthy:
            logger.info(f"Provider {provider.name} is healthy again")
        provider.is_healthy = True

    def record_failure(self, provider: Provider, now: float, rate_limited: bool = False) -> None:
        """
        Record a failed call.

        Args:
            provider: Provider that failed
            now: Current monotonic time
            rate_limited: Whether the failure was a rate-limit response
        """
        provider.failure_count += 1
        provider.last_failure_at = now
        provider.last_used_at = now
        if rate_limited:
            provider.last_used_at = now + RATE_LIMIT_PENALTY_FACTOR * self.rate_limit_interval
            logger.warning(
                f"Provider {provider.name} rate limited, resting for "
                f"{(RATE_LIMIT_PENALTY_FACTOR + 1) * self.rate_limit_interval:.1f}s"
            )

        if provider.failure_count >= self.max_failures and provider.is_healthy:
            provider.is_healthy = False
            logger.warning(
                f"Provider {provider.name} marked unhealthy after "
                f"{provider.failure_count} consecutive failures"
            )

    def mark_unhealthy(self, provider: Provider, now: float) -> None:
        provider.is_healthy = False
        provider.failure_count = max(provider.failure_count, 1)
        provider.last_failure_at = now

    def recover(self, provider: Provider, now: float) -> None:
        """Restore a provider after a successful liveness probe."""
        provider.failure_count = 0
        provider.is_healthy = True
        provider.last_used_at = now
        logger.info(f"Recovered provider {provider.name}")

    def reset(self) -> None:
        """Forget all health state."""
        for provider in self._providers:
            provider.failure_count = 0
            provider.is_healthy = True
            provider.last_used_at = None
            provider.last_failure_at = None

    def status(self) -> Dict[str, Any]:
        return {
            "total": len(self._providers),
            "healthy": len(self.healthy()),
            "rate_limit_interval": self.rate_limit_interval,
            "providers": [p.to_dict() for p in self._providers],
        }
