"""
dloopgov/rpc - Provider registry and resilient call execution.

Tracks the health of a fixed set of RPC endpoints and routes every ledger
call through failover, per-call timeouts, rate-limit spacing and backoff.
"""

from .registry import Provider, ProviderRegistry
from .resilience import (
    ErrorKind,
    ResilientExecutor,
    RpcError,
    RpcResult,
    RpcStats,
    backoff_delay,
    classify_error,
    is_rate_limit_error,
)

__all__ = [
    # Registry
    "Provider",
    "ProviderRegistry",
    # Execution
    "ResilientExecutor",
    "RpcResult",
    "RpcStats",
    "RpcError",
    "ErrorKind",
    "backoff_delay",
    "classify_error",
    "is_rate_limit_error",
]
