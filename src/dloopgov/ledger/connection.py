"""
dloopgov/ledger/connection.py

Web3 connection handling for JSON-RPC providers.

One Web3 instance is kept per provider URL. web3's HTTP provider is
blocking, so every call made through it is pushed to a worker thread with
run_blocking() so trio deadlines can abandon it.
"""

import functools
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

import trio
from web3 import Web3

from ..rpc.registry import Provider

logger = logging.getLogger("dloopgov.ledger.connection")

T = TypeVar("T")


class LedgerError(Exception):
    """Exception raised for ledger interaction errors."""
    pass


async def run_blocking(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking web3 call on a worker thread."""
    return await trio.to_thread.run_sync(
        functools.partial(fn, *args, **kwargs),
        abandon_on_cancel=True,
    )


class ConnectionPool:
    """
    Lazily created Web3 instances, keyed by provider URL.

    Example:
        pool = ConnectionPool(expected_chain_id=11155111)
        w3 = pool.get(provider)
        ok = await pool.ping(provider)
    """

    DEFAULT_TIMEOUT = 30  # seconds, HTTP level

    def __init__(
        self,
        expected_chain_id: Optional[int] = None,
        request_timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            expected_chain_id: Chain id every provider must report, or None
                to skip the check
            request_timeout: HTTP timeout handed to the web3 provider
        """
        self.expected_chain_id = expected_chain_id
        self.request_timeout = request_timeout
        self._connections: Dict[str, Web3] = {}

    def get(self, provider: Provider) -> Web3:
        w3 = self._connections.get(provider.url)
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(
                provider.url,
                request_kwargs={"timeout": self.request_timeout},
            ))
            self._connections[provider.url] = w3
            logger.debug(f"Created web3 connection for {provider.name} ({provider.url})")
        return w3

    def _check(self, w3: Web3) -> int:
        block = w3.eth.block_number
        if self.expected_chain_id is not None:
            chain_id = w3.eth.chain_id
            if chain_id != self.expected_chain_id:
                raise LedgerError(
                    f"Wrong chain: expected {self.expected_chain_id}, got {chain_id}"
                )
        return block

    async def ping(self, provider: Provider) -> bool:
        """
        Liveness probe: fetch the block number and check the chain id.

        Returns:
            True if the provider answered on the expected chain

        Raises:
            LedgerError: if the provider is on a different chain
        """
        block = await run_blocking(self._check, self.get(provider))
        logger.debug(f"{provider.name} alive at block {block}")
        return True

    def close(self) -> None:
        """Drop all cached connections."""
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)
