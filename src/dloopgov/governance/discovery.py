"""
dloopgov/governance/discovery.py

Proposal discovery: scan the most recent proposals and keep the votable
ones.

The scan is sequential and paced, since public RPC endpoints throttle
bursts of reads. A proposal that cannot be read is skipped; the scan never
aborts and never raises.
"""

import logging
import time
from typing import Awaitable, Callable, List, Optional

import trio

from ..config import CallTimeouts, DiscoveryConfig
from ..rpc.resilience import ResilientExecutor, RpcResult
from .models import Proposal
from .records import normalize_record

logger = logging.getLogger("dloopgov.governance.discovery")


class ProposalDiscovery:
    """
    Finds votable proposals through the resilience layer.

    `ledger` is anything with async get_proposal_count(provider) and
    get_proposal(provider, proposal_id) methods, normally an AssetDaoClient.

    Example:
        discovery = ProposalDiscovery(executor, client)
        proposals = await discovery.discover_votable()
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        ledger,
        config: Optional[DiscoveryConfig] = None,
        timeouts: Optional[CallTimeouts] = None,
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.executor = executor
        self.ledger = ledger
        self.config = config or DiscoveryConfig()
        self.timeouts = timeouts or executor.config.timeouts
        self._clock = clock
        self._sleep = sleep or trio.sleep

    def scan_window(self, count: int, window_size: Optional[int] = None) -> range:
        """Ids of the newest `window_size` proposals (1-based, capped)."""
        size = self.config.window_size if window_size is None else window_size
        size = max(1, min(size, self.config.max_window))
        if count < 1:
            return range(0)
        return range(max(1, count - size + 1), count + 1)

    def delay_before(self, position: int) -> float:
        """Pause before fetching the proposal at `position` in the scan (0-based)."""
        if position <= 0:
            return 0.0
        cfg = self.config
        delay = cfg.base_delay + (position // cfg.chunk_size) * cfg.chunk_step_delay
        if position % cfg.chunk_size == 0:
            delay += cfg.chunk_pause
        return delay

    async def proposal_count(self) -> Optional[int]:
        result = await self.executor.execute(
            lambda provider: self.ledger.get_proposal_count(provider),
            max_attempts=self.config.count_attempts,
            timeout=self.timeouts.proposal_count,
            label="getProposalCount",
        )
        if not result.ok:
            logger.error(f"Could not read proposal count: {result.error[:100]}")
            return None
        try:
            return int(result.value)
        except (TypeError, ValueError):
            logger.error(f"Proposal count is not an integer: {result.value!r}")
            return None

    async def fetch(self, proposal_id: int) -> RpcResult:
        return await self.executor.execute(
            lambda provider: self.ledger.get_proposal(provider, proposal_id),
            max_attempts=self.config.proposal_attempts,
            timeout=self.timeouts.proposal_read,
            label=f"getProposal({proposal_id})",
        )

    async def discover_votable(self, window_size: Optional[int] = None) -> List[Proposal]:
        """
        Scan the newest proposals and return the votable ones.

        Returns:
            Votable proposals in id order; empty if the count is unreadable
        """
        count = await self.proposal_count()
        if count is None:
            return []

        ids = self.scan_window(count, window_size)
        logger.info(f"Scanning proposals {ids.start}..{ids.stop - 1} of {count}")

        votable: List[Proposal] = []
        extra_pause = 0.0
        for position, proposal_id in enumerate(ids):
            delay = self.delay_before(position) + extra_pause
            extra_pause = 0.0
            if delay > 0:
                await self._sleep(delay)

            result = await self.fetch(proposal_id)
            if not result.ok:
                logger.warning(f"Skipping proposal {proposal_id}: {result.error[:100]}")
                if result.rate_limited:
                    extra_pause = self.config.rate_limit_pause
                continue

            now = self._clock()
            try:
                proposal = normalize_record(
                    result.value, proposal_id, now, self.config.amount_decimals
                )
            except Exception as e:
                logger.warning(f"Skipping proposal {proposal_id}: malformed record ({e})")
                continue

            if proposal.is_votable(now):
                logger.debug(
                    f"Proposal {proposal_id} votable, ends in {int(proposal.end_time - now)}s"
                )
                votable.append(proposal)

        logger.info(f"Found {len(votable)} votable proposals out of {len(ids)} scanned")
        return votable
