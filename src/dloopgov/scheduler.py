"""
dloopgov/scheduler.py

Periodic trigger for voting rounds.

Usage:
    scheduler = RoundScheduler(coordinator, interval=1800)

    async with trio.open_nursery() as nursery:
        nursery.start_soon(scheduler.run_forever)
"""

import json
import logging
from typing import Awaitable, Callable, Optional

import trio

from .governance.coordinator import VotingCoordinator
from .governance.models import RunReport

logger = logging.getLogger("dloopgov.scheduler")

DEFAULT_INTERVAL = 30 * 60


class RoundScheduler:
    """Runs a voting round every `interval` seconds until stopped."""

    def __init__(
        self,
        coordinator: VotingCoordinator,
        interval: float = DEFAULT_INTERVAL,
        on_report: Optional[Callable[[RunReport], None]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.coordinator = coordinator
        self.interval = interval
        self.on_report = on_report
        self.rounds_completed = 0
        self.last_report: Optional[RunReport] = None
        self._running = False
        self._sleep = sleep or trio.sleep

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> RunReport:
        """Run a single round and log its report."""
        report = await self.coordinator.run_voting_round()
        self.rounds_completed += 1
        self.last_report = report
        logger.info(f"Round {self.rounds_completed} report: {json.dumps(report.to_dict())}")
        if self.on_report is not None:
            try:
                self.on_report(report)
            except Exception as e:
                logger.warning(f"Report callback failed: {e}")
        return report

    async def run_forever(self, max_rounds: Optional[int] = None) -> None:
        """
        Run rounds on a fixed interval.

        Args:
            max_rounds: Stop after this many rounds (None = until stop())
        """
        self._running = True
        logger.info(f"Scheduler started, interval {self.interval}s")
        rounds = 0
        try:
            while self._running:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error(f"Voting round failed: {e}")
                rounds += 1
                if max_rounds is not None and rounds >= max_rounds:
                    break
                if not self._running:
                    break
                await self._sleep(self.interval)
        finally:
            self._running = False
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._running = False
