"""
dloopgov/governance/coordinator.py

Multi-identity voting round.

A round discovers votable proposals, decides once per proposal, then lets
every identity vote in index order. Everything runs sequentially with
fixed pauses between writes. A failure for one identity or one proposal is
recorded in the RunReport and the round moves on; an emergency brake stops
the round once its time budget is spent.

Usage:
    coordinator = VotingCoordinator(executor, client, discovery, engine, identities)
    report = await coordinator.run_voting_round()
    print(report.total_votes_cast)
"""

import logging
import time
from typing import Awaitable, Callable, Iterable, List, Optional

import trio

from ..config import VotingConfig
from ..market import MarketContext, MarketContextProvider
from ..rpc.resilience import ErrorKind, ResilientExecutor, RpcResult
from .assets import AssetRegistry
from .discovery import ProposalDiscovery
from .engine import DecisionEngine
from .models import (
    Proposal,
    ProposalReport,
    RunReport,
    VoteChoice,
    VoteOutcome,
    VoteRecord,
)

logger = logging.getLogger("dloopgov.governance.coordinator")


# Lower-cased revert fragments meaning the voter already voted
ALREADY_VOTED_PATTERNS = (
    "already voted",
    "already cast",
    "has voted",
    "alreadyvoted",
)


def is_already_voted_error(message: str) -> bool:
    message = (message or "").lower()
    return any(pattern in message for pattern in ALREADY_VOTED_PATTERNS)


class VotingCoordinator:
    """
    Runs voting rounds across all identities.

    `ledger` needs async has_voted(provider, proposal_id, address),
    prepare_vote(provider, identity, proposal_id, support), broadcast(provider,
    signed) and wait_for_receipt(provider, tx_ref) methods. Identities need
    `index` and `address` attributes.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        ledger,
        discovery: ProposalDiscovery,
        engine: DecisionEngine,
        identities: Iterable,
        config: Optional[VotingConfig] = None,
        market: Optional[MarketContextProvider] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.executor = executor
        self.ledger = ledger
        self.discovery = discovery
        self.engine = engine
        self.identities = sorted(identities, key=lambda i: i.index)
        self.config = config or VotingConfig()
        self.market = market
        self.assets: AssetRegistry = engine.assets
        self.last_report: Optional[RunReport] = None
        self._clock = clock or trio.current_time
        self._sleep = sleep or trio.sleep
        self._wall_clock = wall_clock
        self._started = 0.0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def order_proposals(self, proposals: List[Proposal]) -> List[Proposal]:
        """Priority asset first, then largest amount first, unparseable amounts last."""
        priority = self.config.priority_asset

        def key(proposal: Proposal):
            amount = proposal.amount_value
            return (
                0 if priority and self.assets.matches(proposal, priority) else 1,
                0 if amount is not None else 1,
                -amount if amount is not None else 0,
            )

        return sorted(proposals, key=key)

    def brake_engaged(self) -> bool:
        return self._clock() - self._started >= self.config.round_budget

    async def market_context(self) -> Optional[MarketContext]:
        if self.market is None:
            return None
        try:
            return await self.market.fetch_context()
        except Exception as e:
            logger.warning(f"Market context unavailable, voting without it: {e}")
            return None

    def identity_delay(self, identity, outcome: VoteOutcome) -> float:
        if outcome is VoteOutcome.FAILED:
            return self.config.failure_delay
        return self.config.identity_delay + self.config.identity_delay_step * identity.index

    # ------------------------------------------------------------------
    # Per identity
    # ------------------------------------------------------------------

    async def has_voted(self, proposal: Proposal, identity) -> bool:
        """
        Whether the identity already voted.

        A rate-limited lookup counts as voted, so a throttled provider
        never causes a duplicate vote. Other lookup failures count as not
        voted and the vote itself decides.
        """
        timeouts = self.executor.config.timeouts
        result = await self.executor.execute(
            lambda p: self.ledger.has_voted(p, int(proposal.id), identity.address),
            max_attempts=self.config.has_voted_attempts,
            timeout=timeouts.has_voted,
            label=f"hasVoted({proposal.id}, node {identity.index})",
        )
        if result.ok:
            return bool(result.value)
        if result.rate_limited:
            logger.warning(
                f"Node {identity.index}: hasVoted rate limited on proposal {proposal.id}, "
                f"assuming already voted"
            )
            return True
        logger.debug(f"Node {identity.index}: hasVoted failed ({result.error[:80]}), trying vote")
        return False

    async def vote_with_identity(self, proposal: Proposal, support: bool, identity) -> VoteRecord:
        """
        Vote with one identity.

        The vote is signed once. Broadcast retries resend the same signed
        transaction, and the receipt wait is never retried, so one identity
        sends at most one vote per proposal.
        """
        if await self.has_voted(proposal, identity):
            logger.info(f"Node {identity.index} already voted on proposal {proposal.id}")
            return VoteRecord(proposal.id, identity.index, VoteOutcome.ALREADY_VOTED)

        timeouts = self.executor.config.timeouts
        tag = f"{proposal.id}, node {identity.index}"

        prepared = await self.executor.execute(
            lambda p: self.ledger.prepare_vote(p, identity, int(proposal.id), support),
            max_attempts=self.config.vote_attempts,
            timeout=timeouts.vote_submit,
            label=f"prepareVote({tag})",
        )
        if not prepared.ok:
            return self._vote_failed(proposal, identity, prepared)
        signed = prepared.value

        sent = await self.executor.execute(
            lambda p: self.ledger.broadcast(p, signed),
            max_attempts=self.config.vote_attempts,
            timeout=timeouts.vote_submit,
            label=f"vote({tag})",
        )
        if not sent.ok:
            return self._vote_failed(proposal, identity, sent, signed.tx_ref)

        mined = await self.executor.execute(
            lambda p: self.ledger.wait_for_receipt(p, signed.tx_ref),
            max_attempts=1,
            timeout=timeouts.vote_submit,
            label=f"receipt({tag})",
        )
        if mined.ok and mined.value:
            logger.info(f"Node {identity.index} voted on proposal {proposal.id}: {signed.tx_ref}")
            return VoteRecord(proposal.id, identity.index, VoteOutcome.SUCCESS,
                              transaction_ref=signed.tx_ref)
        if mined.ok:
            return self._vote_failed(proposal, identity, None, signed.tx_ref,
                                     detail=f"Vote transaction {signed.tx_ref} failed on chain")

        logger.warning(
            f"Node {identity.index}: vote {signed.tx_ref} on proposal {proposal.id} "
            f"sent but not confirmed: {mined.error[:100]}"
        )
        return VoteRecord(proposal.id, identity.index, VoteOutcome.PENDING,
                          transaction_ref=signed.tx_ref, error_detail=mined.error[:200])

    def _vote_failed(self, proposal: Proposal, identity, result: Optional[RpcResult],
                     tx_ref: Optional[str] = None, detail: Optional[str] = None) -> VoteRecord:
        if result is not None:
            if result.error_kind is ErrorKind.REVERTED and is_already_voted_error(result.error):
                logger.info(f"Node {identity.index} already voted on proposal {proposal.id} (revert)")
                return VoteRecord(proposal.id, identity.index, VoteOutcome.ALREADY_VOTED)
            detail = result.error
        detail = (detail or "")[:200]
        logger.error(f"Node {identity.index} failed to vote on proposal {proposal.id}: {detail}")
        return VoteRecord(proposal.id, identity.index, VoteOutcome.FAILED,
                          transaction_ref=tx_ref, error_detail=detail)

    # ------------------------------------------------------------------
    # Round
    # ------------------------------------------------------------------

    async def run_voting_round(self) -> RunReport:
        """
        Run one full voting round.

        Never raises; problems end up in the report.
        """
        self._started = self._clock()
        report = RunReport(started_at=self._wall_clock())
        logger.info("Starting voting round")

        try:
            await self._run(report)
        except Exception as e:
            logger.error(f"Voting round aborted: {e}")
            report.error = str(e)

        report.finished_at = self._wall_clock()
        self.last_report = report
        logger.info(
            f"Voting round finished: {report.total_votes_cast} votes cast on "
            f"{len(report.proposals)} proposals"
            + (" (emergency brake)" if report.brake_triggered else "")
        )
        return report

    async def _run(self, report: RunReport) -> None:
        proposals = await self.discovery.discover_votable()
        report.discovered = len(proposals)
        if not proposals:
            logger.info("No votable proposals")
            return

        ordered = self.order_proposals(proposals)[: self.config.max_proposals_per_round]
        market = await self.market_context()

        for position, proposal in enumerate(ordered):
            if self.brake_engaged():
                logger.warning(f"Emergency brake: round budget spent before proposal {proposal.id}")
                report.brake_triggered = True
                return

            entry = ProposalReport(proposal_id=proposal.id)
            report.proposals.append(entry)

            decision = self.engine.evaluate(proposal, market)
            entry.decision = decision
            if decision.choice is VoteChoice.ABSTAIN:
                entry.skipped_reason = decision.reasoning
                continue

            if not await self._vote_all(proposal, decision.support, entry):
                report.brake_triggered = True
                return

            if position < len(ordered) - 1:
                await self._sleep(self.config.proposal_delay)

    async def _vote_all(self, proposal: Proposal, support: bool, entry: ProposalReport) -> bool:
        """Vote with every identity; False if the brake stopped it."""
        for n, identity in enumerate(self.identities):
            if self.brake_engaged():
                logger.warning(
                    f"Emergency brake: stopping before node {identity.index} on proposal {proposal.id}"
                )
                return False

            try:
                record = await self.vote_with_identity(proposal, support, identity)
            except Exception as e:
                logger.error(f"Node {identity.index} crashed voting on proposal {proposal.id}: {e}")
                record = VoteRecord(proposal.id, identity.index, VoteOutcome.FAILED,
                                    error_detail=str(e)[:200])
            entry.records.append(record)

            if n < len(self.identities) - 1:
                await self._sleep(self.identity_delay(identity, record.outcome))
        return True
