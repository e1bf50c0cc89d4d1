"""
Pipeline orchestrator.

Flow per evaluation cycle:
1. Snapshot every account the detectors need
2. Run all detectors against the snapshot
3. Score each opportunity against the latest state
4. Admit through the risk governor
5. Rank, cap, build bundles
6. Submit concurrently; outcomes feed the circuit breaker and notifier
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from searcher.config import SearcherConfig
from searcher.engine.risk_governor import RiskGovernor
from searcher.engine.scorer import OpportunityScorer
from searcher.engine.strategy_engine import StrategyEngine
from searcher.errors import DuplicateInFlight, Expired, StaleBundle, StaleDependency, Unbuildable
from searcher.execution.bundle_builder import BundleBuilder
from searcher.execution.submission_manager import SubmissionManager
from searcher.feeds.base import BaseFeed
from searcher.logger import get_logger, pipeline_logger
from searcher.models import (
    Admission,
    Bundle,
    Opportunity,
    ScoredOpportunity,
    SlotUpdate,
    StateDelta,
    SubmissionRecord,
    SubmissionStatus,
    utcnow,
)
from searcher.notifications import OutcomeNotifier
from searcher.state.state_cache import StateCache


logger = get_logger("pipeline")

Candidate = Tuple[ScoredOpportunity, Admission]

# Rejection key for failures outside the error taxonomy
INTERNAL_ERROR = "InternalError"


@dataclass
class CycleReport:
    """What happened to every candidate in one evaluation cycle."""
    slot: int
    detected: int = 0
    scored: int = 0
    admitted: int = 0
    built: int = 0
    submitted: int = 0
    rejections: Dict[str, int] = field(default_factory=dict)
    records: List[SubmissionRecord] = field(default_factory=list)
    duration_ms: float = 0.0

    def reject(self, reason: str) -> None:
        self.rejections[reason] = self.rejections.get(reason, 0) + 1


class Pipeline:
    """
    Wires feed, cache, detectors, scorer, governor, builder and submission
    manager together and drives them.
    """

    def __init__(
        self,
        config: SearcherConfig,
        cache: StateCache,
        engine: StrategyEngine,
        scorer: OpportunityScorer,
        governor: RiskGovernor,
        builder: BundleBuilder,
        manager: SubmissionManager,
        feed: Optional[BaseFeed] = None,
        stop_on_feed_end: bool = False,
        notifier: Optional[OutcomeNotifier] = None,
    ):
        self.config = config
        self.cache = cache
        self.engine = engine
        self.scorer = scorer
        self.governor = governor
        self.builder = builder
        self.manager = manager
        self.feed = feed
        self.stop_on_feed_end = stop_on_feed_end
        self.notifier = notifier

        self.manager.set_on_outcome_callback(self._on_outcome)

        self._is_running = False
        self._closed = False
        self._tasks: List[asyncio.Task] = []
        self._state_changed = asyncio.Event()
        self._stopped = asyncio.Event()
        self._feed_done = False

        # Session totals
        self._start_time: Optional[datetime] = None
        self._cycles = 0
        self._total_detected = 0
        self._total_admitted = 0
        self._total_submitted = 0
        self._ingest_errors = 0

    async def start(self) -> None:
        """Connect the feed and relay, then run until stopped."""
        logger.info("🚀 Starting searcher pipeline...")

        if self.feed is not None:
            await self.feed.connect()
        await self.manager.relay.connect()
        if self.notifier is not None:
            await self.notifier.connect()

        self._is_running = True
        self._stopped.clear()
        self._start_time = utcnow()

        mode = "PAPER TRADING" if self.config.is_paper_trading else "LIVE TRADING"
        logger.info(
            f"⚡ Pipeline started in {mode} mode",
            detectors=len(self.engine.detectors),
            markets=len(self.cache.markets),
            relay=self.manager.relay.name,
            policy=self.config.submission.scheduling_policy,
        )

        self._tasks = [
            asyncio.create_task(self._evaluation_loop()),
            asyncio.create_task(self._metrics_logging_loop()),
        ]
        if self.feed is not None:
            self._tasks.append(asyncio.create_task(self._ingest_loop()))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Pipeline loops cancelled")

    async def stop(self) -> None:
        """Stop all loops and disconnect. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        logger.info("Stopping pipeline...")
        self._is_running = False
        self._stopped.set()
        self._state_changed.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self.feed is not None:
            await self.feed.disconnect()
        await self.manager.relay.disconnect()
        if self.notifier is not None:
            await self.notifier.disconnect()
        self.engine.close()

        self._log_session_summary()
        logger.info("Pipeline stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _ingest_loop(self) -> None:
        """Apply feed events to the cache and wake the evaluation loop."""
        try:
            async for event in self.feed.stream():
                if not self._is_running:
                    break
                try:
                    self._ingest(event)
                except Exception as e:
                    self._ingest_errors += 1
                    logger.error("Feed event skipped", event_type=type(event).__name__, error=str(e), exc_info=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Feed error: {e}", exc_info=True)

        self._feed_done = True
        self._state_changed.set()
        logger.info("Feed exhausted", slot=self.cache.current_slot)

    def _ingest(self, event) -> None:
        if isinstance(event, StateDelta):
            if self.cache.apply(event):
                self._state_changed.set()
        elif isinstance(event, SlotUpdate):
            self.cache.advance_slot(event.slot)
        else:
            raise TypeError(f"unexpected feed event: {event!r}")

    async def _evaluation_loop(self) -> None:
        """Run a cycle on every state change, or at least every interval."""
        interval = self.config.engine.evaluation_interval_ms / 1000

        while self._is_running:
            try:
                await asyncio.wait_for(self._state_changed.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            self._state_changed.clear()

            if not self._is_running:
                break

            # The last cycle must see the fully drained feed
            feed_done = self._feed_done
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Evaluation cycle failed: {e}", exc_info=True)

            if feed_done and self.stop_on_feed_end:
                logger.info("Replay complete, stopping")
                self._is_running = False
                self._stopped.set()

    async def _metrics_logging_loop(self) -> None:
        """Periodically log component metrics."""
        interval = self.config.monitoring.metrics_interval_seconds

        while self._is_running:
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if not self._is_running:
                break
            self._log_status()

    def _log_status(self) -> None:
        runtime = utcnow() - self._start_time if self._start_time else None
        logger.info(
            "📊 Status Update",
            runtime=str(runtime) if runtime else "0",
            slot=self.cache.current_slot,
            cycles=self._cycles,
            detected=self._total_detected,
            admitted=self._total_admitted,
            submitted=self._total_submitted,
            ingest_errors=self._ingest_errors,
            cache=self.cache.metrics,
            engine=self.engine.metrics,
            risk=self.governor.metrics,
            submissions=self.manager.metrics,
        )

    def _log_session_summary(self) -> None:
        if not self._start_time:
            return
        logger.info(
            "📈 Session Summary",
            runtime=str(utcnow() - self._start_time),
            cycles=self._cycles,
            detected=self._total_detected,
            admitted=self._total_admitted,
            submitted=self._total_submitted,
            outcomes=self.manager.metrics["outcomes"],
            circuit_breaker=self.governor.breaker.state.value,
        )

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        """Snapshot, detect, score, admit, rank, build and submit once."""
        start = time.perf_counter()
        report = CycleReport(slot=self.cache.current_slot)

        keys = self.cache.ready_keys(self.engine.required_keys(self.cache))
        if not keys:
            return report

        view = self.cache.snapshot(keys)
        report.slot = view.slot

        opportunities = await self.engine.evaluate(view)
        report.detected = len(opportunities)

        admitted: List[Candidate] = []
        for opportunity in opportunities:
            pipeline_logger.log_opportunity_detected(
                detector_id=opportunity.detector_id,
                opportunity_id=opportunity.opportunity_id,
                dedup_key=opportunity.dedup_key,
                slot=opportunity.slot,
                input_amount=opportunity.input_amount,
                output_amount=opportunity.output_amount,
            )

            scored = self._score(opportunity, report)
            if scored is None:
                continue

            admission = self.governor.admit(scored)
            if not admission.accepted:
                self._reject(report, opportunity.opportunity_id, "risk", admission.reason.value)
                continue
            admitted.append((scored, admission))
        report.admitted = len(admitted)

        ranked = self.rank(admitted)
        limit = self.config.submission.max_submissions_per_cycle
        selected, deferred = ranked[:limit], ranked[limit:]
        for scored, admission in deferred:
            self._release(admission)
            self._reject(report, scored.opportunity_id, "schedule", "Deferred")

        bundles: List[Tuple[Bundle, Admission]] = []
        for scored, admission in selected:
            try:
                bundles.append((self.builder.build(scored), admission))
            except Unbuildable as e:
                self._release(admission)
                self._reject(report, scored.opportunity_id, "build", e.reason, str(e))
            except Exception as e:
                self._release(admission)
                self._fail(report, scored.opportunity_id, "build", e)
        report.built = len(bundles)

        results = await asyncio.gather(
            *(self._submit(bundle, admission, report) for bundle, admission in bundles)
        )
        report.records = [record for record in results if record is not None]
        report.submitted = len(report.records)
        report.duration_ms = (time.perf_counter() - start) * 1000

        self._cycles += 1
        self._total_detected += report.detected
        self._total_admitted += report.admitted
        self._total_submitted += report.submitted

        pipeline_logger.log_cycle_summary(
            slot=report.slot,
            detected=report.detected,
            admitted=report.admitted,
            submitted=report.submitted,
            duration_ms=report.duration_ms,
        )
        return report

    def _score(self, opportunity: Opportunity, report: CycleReport) -> Optional[ScoredOpportunity]:
        try:
            view = self.cache.snapshot(opportunity.dependency_keys)
            scored = self.scorer.score(opportunity, view)
        except (Expired, StaleDependency) as e:
            self._reject(report, opportunity.opportunity_id, "score", e.reason, str(e))
            return None
        except Exception as e:
            self._fail(report, opportunity.opportunity_id, "score", e)
            return None

        report.scored += 1
        pipeline_logger.log_opportunity_scored(
            opportunity_id=scored.opportunity_id,
            expected_profit=scored.expected_profit,
            confidence=scored.confidence,
            capital_required=scored.capital_required,
            risk_flags=scored.risk_flags,
        )
        return scored

    def rank(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        """Order admitted candidates by the configured scheduling policy."""
        policy = self.config.submission.scheduling_policy
        if policy == "fifo":
            return list(candidates)
        if policy == "risk_adjusted":
            return sorted(candidates, key=lambda c: c[0].risk_adjusted_profit, reverse=True)
        return sorted(candidates, key=lambda c: c[0].expected_profit, reverse=True)

    async def _submit(
        self,
        bundle: Bundle,
        admission: Admission,
        report: CycleReport,
    ) -> Optional[SubmissionRecord]:
        try:
            return await self.manager.submit(bundle, is_probe=admission.is_probe)
        except (DuplicateInFlight, StaleBundle) as e:
            self._release(admission)
            self._reject(report, bundle.scored.opportunity_id, "submit", e.reason, str(e))
            return None
        except Exception as e:
            # Only reached before dispatch; dispatch failures resolve the record
            self._release(admission)
            self._fail(report, bundle.scored.opportunity_id, "submit", e)
            return None

    async def _on_outcome(self, record: SubmissionRecord) -> None:
        self.governor.record_outcome(record.status == SubmissionStatus.ACCEPTED, is_probe=record.is_probe)
        if self.notifier is not None:
            self.notifier.notify_outcome(record)

    def _release(self, admission: Admission) -> None:
        # A probe that never reaches the relay must not wedge the breaker
        if admission.is_probe:
            self.governor.release_probe()

    def _fail(self, report: CycleReport, opportunity_id: str, stage: str, error: Exception) -> None:
        logger.error(
            "Candidate failed unexpectedly",
            opportunity_id=opportunity_id,
            stage=stage,
            error=str(error),
            exc_info=True,
        )
        self._reject(report, opportunity_id, stage, INTERNAL_ERROR, str(error))

    @staticmethod
    def _reject(
        report: CycleReport,
        opportunity_id: str,
        stage: str,
        reason: str,
        detail: Optional[str] = None,
    ) -> None:
        report.reject(reason)
        pipeline_logger.log_candidate_rejected(
            opportunity_id=opportunity_id,
            stage=stage,
            reason=reason,
            detail=detail,
        )
