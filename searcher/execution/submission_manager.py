"""
Submission management: deduplication of contested resources, final
re-validation against current state, dispatch and outcome tracking.
"""

import asyncio
import uuid
from collections import deque
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Sequence

from searcher.amm.math import drift_bps
from searcher.config import SearcherConfig
from searcher.errors import DuplicateInFlight, RelayError, StaleBundle, StaleDependency
from searcher.logger import get_logger, pipeline_logger
from searcher.models import Bundle, SubmissionRecord, SubmissionStatus, utcnow
from searcher.relay.base import BaseRelay
from searcher.state.state_cache import StateCache


logger = get_logger("submission_manager")


class SubmissionManager:
    """
    Race-safe gateway to the relay.

    Responsibilities:
    - At most one pending bundle per contested resource, and at most one
      dispatch per resource per slot
    - Re-validate every bundle against the latest state right before dispatch
    - Record terminal outcomes (accepted, rejected, expired); never retry
    - Keep a bounded history of submissions
    """

    def __init__(self, config: SearcherConfig, cache: StateCache, relay: BaseRelay):
        self.config = config.submission
        self.staleness_tolerance = config.engine.staleness_tolerance_slots
        self.cache = cache
        self.relay = relay

        # One lock per contested resource, dropped once nothing holds or claims it
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._in_flight: Dict[str, SubmissionRecord] = {}
        self._claimed_slots: Dict[str, int] = {}

        self._history: Deque[SubmissionRecord] = deque(maxlen=self.config.submission_history_size)

        # Callbacks
        self._on_outcome: Optional[Callable[[SubmissionRecord], Awaitable[None]]] = None

        # Metrics
        self._dispatched = 0
        self._duplicates = 0
        self._stale = 0
        self._outcomes = {status: 0 for status in SubmissionStatus if status != SubmissionStatus.PENDING}

    def set_on_outcome_callback(
        self,
        callback: Callable[[SubmissionRecord], Awaitable[None]]
    ) -> None:
        """Set callback invoked once per terminal submission outcome."""
        self._on_outcome = callback

    async def submit(self, bundle: Bundle, is_probe: bool = False) -> SubmissionRecord:
        """
        Dispatch a bundle to the relay and wait for its outcome.

        `is_probe` marks the circuit breaker's half-open probe; it is carried
        on the record so the outcome callback can tell probes apart.

        Raises:
            DuplicateInFlight: a contested resource is already pending, or
                was already dispatched for this slot
            StaleBundle: the bundle's assumptions no longer hold
        """
        resources = self._resources(bundle)
        self._prune_claims()

        self._retain(resources)
        try:
            async with self._acquire(resources):
                try:
                    self._check_duplicate(bundle, resources)
                except DuplicateInFlight:
                    self._duplicates += 1
                    raise

                try:
                    self.revalidate(bundle)
                except StaleBundle:
                    self._stale += 1
                    raise

                record = SubmissionRecord(
                    record_id=f"sub_{uuid.uuid4().hex[:12]}",
                    bundle=bundle,
                    slot=self.cache.current_slot,
                    is_probe=is_probe,
                )
                for resource in resources:
                    self._in_flight[resource] = record
                    self._claimed_slots[resource] = max(
                        bundle.opportunity.slot, self._claimed_slots.get(resource, -1)
                    )
                self._prune_history()
                self._history.append(record)
                self._dispatched += 1
        finally:
            self._release(resources)

        pipeline_logger.log_bundle_submitted(
            bundle_id=bundle.bundle_id,
            opportunity_id=bundle.scored.opportunity_id,
            dedup_key=bundle.dedup_key,
            transactions=len(bundle.transactions),
            tip_lamports=bundle.tip_lamports,
            target_slot=bundle.target_slot,
        )

        await self._dispatch(record)
        return record

    async def _dispatch(self, record: SubmissionRecord) -> None:
        timeout = self.config.relay_timeout_ms / 1000
        try:
            response = await asyncio.wait_for(self.relay.submit_bundle(record.bundle), timeout=timeout)
        except asyncio.TimeoutError:
            self._resolve(record, SubmissionStatus.EXPIRED, reason="relay timeout")
        except asyncio.CancelledError:
            self._resolve(record, SubmissionStatus.EXPIRED, reason="cancelled")
            raise
        except RelayError as e:
            self._resolve(record, SubmissionStatus.REJECTED, reason=str(e))
        except Exception as e:
            logger.error("Relay dispatch failed", bundle_id=record.bundle.bundle_id, error=str(e))
            self._resolve(record, SubmissionStatus.REJECTED, reason=f"relay error: {e}")
        else:
            record.relay_bundle_id = response.relay_bundle_id
            if response.accepted:
                self._resolve(record, SubmissionStatus.ACCEPTED)
            else:
                self._resolve(record, SubmissionStatus.REJECTED, reason=response.reason)

        if self._on_outcome:
            try:
                await self._on_outcome(record)
            except Exception as e:
                logger.error("Outcome callback failed", record_id=record.record_id, error=str(e))

    def revalidate(self, bundle: Bundle) -> None:
        """
        Check the bundle against the current cache state.

        Raises StaleBundle if the opportunity is older than the staleness
        tolerance, a dependency vanished, or any expectation drifted beyond
        the re-validation tolerance.
        """
        opportunity = bundle.opportunity
        current_slot = self.cache.current_slot
        age = current_slot - opportunity.slot
        if age > self.staleness_tolerance:
            raise StaleBundle(
                f"computed at slot {opportunity.slot}, now {current_slot} "
                f"(tolerance {self.staleness_tolerance})"
            )

        try:
            view = self.cache.snapshot(opportunity.dependency_keys)
        except StaleDependency as e:
            raise StaleBundle(f"dependency missing: {', '.join(e.missing)}") from e

        tolerance = self.config.revalidation_tolerance_bps
        for expectation in opportunity.expectations:
            name = getattr(expectation.field, "value", expectation.field)
            try:
                current = view.resolve(expectation.market_id, expectation.field)
            except (StaleDependency, ValueError) as e:
                raise StaleBundle(f"cannot resolve {expectation.market_id}.{name}") from e

            drift = drift_bps(expectation.value, current)
            if drift > tolerance:
                raise StaleBundle(
                    f"{expectation.market_id}.{name} drifted {drift:.1f}bps "
                    f"(tolerance {tolerance}bps)"
                )

    def _check_duplicate(self, bundle: Bundle, resources: Sequence[str]) -> None:
        for resource in resources:
            holder = self._in_flight.get(resource)
            if holder is not None and holder.is_pending:
                raise DuplicateInFlight(resources, holder=holder.bundle.bundle_id)

            claimed = self._claimed_slots.get(resource)
            if claimed is not None and bundle.opportunity.slot <= claimed:
                raise DuplicateInFlight(resources)

    def _resolve(self, record: SubmissionRecord, status: SubmissionStatus, reason: Optional[str] = None) -> None:
        record.status = status
        record.reason = reason
        record.resolved_at = utcnow()
        self._outcomes[status] += 1

        for resource in self._resources(record.bundle):
            if self._in_flight.get(resource) is record:
                del self._in_flight[resource]

        pipeline_logger.log_submission_outcome(
            bundle_id=record.bundle.bundle_id,
            status=status.value,
            latency_ms=record.latency_ms,
            reason=reason,
            relay_bundle_id=record.relay_bundle_id,
        )

    @staticmethod
    def _resources(bundle: Bundle) -> List[str]:
        # Sorted so locks are always taken in the same order
        return sorted(bundle.dedup_key) or [bundle.scored.opportunity_id]

    def _acquire(self, resources: Sequence[str]) -> "_LockGroup":
        return _LockGroup([self._locks.setdefault(resource, asyncio.Lock()) for resource in resources])

    def _retain(self, resources: Sequence[str]) -> None:
        for resource in resources:
            self._lock_users[resource] = self._lock_users.get(resource, 0) + 1

    def _release(self, resources: Sequence[str]) -> None:
        for resource in resources:
            users = self._lock_users.get(resource, 0) - 1
            if users > 0:
                self._lock_users[resource] = users
                continue
            self._lock_users.pop(resource, None)
            if resource not in self._claimed_slots and resource not in self._in_flight:
                self._locks.pop(resource, None)

    def _prune_claims(self) -> None:
        """
        Forget claims too old to matter.

        An opportunity at or below such a claim is already past the
        staleness tolerance, so revalidation rejects it without the claim.
        """
        cutoff = self.cache.current_slot - self.staleness_tolerance
        expired = [
            resource for resource, slot in self._claimed_slots.items()
            if slot < cutoff and resource not in self._in_flight
        ]
        for resource in expired:
            del self._claimed_slots[resource]
            if resource not in self._lock_users:
                self._locks.pop(resource, None)

    def _prune_history(self) -> None:
        cutoff = utcnow() - timedelta(seconds=self.config.submission_retention_seconds)
        while self._history and not self._history[0].is_pending and self._history[0].submitted_at < cutoff:
            self._history.popleft()

    def get_record(self, record_id: str) -> Optional[SubmissionRecord]:
        for record in self._history:
            if record.record_id == record_id:
                return record
        return None

    @property
    def history(self) -> List[SubmissionRecord]:
        return list(self._history)

    @property
    def in_flight(self) -> List[SubmissionRecord]:
        """Pending records, one entry per bundle."""
        seen = {}
        for record in self._in_flight.values():
            if record.is_pending:
                seen[record.record_id] = record
        return list(seen.values())

    @property
    def metrics(self) -> dict:
        """Get submission metrics."""
        return {
            "dispatched": self._dispatched,
            "duplicates": self._duplicates,
            "stale": self._stale,
            "outcomes": {status.value: count for status, count in self._outcomes.items()},
            "in_flight": len(self.in_flight),
            "history": len(self._history),
            "claimed_resources": len(self._claimed_slots),
            "locks": len(self._locks),
        }


class _LockGroup:
    """Async context manager holding a set of resource locks."""

    def __init__(self, locks: List[asyncio.Lock]):
        self._locks = locks
        self._stack = AsyncExitStack()

    async def __aenter__(self) -> "_LockGroup":
        await self._stack.__aenter__()
        try:
            for lock in self._locks:
                await self._stack.enter_async_context(lock)
        except BaseException:
            await self._stack.aclose()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self._stack.__aexit__(*exc_info)
