"""
Risk governor: the final "can we trade this?" gate, plus a circuit breaker
that stops admission while submissions keep failing.
"""

import time
from collections import deque
from typing import Callable, Deque, Optional

from searcher.config import RiskConfig
from searcher.logger import get_logger
from searcher.models import Admission, BreakerState, RejectionReason, ScoredOpportunity


logger = get_logger("risk")


class CircuitBreaker:
    """
    Closed -> Open after N consecutive failures inside a sliding window.
    Open -> HalfOpen once the cooldown has elapsed; one probe is let through.
    HalfOpen -> Closed on a successful probe, back to Open on a failed one.

    While Open or HalfOpen only the probe's outcome moves the breaker;
    late outcomes of bundles dispatched before it opened are ignored.
    """

    def __init__(
        self,
        failure_threshold: int,
        cooldown_ms: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_ms / 1000
        self.window_seconds = window_ms / 1000
        self._clock = clock

        self._state = BreakerState.CLOSED
        self._failures: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._times_opened = 0

    @property
    def state(self) -> BreakerState:
        """Current state; an expired cooldown is reported as HalfOpen."""
        if self._state == BreakerState.OPEN and self._cooldown_elapsed():
            self._transition(BreakerState.HALF_OPEN)
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return len(self._failures)

    def try_acquire(self) -> Optional[bool]:
        """
        Ask permission to admit one candidate.

        Returns:
            False if admission is refused, True if the candidate is the
            half-open probe, None for a normal closed-state admission.
        """
        state = self.state
        if state == BreakerState.CLOSED:
            return None
        if state == BreakerState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            logger.info("Circuit breaker probing")
            return True
        return False

    def release_probe(self) -> None:
        """The probe never reached the relay; let another candidate probe."""
        self._probe_in_flight = False

    def record_success(self, is_probe: bool = False) -> None:
        if self.state != BreakerState.CLOSED and not is_probe:
            return
        self._failures.clear()
        if self._state == BreakerState.HALF_OPEN:
            self._transition(BreakerState.CLOSED)
        self._probe_in_flight = False

    def record_failure(self, is_probe: bool = False) -> None:
        now = self._clock()
        state = self.state

        if state != BreakerState.CLOSED and not is_probe:
            return
        if state == BreakerState.HALF_OPEN:
            self._probe_in_flight = False
            self._open(now)
            return

        self._failures.append(now)
        while self._failures and now - self._failures[0] > self.window_seconds:
            self._failures.popleft()

        if len(self._failures) >= self.failure_threshold:
            logger.critical(
                f"⛔ CIRCUIT BREAKER OPEN: {len(self._failures)} consecutive submission failures",
                cooldown_seconds=self.cooldown_seconds,
            )
            self._open(now)

    def _open(self, now: float) -> None:
        self._opened_at = now
        self._failures.clear()
        self._times_opened += 1
        self._transition(BreakerState.OPEN)

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.cooldown_seconds

    def _transition(self, new_state: BreakerState) -> None:
        if new_state != self._state:
            logger.info("Circuit breaker transition", old=self._state.value, new=new_state.value)
            self._state = new_state

    @property
    def metrics(self) -> dict:
        return {
            "state": self.state.value,
            "consecutive_failures": len(self._failures),
            "times_opened": self._times_opened,
            "probe_in_flight": self._probe_in_flight,
        }


class RiskGovernor:
    """
    Applies configured thresholds to scored candidates.

    An open breaker is checked first, then profit, slippage and capital.
    The half-open probe permit is taken last, so a candidate that fails a
    limit never consumes it. Only the circuit breaker carries state across
    candidates.
    """

    def __init__(self, config: RiskConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.breaker = CircuitBreaker(
            failure_threshold=config.circuit_breaker_failure_threshold,
            cooldown_ms=config.circuit_breaker_cooldown_ms,
            window_ms=config.circuit_breaker_window_ms,
            clock=clock,
        )

        self._admitted = 0
        self._rejected = {reason: 0 for reason in RejectionReason}

    def admit(self, scored: ScoredOpportunity) -> Admission:
        """Accept or reject a scored candidate."""
        reason = self._check_limits(scored)
        if reason is not None:
            return self._reject(scored, reason)

        # Breaker last so a doomed candidate never consumes the probe
        permit = self.breaker.try_acquire()
        if permit is False:
            return self._reject(scored, RejectionReason.CIRCUIT_BREAKER_OPEN)

        self._admitted += 1
        return Admission(accepted=True, is_probe=bool(permit))

    def _check_limits(self, scored: ScoredOpportunity) -> Optional[RejectionReason]:
        if self.breaker.state == BreakerState.OPEN:
            return RejectionReason.CIRCUIT_BREAKER_OPEN
        if scored.expected_profit < self.config.min_profit_threshold:
            return RejectionReason.BELOW_PROFIT_THRESHOLD
        if scored.opportunity.slippage_bps > self.config.max_slippage_bps:
            return RejectionReason.EXCEEDS_SLIPPAGE_TOLERANCE
        if scored.capital_required > self.config.max_capital_per_opportunity:
            return RejectionReason.EXCEEDS_CAPITAL_LIMIT
        return None

    def _reject(self, scored: ScoredOpportunity, reason: RejectionReason) -> Admission:
        self._rejected[reason] += 1
        logger.debug(
            "Candidate rejected",
            opportunity_id=scored.opportunity_id,
            reason=reason.value,
            expected_profit=scored.expected_profit,
        )
        return Admission(accepted=False, reason=reason)

    def record_outcome(self, success: bool, is_probe: bool = False) -> None:
        """Feed a terminal submission outcome into the circuit breaker."""
        if success:
            self.breaker.record_success(is_probe)
        else:
            self.breaker.record_failure(is_probe)

    def release_probe(self) -> None:
        self.breaker.release_probe()

    @property
    def metrics(self) -> dict:
        """Get governor metrics."""
        return {
            "admitted": self._admitted,
            "rejected": {reason.value: count for reason, count in self._rejected.items()},
            "circuit_breaker": self.breaker.metrics,
        }
