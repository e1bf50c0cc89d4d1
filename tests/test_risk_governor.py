"""
Tests for admission limits and the circuit breaker.
"""

import pytest

from searcher.config import RiskConfig
from searcher.engine.risk_governor import CircuitBreaker, RiskGovernor
from searcher.models import BreakerState, RejectionReason

from factories import make_scored


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    config = RiskConfig(
        min_profit_threshold=10_000,
        max_slippage_bps=100,
        max_capital_per_opportunity=5_000_000_000,
        circuit_breaker_failure_threshold=3,
        circuit_breaker_cooldown_ms=10_000,
        circuit_breaker_window_ms=60_000,
    )
    return RiskGovernor(config, clock=clock)


def trip(governor, failures=3):
    for _ in range(failures):
        governor.record_outcome(False)


class TestLimits:
    """Tests for the stateless thresholds."""

    def test_admits_good_candidate(self, governor):
        admission = governor.admit(make_scored())
        assert admission.accepted
        assert not admission.is_probe

    def test_below_profit_threshold(self, governor):
        admission = governor.admit(make_scored(expected_profit=9_999))
        assert admission.reason == RejectionReason.BELOW_PROFIT_THRESHOLD

    def test_exactly_at_threshold_admitted(self, governor):
        assert governor.admit(make_scored(expected_profit=10_000)).accepted

    def test_slippage_tolerance(self, governor):
        admission = governor.admit(make_scored(slippage_bps=150))
        assert admission.reason == RejectionReason.EXCEEDS_SLIPPAGE_TOLERANCE

    def test_capital_limit(self, governor):
        admission = governor.admit(make_scored(capital_required=5_000_000_001))
        assert admission.reason == RejectionReason.EXCEEDS_CAPITAL_LIMIT

    def test_metrics_count_rejections(self, governor):
        governor.admit(make_scored())
        governor.admit(make_scored(expected_profit=1))

        metrics = governor.metrics
        assert metrics["admitted"] == 1
        assert metrics["rejected"]["BelowProfitThreshold"] == 1


class TestCircuitBreaker:
    """Tests for breaker transitions."""

    def test_opens_after_threshold(self, governor):
        trip(governor, 2)
        assert governor.breaker.state == BreakerState.CLOSED

        governor.record_outcome(False)
        assert governor.breaker.state == BreakerState.OPEN

        admission = governor.admit(make_scored())
        assert admission.reason == RejectionReason.CIRCUIT_BREAKER_OPEN

    def test_success_resets_count(self, governor):
        trip(governor, 2)
        governor.record_outcome(True)
        trip(governor, 2)

        assert governor.breaker.state == BreakerState.CLOSED
        assert governor.breaker.consecutive_failures == 2

    def test_failures_outside_window_forgotten(self, governor, clock):
        trip(governor, 2)
        clock.advance(61)
        governor.record_outcome(False)

        assert governor.breaker.state == BreakerState.CLOSED
        assert governor.breaker.consecutive_failures == 1

    def test_half_open_admits_single_probe(self, governor, clock):
        trip(governor)
        clock.advance(10)

        assert governor.breaker.state == BreakerState.HALF_OPEN
        probe = governor.admit(make_scored())
        assert probe.accepted and probe.is_probe

        second = governor.admit(make_scored())
        assert second.reason == RejectionReason.CIRCUIT_BREAKER_OPEN

    def test_successful_probe_closes(self, governor, clock):
        trip(governor)
        clock.advance(10)
        governor.admit(make_scored())

        governor.record_outcome(True, is_probe=True)

        assert governor.breaker.state == BreakerState.CLOSED
        admission = governor.admit(make_scored())
        assert admission.accepted and not admission.is_probe

    def test_failed_probe_reopens(self, governor, clock):
        trip(governor)
        clock.advance(10)
        governor.admit(make_scored())

        governor.record_outcome(False, is_probe=True)

        assert governor.breaker.state == BreakerState.OPEN
        assert governor.breaker.metrics["times_opened"] == 2

        clock.advance(9.9)
        assert governor.breaker.state == BreakerState.OPEN

    def test_success_while_open_ignored(self, governor):
        trip(governor)
        governor.record_outcome(True)
        assert governor.breaker.state == BreakerState.OPEN

    def test_late_success_does_not_close_half_open(self, governor, clock):
        """A bundle dispatched before the breaker opened resolves after the cooldown."""
        trip(governor)
        clock.advance(10)
        assert governor.admit(make_scored()).is_probe

        governor.record_outcome(True)

        assert governor.breaker.state == BreakerState.HALF_OPEN
        assert governor.breaker.metrics["probe_in_flight"]

        governor.record_outcome(True, is_probe=True)
        assert governor.breaker.state == BreakerState.CLOSED

    def test_late_success_before_any_probe(self, governor, clock):
        trip(governor)
        clock.advance(10)

        governor.record_outcome(True)

        assert governor.breaker.state == BreakerState.HALF_OPEN
        assert governor.admit(make_scored()).is_probe

    def test_late_failure_keeps_probe_slot(self, governor, clock):
        trip(governor)
        clock.advance(10)

        governor.record_outcome(False)

        assert governor.breaker.state == BreakerState.HALF_OPEN
        assert governor.breaker.metrics["times_opened"] == 1
        assert governor.admit(make_scored()).is_probe

    def test_release_probe(self, governor, clock):
        trip(governor)
        clock.advance(10)
        governor.admit(make_scored())

        governor.release_probe()

        assert governor.admit(make_scored()).is_probe

    def test_limit_rejection_keeps_probe(self, governor, clock):
        """A candidate that fails a threshold never consumes the probe."""
        trip(governor)
        clock.advance(10)

        rejected = governor.admit(make_scored(expected_profit=1))
        assert rejected.reason == RejectionReason.BELOW_PROFIT_THRESHOLD

        assert governor.admit(make_scored()).is_probe

    def test_standalone_breaker(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_ms=1_000, window_ms=1_000, clock=clock)

        assert breaker.try_acquire() is None
        breaker.record_failure()
        assert breaker.try_acquire() is False

        clock.advance(1)
        assert breaker.try_acquire() is True
        assert breaker.try_acquire() is False

        breaker.record_failure()
        assert breaker.state == BreakerState.HALF_OPEN
        breaker.record_success(is_probe=True)
        assert breaker.state == BreakerState.CLOSED
