"""
Tests for detector fan-out and fan-in.
"""

import time

import pytest

from searcher.config import EngineConfig
from searcher.engine.strategy_engine import StrategyEngine

from factories import POOL_A, POOL_B, FailingDetector, StaticDetector, make_opportunity


class BlockingDetector(StaticDetector):
    """Holds its thread without yielding, like a CPU-bound detector."""

    async def evaluate(self, view):
        self.calls += 1
        time.sleep(self.delay)
        return list(self.opportunities)


@pytest.fixture
def engine():
    engine = StrategyEngine(EngineConfig(detector_time_budget_ms=50))
    yield engine
    engine.close()


class TestRegistration:
    """Tests for the detector registry."""

    def test_duplicate_id_rejected(self, engine):
        engine.register(StaticDetector("alpha"))
        with pytest.raises(ValueError):
            engine.register(StaticDetector("alpha"))

    def test_unregister(self, engine):
        detector = StaticDetector("alpha")
        engine.register(detector)

        assert engine.unregister("alpha") is detector
        assert engine.unregister("alpha") is None
        assert engine.detectors == ()

    def test_required_keys_union(self, engine, cache):
        engine.register(StaticDetector("alpha", keys=POOL_A.dependencies))
        engine.register(StaticDetector("beta", keys=POOL_B.dependencies))

        keys = engine.required_keys(cache)
        assert keys == frozenset(POOL_A.dependencies) | frozenset(POOL_B.dependencies)


class TestEvaluation:
    """Tests for concurrent evaluation."""

    async def test_output_in_registration_order(self, engine, cache):
        first = [make_opportunity(detector_id="alpha"), make_opportunity(detector_id="alpha")]
        second = [make_opportunity(detector_id="beta")]
        # The slower detector is registered first and still comes first
        engine.register(StaticDetector("alpha", first, delay=0.01))
        engine.register(StaticDetector("beta", second))

        view = cache.snapshot(POOL_A.dependencies)
        results = await engine.evaluate(view)

        assert [o.opportunity_id for o in results] == [o.opportunity_id for o in first + second]

    async def test_every_detector_sees_the_same_view(self, engine, cache):
        seen = []

        class Recorder(StaticDetector):
            async def evaluate(self, view):
                seen.append(view)
                return []

        engine.register(Recorder("alpha"))
        engine.register(Recorder("beta"))

        view = cache.snapshot(POOL_A.dependencies)
        await engine.evaluate(view)

        assert seen == [view, view]

    async def test_slow_detector_discarded(self, engine, cache):
        engine.register(StaticDetector("slow", [make_opportunity(detector_id="slow")], delay=0.5))
        engine.register(StaticDetector("fast", [make_opportunity(detector_id="fast")]))

        results = await engine.evaluate(cache.snapshot(POOL_A.dependencies))

        assert [o.detector_id for o in results] == ["fast"]
        assert engine.metrics["timeouts"]["slow"] == 1

    async def test_blocking_detector_discarded(self, engine, cache):
        engine.register(BlockingDetector("blocking", [make_opportunity(detector_id="blocking")], delay=0.3))
        engine.register(StaticDetector("fast", [make_opportunity(detector_id="fast")]))

        start = time.perf_counter()
        results = await engine.evaluate(cache.snapshot(POOL_A.dependencies))
        elapsed = time.perf_counter() - start

        assert [o.detector_id for o in results] == ["fast"]
        assert engine.metrics["timeouts"]["blocking"] == 1
        assert elapsed < 0.3

    async def test_busy_detector_skipped_until_it_returns(self, engine, cache):
        blocking = BlockingDetector("blocking", [make_opportunity(detector_id="blocking")], delay=0.2)
        engine.register(blocking)
        view = cache.snapshot(POOL_A.dependencies)

        assert await engine.evaluate(view) == []
        assert await engine.evaluate(view) == []

        assert blocking.calls == 1
        assert engine.metrics["timeouts"]["blocking"] == 2

    async def test_failing_detector_isolated(self, engine, cache):
        engine.register(FailingDetector("broken"))
        engine.register(StaticDetector("fine", [make_opportunity(detector_id="fine")]))

        results = await engine.evaluate(cache.snapshot(POOL_A.dependencies))

        assert [o.detector_id for o in results] == ["fine"]
        assert engine.metrics["failures"]["broken"] == 1

    async def test_non_opportunities_ignored(self, engine, cache):
        engine.register(StaticDetector("odd", ["not an opportunity", make_opportunity(detector_id="odd")]))

        results = await engine.evaluate(cache.snapshot(POOL_A.dependencies))

        assert len(results) == 1
        assert engine.metrics["emitted"]["odd"] == 1

    async def test_no_detectors(self, engine, cache):
        assert await engine.evaluate(cache.snapshot(POOL_A.dependencies)) == []

    async def test_metrics_track_latency(self, engine, cache):
        engine.register(StaticDetector("alpha"))
        await engine.evaluate(cache.snapshot(POOL_A.dependencies))

        metrics = engine.metrics
        assert metrics["detectors"] == ["alpha"]
        assert "alpha" in metrics["last_latency_ms"]
