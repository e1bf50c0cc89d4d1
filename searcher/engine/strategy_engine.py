"""
Strategy engine: fans one snapshot out to every registered detector and
fans their results back in, in a deterministic order.
"""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from searcher.config import EngineConfig
from searcher.engine.detector import BaseDetector
from searcher.errors import StaleDependency
from searcher.logger import get_logger
from searcher.models import Opportunity
from searcher.state.state_cache import StateCache, StateView


logger = get_logger("strategy_engine")


class StrategyEngine:
    """
    Registry of independent detectors.

    Every detector sees the same immutable view and runs concurrently with
    the others under a per-detector time budget. Evaluations run on worker
    threads, each with its own event loop, so a detector that blocks or burns
    CPU cannot stall the cycle. A detector that overruns has its output
    discarded and is skipped until its stuck evaluation finishes; a detector
    that raises is logged and skipped. Neither affects the rest of the cycle.
    """

    def __init__(self, config: EngineConfig):
        self.config = config
        self._detectors: List[BaseDetector] = []
        self._executor = ThreadPoolExecutor(
            max_workers=config.detector_workers,
            thread_name_prefix="detector",
        )
        self._busy: Dict[str, asyncio.Future] = {}

        # Per-detector metrics
        self._emitted: Dict[str, int] = {}
        self._timeouts: Dict[str, int] = {}
        self._failures: Dict[str, int] = {}
        self._last_latency_ms: Dict[str, float] = {}

    def register(self, detector: BaseDetector) -> None:
        """Add a detector; evaluation order follows registration order."""
        if any(d.detector_id == detector.detector_id for d in self._detectors):
            raise ValueError(f"Detector already registered: {detector.detector_id}")
        self._detectors.append(detector)
        self._emitted.setdefault(detector.detector_id, 0)
        self._timeouts.setdefault(detector.detector_id, 0)
        self._failures.setdefault(detector.detector_id, 0)
        logger.info("Detector registered", detector=detector.detector_id)

    def unregister(self, detector_id: str) -> Optional[BaseDetector]:
        for detector in self._detectors:
            if detector.detector_id == detector_id:
                self._detectors.remove(detector)
                logger.info("Detector unregistered", detector=detector_id)
                return detector
        return None

    @property
    def detectors(self) -> Sequence[BaseDetector]:
        return tuple(self._detectors)

    def required_keys(self, cache: StateCache) -> frozenset:
        """Union of the accounts every detector needs."""
        keys = set()
        for detector in self._detectors:
            try:
                keys.update(detector.required_keys(cache))
            except Exception as e:
                logger.error(
                    "Detector key discovery failed",
                    detector=detector.detector_id,
                    error=str(e),
                )
        return frozenset(keys)

    async def evaluate(self, view: StateView) -> List[Opportunity]:
        """
        Run all detectors against `view`.

        Returns:
            Opportunities ordered by detector registration order, then by
            emission order within each detector.
        """
        detectors = list(self._detectors)
        if not detectors:
            return []

        results = await asyncio.gather(
            *(self._run_detector(detector, view) for detector in detectors)
        )
        return [opportunity for batch in results for opportunity in batch]

    async def _run_detector(self, detector: BaseDetector, view: StateView) -> List[Opportunity]:
        detector_id = detector.detector_id
        budget_ms = self.config.detector_time_budget_ms

        previous = self._busy.get(detector_id)
        if previous is not None and not previous.done():
            self._count_timeout(detector_id)
            logger.warning("Detector still running on an earlier view, skipped", detector=detector_id, slot=view.slot)
            return []

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, _evaluate_blocking, detector, view)
        future.add_done_callback(_discard_result)
        self._busy[detector_id] = future
        start = time.perf_counter()

        try:
            # Shielded so an overrun keeps its future until the thread returns
            output = await asyncio.wait_for(asyncio.shield(future), timeout=budget_ms / 1000)
            if (time.perf_counter() - start) * 1000 > budget_ms:
                raise asyncio.TimeoutError
        except asyncio.TimeoutError:
            self._count_timeout(detector_id)
            logger.warning(
                "Detector exceeded time budget, output discarded",
                detector=detector_id,
                budget_ms=budget_ms,
                slot=view.slot,
            )
            return []
        except StaleDependency as e:
            logger.debug("Detector missing state", detector=detector.detector_id, missing=e.missing)
            return []
        except Exception as e:
            self._failures[detector.detector_id] = self._failures.get(detector.detector_id, 0) + 1
            logger.error(
                "Detector failed",
                detector=detector.detector_id,
                error=str(e),
                exc_info=True,
            )
            return []
        finally:
            self._last_latency_ms[detector.detector_id] = (time.perf_counter() - start) * 1000

        opportunities = []
        for opportunity in output or ():
            if not isinstance(opportunity, Opportunity):
                logger.warning(
                    "Detector emitted a non-opportunity, ignored",
                    detector=detector.detector_id,
                    type=type(opportunity).__name__,
                )
                continue
            opportunities.append(opportunity)

        self._emitted[detector.detector_id] = (
            self._emitted.get(detector.detector_id, 0) + len(opportunities)
        )
        return opportunities

    def _count_timeout(self, detector_id: str) -> None:
        self._timeouts[detector_id] = self._timeouts.get(detector_id, 0) + 1

    def close(self) -> None:
        """Release worker threads; evaluations still running are abandoned."""
        self._executor.shutdown(wait=False)

    @property
    def metrics(self) -> dict:
        """Get engine metrics."""
        return {
            "detectors": [d.detector_id for d in self._detectors],
            "emitted": dict(self._emitted),
            "timeouts": dict(self._timeouts),
            "failures": dict(self._failures),
            "last_latency_ms": {k: round(v, 2) for k, v in self._last_latency_ms.items()},
        }


def _evaluate_blocking(detector: BaseDetector, view: StateView):
    return asyncio.run(detector.evaluate(view))


def _discard_result(future: asyncio.Future) -> None:
    # Retrieve the outcome of abandoned evaluations so it is never reported as unhandled
    if not future.cancelled():
        future.exception()
