"""
Detector contract shared by every strategy family.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Iterable, Sequence, Set

from searcher.errors import StaleDependency
from searcher.logger import get_logger
from searcher.models import Opportunity
from searcher.state.state_cache import StateCache, StateView


logger = get_logger("detector")


class BaseDetector(ABC):
    """
    Abstract base class for strategy detectors.

    A detector reads an immutable StateView and proposes zero or more
    Opportunities. It must not keep references into the view past the call
    or mutate anything shared with other detectors. Evaluation runs on an
    engine worker thread with its own event loop and is bounded by the
    engine's time budget, so it must not touch objects bound to the
    pipeline's loop.
    """

    def __init__(self, detector_id: str):
        self.detector_id = detector_id

    @abstractmethod
    def required_keys(self, cache: StateCache) -> Set[str]:
        """Account ids this detector needs in the view."""
        pass

    @abstractmethod
    async def evaluate(self, view: StateView) -> Sequence[Opportunity]:
        """
        Propose opportunities against a consistent view.

        Args:
            view: Read-only snapshot tagged with a single slot

        Returns:
            Opportunities in the order they should be considered
        """
        pass

    def new_opportunity_id(self) -> str:
        return f"opp_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def market_keys(cache: StateCache, markets: Iterable[str]) -> Set[str]:
        """Dependency accounts of the given markets; unknown markets are skipped."""
        keys: Set[str] = set()
        for market_id in markets:
            try:
                keys.update(cache.pool_dependencies(market_id))
            except StaleDependency:
                logger.warning("Detector references unregistered market", market_id=market_id)
        return keys

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.detector_id!r})"
