"""
Error taxonomy for the detection and execution pipeline.

Every error here is local to a single candidate: the pipeline catches it,
logs it and moves on to the next candidate.
"""

from typing import Iterable, Optional


class SearcherError(Exception):
    """Base class for pipeline errors."""

    reason = "SearcherError"


class StaleDependency(SearcherError):
    """A requested account (or market) has no state in the cache yet."""

    reason = "StaleDependency"

    def __init__(self, missing: Iterable[str]):
        self.missing = tuple(sorted(missing))
        super().__init__(f"No state for: {', '.join(self.missing)}")


class Expired(SearcherError):
    """An opportunity is older than the staleness tolerance."""

    reason = "Expired"

    def __init__(self, opportunity_slot: int, current_slot: int, tolerance: int):
        self.opportunity_slot = opportunity_slot
        self.current_slot = current_slot
        self.tolerance = tolerance
        super().__init__(
            f"Computed at slot {opportunity_slot}, now {current_slot} "
            f"(tolerance {tolerance} slots)"
        )


class Unbuildable(SearcherError):
    """An admitted opportunity cannot be assembled into a valid bundle."""

    reason = "Unbuildable"


class DuplicateInFlight(SearcherError):
    """Another bundle already holds one of the contested resources."""

    reason = "DuplicateInFlight"

    def __init__(self, resources: Iterable[str], holder: Optional[str] = None):
        self.resources = tuple(sorted(resources))
        self.holder = holder
        super().__init__(f"In flight on {', '.join(self.resources)}")


class StaleBundle(SearcherError):
    """Final re-validation found the bundle's assumptions no longer hold."""

    reason = "Stale"


class RelayError(SearcherError):
    """Transport-level failure talking to the relay."""

    reason = "RelayError"
