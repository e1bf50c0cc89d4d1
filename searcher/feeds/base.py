"""
Base class for state feeds.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Union

from searcher.models import SlotUpdate, StateDelta


FeedEvent = Union[StateDelta, SlotUpdate]


class BaseFeed(ABC):
    """
    Abstract source of account deltas and slot updates.

    Deltas may arrive duplicated or out of order; the cache sorts that out.
    """

    name: str = "feed"

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abstractmethod
    def stream(self) -> AsyncIterator[FeedEvent]:
        """Yield events until the feed is exhausted or disconnected."""
        pass
