"""
Replay feed: plays recorded account updates back from a JSON Lines file.

Each line is one event:
    {"account": "<pubkey>", "slot": 123, "data": "<base64>", "owner": "<pubkey>"}
    {"slot": 124}                                   (slot tick, no account)
"""

import asyncio
import base64
import binascii
import json
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional

from searcher.feeds.base import BaseFeed, FeedEvent
from searcher.logger import get_logger
from searcher.models import SlotUpdate, StateDelta


logger = get_logger("replay_feed")


def parse_event(record: dict) -> FeedEvent:
    """
    Convert one decoded JSON record into a feed event.

    Raises:
        ValueError: the record is not a valid event
    """
    if not isinstance(record, dict):
        raise ValueError("event must be an object")

    slot = record.get("slot")
    if not isinstance(slot, int) or isinstance(slot, bool) or slot < 0:
        raise ValueError(f"invalid slot: {slot!r}")

    account = record.get("account")
    if account is None:
        return SlotUpdate(slot=slot)

    try:
        data = base64.b64decode(record.get("data", ""), validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"invalid base64 data for {account}") from e

    return StateDelta(
        account_id=str(account),
        data=data,
        slot=slot,
        owner=record.get("owner"),
    )


def encode_event(event: FeedEvent) -> str:
    """One JSON line for an event."""
    if isinstance(event, SlotUpdate):
        return json.dumps({"slot": event.slot})
    record = {
        "account": event.account_id,
        "slot": event.slot,
        "data": base64.b64encode(event.data).decode(),
    }
    if event.owner:
        record["owner"] = event.owner
    return json.dumps(record)


class ReplayFeed(BaseFeed):
    """Yields recorded events in file order; malformed lines are skipped."""

    name = "replay"

    def __init__(
        self,
        path: Optional[Path] = None,
        events: Optional[Iterable[FeedEvent]] = None,
        interval_ms: int = 0,
    ):
        if path is None and events is None:
            raise ValueError("ReplayFeed needs a path or a list of events")
        self.path = Path(path) if path is not None else None
        self._events: Optional[List[FeedEvent]] = list(events) if events is not None else None
        self.interval_ms = interval_ms

        self._running = False
        self._emitted = 0
        self._skipped = 0

    async def connect(self) -> None:
        if self.path is not None and not self.path.exists():
            raise FileNotFoundError(f"Replay file not found: {self.path}")
        self._running = True
        logger.info("Replay feed ready", path=str(self.path) if self.path else "<memory>")

    async def disconnect(self) -> None:
        self._running = False
        logger.info("Replay feed stopped", emitted=self._emitted, skipped=self._skipped)

    async def stream(self) -> AsyncIterator[FeedEvent]:
        self._running = True
        for event in self._iter_events():
            if not self._running:
                break
            self._emitted += 1
            yield event
            # Let the rest of the pipeline run between events
            await asyncio.sleep(self.interval_ms / 1000)

    def _iter_events(self) -> Iterable[FeedEvent]:
        if self._events is not None:
            yield from self._events
            return

        with open(self.path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                event = self._parse_line(line, line_number)
                if event is not None:
                    yield event

    def _parse_line(self, line: str, line_number: int) -> Optional[FeedEvent]:
        try:
            return parse_event(json.loads(line))
        except ValueError as e:
            self._skipped += 1
            logger.warning("Skipping malformed replay line", line=line_number, error=str(e))
            return None

    @property
    def metrics(self) -> dict:
        return {"emitted": self._emitted, "skipped": self._skipped}
