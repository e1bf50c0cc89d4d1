"""
Tests for the replay and websocket feeds.
"""

import base64
import json

import pytest

from searcher.config import FeedConfig
from searcher.feeds.account_feed import AccountSubscriptionFeed
from searcher.feeds.replay import ReplayFeed, encode_event, parse_event
from searcher.models import SlotUpdate, StateDelta


class FakeWebSocket:
    """Collects outgoing subscription requests."""

    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))


async def collect(feed):
    return [event async for event in feed.stream()]


class TestParseEvent:
    """Tests for replay record parsing."""

    def test_account_update(self):
        event = parse_event({"account": "abc", "slot": 7, "data": base64.b64encode(b"\x01\x02").decode()})
        assert event == StateDelta("abc", b"\x01\x02", 7)

    def test_slot_tick(self):
        assert parse_event({"slot": 9}) == SlotUpdate(9)

    @pytest.mark.parametrize("record", [
        {"account": "abc", "data": ""},
        {"account": "abc", "slot": -1, "data": ""},
        {"account": "abc", "slot": "12", "data": ""},
        {"account": "abc", "slot": True, "data": ""},
        {"account": "abc", "slot": 1, "data": "not base64!"},
        ["not", "an", "object"],
    ])
    def test_invalid_records(self, record):
        with pytest.raises(ValueError):
            parse_event(record)

    def test_encode_matches_parse(self):
        delta = StateDelta("abc", b"\xff" * 4, 11, owner="prog")
        assert parse_event(json.loads(encode_event(delta))) == delta


class TestReplayFeed:
    """Tests for file and in-memory replay."""

    async def test_file_replay_skips_bad_lines(self, tmp_path):
        path = tmp_path / "capture.jsonl"
        path.write_text("\n".join([
            "# captured on devnet",
            encode_event(StateDelta("abc", b"\x01", 5)),
            "{not json",
            "",
            json.dumps({"account": "abc", "slot": "x"}),
            encode_event(SlotUpdate(6)),
        ]))

        feed = ReplayFeed(path=path)
        await feed.connect()
        events = await collect(feed)

        assert events == [StateDelta("abc", b"\x01", 5), SlotUpdate(6)]
        assert feed.metrics == {"emitted": 2, "skipped": 2}

    async def test_in_memory_replay(self):
        events = [StateDelta("abc", b"\x01", 1), SlotUpdate(2)]
        feed = ReplayFeed(events=events)

        assert await collect(feed) == events

    async def test_missing_file(self, tmp_path):
        feed = ReplayFeed(path=tmp_path / "absent.jsonl")
        with pytest.raises(FileNotFoundError):
            await feed.connect()

    def test_needs_a_source(self):
        with pytest.raises(ValueError):
            ReplayFeed()

    async def test_disconnect_stops_stream(self):
        feed = ReplayFeed(events=[SlotUpdate(1), SlotUpdate(2), SlotUpdate(3)])
        seen = []
        async for event in feed.stream():
            seen.append(event)
            await feed.disconnect()

        assert seen == [SlotUpdate(1)]


class TestAccountSubscriptionFeed:
    """Tests for websocket message handling."""

    @pytest.fixture
    async def feed(self):
        feed = AccountSubscriptionFeed(FeedConfig(), ["vault-a-base", "amm-a", "amm-a"])
        ws = FakeWebSocket()
        await feed._subscribe(ws)
        feed.sent = ws.sent
        return feed

    def ack(self, feed, request_id, subscription_id):
        return feed.handle_message(json.dumps({"jsonrpc": "2.0", "id": request_id, "result": subscription_id}))

    async def test_subscribe_requests(self, feed):
        methods = [(m["method"], m["params"][0] if m["params"] else None) for m in feed.sent]
        assert methods == [
            ("accountSubscribe", "amm-a"),
            ("accountSubscribe", "vault-a-base"),
            ("slotSubscribe", None),
        ]
        assert feed.sent[0]["params"][1] == {"encoding": "base64", "commitment": "processed"}

    async def test_account_notification(self, feed):
        assert self.ack(feed, 1, 501) is None

        event = feed.handle_message(json.dumps({
            "jsonrpc": "2.0",
            "method": "accountNotification",
            "params": {
                "subscription": 501,
                "result": {
                    "context": {"slot": 321},
                    "value": {"data": [base64.b64encode(b"\x07").decode(), "base64"], "owner": "prog"},
                },
            },
        }))

        assert event == StateDelta("amm-a", b"\x07", 321, owner="prog")

    async def test_slot_notification(self, feed):
        self.ack(feed, 3, 900)
        event = feed.handle_message(json.dumps({
            "jsonrpc": "2.0",
            "method": "slotNotification",
            "params": {"subscription": 900, "result": {"slot": 77, "parent": 76, "root": 40}},
        }))
        assert event == SlotUpdate(77)

    async def test_unknown_subscription_ignored(self, feed):
        event = feed.handle_message(json.dumps({
            "method": "accountNotification",
            "params": {"subscription": 12345, "result": {}},
        }))
        assert event is None

    @pytest.mark.parametrize("message", [
        "not json",
        "[1, 2, 3]",
        json.dumps({"jsonrpc": "2.0", "id": 1, "error": {"message": "bad"}}),
        json.dumps({"method": "slotNotification", "params": {"result": {}}}),
        json.dumps({"method": "accountNotification", "params": [1, 2]}),
        json.dumps({"method": "slotNotification", "params": "slot"}),
        json.dumps({"method": "accountNotification", "params": {"subscription": [501], "result": {}}}),
        json.dumps({"jsonrpc": "2.0", "id": [1], "result": 501}),
    ])
    async def test_noise_ignored(self, feed, message):
        assert feed.handle_message(message) is None

    async def test_metrics(self, feed):
        self.ack(feed, 1, 501)
        assert feed.metrics["subscriptions"] == 1
        assert feed.metrics["messages"] == 1

    async def test_malformed_notifications_counted(self, feed):
        self.ack(feed, 1, 501)
        feed.handle_message(json.dumps({"method": "accountNotification", "params": [1, 2]}))
        feed.handle_message(json.dumps({
            "method": "accountNotification",
            "params": {"subscription": 501, "result": {"context": {}, "value": {"data": ["AA==", "base64"]}}},
        }))

        assert feed.metrics["malformed"] == 2
