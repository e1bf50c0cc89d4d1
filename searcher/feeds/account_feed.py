"""
RPC websocket feed.

Subscribes to every tracked account (accountSubscribe, base64 encoding)
plus slot ticks (slotSubscribe) and turns notifications into feed events.
Reconnects and resubscribes when the connection drops.
"""

import asyncio
import base64
import binascii
import itertools
import json
from typing import AsyncIterator, Dict, Iterable, Optional

import websockets

from searcher.config import FeedConfig
from searcher.feeds.base import BaseFeed, FeedEvent
from searcher.logger import get_logger
from searcher.models import SlotUpdate, StateDelta


logger = get_logger("account_feed")

SLOT_SUBSCRIPTION = "__slot__"


class AccountSubscriptionFeed(BaseFeed):
    """Live account updates from an RPC node's websocket endpoint."""

    name = "websocket"

    def __init__(self, config: FeedConfig, accounts: Iterable[str]):
        self.config = config
        self.accounts = sorted(set(accounts))

        self._running = False
        self._ws = None
        self._ids = itertools.count(1)

        # request id -> account (or SLOT_SUBSCRIPTION), then subscription id -> account
        self._pending: Dict[int, str] = {}
        self._subscriptions: Dict[int, str] = {}

        self._messages = 0
        self._reconnects = 0
        self._malformed = 0

    async def connect(self) -> None:
        self._running = True
        logger.info(
            "Account feed configured",
            url=self.config.rpc_ws_url,
            accounts=len(self.accounts),
            commitment=self.config.commitment,
        )

    async def disconnect(self) -> None:
        self._running = False
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        logger.info("Account feed disconnected")

    async def stream(self) -> AsyncIterator[FeedEvent]:
        self._running = True

        while self._running:
            try:
                async with websockets.connect(self.config.rpc_ws_url) as ws:
                    self._ws = ws
                    logger.info("✅ RPC websocket connected", url=self.config.rpc_ws_url)
                    await self._subscribe(ws)

                    async for message in ws:
                        if not self._running:
                            break
                        event = self.handle_message(message)
                        if event is not None:
                            yield event

            except websockets.exceptions.ConnectionClosed:
                logger.warning("RPC websocket closed")
            except OSError as e:
                logger.error(f"RPC websocket error: {e}")
            finally:
                self._ws = None

            if self._running:
                self._reconnects += 1
                logger.warning(f"Reconnecting in {self.config.reconnect_delay_seconds}s...")
                await asyncio.sleep(self.config.reconnect_delay_seconds)

    async def _subscribe(self, ws) -> None:
        self._pending.clear()
        self._subscriptions.clear()

        for account in self.accounts:
            await ws.send(self._request(
                "accountSubscribe",
                [account, {"encoding": "base64", "commitment": self.config.commitment}],
                account,
            ))
        await ws.send(self._request("slotSubscribe", [], SLOT_SUBSCRIPTION))

    def _request(self, method: str, params: list, target: str) -> str:
        request_id = next(self._ids)
        self._pending[request_id] = target
        return json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})

    def handle_message(self, message) -> Optional[FeedEvent]:
        """Parse one websocket message; returns None for acks and noise."""
        self._messages += 1
        try:
            data = json.loads(message)
        except ValueError:
            logger.debug("Ignoring non-JSON websocket message")
            return None
        if not isinstance(data, dict):
            return None

        if "id" in data and "result" in data:
            request_id = data["id"]
            target = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
            if target is not None and isinstance(data["result"], int):
                self._subscriptions[data["result"]] = target
            return None
        if "error" in data:
            logger.warning("Subscription error", error=data["error"])
            return None

        method = data.get("method")
        params = data.get("params") or {}
        try:
            if not isinstance(params, dict):
                raise ValueError("params is not an object")
            if method == "accountNotification":
                return self._account_event(params)
            if method == "slotNotification":
                return SlotUpdate(slot=int(params["result"]["slot"]))
        except (AttributeError, KeyError, TypeError, ValueError, binascii.Error) as e:
            self._malformed += 1
            logger.debug(f"Malformed {method}: {e}")
        return None

    def _account_event(self, params: dict) -> Optional[StateDelta]:
        account = self._subscriptions.get(params.get("subscription"))
        if account is None or account == SLOT_SUBSCRIPTION:
            return None

        result = params["result"]
        value = result["value"]
        encoded, encoding = value["data"]
        if encoding != "base64":
            raise ValueError(f"unexpected encoding {encoding}")

        return StateDelta(
            account_id=account,
            data=base64.b64decode(encoded),
            slot=int(result["context"]["slot"]),
            owner=value.get("owner"),
        )

    @property
    def metrics(self) -> dict:
        return {
            "messages": self._messages,
            "subscriptions": len(self._subscriptions),
            "malformed": self._malformed,
            "reconnects": self._reconnects,
        }
