"""
Block engine relay client (JSON-RPC over HTTP).

sendBundle hands over base64-encoded signed transactions and returns a
bundle id; getInflightBundleStatuses is then polled until the bundle
lands, fails or is declared invalid.
"""

import asyncio
import base64
import itertools
from typing import Any, List, Optional

import httpx
from aiolimiter import AsyncLimiter

from searcher.config import RelayConfig
from searcher.errors import RelayError
from searcher.logger import get_logger
from searcher.models import Bundle, RelayResponse
from searcher.relay.base import BaseRelay


logger = get_logger("block_engine")

LANDED = "Landed"
TERMINAL_FAILURES = ("Failed", "Invalid")


class BlockEngineRelay(BaseRelay):
    """Submits bundles to a block engine and waits for a terminal status."""

    name = "block_engine"

    def __init__(self, config: RelayConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)
        self._limiter = AsyncLimiter(config.rate_limit_per_second, 1)

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
            self._owns_client = True
        logger.info("Connected to block engine", url=self.config.block_engine_url)

    async def disconnect(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("Disconnected from block engine")

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        if self._client is None:
            raise RelayError("Block engine client is not connected")

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with self._limiter:
                response = await self._client.post(self.config.block_engine_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise RelayError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise RelayError(f"{method} returned invalid JSON") from e

        if data.get("error"):
            return _RpcError(data["error"])
        return data.get("result")

    async def submit_bundle(self, bundle: Bundle) -> RelayResponse:
        encoded = [base64.b64encode(tx.payload).decode() for tx in bundle.transactions]
        result = await self._rpc("sendBundle", [encoded, {"encoding": "base64"}])

        if isinstance(result, _RpcError):
            logger.warning("Bundle rejected by block engine", bundle_id=bundle.bundle_id, error=result.message)
            return RelayResponse(accepted=False, reason=result.message)
        if not isinstance(result, str):
            raise RelayError(f"Unexpected sendBundle result: {result!r}")

        logger.debug("Bundle sent", bundle_id=bundle.bundle_id, relay_bundle_id=result)
        return await self._await_status(result)

    async def _await_status(self, relay_bundle_id: str) -> RelayResponse:
        """Poll until a terminal status. The caller's timeout bounds the wait."""
        interval = self.config.bundle_status_poll_ms / 1000
        while True:
            result = await self._rpc("getInflightBundleStatuses", [[relay_bundle_id]])
            status = self._status_of(result)

            if status == LANDED:
                return RelayResponse(accepted=True, relay_bundle_id=relay_bundle_id)
            if status in TERMINAL_FAILURES:
                return RelayResponse(accepted=False, relay_bundle_id=relay_bundle_id, reason=status)

            await asyncio.sleep(interval)

    @staticmethod
    def _status_of(result: Any) -> Optional[str]:
        if isinstance(result, _RpcError) or not isinstance(result, dict):
            return None
        for entry in result.get("value") or ():
            if isinstance(entry, dict):
                return entry.get("status")
        return None


class _RpcError:
    """JSON-RPC error object returned by the block engine."""

    def __init__(self, error: Any):
        if isinstance(error, dict):
            self.message = str(error.get("message", error))
        else:
            self.message = str(error)
