"""
Outcome notifications.
Posts submission outcomes to a Telegram bot.
"""

import asyncio
import html
from typing import Optional, Set

import httpx

from searcher.config import MonitoringConfig
from searcher.logger import get_logger
from searcher.models import SubmissionRecord, SubmissionStatus


logger = get_logger("notifications")

TELEGRAM_API_URL = "https://api.telegram.org"


class OutcomeNotifier:
    """
    Send a message per terminal submission outcome.

    Messages go out on background tasks so a slow bot API never holds up
    the submission that produced them. Delivery failures are logged and
    dropped.
    """

    def __init__(self, config: MonitoringConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._pending: Set[asyncio.Task] = set()
        self._sent = 0
        self._failed = 0

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)

    async def disconnect(self) -> None:
        """Flush queued messages, then close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def is_enabled(self) -> bool:
        return bool(
            self.config.enable_notifications
            and self.config.telegram_bot_token
            and self.config.telegram_chat_id
        )

    async def send_telegram(self, message: str) -> bool:
        """Send message to Telegram."""
        if not self.is_enabled or not self._client:
            return False

        url = f"{TELEGRAM_API_URL}/bot{self.config.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": self.config.telegram_chat_id,
            "text": message,
            "parse_mode": "HTML",
        }
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            self._failed += 1
            logger.error(f"Telegram notification failed: {e}")
            return False

        if response.status_code != 200:
            self._failed += 1
            logger.warning("Telegram rejected notification", status=response.status_code)
            return False
        self._sent += 1
        return True

    def notify_outcome(self, record: SubmissionRecord) -> None:
        """Queue a message for a resolved submission."""
        if not self.is_enabled:
            return
        if record.status != SubmissionStatus.ACCEPTED and not self.config.notify_rejections:
            return

        task = asyncio.create_task(self.send_telegram(format_outcome(record)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def metrics(self) -> dict:
        return {"sent": self._sent, "failed": self._failed, "queued": len(self._pending)}


def format_outcome(record: SubmissionRecord) -> str:
    scored = record.bundle.scored
    if record.status == SubmissionStatus.ACCEPTED:
        header = "✅ <b>Bundle landed</b>"
    else:
        header = f"❌ <b>Bundle {record.status.value}</b>"

    lines = [
        header,
        f"Detector: {html.escape(scored.opportunity.detector_id)}",
        f"Slot: {record.slot}",
        f"Expected profit: {scored.expected_profit} lamports",
        f"Tip: {record.bundle.tip_lamports} lamports",
        f"Latency: {record.latency_ms:.0f}ms",
    ]
    if record.relay_bundle_id:
        lines.append(f"Relay id: {record.relay_bundle_id}")
    if record.reason:
        lines.append(f"Reason: {html.escape(record.reason[:200])}")
    return "\n".join(lines)
