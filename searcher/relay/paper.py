"""
Paper relay: simulates bundle submission without touching the network.
"""

import asyncio
import random
from typing import Optional

from searcher.config import RelayConfig
from searcher.logger import get_logger
from searcher.models import Bundle, RelayResponse
from searcher.relay.base import BaseRelay


logger = get_logger("paper_relay")


class PaperRelay(BaseRelay):
    """
    Accepts a configurable share of bundles after a random delay.

    The delay is drawn between min_execution_delay_ms and
    max_execution_delay_ms, and acceptance with paper_acceptance_rate.
    """

    name = "paper"

    def __init__(self, config: RelayConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng or random.Random()
        self._submitted = 0

    async def submit_bundle(self, bundle: Bundle) -> RelayResponse:
        self._submitted += 1
        delay_ms = self._rng.uniform(
            self.config.min_execution_delay_ms, self.config.max_execution_delay_ms
        )
        await asyncio.sleep(delay_ms / 1000)

        relay_bundle_id = f"paper_{bundle.bundle_id}"
        if self._rng.random() < self.config.paper_acceptance_rate:
            logger.info(
                "📝 Paper bundle landed",
                bundle_id=bundle.bundle_id,
                tip=bundle.tip_lamports,
                transactions=len(bundle.transactions),
            )
            return RelayResponse(accepted=True, relay_bundle_id=relay_bundle_id)

        logger.info("📝 Paper bundle dropped", bundle_id=bundle.bundle_id)
        return RelayResponse(accepted=False, relay_bundle_id=relay_bundle_id, reason="simulated drop")

    @property
    def submitted(self) -> int:
        return self._submitted
