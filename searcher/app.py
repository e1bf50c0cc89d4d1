"""
Component wiring shared by the CLI and embedding applications.
"""

from pathlib import Path
from typing import Optional

from searcher.config import SearcherConfig
from searcher.engine.pipeline import Pipeline
from searcher.engine.risk_governor import RiskGovernor
from searcher.engine.scorer import OpportunityScorer
from searcher.engine.strategy_engine import StrategyEngine
from searcher.execution.bundle_builder import BundleBuilder
from searcher.execution.submission_manager import SubmissionManager
from searcher.feeds.account_feed import AccountSubscriptionFeed
from searcher.feeds.base import BaseFeed
from searcher.feeds.replay import ReplayFeed
from searcher.logger import get_logger
from searcher.markets import MarketsFile, build_detectors, register_markets
from searcher.notifications import OutcomeNotifier
from searcher.relay.base import BaseRelay
from searcher.signing import BaseSigner
from searcher.state.state_cache import StateCache


logger = get_logger("app")


def create_feed(config: SearcherConfig, cache: StateCache, replay_path: Optional[Path] = None) -> BaseFeed:
    """Replay file if one is given, otherwise live websocket subscriptions."""
    path = replay_path or config.feed.replay_path
    if path is not None:
        return ReplayFeed(path=path, interval_ms=config.feed.replay_interval_ms)
    return AccountSubscriptionFeed(config.feed, cache.tracked_accounts)


def build_pipeline(
    config: SearcherConfig,
    markets: MarketsFile,
    signer: BaseSigner,
    relay: BaseRelay,
    feed: Optional[BaseFeed] = None,
    cache: Optional[StateCache] = None,
    stop_on_feed_end: bool = False,
) -> Pipeline:
    """Assemble every pipeline component around one config."""
    cache = cache or StateCache(reference_mint=config.engine.reference_mint)
    register_markets(cache, markets)

    engine = StrategyEngine(config.engine)
    for detector in build_detectors(markets, owner=signer.pubkey):
        engine.register(detector)

    return Pipeline(
        config=config,
        cache=cache,
        engine=engine,
        scorer=OpportunityScorer(config),
        governor=RiskGovernor(config.risk),
        builder=BundleBuilder(config, signer),
        manager=SubmissionManager(config, cache, relay),
        feed=feed if feed is not None else create_feed(config, cache),
        stop_on_feed_end=stop_on_feed_end,
        notifier=OutcomeNotifier(config.monitoring) if config.monitoring.enable_notifications else None,
    )
