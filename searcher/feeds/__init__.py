"""
State feeds: recorded replay and live RPC websocket subscriptions.
"""

from searcher.feeds.account_feed import AccountSubscriptionFeed
from searcher.feeds.base import BaseFeed, FeedEvent
from searcher.feeds.replay import ReplayFeed

__all__ = [
    "AccountSubscriptionFeed",
    "BaseFeed",
    "FeedEvent",
    "ReplayFeed",
]
