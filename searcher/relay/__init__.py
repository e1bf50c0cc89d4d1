"""
Bundle relays: paper simulation and block engine.
"""

from searcher.relay.base import BaseRelay
from searcher.relay.block_engine import BlockEngineRelay
from searcher.relay.paper import PaperRelay

__all__ = [
    "BaseRelay",
    "BlockEngineRelay",
    "PaperRelay",
]
