"""
On-chain state cache and account decoders.
"""

from searcher.state.decoders import AccountRole, DecodeError
from searcher.state.state_cache import StateCache, StateView

__all__ = [
    "AccountRole",
    "DecodeError",
    "StateCache",
    "StateView",
]
