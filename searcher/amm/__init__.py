"""
Constant-product pool math and instruction encoding.
"""

from searcher.amm.math import (
    amount_with_slippage,
    drift_bps,
    price_impact_bps,
    swap_base_in,
    swap_base_out,
)

__all__ = [
    "amount_with_slippage",
    "drift_bps",
    "price_impact_bps",
    "swap_base_in",
    "swap_base_out",
]
