"""
Tests for constant-product pool math.
"""

import math

import pytest

from searcher.amm.math import (
    amount_with_slippage,
    drift_bps,
    price_impact_bps,
    swap_base_in,
    swap_base_out,
)


class TestSwapBaseIn:
    """Tests for exact-input quotes."""

    def test_fee_taken_before_curve(self):
        """1000 in at 0.25% fee: 2 fee, 998 on the curve."""
        assert swap_base_in(1000, 10_000, 10_000, 25, 10_000) == 907

    def test_zero_input_returns_zero(self):
        assert swap_base_in(0, 10_000, 10_000, 25, 10_000) == 0

    def test_empty_pool_returns_zero(self):
        assert swap_base_in(1000, 0, 10_000, 25, 10_000) == 0

    def test_output_never_exceeds_reserve(self):
        out = swap_base_in(10**18, 10_000, 10_000, 25, 10_000)
        assert out < 10_000

    def test_invalid_fee_denominator(self):
        with pytest.raises(ValueError):
            swap_base_in(1000, 10_000, 10_000, 25, 0)

    def test_invariant_does_not_decrease(self):
        """k after the swap is at least k before."""
        reserve_in, reserve_out = 5_000_000, 7_000_000
        amount_in = 123_456
        out = swap_base_in(amount_in, reserve_in, reserve_out, 25, 10_000)
        assert (reserve_in + amount_in) * (reserve_out - out) >= reserve_in * reserve_out


class TestSwapBaseOut:
    """Tests for exact-output quotes."""

    def test_required_input(self):
        assert swap_base_out(907, 10_000, 10_000, 25, 10_000) == 999

    def test_zero_output(self):
        assert swap_base_out(0, 10_000, 10_000, 25, 10_000) == 0

    def test_output_at_reserve_rejected(self):
        with pytest.raises(ValueError):
            swap_base_out(10_000, 10_000, 10_000, 25, 10_000)


class TestSlippageAndDrift:
    """Tests for slippage bounds and drift measurement."""

    def test_minimum_output(self):
        assert amount_with_slippage(10_000, 50, up_towards=False) == 9_950

    def test_maximum_input(self):
        assert amount_with_slippage(10_000, 50, up_towards=True) == 10_050

    def test_invalid_slippage(self):
        with pytest.raises(ValueError):
            amount_with_slippage(10_000, 10_001, up_towards=False)

    def test_drift(self):
        assert drift_bps(100.0, 101.0) == pytest.approx(100.0)
        assert drift_bps(100.0, 99.0) == pytest.approx(100.0)
        assert drift_bps(0.0, 0.0) == 0.0
        assert math.isinf(drift_bps(0.0, 1.0))

    def test_price_impact_grows_with_size(self):
        reserve_in, reserve_out = 1_000_000, 1_000_000
        impacts = []
        for amount in (1_000, 10_000, 100_000):
            out = swap_base_in(amount, reserve_in, reserve_out, 25, 10_000)
            impacts.append(price_impact_bps(amount, reserve_in, reserve_out, out))
        assert impacts == sorted(impacts)
        # Fee alone is 25bps
        assert impacts[0] >= 25
