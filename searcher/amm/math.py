"""
Constant-product AMM math.

Integer arithmetic throughout, matching how the on-chain program rounds:
    (reserve_in + amount_in) * (reserve_out - amount_out) = reserve_in * reserve_out
"""

BPS_DENOMINATOR = 10_000


def swap_base_in(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int,
    fee_denominator: int,
) -> int:
    """
    Output amount for an exact input.

    The swap fee is taken from the input before it reaches the curve:
        amount_out = reserve_out * net_in / (reserve_in + net_in)
    """
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    if fee_denominator <= 0:
        raise ValueError("fee_denominator must be positive")

    fee = amount_in * fee_numerator // fee_denominator
    net_in = amount_in - fee
    return reserve_out * net_in // (reserve_in + net_in)


def swap_base_out(
    amount_out: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int,
    fee_denominator: int,
) -> int:
    """
    Input amount required for an exact output.

    Inverse of swap_base_in: amount_in = reserve_in * out / (reserve_out - out),
    then grossed up by the fee.
    """
    if amount_out <= 0:
        return 0
    if amount_out >= reserve_out:
        raise ValueError("amount_out exceeds pool reserves")
    if fee_denominator <= fee_numerator:
        raise ValueError("fee must be below 100%")

    before_fee = reserve_in * amount_out // (reserve_out - amount_out)
    return before_fee * fee_denominator // (fee_denominator - fee_numerator)


def amount_with_slippage(amount: int, slippage_bps: int, up_towards: bool) -> int:
    """
    Widen an amount by a slippage allowance.

    up_towards=True gives a maximum input, False a minimum output.
    """
    if slippage_bps < 0 or slippage_bps > BPS_DENOMINATOR:
        raise ValueError("slippage_bps must be between 0 and 10000")
    if up_towards:
        return amount * (BPS_DENOMINATOR + slippage_bps) // BPS_DENOMINATOR
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def price_impact_bps(amount_in: int, reserve_in: int, reserve_out: int, amount_out: int) -> float:
    """How far the execution price falls short of the pre-trade spot price."""
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0.0
    spot = reserve_out / reserve_in
    execution = amount_out / amount_in
    if spot <= 0:
        return 0.0
    return max(0.0, (spot - execution) / spot * BPS_DENOMINATOR)


def drift_bps(expected: float, current: float) -> float:
    """Relative difference between two values in basis points."""
    if expected == current:
        return 0.0
    if expected == 0:
        return float("inf")
    return abs(current - expected) / abs(expected) * BPS_DENOMINATOR
