"""
Bonding-curve launch market math and instruction encoding.

The curve is constant product over virtual reserves:
    tokens_out = vt - vt * vs / (vs + sol_in)
Buys are capped by the real token reserves still held by the curve. The
program fee is charged in lamports on both sides. Once `complete` is set the
curve has migrated and accepts no more trades.
"""

import struct
from typing import Optional

from searcher.amm.instructions import SYSTEM_PROGRAM, TOKEN_PROGRAM
from searcher.amm.math import BPS_DENOMINATOR
from searcher.models import AccountMeta, CurveSpec, CurveState, Instruction


RENT_SYSVAR = "SysvarRent111111111111111111111111111111111"

# Anchor instruction discriminators
BUY_DISCRIMINATOR = bytes([102, 6, 61, 18, 1, 218, 235, 234])
SELL_DISCRIMINATOR = bytes([51, 230, 133, 164, 1, 127, 131, 173])


def curve_fee(lamports: int, fee_basis_points: int) -> int:
    return lamports * fee_basis_points // BPS_DENOMINATOR


def buy_quote(curve: CurveState, sol_in: int) -> int:
    """
    Tokens received for spending `sol_in` lamports, fee included.

    Returns 0 for a migrated curve or a non-positive input.
    """
    if curve.complete or sol_in <= 0:
        return 0
    net_sol = sol_in * BPS_DENOMINATOR // (BPS_DENOMINATOR + curve.fee_basis_points)
    vt, vs = curve.virtual_token_reserves, curve.virtual_sol_reserves
    tokens_out = vt - (vt * vs // (vs + net_sol) + 1)
    return max(0, min(tokens_out, curve.real_token_reserves))


def sell_quote(curve: CurveState, tokens_in: int) -> int:
    """Lamports received for selling `tokens_in`, after the fee."""
    if curve.complete or tokens_in <= 0:
        return 0
    vt, vs = curve.virtual_token_reserves, curve.virtual_sol_reserves
    sol_out = tokens_in * vs // (vt + tokens_in)
    sol_out = min(sol_out, curve.real_sol_reserves)
    return sol_out - curve_fee(sol_out, curve.fee_basis_points)


def curve_impact_bps(curve: CurveState, sol_amount: int, token_amount: int) -> float:
    """Shortfall of the execution price against the pre-trade curve price."""
    if sol_amount <= 0 or token_amount <= 0 or curve.price <= 0:
        return 0.0
    execution = sol_amount / token_amount
    return abs(execution - curve.price) / curve.price * BPS_DENOMINATOR


def _curve_accounts(spec: CurveSpec, owner: str, user_token_account: str):
    return (
        AccountMeta(spec.global_account),
        AccountMeta(spec.fee_recipient, is_writable=True),
        AccountMeta(spec.mint),
        AccountMeta(spec.bonding_curve, is_writable=True),
        AccountMeta(spec.associated_bonding_curve, is_writable=True),
        AccountMeta(user_token_account, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM),
        AccountMeta(TOKEN_PROGRAM),
        AccountMeta(RENT_SYSVAR),
        AccountMeta(spec.event_authority),
        AccountMeta(spec.program_id),
    )


def buy_instruction(
    spec: CurveSpec,
    amount: int,
    max_sol_cost: int,
    owner: str,
    user_token_account: str,
    label: str = "",
    depends_on=(),
) -> Instruction:
    """Buy exactly `amount` tokens, paying at most `max_sol_cost` lamports."""
    return Instruction(
        program_id=spec.program_id,
        accounts=_curve_accounts(spec, owner, user_token_account),
        data=BUY_DISCRIMINATOR + struct.pack("<QQ", amount, max_sol_cost),
        label=label,
        depends_on=tuple(depends_on),
    )


def sell_instruction(
    spec: CurveSpec,
    amount: int,
    min_sol_output: int,
    owner: str,
    user_token_account: str,
    label: str = "",
    depends_on=(),
) -> Instruction:
    """Sell exactly `amount` tokens for at least `min_sol_output` lamports."""
    return Instruction(
        program_id=spec.program_id,
        accounts=_curve_accounts(spec, owner, user_token_account),
        data=SELL_DISCRIMINATOR + struct.pack("<QQ", amount, min_sol_output),
        label=label,
        depends_on=tuple(depends_on),
    )


def decode_trade_args(data: bytes) -> Optional[tuple]:
    """("buy" | "sell", amount, sol_limit) for a curve trade, None otherwise."""
    if len(data) < 24:
        return None
    amount, limit = struct.unpack_from("<QQ", data, 8)
    if data[:8] == BUY_DISCRIMINATOR:
        return "buy", amount, limit
    if data[:8] == SELL_DISCRIMINATOR:
        return "sell", amount, limit
    return None
