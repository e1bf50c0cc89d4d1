"""
Account payload decoders.

Layouts (little-endian):
    SPL token account   amount u64 @ 64
    AMM state (v4)      swap_fee_numerator u64 @ 176, swap_fee_denominator u64 @ 184,
                        need_take_pnl_coin u64 @ 192, need_take_pnl_pc u64 @ 200
    Oracle              price i64 @ 0, exponent i32 @ 8
    Bonding curve       8-byte discriminator, then u64 virtual_token_reserves,
                        virtual_sol_reserves, real_token_reserves,
                        real_sol_reserves, token_total_supply, then bool complete
"""

import math
import struct
from enum import Enum
from typing import Dict, Tuple

from searcher.models import AccountState, CurveSpec, CurveState, PoolSpec, PoolState


TOKEN_AMOUNT_OFFSET = 64
TOKEN_ACCOUNT_MIN_LEN = 72

AMM_SWAP_FEE_OFFSET = 176
AMM_NEED_TAKE_PNL_OFFSET = 192
AMM_STATE_MIN_LEN = 208

ORACLE_MIN_LEN = 12
ORACLE_MAX_EXPONENT = 30

BONDING_CURVE_DISCRIMINATOR = bytes([23, 183, 248, 55, 96, 216, 172, 96])
BONDING_CURVE_FORMAT = "<QQQQQ?"
BONDING_CURVE_MIN_LEN = 8 + struct.calcsize(BONDING_CURVE_FORMAT)


class AccountRole(Enum):
    """What the cache expects an account's payload to contain."""
    RAW = "raw"
    TOKEN_VAULT = "token_vault"
    AMM_STATE = "amm_state"
    ORACLE = "oracle"
    BONDING_CURVE = "bonding_curve"


class DecodeError(ValueError):
    """Payload does not match the expected layout."""


def decode_token_amount(data: bytes) -> int:
    if len(data) < TOKEN_ACCOUNT_MIN_LEN:
        raise DecodeError(f"token account too short: {len(data)} bytes")
    (amount,) = struct.unpack_from("<Q", data, TOKEN_AMOUNT_OFFSET)
    return amount


def decode_amm_state(data: bytes) -> Dict[str, int]:
    """Fee and pending-pnl fields of an AMM state account."""
    if len(data) < AMM_STATE_MIN_LEN:
        raise DecodeError(f"amm state too short: {len(data)} bytes")
    fee_numerator, fee_denominator = struct.unpack_from("<QQ", data, AMM_SWAP_FEE_OFFSET)
    pnl_base, pnl_quote = struct.unpack_from("<QQ", data, AMM_NEED_TAKE_PNL_OFFSET)
    if fee_denominator == 0 or fee_numerator >= fee_denominator:
        raise DecodeError("invalid swap fee")
    return {
        "fee_numerator": fee_numerator,
        "fee_denominator": fee_denominator,
        "need_take_pnl_base": pnl_base,
        "need_take_pnl_quote": pnl_quote,
    }


def decode_oracle_price(data: bytes) -> float:
    """Reference units per base unit of the quoted mint."""
    if len(data) < ORACLE_MIN_LEN:
        raise DecodeError(f"oracle account too short: {len(data)} bytes")
    price, exponent = struct.unpack_from("<qi", data, 0)
    if price <= 0:
        raise DecodeError("non-positive oracle price")
    if abs(exponent) > ORACLE_MAX_EXPONENT:
        raise DecodeError(f"oracle exponent out of range: {exponent}")
    value = price * (10.0 ** exponent)
    if not math.isfinite(value) or value <= 0:
        raise DecodeError(f"oracle price not representable: {price}e{exponent}")
    return value


def decode_bonding_curve(data: bytes) -> Dict[str, int]:
    if len(data) < BONDING_CURVE_MIN_LEN:
        raise DecodeError(f"bonding curve too short: {len(data)} bytes")
    if data[:8] != BONDING_CURVE_DISCRIMINATOR:
        raise DecodeError("not a bonding curve account")
    (
        virtual_token_reserves,
        virtual_sol_reserves,
        real_token_reserves,
        real_sol_reserves,
        token_total_supply,
        complete,
    ) = struct.unpack_from(BONDING_CURVE_FORMAT, data, 8)
    if not complete and (virtual_token_reserves == 0 or virtual_sol_reserves == 0):
        raise DecodeError("empty bonding curve reserves")
    return {
        "virtual_token_reserves": virtual_token_reserves,
        "virtual_sol_reserves": virtual_sol_reserves,
        "real_token_reserves": real_token_reserves,
        "real_sol_reserves": real_sol_reserves,
        "token_total_supply": token_total_supply,
        "complete": complete,
    }


def validate_payload(role: AccountRole, data: bytes) -> None:
    """Raise DecodeError if data cannot be decoded for the given role."""
    if role == AccountRole.TOKEN_VAULT:
        decode_token_amount(data)
    elif role == AccountRole.AMM_STATE:
        decode_amm_state(data)
    elif role == AccountRole.ORACLE:
        decode_oracle_price(data)
    elif role == AccountRole.BONDING_CURVE:
        decode_bonding_curve(data)


def build_pool_state(spec: PoolSpec, accounts: Dict[str, AccountState]) -> PoolState:
    """
    Derive reserves from the AMM state and its two vaults.

    Reserves exclude pnl the pool owes but has not yet taken out of the vaults.
    """
    amm = decode_amm_state(accounts[spec.amm_account].data)
    base_amount = decode_token_amount(accounts[spec.base_vault].data)
    quote_amount = decode_token_amount(accounts[spec.quote_vault].data)

    base_reserve = base_amount - amm["need_take_pnl_base"]
    quote_reserve = quote_amount - amm["need_take_pnl_quote"]
    if base_reserve < 0 or quote_reserve < 0:
        raise DecodeError(f"pending pnl exceeds vault balance for {spec.market_id}")

    dependency_slots: Tuple[Tuple[str, int], ...] = tuple(
        (key, accounts[key].slot) for key in spec.dependencies
    )
    return PoolState(
        market_id=spec.market_id,
        base_mint=spec.base_mint,
        quote_mint=spec.quote_mint,
        base_reserve=base_reserve,
        quote_reserve=quote_reserve,
        fee_numerator=amm["fee_numerator"],
        fee_denominator=amm["fee_denominator"],
        slot=max(slot for _, slot in dependency_slots),
        dependency_slots=dependency_slots,
    )


def build_curve_state(spec: CurveSpec, account: AccountState) -> CurveState:
    fields = decode_bonding_curve(account.data)
    return CurveState(
        market_id=spec.market_id,
        mint=spec.mint,
        fee_basis_points=spec.fee_basis_points,
        slot=account.slot,
        **fields,
    )


def encode_token_account(amount: int, mint: bytes = b"\x00" * 32, owner: bytes = b"\x00" * 32) -> bytes:
    """Minimal token account payload (mint, owner, amount, padding)."""
    return mint + owner + struct.pack("<Q", amount) + b"\x00" * 93


def encode_amm_state(
    fee_numerator: int = 25,
    fee_denominator: int = 10_000,
    need_take_pnl_base: int = 0,
    need_take_pnl_quote: int = 0,
) -> bytes:
    """Minimal AMM state payload with the fields the decoder reads."""
    head = b"\x00" * AMM_SWAP_FEE_OFFSET
    fees = struct.pack("<QQ", fee_numerator, fee_denominator)
    pnl = struct.pack("<QQ", need_take_pnl_base, need_take_pnl_quote)
    return head + fees + pnl + b"\x00" * 544


def encode_oracle_price(price: int, exponent: int) -> bytes:
    return struct.pack("<qi", price, exponent) + b"\x00" * 20


def encode_bonding_curve(
    virtual_token_reserves: int,
    virtual_sol_reserves: int,
    real_token_reserves: int,
    real_sol_reserves: int = 0,
    token_total_supply: int = 1_000_000_000_000_000,
    complete: bool = False,
) -> bytes:
    return BONDING_CURVE_DISCRIMINATOR + struct.pack(
        BONDING_CURVE_FORMAT,
        virtual_token_reserves,
        virtual_sol_reserves,
        real_token_reserves,
        real_sol_reserves,
        token_total_supply,
        complete,
    ) + b"\x00" * 32
