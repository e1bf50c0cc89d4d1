"""
Instruction builders for the programs a bundle touches.
"""

import struct
from typing import Tuple

from searcher.models import AccountMeta, Instruction, PoolSpec, SwapDirection


TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
SYSTEM_PROGRAM = "11111111111111111111111111111111"
COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"

# Instruction tags
SWAP_BASE_IN_TAG = 9
SET_COMPUTE_UNIT_LIMIT_TAG = 2
SET_COMPUTE_UNIT_PRICE_TAG = 3
SYSTEM_TRANSFER_TAG = 2


def swap_base_in_instruction(
    pool: PoolSpec,
    direction: SwapDirection,
    amount_in: int,
    minimum_amount_out: int,
    owner: str,
    user_base_account: str,
    user_quote_account: str,
    label: str = "",
    depends_on: Tuple[str, ...] = (),
) -> Instruction:
    """Exact-input swap against a constant-product pool."""
    if direction == SwapDirection.BASE_TO_QUOTE:
        source, destination = user_base_account, user_quote_account
    else:
        source, destination = user_quote_account, user_base_account

    accounts = (
        AccountMeta(TOKEN_PROGRAM),
        AccountMeta(pool.amm_account, is_writable=True),
        AccountMeta(pool.amm_authority),
        AccountMeta(pool.base_vault, is_writable=True),
        AccountMeta(pool.quote_vault, is_writable=True),
        AccountMeta(source, is_writable=True),
        AccountMeta(destination, is_writable=True),
        AccountMeta(owner, is_signer=True),
    )
    data = struct.pack("<BQQ", SWAP_BASE_IN_TAG, amount_in, minimum_amount_out)
    return Instruction(
        program_id=pool.program_id,
        accounts=accounts,
        data=data,
        label=label,
        depends_on=depends_on,
    )


def set_compute_unit_limit(units: int) -> Instruction:
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM,
        accounts=(),
        data=struct.pack("<BI", SET_COMPUTE_UNIT_LIMIT_TAG, units),
        label="compute_unit_limit",
    )


def set_compute_unit_price(micro_lamports: int) -> Instruction:
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM,
        accounts=(),
        data=struct.pack("<BQ", SET_COMPUTE_UNIT_PRICE_TAG, micro_lamports),
        label="compute_unit_price",
    )


def transfer_instruction(source: str, destination: str, lamports: int, label: str = "tip") -> Instruction:
    """System program lamport transfer (used for the relay tip)."""
    return Instruction(
        program_id=SYSTEM_PROGRAM,
        accounts=(
            AccountMeta(source, is_signer=True, is_writable=True),
            AccountMeta(destination, is_writable=True),
        ),
        data=struct.pack("<IQ", SYSTEM_TRANSFER_TAG, lamports),
        label=label,
    )
