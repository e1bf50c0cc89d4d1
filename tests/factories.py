"""
Builders for test data: pool layouts, deltas, opportunities and fakes.
"""

import asyncio
import uuid
from typing import Iterable, List, Optional, Sequence

from searcher.amm.instructions import swap_base_in_instruction
from searcher.config import WRAPPED_SOL_MINT
from searcher.engine.detector import BaseDetector
from searcher.errors import RelayError
from searcher.models import (
    Bundle,
    CurveSpec,
    Expectation,
    Instruction,
    Opportunity,
    OracleSpec,
    PoolSpec,
    RelayResponse,
    ScoredOpportunity,
    StateDelta,
    SwapDirection,
)
from searcher.relay.base import BaseRelay
from searcher.state.decoders import (
    encode_amm_state,
    encode_bonding_curve,
    encode_oracle_price,
    encode_token_account,
)


REFERENCE_MINT = WRAPPED_SOL_MINT
TOKEN_MINT = "Tokn111111111111111111111111111111111111111"
WALLET = "Wa11et1111111111111111111111111111111111111"
TOKEN_ACCOUNTS = {TOKEN_MINT: "user-token", REFERENCE_MINT: "user-wsol"}

POOL_A = PoolSpec(
    market_id="pool-a",
    amm_account="amm-a",
    base_vault="vault-a-base",
    quote_vault="vault-a-quote",
    base_mint=TOKEN_MINT,
    quote_mint=REFERENCE_MINT,
)
POOL_B = PoolSpec(
    market_id="pool-b",
    amm_account="amm-b",
    base_vault="vault-b-base",
    quote_vault="vault-b-quote",
    base_mint=TOKEN_MINT,
    quote_mint=REFERENCE_MINT,
)
POOLS = {POOL_A.market_id: POOL_A, POOL_B.market_id: POOL_B}
TOKEN_ORACLE = OracleSpec(mint=TOKEN_MINT, account_id="oracle-token")
TOKEN_CURVE = CurveSpec(
    market_id="token-curve",
    mint=TOKEN_MINT,
    bonding_curve="curve-token",
    associated_bonding_curve="curve-token-vault",
)

# Pool A quotes 0.1 lamports per token unit, pool B 0.11; the oracle says 0.1
POOL_A_RESERVES = (10_000_000_000_000, 1_000_000_000_000)
POOL_B_RESERVES = (10_000_000_000_000, 1_100_000_000_000)
START_SLOT = 100


def pool_deltas(spec: PoolSpec, base_reserve: int, quote_reserve: int, slot: int, **amm) -> List[StateDelta]:
    return [
        StateDelta(spec.amm_account, encode_amm_state(**amm), slot),
        StateDelta(spec.base_vault, encode_token_account(base_reserve), slot),
        StateDelta(spec.quote_vault, encode_token_account(quote_reserve), slot),
    ]


def oracle_delta(price: int, exponent: int, slot: int) -> StateDelta:
    return StateDelta(TOKEN_ORACLE.account_id, encode_oracle_price(price, exponent), slot)


def curve_delta(
    virtual_sol_reserves: int,
    slot: int = START_SLOT,
    virtual_token_reserves: int = 10_000_000_000_000,
    complete: bool = False,
) -> StateDelta:
    """Curve for TOKEN_MINT; with the default token side, 5e11 lamports quotes 0.05."""
    data = encode_bonding_curve(
        virtual_token_reserves=virtual_token_reserves,
        virtual_sol_reserves=virtual_sol_reserves,
        real_token_reserves=8_000_000_000_000,
        real_sol_reserves=1_000_000_000_000,
        complete=complete,
    )
    return StateDelta(TOKEN_CURVE.bonding_curve, data, slot)


def seed(cache, slot: int = START_SLOT, pool_b_reserves=POOL_B_RESERVES) -> None:
    """Write both pools and the oracle at `slot`."""
    deltas = (
        pool_deltas(POOL_A, *POOL_A_RESERVES, slot)
        + pool_deltas(POOL_B, *pool_b_reserves, slot)
        + [oracle_delta(1, -1, slot)]
    )
    for delta in deltas:
        cache.apply(delta)


def swap(market_id: str = "pool-a", label: str = "swap", depends_on=()) -> Instruction:
    return swap_base_in_instruction(
        pool=POOLS[market_id],
        direction=SwapDirection.QUOTE_TO_BASE,
        amount_in=1_000_000_000,
        minimum_amount_out=1,
        owner=WALLET,
        user_base_account=TOKEN_ACCOUNTS[TOKEN_MINT],
        user_quote_account=TOKEN_ACCOUNTS[REFERENCE_MINT],
        label=label,
        depends_on=tuple(depends_on),
    )


def make_opportunity(
    detector_id: str = "test",
    slot: int = START_SLOT,
    markets: Sequence[str] = ("pool-a",),
    input_amount: int = 1_000_000_000,
    output_amount: int = 1_100_000_000,
    input_mint: str = REFERENCE_MINT,
    output_mint: str = REFERENCE_MINT,
    instructions: Optional[Sequence[Instruction]] = None,
    expectations: Sequence[Expectation] = (),
    dependency_keys: Optional[Iterable[str]] = None,
    dedup_key: Optional[Iterable[str]] = None,
    slippage_bps: float = 10.0,
    mixed_slot: bool = False,
) -> Opportunity:
    if instructions is None:
        instructions = (swap(markets[0]),)
    if dependency_keys is None:
        dependency_keys = {key for market in markets for key in POOLS[market].dependencies}
    return Opportunity(
        opportunity_id=f"opp_{uuid.uuid4().hex[:12]}",
        detector_id=detector_id,
        instructions=tuple(instructions),
        input_mint=input_mint,
        input_amount=input_amount,
        output_mint=output_mint,
        output_amount=output_amount,
        slot=slot,
        dedup_key=frozenset(dedup_key if dedup_key is not None else markets),
        expectations=tuple(expectations),
        dependency_keys=frozenset(dependency_keys),
        slippage_bps=slippage_bps,
        mixed_slot=mixed_slot,
    )


def make_two_leg_opportunity(**kwargs) -> Opportunity:
    instructions = (
        swap("pool-a", label="leg1"),
        swap("pool-b", label="leg2", depends_on=("leg1",)),
    )
    return make_opportunity(markets=("pool-a", "pool-b"), instructions=instructions, **kwargs)


def make_scored(
    opportunity: Optional[Opportunity] = None,
    expected_profit: int = 50_000_000,
    gross_profit: Optional[int] = None,
    estimated_tip: Optional[int] = None,
    confidence: float = 1.0,
    capital_required: int = 1_000_000_000,
    **opportunity_kwargs,
) -> ScoredOpportunity:
    opportunity = opportunity or make_opportunity(**opportunity_kwargs)
    if estimated_tip is None:
        estimated_tip = expected_profit // 2
    if gross_profit is None:
        gross_profit = expected_profit + estimated_tip
    return ScoredOpportunity(
        opportunity=opportunity,
        expected_profit=expected_profit,
        gross_profit=gross_profit,
        estimated_fees=14_000,
        estimated_tip=estimated_tip,
        confidence=confidence,
        capital_required=capital_required,
        scored_at_slot=opportunity.slot,
    )


class StaticDetector(BaseDetector):
    """Emits a fixed list of opportunities, optionally after a delay."""

    def __init__(self, detector_id: str, opportunities=(), delay: float = 0.0, keys=None):
        super().__init__(detector_id)
        self.opportunities = list(opportunities)
        self.delay = delay
        self.keys = set(keys) if keys is not None else set(POOL_A.dependencies)
        self.calls = 0

    def required_keys(self, cache):
        return self.keys

    async def evaluate(self, view):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.opportunities)


class FailingDetector(BaseDetector):
    def required_keys(self, cache):
        return set(POOL_B.dependencies)

    async def evaluate(self, view):
        raise RuntimeError("detector blew up")


class RecordingRelay(BaseRelay):
    """Records every bundle; answers with a fixed verdict after a delay."""

    name = "recording"

    def __init__(self, accept: bool = True, delay: float = 0.0, error: Optional[str] = None):
        self.accept = accept
        self.delay = delay
        self.error = error
        self.submissions: List[Bundle] = []

    async def submit_bundle(self, bundle: Bundle) -> RelayResponse:
        self.submissions.append(bundle)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise RelayError(self.error)
        if self.accept:
            return RelayResponse(accepted=True, relay_bundle_id=f"relay-{len(self.submissions)}")
        return RelayResponse(accepted=False, reason="bundle dropped")
