"""
Cross-pool arbitrage detector.

Two constant-product pools quote the same pair at different prices. Buying
the cheap side on one pool and selling it back on the other in the same
bundle captures the difference, minus both swap fees.

Strategy:
- For each configured pool pair, try both directions of the round trip
- Walk a ladder of trade sizes and keep the most profitable one
- Leg two spends leg one's minimum output, so it cannot overdraw if leg
  one slips
"""

from typing import List, Mapping, Optional, Sequence, Set, Tuple

from searcher.amm.instructions import swap_base_in_instruction
from searcher.amm.math import amount_with_slippage, price_impact_bps, swap_base_in
from searcher.engine.detector import BaseDetector
from searcher.logger import get_logger
from searcher.models import Expectation, ExpectationField, Opportunity, PoolSpec, PoolState, SwapDirection
from searcher.state.state_cache import StateCache, StateView


logger = get_logger("cross_pool_arbitrage")


def quote_swap(pool: PoolState, input_mint: str, amount_in: int) -> Tuple[SwapDirection, int, float]:
    """Direction, output amount and price impact of an exact-input swap."""
    if input_mint == pool.base_mint:
        direction = SwapDirection.BASE_TO_QUOTE
    elif input_mint == pool.quote_mint:
        direction = SwapDirection.QUOTE_TO_BASE
    else:
        raise ValueError(f"{input_mint} is not traded by {pool.market_id}")

    reserve_in, reserve_out = pool.reserves_for(direction)
    amount_out = swap_base_in(
        amount_in, reserve_in, reserve_out, pool.fee_numerator, pool.fee_denominator
    )
    return direction, amount_out, price_impact_bps(amount_in, reserve_in, reserve_out, amount_out)


class CrossPoolArbitrageDetector(BaseDetector):
    """Round trips across two pools on the same pair."""

    def __init__(
        self,
        detector_id: str,
        pairs: Sequence[Tuple[str, str]],
        owner: str,
        token_accounts: Mapping[str, str],
        trade_sizes: Sequence[int],
        slippage_bps: int = 10,
    ):
        super().__init__(detector_id)
        if not trade_sizes:
            raise ValueError("At least one trade size is required")
        self.pairs = [tuple(pair) for pair in pairs]
        self.owner = owner
        self.token_accounts = dict(token_accounts)
        self.trade_sizes = sorted(set(trade_sizes))
        self.slippage_bps = slippage_bps

    def required_keys(self, cache: StateCache) -> Set[str]:
        markets = {market_id for pair in self.pairs for market_id in pair}
        keys = self.market_keys(cache, markets)
        # Oracles price non-reference mints for the scorer
        for mint in self.token_accounts:
            oracle = cache.oracle_dependency(mint)
            if oracle:
                keys.add(oracle)
        return keys

    async def evaluate(self, view: StateView) -> Sequence[Opportunity]:
        available = set(view.markets)
        opportunities: List[Opportunity] = []

        for market_a, market_b in self.pairs:
            if market_a not in available or market_b not in available:
                continue

            best: Optional[Opportunity] = None
            for first, second in ((market_a, market_b), (market_b, market_a)):
                candidate = self._best_round_trip(view, first, second)
                if candidate and (best is None or self._profit(candidate) > self._profit(best)):
                    best = candidate

            if best is not None:
                opportunities.append(best)

        return opportunities

    def _best_round_trip(self, view: StateView, first: str, second: str) -> Optional[Opportunity]:
        pool_a = view.pool(first)
        pool_b = view.pool(second)
        if {pool_a.base_mint, pool_a.quote_mint} != {pool_b.base_mint, pool_b.quote_mint}:
            logger.warning("Pools do not share a pair", first=first, second=second)
            return None

        start_mint = self._start_mint(view, pool_a)
        middle_mint = pool_a.base_mint if start_mint == pool_a.quote_mint else pool_a.quote_mint
        if start_mint not in self.token_accounts or middle_mint not in self.token_accounts:
            return None

        best = None
        best_profit = 0
        for size in self.trade_sizes:
            _, leg1_out, impact1 = quote_swap(pool_a, start_mint, size)
            leg1_min = amount_with_slippage(leg1_out, self.slippage_bps, up_towards=False)
            if leg1_min <= 0:
                continue
            _, leg2_out, impact2 = quote_swap(pool_b, middle_mint, leg1_min)

            profit = leg2_out - size
            if profit > best_profit:
                best_profit = profit
                best = (size, leg1_out, leg1_min, leg2_out, max(impact1, impact2))

        if best is None:
            return None

        size, leg1_out, leg1_min, leg2_out, impact = best
        return self._opportunity(
            view, pool_a, pool_b, start_mint, middle_mint, size, leg1_min, leg2_out, impact,
            leg1_out=leg1_out,
        )

    @staticmethod
    def _start_mint(view: StateView, pool: PoolState) -> str:
        # Start (and end) in the reference mint when the pair includes it
        if pool.base_mint == view.reference_mint:
            return pool.base_mint
        return pool.quote_mint

    def _opportunity(
        self,
        view: StateView,
        pool_a: PoolState,
        pool_b: PoolState,
        start_mint: str,
        middle_mint: str,
        amount_in: int,
        leg1_min: int,
        leg2_out: int,
        impact_bps: float,
        leg1_out: int,
    ) -> Opportunity:
        spec_a = view.pool_spec(pool_a.market_id)
        spec_b = view.pool_spec(pool_b.market_id)
        leg1_direction, _, _ = quote_swap(pool_a, start_mint, amount_in)
        leg2_direction, _, _ = quote_swap(pool_b, middle_mint, leg1_min)

        instructions = (
            self._swap(spec_a, leg1_direction, amount_in, leg1_min, "leg1"),
            self._swap(
                spec_b,
                leg2_direction,
                leg1_min,
                amount_with_slippage(leg2_out, self.slippage_bps, up_towards=False),
                "leg2",
                depends_on=("leg1",),
            ),
        )

        dependency_keys = set(spec_a.dependencies) | set(spec_b.dependencies)
        for mint in (start_mint, middle_mint):
            oracle = view.oracle_account(mint)
            if oracle and oracle in view.keys:
                dependency_keys.add(oracle)

        return Opportunity(
            opportunity_id=self.new_opportunity_id(),
            detector_id=self.detector_id,
            instructions=instructions,
            input_mint=start_mint,
            input_amount=amount_in,
            output_mint=start_mint,
            output_amount=leg2_out,
            slot=view.slot,
            dedup_key=frozenset({pool_a.market_id, pool_b.market_id}),
            expectations=(
                Expectation(pool_a.market_id, ExpectationField.PRICE, pool_a.price),
                Expectation(pool_b.market_id, ExpectationField.PRICE, pool_b.price),
            ),
            dependency_keys=frozenset(dependency_keys),
            slippage_bps=impact_bps,
            mixed_slot=view.is_mixed(dependency_keys),
            details={
                "route": [pool_a.market_id, pool_b.market_id],
                "leg1_out": leg1_out,
                "leg1_min_out": leg1_min,
            },
        )

    def _swap(
        self,
        spec: PoolSpec,
        direction: SwapDirection,
        amount_in: int,
        minimum_out: int,
        label: str,
        depends_on: Tuple[str, ...] = (),
    ):
        return swap_base_in_instruction(
            pool=spec,
            direction=direction,
            amount_in=amount_in,
            minimum_amount_out=minimum_out,
            owner=self.owner,
            user_base_account=self.token_accounts[spec.base_mint],
            user_quote_account=self.token_accounts[spec.quote_mint],
            label=label,
            depends_on=depends_on,
        )

    @staticmethod
    def _profit(opportunity: Opportunity) -> int:
        return opportunity.output_amount - opportunity.input_amount
