"""
Oracle deviation detector.

When a pool's price drifts away from the oracle price of its base mint,
a single swap toward the oracle price captures the gap.
"""

from typing import List, Mapping, Optional, Sequence, Set

from searcher.amm.instructions import swap_base_in_instruction
from searcher.amm.math import amount_with_slippage
from searcher.detectors.cross_pool_arbitrage import quote_swap
from searcher.engine.detector import BaseDetector
from searcher.logger import get_logger
from searcher.models import Expectation, ExpectationField, Opportunity, PoolState
from searcher.state.state_cache import StateCache, StateView


logger = get_logger("oracle_deviation")


class OracleDeviationDetector(BaseDetector):
    """
    Compares pool prices against oracle prices.

    Trade sizes are given in reference-mint units and converted to the input
    mint at oracle prices, so one ladder works for either swap direction.
    """

    def __init__(
        self,
        detector_id: str,
        markets: Sequence[str],
        owner: str,
        token_accounts: Mapping[str, str],
        trade_sizes: Sequence[int],
        min_deviation_bps: float = 50.0,
        slippage_bps: int = 10,
    ):
        super().__init__(detector_id)
        if not trade_sizes:
            raise ValueError("At least one trade size is required")
        self.markets = list(markets)
        self.owner = owner
        self.token_accounts = dict(token_accounts)
        self.trade_sizes = sorted(set(trade_sizes))
        self.min_deviation_bps = min_deviation_bps
        self.slippage_bps = slippage_bps

    def required_keys(self, cache: StateCache) -> Set[str]:
        keys = self.market_keys(cache, self.markets)
        for mint in self.token_accounts:
            oracle = cache.oracle_dependency(mint)
            if oracle:
                keys.add(oracle)
        return keys

    async def evaluate(self, view: StateView) -> Sequence[Opportunity]:
        available = set(view.markets)
        opportunities: List[Opportunity] = []

        for market_id in self.markets:
            if market_id not in available:
                continue
            opportunity = self._check_market(view, view.pool(market_id))
            if opportunity is not None:
                opportunities.append(opportunity)

        return opportunities

    def deviation_bps(self, view: StateView, pool: PoolState) -> Optional[float]:
        """Pool price relative to the oracle, in basis points (positive means rich)."""
        base_price = view.price_of(pool.base_mint)
        quote_price = view.price_of(pool.quote_mint)
        if base_price is None or quote_price is None or pool.price <= 0:
            return None
        pool_value = pool.price * quote_price
        return (pool_value - base_price) / base_price * 10_000

    def _check_market(self, view: StateView, pool: PoolState) -> Optional[Opportunity]:
        deviation = self.deviation_bps(view, pool)
        if deviation is None or abs(deviation) < self.min_deviation_bps:
            return None

        # Rich pool: sell base into it. Cheap pool: buy base from it.
        if deviation > 0:
            input_mint, output_mint = pool.base_mint, pool.quote_mint
        else:
            input_mint, output_mint = pool.quote_mint, pool.base_mint
        if input_mint not in self.token_accounts or output_mint not in self.token_accounts:
            return None

        input_price = view.price_of(input_mint)
        output_price = view.price_of(output_mint)

        best = None
        best_profit = 0.0
        for value in self.trade_sizes:
            amount_in = int(value / input_price)
            if amount_in <= 0:
                continue
            direction, amount_out, impact = quote_swap(pool, input_mint, amount_in)
            profit = amount_out * output_price - amount_in * input_price
            if profit > best_profit:
                best_profit = profit
                best = (direction, amount_in, amount_out, impact)

        if best is None:
            return None

        direction, amount_in, amount_out, impact = best
        spec = view.pool_spec(pool.market_id)
        instruction = swap_base_in_instruction(
            pool=spec,
            direction=direction,
            amount_in=amount_in,
            minimum_amount_out=amount_with_slippage(amount_out, self.slippage_bps, up_towards=False),
            owner=self.owner,
            user_base_account=self.token_accounts[spec.base_mint],
            user_quote_account=self.token_accounts[spec.quote_mint],
            label="swap",
        )

        dependency_keys = set(spec.dependencies)
        for mint in (input_mint, output_mint):
            oracle = view.oracle_account(mint)
            if oracle and oracle in view.keys:
                dependency_keys.add(oracle)

        logger.debug(
            f"📈 Pool deviates from oracle by {deviation:+.1f}bps",
            market_id=pool.market_id,
            amount_in=amount_in,
        )

        return Opportunity(
            opportunity_id=self.new_opportunity_id(),
            detector_id=self.detector_id,
            instructions=(instruction,),
            input_mint=input_mint,
            input_amount=amount_in,
            output_mint=output_mint,
            output_amount=amount_out,
            slot=view.slot,
            dedup_key=frozenset({pool.market_id}),
            expectations=(
                Expectation(pool.market_id, ExpectationField.PRICE, pool.price),
                Expectation(pool.base_mint, ExpectationField.ORACLE_PRICE, view.price_of(pool.base_mint)),
            ),
            dependency_keys=frozenset(dependency_keys),
            slippage_bps=impact,
            mixed_slot=view.is_mixed(dependency_keys),
            details={"deviation_bps": round(deviation, 2)},
        )
