"""
Bonding curve vs pool arbitrage detector.

A token still trading on its launch curve can also be listed on a
constant-product pool against the reference mint. When the two prices
disagree, buying on the cheap venue and selling on the other in one bundle
captures the gap. Curves flagged complete have migrated and are skipped.
"""

from typing import List, Mapping, Optional, Sequence, Set, Tuple

from searcher.amm.bonding_curve import buy_instruction, buy_quote, curve_impact_bps, sell_instruction, sell_quote
from searcher.amm.instructions import swap_base_in_instruction
from searcher.amm.math import amount_with_slippage
from searcher.detectors.cross_pool_arbitrage import quote_swap
from searcher.engine.detector import BaseDetector
from searcher.errors import StaleDependency
from searcher.logger import get_logger
from searcher.models import (
    CurveState,
    Expectation,
    ExpectationField,
    Instruction,
    Opportunity,
    PoolState,
)
from searcher.state.state_cache import StateCache, StateView


logger = get_logger("curve_arbitrage")

CURVE_TO_POOL = "curve_to_pool"
POOL_TO_CURVE = "pool_to_curve"


class CurveArbitrageDetector(BaseDetector):
    """Round trips between a bonding curve and a pool on the same mint."""

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
        # (curve market, pool market)
        self.pairs = [tuple(pair) for pair in pairs]
        self.owner = owner
        self.token_accounts = dict(token_accounts)
        self.trade_sizes = sorted(set(trade_sizes))
        self.slippage_bps = slippage_bps
        self._migrated: Set[str] = set()

    def required_keys(self, cache: StateCache) -> Set[str]:
        keys = self.market_keys(cache, {pool for _, pool in self.pairs})
        for curve_market, _ in self.pairs:
            try:
                keys.update(cache.curve_dependencies(curve_market))
            except StaleDependency:
                logger.warning("Detector references unregistered curve", market_id=curve_market)
        return keys

    async def evaluate(self, view: StateView) -> Sequence[Opportunity]:
        pools = set(view.markets)
        curves = set(view.curves)
        opportunities: List[Opportunity] = []

        for curve_market, pool_market in self.pairs:
            if curve_market not in curves or pool_market not in pools:
                continue

            curve = view.curve(curve_market)
            if curve.complete:
                if curve_market not in self._migrated:
                    self._migrated.add(curve_market)
                    logger.info("🎓 Curve migrated, no longer trading", market_id=curve_market)
                continue

            pool = view.pool(pool_market)
            if {pool.base_mint, pool.quote_mint} != {curve.mint, view.reference_mint}:
                logger.warning("Pool does not trade the curve's mint", curve=curve_market, pool=pool_market)
                continue
            if curve.mint not in self.token_accounts or view.reference_mint not in self.token_accounts:
                continue

            best = self._best_round_trip(view, curve, pool)
            if best is not None:
                opportunities.append(best)

        return opportunities

    def _best_round_trip(self, view: StateView, curve: CurveState, pool: PoolState) -> Optional[Opportunity]:
        best = None
        best_profit = 0
        for route in (CURVE_TO_POOL, POOL_TO_CURVE):
            for size in self.trade_sizes:
                quote = self._quote(view, curve, pool, route, size)
                if quote is None:
                    continue
                profit = quote[2] - size
                if profit > best_profit:
                    best_profit = profit
                    best = (route, size) + quote

        if best is None:
            return None
        return self._opportunity(view, curve, pool, *best)

    def _quote(self, view: StateView, curve: CurveState, pool: PoolState, route: str, size: int):
        """(middle amount, leg two input, final output, impact) or None."""
        if route == CURVE_TO_POOL:
            tokens = buy_quote(curve, size)
            if tokens <= 0:
                return None
            _, sol_out, pool_impact = quote_swap(pool, curve.mint, tokens)
            impact = max(curve_impact_bps(curve, size, tokens), pool_impact)
            return tokens, tokens, sol_out, impact

        _, tokens, pool_impact = quote_swap(pool, view.reference_mint, size)
        tokens_min = amount_with_slippage(tokens, self.slippage_bps, up_towards=False)
        if tokens_min <= 0:
            return None
        sol_out = sell_quote(curve, tokens_min)
        impact = max(curve_impact_bps(curve, sol_out, tokens_min), pool_impact)
        return tokens, tokens_min, sol_out, impact

    def _opportunity(
        self,
        view: StateView,
        curve: CurveState,
        pool: PoolState,
        route: str,
        amount_in: int,
        middle_amount: int,
        leg2_in: int,
        amount_out: int,
        impact_bps: float,
    ) -> Opportunity:
        curve_spec = view.curve_spec(curve.market_id)
        pool_spec = view.pool_spec(pool.market_id)
        token_account = self.token_accounts[curve.mint]
        min_out = amount_with_slippage(amount_out, self.slippage_bps, up_towards=False)

        if route == CURVE_TO_POOL:
            leg1 = buy_instruction(
                curve_spec,
                amount=middle_amount,
                max_sol_cost=amount_with_slippage(amount_in, self.slippage_bps, up_towards=True),
                owner=self.owner,
                user_token_account=token_account,
                label="leg1",
            )
            leg2 = self._pool_swap(pool_spec, pool, curve.mint, leg2_in, min_out)
        else:
            leg1 = self._pool_swap(
                pool_spec, pool, view.reference_mint, amount_in, leg2_in, label="leg1", depends_on=(),
            )
            leg2 = sell_instruction(
                curve_spec,
                amount=leg2_in,
                min_sol_output=min_out,
                owner=self.owner,
                user_token_account=token_account,
                label="leg2",
                depends_on=("leg1",),
            )

        dependency_keys = set(curve_spec.dependencies) | set(pool_spec.dependencies)

        logger.debug(
            "🔀 Curve and pool disagree",
            route=route,
            curve_price=curve.price,
            pool_price=pool.price,
            amount_in=amount_in,
        )

        return Opportunity(
            opportunity_id=self.new_opportunity_id(),
            detector_id=self.detector_id,
            instructions=(leg1, leg2),
            input_mint=view.reference_mint,
            input_amount=amount_in,
            output_mint=view.reference_mint,
            output_amount=amount_out,
            slot=view.slot,
            dedup_key=frozenset({curve.market_id, pool.market_id}),
            expectations=(
                Expectation(curve.market_id, ExpectationField.PRICE, curve.price),
                Expectation(pool.market_id, ExpectationField.PRICE, pool.price),
            ),
            dependency_keys=frozenset(dependency_keys),
            slippage_bps=impact_bps,
            mixed_slot=view.is_mixed(dependency_keys),
            details={
                "route": route,
                "tokens": middle_amount,
                "curve_price": curve.price,
                "pool_price": pool.price,
            },
        )

    def _pool_swap(
        self,
        spec,
        pool: PoolState,
        input_mint: str,
        amount_in: int,
        minimum_out: int,
        label: str = "leg2",
        depends_on: Tuple[str, ...] = ("leg1",),
    ) -> Instruction:
        direction, _, _ = quote_swap(pool, input_mint, amount_in)
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
