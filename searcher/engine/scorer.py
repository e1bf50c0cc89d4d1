"""
Opportunity scoring: expected profit, confidence and capital at risk,
normalized to the reference mint across detector types.
"""

import math

from searcher.config import SearcherConfig
from searcher.errors import Expired, StaleDependency
from searcher.models import Opportunity, ScoredOpportunity
from searcher.state.state_cache import StateView


class OpportunityScorer:
    """
    Stateless scorer.

    expected profit = output value - input value - fees - priority tip

    Confidence decays geometrically with the number of slots between the
    view the opportunity was computed against and the current view. Past the
    staleness tolerance the candidate is dropped with Expired.
    """

    def __init__(self, config: SearcherConfig):
        self.engine_config = config.engine
        self.bundle_config = config.bundle
        self.risk_config = config.risk

    def score(self, opportunity: Opportunity, view: StateView) -> ScoredOpportunity:
        """
        Score an opportunity against the current view.

        Raises:
            Expired: staleness exceeds the configured tolerance
            StaleDependency: an input or output mint has no price in the view
        """
        staleness = max(0, view.slot - opportunity.slot)
        tolerance = self.engine_config.staleness_tolerance_slots
        if staleness > tolerance:
            raise Expired(opportunity.slot, view.slot, tolerance)

        mixed = opportunity.mixed_slot or view.is_mixed(opportunity.dependency_keys)
        confidence = self.confidence(staleness, mixed)

        input_value = self._value(view, opportunity.input_mint, opportunity.input_amount)
        output_value = self._value(view, opportunity.output_mint, opportunity.output_amount)

        fees = self.estimate_fees(len(opportunity.instructions))
        gross = output_value - input_value - fees
        tip = self.estimate_tip(gross)

        flags = set()
        if mixed:
            flags.add("mixed_slot")
        if staleness > 0:
            flags.add("stale_slot")
        if opportunity.slippage_bps > self.risk_config.max_slippage_bps / 2:
            flags.add("high_slippage")

        return ScoredOpportunity(
            opportunity=opportunity,
            expected_profit=gross - tip,
            gross_profit=gross,
            estimated_fees=fees,
            estimated_tip=tip,
            confidence=confidence,
            capital_required=input_value,
            scored_at_slot=view.slot,
            risk_flags=frozenset(flags),
        )

    def confidence(self, staleness: int, mixed_slot: bool = False) -> float:
        """Monotonically non-increasing in staleness."""
        decay = 1.0 - self.engine_config.confidence_decay_per_slot
        value = decay ** max(0, staleness)
        if mixed_slot:
            value *= self.engine_config.mixed_slot_confidence_penalty
        return value

    def estimate_fees(self, instruction_count: int) -> int:
        """Signature fees for every transaction (tip included) plus priority fee."""
        transactions = instruction_count + 1
        priority = math.ceil(
            self.bundle_config.compute_unit_price * self.bundle_config.compute_unit_limit / 1_000_000
        )
        return transactions * self.bundle_config.signature_fee_lamports + priority

    def estimate_tip(self, gross_profit: int) -> int:
        """Tip proportional to profit, floored at the minimum, capped by max_tip_fraction."""
        if gross_profit <= 0:
            return 0
        tip = max(int(gross_profit * self.bundle_config.tip_fraction), self.bundle_config.min_tip_lamports)
        return min(tip, int(gross_profit * self.bundle_config.max_tip_fraction))

    @staticmethod
    def _value(view: StateView, mint: str, amount: int) -> int:
        price = view.price_of(mint)
        if price is None:
            raise StaleDependency([mint])
        return int(amount * price)
