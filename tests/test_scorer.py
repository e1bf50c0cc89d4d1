"""
Tests for opportunity scoring.
"""

import pytest

from searcher.engine.scorer import OpportunityScorer
from searcher.errors import Expired, StaleDependency
from searcher.models import StateDelta
from searcher.state.decoders import encode_token_account

from factories import (
    POOL_A,
    REFERENCE_MINT,
    TOKEN_MINT,
    TOKEN_ORACLE,
    make_opportunity,
    make_two_leg_opportunity,
)


@pytest.fixture
def scorer(config):
    return OpportunityScorer(config)


def view_for(cache, opportunity):
    return cache.snapshot(set(opportunity.dependency_keys) | {TOKEN_ORACLE.account_id})


class TestProfit:
    """Tests for expected profit."""

    def test_fees_and_tip_subtracted(self, scorer, cache):
        opportunity = make_opportunity()
        scored = scorer.score(opportunity, view_for(cache, opportunity))

        # Two signatures (swap + tip) plus 4000 priority
        assert scored.estimated_fees == 14_000
        assert scored.gross_profit == 100_000_000 - 14_000
        assert scored.estimated_tip == int(scored.gross_profit * 0.3)
        assert scored.expected_profit == scored.gross_profit - scored.estimated_tip
        assert scored.capital_required == 1_000_000_000

    def test_fees_scale_with_instructions(self, scorer):
        assert scorer.estimate_fees(2) == 19_000

    def test_unprofitable_has_no_tip(self, scorer, cache):
        opportunity = make_opportunity(output_amount=900_000_000)
        scored = scorer.score(opportunity, view_for(cache, opportunity))

        assert scored.estimated_tip == 0
        assert scored.expected_profit < 0

    def test_tip_floor_and_cap(self, scorer):
        assert scorer.estimate_tip(2_000) == 1_000
        # Floor never pushes the tip past max_tip_fraction
        assert scorer.estimate_tip(1_500) == 750
        assert scorer.estimate_tip(0) == 0

    def test_amounts_normalized_through_oracle(self, scorer, cache):
        """10 TOKEN units in at 0.1 each are worth 1 reference unit."""
        opportunity = make_opportunity(
            input_mint=TOKEN_MINT,
            input_amount=10_000_000_000,
            output_amount=1_100_000_000,
        )
        scored = scorer.score(opportunity, view_for(cache, opportunity))

        assert scored.capital_required == pytest.approx(1_000_000_000, rel=1e-9)
        assert scored.gross_profit == pytest.approx(100_000_000 - 14_000, abs=1)

    def test_unpriced_mint_is_stale(self, scorer, cache):
        opportunity = make_opportunity(output_mint="unpriced-mint")
        with pytest.raises(StaleDependency):
            scorer.score(opportunity, view_for(cache, opportunity))

    def test_oracle_missing_from_view(self, scorer, cache):
        opportunity = make_opportunity(input_mint=TOKEN_MINT)
        with pytest.raises(StaleDependency):
            scorer.score(opportunity, cache.snapshot(opportunity.dependency_keys))


class TestConfidence:
    """Tests for staleness decay and expiry."""

    def test_fresh_is_full_confidence(self, scorer, cache):
        opportunity = make_opportunity()
        assert scorer.score(opportunity, view_for(cache, opportunity)).confidence == 1.0

    def test_monotonic_in_staleness(self, scorer):
        values = [scorer.confidence(s) for s in range(6)]
        assert values == sorted(values, reverse=True)
        assert values[1] == pytest.approx(0.9)

    def test_within_tolerance(self, scorer, cache):
        opportunity = make_opportunity(slot=100)
        cache.advance_slot(105)

        scored = scorer.score(opportunity, view_for(cache, opportunity))
        assert scored.confidence == pytest.approx(0.9 ** 5)
        assert "stale_slot" in scored.risk_flags

    def test_expired_past_tolerance(self, scorer, cache):
        opportunity = make_opportunity(slot=100)
        cache.advance_slot(106)

        with pytest.raises(Expired) as exc_info:
            scorer.score(opportunity, view_for(cache, opportunity))
        assert exc_info.value.current_slot == 106

    def test_mixed_slot_penalty(self, scorer, cache):
        cache.apply(StateDelta(POOL_A.base_vault, encode_token_account(10_000_000_000_000), 101))
        opportunity = make_opportunity(slot=101)

        scored = scorer.score(opportunity, view_for(cache, opportunity))

        assert scored.confidence == pytest.approx(0.9)
        assert "mixed_slot" in scored.risk_flags

    def test_detector_reported_mixed_slot(self, scorer, cache):
        opportunity = make_opportunity(mixed_slot=True)
        scored = scorer.score(opportunity, view_for(cache, opportunity))
        assert scored.confidence == pytest.approx(0.9)


class TestFlags:
    """Tests for risk flags."""

    def test_high_slippage_flag(self, scorer, cache):
        opportunity = make_opportunity(slippage_bps=60)
        scored = scorer.score(opportunity, view_for(cache, opportunity))
        assert "high_slippage" in scored.risk_flags

    def test_clean_candidate_has_no_flags(self, scorer, cache):
        opportunity = make_two_leg_opportunity()
        scored = scorer.score(opportunity, view_for(cache, opportunity))

        assert scored.risk_flags == frozenset()
        assert scored.estimated_fees == 19_000
        assert scored.opportunity.input_mint == REFERENCE_MINT
