"""
Pytest configuration and shared fixtures.
"""

import os

import pytest

# Set test environment
os.environ["PAPER_TRADING"] = "true"
os.environ["DEBUG_MODE"] = "true"
os.environ["WALLET_PUBKEY"] = "Wa11et1111111111111111111111111111111111111"

from searcher.config import (  # noqa: E402
    EngineConfig,
    MonitoringConfig,
    RelayConfig,
    SearcherConfig,
    SubmissionConfig,
)
from searcher.signing import PaperSigner  # noqa: E402
from searcher.state.state_cache import StateCache  # noqa: E402

from factories import (  # noqa: E402
    POOL_A,
    POOL_B,
    REFERENCE_MINT,
    TOKEN_CURVE,
    TOKEN_ORACLE,
    WALLET,
    curve_delta,
    seed,
)


@pytest.fixture
def config():
    """Configuration with fast timings for tests."""
    return SearcherConfig(
        engine=EngineConfig(detector_time_budget_ms=100, evaluation_interval_ms=50),
        submission=SubmissionConfig(relay_timeout_ms=500),
        relay=RelayConfig(
            min_execution_delay_ms=0,
            max_execution_delay_ms=0,
            bundle_status_poll_ms=1,
            rate_limit_per_second=100,
        ),
        monitoring=MonitoringConfig(metrics_interval_seconds=1),
    )


@pytest.fixture
def empty_cache():
    """Cache with both pools and the oracle registered but no state yet."""
    cache = StateCache(reference_mint=REFERENCE_MINT)
    cache.register_pool(POOL_A)
    cache.register_pool(POOL_B)
    cache.register_oracle(TOKEN_ORACLE)
    return cache


@pytest.fixture
def cache(empty_cache):
    """Registered cache seeded at slot 100."""
    seed(empty_cache)
    return empty_cache


@pytest.fixture
def curve_cache(cache):
    """Seeded cache plus a bonding curve on the pool token, quoting 0.05."""
    cache.register_curve(TOKEN_CURVE)
    cache.apply(curve_delta(500_000_000_000))
    return cache


@pytest.fixture
def signer():
    return PaperSigner(WALLET)
