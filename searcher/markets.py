"""
Market universe: pools, oracles, wallet token accounts and detector
wiring, loaded from a JSON file.

Example:
    {
      "pools": [{"market_id": "sol-usdc-a", "amm_account": "...", "base_vault": "...",
                 "quote_vault": "...", "base_mint": "...", "quote_mint": "..."}],
      "oracles": [{"mint": "...", "account_id": "..."}],
      "curves": [{"market_id": "meme-curve", "mint": "...", "bonding_curve": "...",
                  "associated_bonding_curve": "..."}],
      "token_accounts": {"<mint>": "<token account>"},
      "arbitrage_pairs": [["sol-usdc-a", "sol-usdc-b"]],
      "oracle_markets": ["sol-usdc-a"],
      "curve_pairs": [["meme-curve", "meme-sol-pool"]],
      "trade_sizes": [100000000, 500000000, 1000000000]
    }
"""

import json
from pathlib import Path
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from searcher.detectors import CrossPoolArbitrageDetector, CurveArbitrageDetector, OracleDeviationDetector
from searcher.engine.detector import BaseDetector
from searcher.logger import get_logger
from searcher.models import CurveSpec, OracleSpec, PoolSpec
from searcher.state.state_cache import StateCache


logger = get_logger("markets")


class PoolEntry(BaseModel):
    market_id: str
    amm_account: str
    base_vault: str
    quote_vault: str
    base_mint: str
    quote_mint: str
    program_id: str = PoolSpec.program_id
    amm_authority: str = PoolSpec.amm_authority

    def to_spec(self) -> PoolSpec:
        return PoolSpec(**self.model_dump())


class OracleEntry(BaseModel):
    mint: str
    account_id: str

    def to_spec(self) -> OracleSpec:
        return OracleSpec(mint=self.mint, account_id=self.account_id)


class CurveEntry(BaseModel):
    market_id: str
    mint: str
    bonding_curve: str
    associated_bonding_curve: str
    fee_basis_points: int = CurveSpec.fee_basis_points
    program_id: str = CurveSpec.program_id
    global_account: str = CurveSpec.global_account
    fee_recipient: str = CurveSpec.fee_recipient
    event_authority: str = CurveSpec.event_authority

    @field_validator("fee_basis_points")
    @classmethod
    def validate_fee(cls, v: int) -> int:
        if not 0 <= v < 10_000:
            raise ValueError("fee_basis_points must be between 0 and 9999")
        return v

    def to_spec(self) -> CurveSpec:
        return CurveSpec(**self.model_dump())


class MarketsFile(BaseModel):
    """Schema of the markets file."""

    pools: List[PoolEntry] = Field(default_factory=list)
    oracles: List[OracleEntry] = Field(default_factory=list)
    curves: List[CurveEntry] = Field(default_factory=list)
    token_accounts: Dict[str, str] = Field(default_factory=dict)

    arbitrage_pairs: List[Tuple[str, str]] = Field(default_factory=list)
    oracle_markets: List[str] = Field(default_factory=list)
    # (curve market, pool market)
    curve_pairs: List[Tuple[str, str]] = Field(default_factory=list)
    trade_sizes: List[int] = Field(default_factory=lambda: [100_000_000, 500_000_000, 1_000_000_000])
    min_deviation_bps: float = 50.0
    slippage_bps: int = 10

    @field_validator("trade_sizes")
    @classmethod
    def validate_sizes(cls, v: List[int]) -> List[int]:
        if not v or any(size <= 0 for size in v):
            raise ValueError("trade_sizes must be a non-empty list of positive amounts")
        return v

    def known_markets(self) -> set:
        return {pool.market_id for pool in self.pools}


def load_markets(path: Path) -> MarketsFile:
    """
    Read and validate a markets file.

    Raises:
        ValueError: the file is not valid JSON or does not match the schema
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        markets = MarketsFile.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Invalid markets file {path}: {e}") from e

    known = markets.known_markets()
    referenced = {m for pair in markets.arbitrage_pairs for m in pair} | set(markets.oracle_markets)
    referenced |= {pool for _, pool in markets.curve_pairs}
    unknown = referenced - known
    unknown |= {curve for curve, _ in markets.curve_pairs} - {c.market_id for c in markets.curves}
    if unknown:
        raise ValueError(f"Markets file references unknown markets: {', '.join(sorted(unknown))}")

    return markets


def register_markets(cache: StateCache, markets: MarketsFile) -> None:
    """Register every pool and oracle with the cache."""
    for pool in markets.pools:
        cache.register_pool(pool.to_spec())
    for oracle in markets.oracles:
        cache.register_oracle(oracle.to_spec())
    for curve in markets.curves:
        cache.register_curve(curve.to_spec())

    logger.info(
        f"📊 Tracking {len(markets.pools)} pools and {len(markets.oracles)} oracles",
        curves=len(markets.curves),
        accounts=len(cache.tracked_accounts),
    )


def build_detectors(markets: MarketsFile, owner: str) -> List[BaseDetector]:
    """Detectors implied by the markets file."""
    detectors: List[BaseDetector] = []

    if markets.arbitrage_pairs:
        detectors.append(CrossPoolArbitrageDetector(
            detector_id="cross_pool_arbitrage",
            pairs=markets.arbitrage_pairs,
            owner=owner,
            token_accounts=markets.token_accounts,
            trade_sizes=markets.trade_sizes,
            slippage_bps=markets.slippage_bps,
        ))

    if markets.oracle_markets:
        detectors.append(OracleDeviationDetector(
            detector_id="oracle_deviation",
            markets=markets.oracle_markets,
            owner=owner,
            token_accounts=markets.token_accounts,
            trade_sizes=markets.trade_sizes,
            min_deviation_bps=markets.min_deviation_bps,
            slippage_bps=markets.slippage_bps,
        ))

    if markets.curve_pairs:
        detectors.append(CurveArbitrageDetector(
            detector_id="curve_arbitrage",
            pairs=markets.curve_pairs,
            owner=owner,
            token_accounts=markets.token_accounts,
            trade_sizes=markets.trade_sizes,
            slippage_bps=markets.slippage_bps,
        ))

    return detectors
