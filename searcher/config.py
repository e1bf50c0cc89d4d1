"""
Configuration management for the slot searcher.
Uses Pydantic for validation and type safety.

A single SearcherConfig is built once at startup (see load_config) and passed
explicitly to every pipeline component.
"""

from pathlib import Path
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
DEFAULT_TIP_ACCOUNT = "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5"


class RiskConfig(BaseSettings):
    """Admission thresholds and circuit breaker settings."""

    # Amounts are in lamports of the reference mint
    min_profit_threshold: int = Field(10_000, alias="MIN_PROFIT_THRESHOLD")
    max_slippage_bps: int = Field(100, alias="MAX_SLIPPAGE_BPS")
    max_capital_per_opportunity: int = Field(5_000_000_000, alias="MAX_CAPITAL_PER_OPPORTUNITY")

    circuit_breaker_failure_threshold: int = Field(5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD")
    circuit_breaker_cooldown_ms: int = Field(30_000, alias="CIRCUIT_BREAKER_COOLDOWN_MS")
    circuit_breaker_window_ms: int = Field(60_000, alias="CIRCUIT_BREAKER_WINDOW_MS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("max_slippage_bps")
    @classmethod
    def validate_bps(cls, v: int) -> int:
        if not 0 <= v <= 10_000:
            raise ValueError("Basis points must be between 0 and 10000")
        return v

    @field_validator("circuit_breaker_failure_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Failure threshold must be at least 1")
        return v


class EngineConfig(BaseSettings):
    """Detector evaluation and scoring configuration."""

    detector_time_budget_ms: int = Field(50, alias="DETECTOR_TIME_BUDGET_MS")
    evaluation_interval_ms: int = Field(400, alias="EVALUATION_INTERVAL_MS")
    detector_workers: int = Field(8, alias="DETECTOR_WORKERS")

    staleness_tolerance_slots: int = Field(5, alias="STALENESS_TOLERANCE_SLOTS")
    confidence_decay_per_slot: float = Field(0.1, alias="CONFIDENCE_DECAY_PER_SLOT")
    mixed_slot_confidence_penalty: float = Field(0.9, alias="MIXED_SLOT_CONFIDENCE_PENALTY")

    # Every profit figure is expressed in this mint's base units
    reference_mint: str = Field(WRAPPED_SOL_MINT, alias="REFERENCE_MINT")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("confidence_decay_per_slot", "mixed_slot_confidence_penalty")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Fraction must be between 0.0 and 1.0")
        return v

    @field_validator("detector_time_budget_ms", "detector_workers")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v


class BundleConfig(BaseSettings):
    """Bundle assembly configuration."""

    max_bundle_size: int = Field(5, alias="MAX_BUNDLE_SIZE")

    tip_fraction: float = Field(0.3, alias="TIP_FRACTION")
    max_tip_fraction: float = Field(0.5, alias="MAX_TIP_FRACTION")
    min_tip_lamports: int = Field(1_000, alias="MIN_TIP_LAMPORTS")
    tip_account: str = Field(DEFAULT_TIP_ACCOUNT, alias="TIP_ACCOUNT")

    # Compute budget prepended to the first transaction
    compute_unit_limit: int = Field(200_000, alias="COMPUTE_UNIT_LIMIT")
    compute_unit_price: int = Field(20_000, alias="COMPUTE_UNIT_PRICE")  # micro-lamports
    signature_fee_lamports: int = Field(5_000, alias="SIGNATURE_FEE_LAMPORTS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("tip_fraction", "max_tip_fraction")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Fraction must be between 0.0 and 1.0")
        return v

    @field_validator("max_bundle_size")
    @classmethod
    def validate_bundle_size(cls, v: int) -> int:
        if v < 2:
            raise ValueError("A bundle needs room for at least one transaction plus the tip")
        return v


class SubmissionConfig(BaseSettings):
    """Submission, re-validation and scheduling configuration."""

    relay_timeout_ms: int = Field(2_000, alias="RELAY_TIMEOUT_MS")
    revalidation_tolerance_bps: int = Field(50, alias="REVALIDATION_TOLERANCE_BPS")

    submission_history_size: int = Field(1_000, alias="SUBMISSION_HISTORY_SIZE")
    submission_retention_seconds: int = Field(300, alias="SUBMISSION_RETENTION_SECONDS")

    max_submissions_per_cycle: int = Field(4, alias="MAX_SUBMISSIONS_PER_CYCLE")
    scheduling_policy: str = Field("profit", alias="SCHEDULING_POLICY")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("scheduling_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in ("profit", "risk_adjusted", "fifo"):
            raise ValueError("Scheduling policy must be one of: profit, risk_adjusted, fifo")
        return v


class RelayConfig(BaseSettings):
    """Relay (block engine) connection configuration."""

    block_engine_url: str = Field(
        "https://mainnet.block-engine.jito.wtf/api/v1/bundles", alias="BLOCK_ENGINE_URL"
    )
    bundle_status_poll_ms: int = Field(200, alias="BUNDLE_STATUS_POLL_MS")
    # Block engines throttle per IP
    rate_limit_per_second: int = Field(5, alias="RELAY_RATE_LIMIT_PER_SECOND")

    # Paper relay simulation
    min_execution_delay_ms: int = Field(50, alias="MIN_EXECUTION_DELAY_MS")
    max_execution_delay_ms: int = Field(200, alias="MAX_EXECUTION_DELAY_MS")
    paper_acceptance_rate: float = Field(0.8, alias="PAPER_ACCEPTANCE_RATE")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class FeedConfig(BaseSettings):
    """State feed configuration."""

    rpc_ws_url: str = Field("wss://api.mainnet-beta.solana.com", alias="RPC_WS_URL")
    commitment: str = Field("processed", alias="COMMITMENT")
    reconnect_delay_seconds: float = Field(5.0, alias="RECONNECT_DELAY_SECONDS")

    replay_path: Optional[Path] = Field(None, alias="REPLAY_PATH")
    replay_interval_ms: int = Field(0, alias="REPLAY_INTERVAL_MS")

    # Pools, oracles and detector wiring
    markets_path: Optional[Path] = Field(None, alias="MARKETS_PATH")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class WalletConfig(BaseSettings):
    """Wallet identity. Keys stay with the external signer."""

    wallet_pubkey: str = Field("", alias="WALLET_PUBKEY")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    def is_configured(self) -> bool:
        return bool(self.wallet_pubkey)


class MonitoringConfig(BaseSettings):
    """Monitoring and notification configuration."""

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    metrics_interval_seconds: int = Field(30, alias="METRICS_INTERVAL_SECONDS")

    enable_notifications: bool = Field(False, alias="ENABLE_NOTIFICATIONS")
    telegram_bot_token: str = Field("", alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str = Field("", alias="TELEGRAM_CHAT_ID")
    # Landed bundles are always reported; drops only when set
    notify_rejections: bool = Field(False, alias="NOTIFY_REJECTIONS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class DevelopmentConfig(BaseSettings):
    """Development and testing configuration."""

    paper_trading: bool = Field(True, alias="PAPER_TRADING")
    debug_mode: bool = Field(False, alias="DEBUG_MODE")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class SearcherConfig:
    """Master configuration class that aggregates all config sections."""

    def __init__(
        self,
        risk: Optional[RiskConfig] = None,
        engine: Optional[EngineConfig] = None,
        bundle: Optional[BundleConfig] = None,
        submission: Optional[SubmissionConfig] = None,
        relay: Optional[RelayConfig] = None,
        feed: Optional[FeedConfig] = None,
        wallet: Optional[WalletConfig] = None,
        monitoring: Optional[MonitoringConfig] = None,
        development: Optional[DevelopmentConfig] = None,
    ):
        self.risk = risk or RiskConfig()
        self.engine = engine or EngineConfig()
        self.bundle = bundle or BundleConfig()
        self.submission = submission or SubmissionConfig()
        self.relay = relay or RelayConfig()
        self.feed = feed or FeedConfig()
        self.wallet = wallet or WalletConfig()
        self.monitoring = monitoring or MonitoringConfig()
        self.development = development or DevelopmentConfig()

    @property
    def is_paper_trading(self) -> bool:
        return self.development.paper_trading

    @property
    def is_debug(self) -> bool:
        return self.development.debug_mode

    def sections(self) -> dict:
        """Return all sections keyed by name, for display."""
        return {
            "risk": self.risk,
            "engine": self.engine,
            "bundle": self.bundle,
            "submission": self.submission,
            "relay": self.relay,
            "feed": self.feed,
            "wallet": self.wallet,
            "monitoring": self.monitoring,
            "development": self.development,
        }


def load_config() -> SearcherConfig:
    """Build configuration from the environment (and .env)."""
    return SearcherConfig()
