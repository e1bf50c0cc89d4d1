"""
Data models for the slot searcher.
Defines all core data structures used throughout the pipeline.

Everything produced by one stage and consumed by the next is a frozen
dataclass; only SubmissionRecord is mutable, and only SubmissionManager
mutates it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStatus(Enum):
    """Lifecycle of a dispatched bundle."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class BreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RejectionReason(Enum):
    """Why the risk governor refused a candidate."""
    BELOW_PROFIT_THRESHOLD = "BelowProfitThreshold"
    EXCEEDS_SLIPPAGE_TOLERANCE = "ExceedsSlippageTolerance"
    EXCEEDS_CAPITAL_LIMIT = "ExceedsCapitalLimit"
    CIRCUIT_BREAKER_OPEN = "CircuitBreakerOpen"


class SwapDirection(Enum):
    """Which side of a pool is paid in."""
    BASE_TO_QUOTE = "base_to_quote"
    QUOTE_TO_BASE = "quote_to_base"


@dataclass(frozen=True)
class AccountState:
    """Raw on-chain account as last confirmed by the feed."""
    account_id: str
    data: bytes
    owner: str
    slot: int


@dataclass(frozen=True)
class StateDelta:
    """One account update delivered by the ingestion boundary."""
    account_id: str
    data: bytes
    slot: int
    owner: Optional[str] = None


@dataclass(frozen=True)
class SlotUpdate:
    """The ledger reached a new slot (no account payload attached)."""
    slot: int


@dataclass(frozen=True)
class PoolSpec:
    """Static description of a constant-product market and its accounts."""
    market_id: str
    amm_account: str
    base_vault: str
    quote_vault: str
    base_mint: str
    quote_mint: str
    program_id: str = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
    amm_authority: str = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"

    @property
    def dependencies(self) -> Tuple[str, str, str]:
        return (self.amm_account, self.base_vault, self.quote_vault)


@dataclass(frozen=True)
class OracleSpec:
    """An oracle account quoting a mint in reference units."""
    mint: str
    account_id: str


@dataclass(frozen=True)
class PoolState:
    """Decoded reserves of a market, derived from its accounts."""
    market_id: str
    base_mint: str
    quote_mint: str
    base_reserve: int
    quote_reserve: int
    fee_numerator: int
    fee_denominator: int
    slot: int
    dependency_slots: Tuple[Tuple[str, int], ...] = ()

    @property
    def price(self) -> float:
        """Quote units per base unit."""
        if self.base_reserve <= 0:
            return 0.0
        return self.quote_reserve / self.base_reserve

    def reserves_for(self, direction: SwapDirection) -> Tuple[int, int]:
        """(reserve_in, reserve_out) for a swap in the given direction."""
        if direction == SwapDirection.BASE_TO_QUOTE:
            return self.base_reserve, self.quote_reserve
        return self.quote_reserve, self.base_reserve


@dataclass(frozen=True)
class CurveSpec:
    """
    A bonding-curve launch market: one token mint sold against lamports.

    The bonding curve and its token vault are fixed per mint; the remaining
    accounts are program-wide.
    """
    market_id: str
    mint: str
    bonding_curve: str
    associated_bonding_curve: str
    fee_basis_points: int = 100
    program_id: str = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
    global_account: str = "4wTV1YmiEkRvAtNtsSGPtUrqRYQMe5SKy2uB4Jjaxnjf"
    fee_recipient: str = "CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM"
    event_authority: str = "Ce6TQqeHC9p8KetsN6JsjHK7UTZk7nasjjnr7XxXp9F1"

    @property
    def dependencies(self) -> Tuple[str]:
        return (self.bonding_curve,)


@dataclass(frozen=True)
class CurveState:
    """Decoded bonding-curve reserves."""
    market_id: str
    mint: str
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool
    fee_basis_points: int
    slot: int

    @property
    def price(self) -> float:
        """Lamports per token unit."""
        if self.virtual_token_reserves <= 0:
            return 0.0
        return self.virtual_sol_reserves / self.virtual_token_reserves


@dataclass(frozen=True)
class AccountMeta:
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class Instruction:
    """A proposed on-chain instruction."""
    program_id: str
    accounts: Tuple[AccountMeta, ...]
    data: bytes
    label: str = ""
    # Labels of instructions in the same bundle that must execute first
    depends_on: Tuple[str, ...] = ()

    @property
    def writable_accounts(self) -> FrozenSet[str]:
        return frozenset(
            meta.pubkey for meta in self.accounts
            if meta.is_writable and not meta.is_signer
        )


class ExpectationField(Enum):
    """
    Market values a bundle can rely on.

    On a bonding curve the reserves are the virtual ones: base is the token
    side and quote the lamport side.
    """
    BASE_RESERVE = "base_reserve"
    QUOTE_RESERVE = "quote_reserve"
    PRICE = "price"
    ORACLE_PRICE = "oracle_price"


@dataclass(frozen=True)
class Expectation:
    """A market value a bundle relies on, re-checked before dispatch."""
    market_id: str
    field: ExpectationField
    value: float

    def __post_init__(self):
        # Raises ValueError for an unknown field name
        object.__setattr__(self, "field", ExpectationField(self.field))


@dataclass(frozen=True)
class Opportunity:
    """A candidate profitable action, not yet validated or admitted."""
    opportunity_id: str
    detector_id: str
    instructions: Tuple[Instruction, ...]

    input_mint: str
    input_amount: int
    output_mint: str
    output_amount: int

    # Slot of the view this was computed against
    slot: int
    # Contested resources (markets / accounts) this touches
    dedup_key: FrozenSet[str]

    expectations: Tuple[Expectation, ...] = ()
    dependency_keys: FrozenSet[str] = frozenset()
    slippage_bps: float = 0.0
    mixed_slot: bool = False
    detected_at: datetime = field(default_factory=utcnow)
    details: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class ScoredOpportunity:
    """An opportunity with profit, confidence and risk attached."""
    opportunity: Opportunity
    expected_profit: int
    gross_profit: int
    estimated_fees: int
    estimated_tip: int
    confidence: float
    capital_required: int
    scored_at_slot: int
    risk_flags: FrozenSet[str] = frozenset()

    @property
    def opportunity_id(self) -> str:
        return self.opportunity.opportunity_id

    @property
    def dedup_key(self) -> FrozenSet[str]:
        return self.opportunity.dedup_key

    @property
    def risk_adjusted_profit(self) -> float:
        return self.expected_profit * self.confidence


@dataclass(frozen=True)
class Admission:
    """Risk governor verdict."""
    accepted: bool
    reason: Optional[RejectionReason] = None
    is_probe: bool = False


@dataclass(frozen=True)
class Transaction:
    """Unsigned transaction: an ordered group of instructions and a fee payer."""
    instructions: Tuple[Instruction, ...]
    fee_payer: str


@dataclass(frozen=True)
class SignedTransaction:
    transaction: Transaction
    payload: bytes


@dataclass(frozen=True)
class Bundle:
    """An atomic, ordered group of signed transactions."""
    bundle_id: str
    scored: ScoredOpportunity
    transactions: Tuple[SignedTransaction, ...]
    tip_lamports: int
    target_slot: int
    expires_at_slot: int
    created_at: datetime = field(default_factory=utcnow)

    @property
    def dedup_key(self) -> FrozenSet[str]:
        return self.scored.opportunity.dedup_key

    @property
    def opportunity(self) -> Opportunity:
        return self.scored.opportunity

    @property
    def instruction_count(self) -> int:
        return sum(len(tx.transaction.instructions) for tx in self.transactions)


@dataclass
class SubmissionRecord:
    """Tracks one dispatched bundle until its terminal outcome."""
    record_id: str
    bundle: Bundle
    slot: int
    status: SubmissionStatus = SubmissionStatus.PENDING
    submitted_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    relay_bundle_id: Optional[str] = None
    reason: Optional[str] = None
    is_probe: bool = False

    @property
    def is_pending(self) -> bool:
        return self.status == SubmissionStatus.PENDING

    @property
    def latency_ms(self) -> float:
        end = self.resolved_at or utcnow()
        return (end - self.submitted_at).total_seconds() * 1000


@dataclass(frozen=True)
class RelayResponse:
    """Relay acknowledgment or rejection."""
    accepted: bool
    relay_bundle_id: Optional[str] = None
    reason: Optional[str] = None
