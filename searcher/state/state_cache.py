"""
Versioned in-memory store of the on-chain state the detectors care about.

One writer (the ingestion path) applies deltas; any number of readers take
immutable point-in-time views. Derived pool states are memoized and dropped
exactly when one of their accounts moves to a newer slot.
"""

import threading
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

from searcher.errors import StaleDependency
from searcher.logger import get_logger, pipeline_logger
from searcher.models import (
    AccountState,
    CurveSpec,
    CurveState,
    ExpectationField,
    OracleSpec,
    PoolSpec,
    PoolState,
    StateDelta,
)
from searcher.state.decoders import (
    AccountRole,
    DecodeError,
    build_curve_state,
    build_pool_state,
    decode_oracle_price,
    validate_payload,
)


logger = get_logger("state_cache")

DEFAULT_OWNER = "11111111111111111111111111111111"


class StateView:
    """
    Read-only snapshot of a set of accounts, tagged with one slot.

    `slot` is the cache's slot when the view was taken. `mixed_slot` is set
    when the accounts in the view were last updated at different slots.
    """

    def __init__(
        self,
        cache: "StateCache",
        accounts: Dict[str, AccountState],
        slot: int,
        pools: Dict[str, PoolSpec],
        oracles: Dict[str, OracleSpec],
        reference_mint: str,
        curves: Optional[Dict[str, CurveSpec]] = None,
    ):
        self._cache = cache
        self._accounts: Mapping[str, AccountState] = MappingProxyType(accounts)
        self._pools = MappingProxyType(pools)
        self._oracles = MappingProxyType(oracles)
        self._curves = MappingProxyType(curves or {})
        self.slot = slot
        self.reference_mint = reference_mint
        self.mixed_slot = self.is_mixed(accounts.keys())

    @property
    def accounts(self) -> Mapping[str, AccountState]:
        return self._accounts

    @property
    def keys(self) -> frozenset:
        return frozenset(self._accounts)

    @property
    def markets(self) -> Tuple[str, ...]:
        """Registered markets whose accounts are all present in this view."""
        return tuple(
            market_id for market_id, spec in self._pools.items()
            if all(key in self._accounts for key in spec.dependencies)
        )

    @property
    def curves(self) -> Tuple[str, ...]:
        """Registered bonding curves whose account is present in this view."""
        return tuple(
            market_id for market_id, spec in self._curves.items()
            if spec.bonding_curve in self._accounts
        )

    def account(self, account_id: str) -> AccountState:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise StaleDependency([account_id]) from None

    def is_mixed(self, keys: Iterable[str]) -> bool:
        slots = {self._accounts[key].slot for key in keys if key in self._accounts}
        return len(slots) > 1

    def pool_spec(self, market_id: str) -> PoolSpec:
        try:
            return self._pools[market_id]
        except KeyError:
            raise StaleDependency([market_id]) from None

    def pool(self, market_id: str) -> PoolState:
        """Decoded reserves for a market, memoized by the cache."""
        spec = self.pool_spec(market_id)
        missing = [key for key in spec.dependencies if key not in self._accounts]
        if missing:
            raise StaleDependency(missing)
        return self._cache._derive_pool(spec, self._accounts)

    def curve_spec(self, market_id: str) -> CurveSpec:
        try:
            return self._curves[market_id]
        except KeyError:
            raise StaleDependency([market_id]) from None

    def curve(self, market_id: str) -> CurveState:
        """Decoded bonding-curve reserves for a launch market."""
        spec = self.curve_spec(market_id)
        account = self.account(spec.bonding_curve)
        try:
            return build_curve_state(spec, account)
        except DecodeError as e:
            logger.warning("Curve decode failed", market_id=market_id, error=str(e))
            raise StaleDependency([market_id]) from e

    def price_of(self, mint: str) -> Optional[float]:
        """Reference units per base unit of `mint`, or None if unpriced."""
        if mint == self.reference_mint:
            return 1.0
        spec = self._oracles.get(mint)
        if spec is None or spec.account_id not in self._accounts:
            return None
        return decode_oracle_price(self._accounts[spec.account_id].data)

    def oracle_account(self, mint: str) -> Optional[str]:
        spec = self._oracles.get(mint)
        return spec.account_id if spec else None

    def resolve(self, market_id: str, field) -> float:
        """
        Current value of a field an Expectation refers to.

        Raises ValueError for an unknown field name. A curve that has
        migrated no longer resolves.
        """
        field = ExpectationField(field)
        if field == ExpectationField.ORACLE_PRICE:
            price = self.price_of(market_id)
            if price is None:
                raise StaleDependency([market_id])
            return price

        if market_id in self._curves:
            curve = self.curve(market_id)
            if curve.complete:
                raise StaleDependency([market_id])
            if field == ExpectationField.BASE_RESERVE:
                return float(curve.virtual_token_reserves)
            if field == ExpectationField.QUOTE_RESERVE:
                return float(curve.virtual_sol_reserves)
            return curve.price

        pool = self.pool(market_id)
        if field == ExpectationField.BASE_RESERVE:
            return float(pool.base_reserve)
        if field == ExpectationField.QUOTE_RESERVE:
            return float(pool.quote_reserve)
        return pool.price


class StateCache:
    """
    Coherent, versioned store of account state keyed by account id.

    Responsibilities:
    - Accept deltas only for registered accounts, newest slot wins
    - Serve consistent point-in-time views
    - Memoize derived pool states keyed by their dependency slots
    """

    def __init__(self, reference_mint: str):
        self.reference_mint = reference_mint

        self._lock = threading.RLock()
        self._accounts: Dict[str, AccountState] = {}
        self._roles: Dict[str, AccountRole] = {}
        self._current_slot = 0

        # Registries
        self._pools: Dict[str, PoolSpec] = {}
        self._oracles: Dict[str, OracleSpec] = {}
        self._curves: Dict[str, CurveSpec] = {}
        self._account_markets: Dict[str, Set[str]] = {}

        # Derived state
        self._pool_memo: Dict[str, PoolState] = {}

        # Counters
        self._applied = 0
        self._unknown_accounts = 0
        self._duplicates = 0
        self._malformed = 0
        self._pool_builds = 0
        self._pool_hits = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def track(self, account_id: str, role: AccountRole = AccountRole.RAW) -> None:
        """Accept deltas for an account."""
        with self._lock:
            self._roles[account_id] = role

    def register_pool(self, spec: PoolSpec) -> None:
        with self._lock:
            self._pools[spec.market_id] = spec
            self.track(spec.amm_account, AccountRole.AMM_STATE)
            self.track(spec.base_vault, AccountRole.TOKEN_VAULT)
            self.track(spec.quote_vault, AccountRole.TOKEN_VAULT)
            for key in spec.dependencies:
                self._account_markets.setdefault(key, set()).add(spec.market_id)
            self._pool_memo.pop(spec.market_id, None)

        logger.info("Pool registered", market_id=spec.market_id)

    def register_oracle(self, spec: OracleSpec) -> None:
        with self._lock:
            self._oracles[spec.mint] = spec
            self.track(spec.account_id, AccountRole.ORACLE)

        logger.info("Oracle registered", mint=spec.mint, account=spec.account_id)

    def register_curve(self, spec: CurveSpec) -> None:
        with self._lock:
            self._curves[spec.market_id] = spec
            self.track(spec.bonding_curve, AccountRole.BONDING_CURVE)

        logger.info("Bonding curve registered", market_id=spec.market_id, mint=spec.mint)

    def pool_dependencies(self, market_id: str) -> Tuple[str, ...]:
        spec = self._pools.get(market_id)
        if spec is None:
            raise StaleDependency([market_id])
        return spec.dependencies

    def curve_dependencies(self, market_id: str) -> Tuple[str, ...]:
        spec = self._curves.get(market_id)
        if spec is None:
            raise StaleDependency([market_id])
        return spec.dependencies

    def oracle_dependency(self, mint: str) -> Optional[str]:
        spec = self._oracles.get(mint)
        return spec.account_id if spec else None

    @property
    def tracked_accounts(self) -> frozenset:
        with self._lock:
            return frozenset(self._roles)

    @property
    def markets(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._pools)

    @property
    def curves(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._curves)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, delta: StateDelta) -> bool:
        """
        Apply one delta atomically.

        Returns False (and counts why) when the delta is skipped: unknown
        account, redelivery or out-of-order slot, or a malformed payload.
        Never raises on bad input.
        """
        if not isinstance(delta.data, (bytes, bytearray)) or delta.slot < 0:
            self._malformed += 1
            pipeline_logger.log_delta_skipped(str(delta.account_id), delta.slot, "malformed")
            return False

        with self._lock:
            role = self._roles.get(delta.account_id)
            if role is None:
                self._unknown_accounts += 1
                logger.debug("Delta for unknown account", account_id=delta.account_id)
                pipeline_logger.log_delta_skipped(delta.account_id, delta.slot, "unknown_account")
                return False

            previous = self._accounts.get(delta.account_id)
            if previous is not None and delta.slot <= previous.slot:
                self._duplicates += 1
                pipeline_logger.log_delta_skipped(delta.account_id, delta.slot, "duplicate")
                return False

            try:
                validate_payload(role, bytes(delta.data))
            except DecodeError as e:
                self._malformed += 1
                logger.warning(
                    "Malformed delta skipped",
                    account_id=delta.account_id,
                    slot=delta.slot,
                    error=str(e),
                )
                pipeline_logger.log_delta_skipped(delta.account_id, delta.slot, "malformed")
                return False

            owner = delta.owner or (previous.owner if previous else DEFAULT_OWNER)
            self._accounts[delta.account_id] = AccountState(
                account_id=delta.account_id,
                data=bytes(delta.data),
                owner=owner,
                slot=delta.slot,
            )
            self._current_slot = max(self._current_slot, delta.slot)
            self._applied += 1

            for market_id in self._account_markets.get(delta.account_id, ()):
                self._pool_memo.pop(market_id, None)

        return True

    def advance_slot(self, slot: int) -> None:
        """Record that the ledger has reached `slot` without account changes."""
        with self._lock:
            if slot > self._current_slot:
                self._current_slot = slot

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def current_slot(self) -> int:
        return self._current_slot

    def ready_keys(self, keys: Iterable[str]) -> frozenset:
        """Subset of `keys` that already have state."""
        with self._lock:
            return frozenset(key for key in keys if key in self._accounts)

    def snapshot(self, keys: Iterable[str]) -> StateView:
        """
        Consistent view of `keys` tagged with the current slot.

        Raises StaleDependency if any key has no state yet.
        """
        keys = set(keys)
        with self._lock:
            missing = [key for key in keys if key not in self._accounts]
            if missing:
                raise StaleDependency(missing)
            accounts = {key: self._accounts[key] for key in keys}
            slot = self._current_slot
            pools = dict(self._pools)
            oracles = dict(self._oracles)
            curves = dict(self._curves)

        return StateView(
            cache=self,
            accounts=accounts,
            slot=slot,
            pools=pools,
            oracles=oracles,
            reference_mint=self.reference_mint,
            curves=curves,
        )

    def _derive_pool(self, spec: PoolSpec, accounts: Mapping[str, AccountState]) -> PoolState:
        dependency_slots = tuple((key, accounts[key].slot) for key in spec.dependencies)

        with self._lock:
            cached = self._pool_memo.get(spec.market_id)
            if cached is not None and cached.dependency_slots == dependency_slots:
                self._pool_hits += 1
                return cached

            try:
                pool = build_pool_state(spec, dict(accounts))
            except DecodeError as e:
                logger.warning("Pool decode failed", market_id=spec.market_id, error=str(e))
                raise StaleDependency([spec.market_id]) from e
            self._pool_builds += 1

            # Only the newest state is worth keeping
            is_latest = all(
                key in self._accounts and self._accounts[key].slot == slot
                for key, slot in dependency_slots
            )
            if is_latest:
                self._pool_memo[spec.market_id] = pool

        return pool

    def is_memoized(self, market_id: str) -> bool:
        with self._lock:
            return market_id in self._pool_memo

    @property
    def metrics(self) -> dict:
        """Get cache metrics."""
        return {
            "current_slot": self._current_slot,
            "accounts": len(self._accounts),
            "applied": self._applied,
            "unknown_accounts": self._unknown_accounts,
            "duplicates": self._duplicates,
            "malformed": self._malformed,
            "pool_builds": self._pool_builds,
            "pool_hits": self._pool_hits,
            "memoized_pools": len(self._pool_memo),
        }
