"""
scheduler.py - Accrual Scheduler / Batch Runner

Advances accrued_amount and last_accrual_at for due Active stakes, exactly
once per due interval.

Two layers:

1. PURE BATCH PASS
   accrue_stake(stake, now, resolver)          -> AccrualResult (raises)
   run_accrual_pass(now, due_stakes, resolver) -> AccrualPassReport
   apply_accrual_result(stake, result)         -> Stake (raises StaleState)

   A result carries the snapshot it was computed from (previous accrued,
   previous last_accrual_at, version). Applying it to anything else is
   a StaleState. Re-running a pass after its results were applied computes
   elapsed = 0 and yields zero increment, so passes are always safe to repeat.

2. ORCHESTRATION
   AccrualEngine(store, resolver, sink) pulls the due set, runs the pass,
   persists each result independently, and retries StaleState by re-reading
   and recomputing. Lifecycle transitions go through the same engine so the
   ledger entries they emit reach the sink.

The due-set query (calendar day vs rolling 24h) belongs to the store.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple, TYPE_CHECKING

import structlog

from .accrual import calculate_stake_accrual
from .core import (
    DEFAULT_MAX_STALE_RETRIES, MONEY_QUANTUM, ZERO,
    InvalidInput, InvalidTransition, LedgerEntry, StakeEngineError, StaleState,
    StakeStatus, Trigger,
)
from .lifecycle import create_stake, transition as transition_stake
from .money import money_sum
from .rates import RateResolver
from .stake import Stake

if TYPE_CHECKING:
    from .store import LedgerSink, StakeStore


logger = structlog.get_logger(__name__)


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccrualResult:
    """
    Outcome of accruing one stake up to `now`.

    incremental is added to previous_accrued; it never replaces it.
    previous_last_accrual_at and expected_version identify the snapshot the
    result was computed against. new_period_start_at / new_period_accrued
    are the compounding boundary the stake moves to.
    """
    stake_id: str
    previous_accrued: Decimal
    incremental: Decimal
    new_accrued: Decimal
    previous_last_accrual_at: datetime
    new_last_accrual_at: datetime
    rate: Decimal
    expected_version: int
    new_period_start_at: datetime
    new_period_accrued: Decimal

    @property
    def is_noop(self) -> bool:
        """True when the result would not move the stake at all."""
        return (
            self.new_last_accrual_at == self.previous_last_accrual_at
            and self.incremental == ZERO
        )


@dataclass(frozen=True, slots=True)
class AccrualFailure:
    """
    A stake whose accrual failed; the rest of the pass is unaffected.

    error is usually a StakeEngineError. Anything else raised by a host
    resolver or store is captured the same way and logged as an error.
    """
    stake_id: str
    error: Exception

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    @property
    def is_engine_error(self) -> bool:
        return isinstance(self.error, StakeEngineError)


def _failure(log, stake_id: str, exc: Exception, event: str) -> AccrualFailure:
    """Log a per-stake failure and wrap it for the pass report."""
    failure = AccrualFailure(stake_id=stake_id, error=exc)
    emit = log.warning if failure.is_engine_error else log.error
    emit(event, stake_id=stake_id, error=failure.kind, detail=str(exc))
    return failure


@dataclass(frozen=True, slots=True)
class AccrualPassReport:
    """Results and failures of one batch pass at a single `now`."""
    now: datetime
    results: Tuple[AccrualResult, ...] = ()
    failures: Tuple[AccrualFailure, ...] = ()

    @property
    def stakes_updated(self) -> int:
        return sum(1 for r in self.results if not r.is_noop)

    @property
    def total_accrued(self) -> Decimal:
        return money_sum(r.incremental for r in self.results)

    @property
    def ok(self) -> bool:
        return not self.failures

    def result_for(self, stake_id: str) -> Optional[AccrualResult]:
        for result in self.results:
            if result.stake_id == stake_id:
                return result
        return None


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Engine tuning.

    Attributes:
        max_stale_retries: Re-read/recompute attempts after a StaleState
        money_quantum: Rounding unit for accrual increments
    """
    max_stale_retries: int = DEFAULT_MAX_STALE_RETRIES
    money_quantum: Decimal = MONEY_QUANTUM

    def __post_init__(self):
        if isinstance(self.max_stale_retries, bool) or not isinstance(self.max_stale_retries, int):
            raise InvalidInput(f"max_stale_retries must be an int, got {self.max_stale_retries!r}")
        if self.max_stale_retries < 0:
            raise InvalidInput(f"max_stale_retries cannot be negative, got {self.max_stale_retries}")
        if not isinstance(self.money_quantum, Decimal) or self.money_quantum <= ZERO:
            raise InvalidInput(f"money_quantum must be a positive Decimal, got {self.money_quantum!r}")


# ============================================================================
# PURE BATCH PASS
# ============================================================================

def accrue_stake(
    stake: Stake,
    now: datetime,
    resolver: RateResolver,
    quantum: Decimal = MONEY_QUANTUM,
) -> AccrualResult:
    """
    Compute the incremental accrual for one stake from last_accrual_at to now.

    Raises:
        InvalidTransition: If the stake is not ACTIVE.
        InvalidInput: If now precedes last_accrual_at, or the resolved rate
                      is invalid.
    """
    if stake.status is not StakeStatus.ACTIVE:
        raise InvalidTransition(
            f"Cannot accrue stake {stake.id}: status is {stake.status.value}"
        )
    if now < stake.last_accrual_at:
        raise InvalidInput(
            f"now ({now.isoformat()}) precedes last accrual "
            f"({stake.last_accrual_at.isoformat()}) for stake {stake.id}"
        )

    rate = resolver.resolve(stake, now)
    window = calculate_stake_accrual(stake, now, rate, quantum)
    return AccrualResult(
        stake_id=stake.id,
        previous_accrued=stake.accrued_amount,
        incremental=window.incremental,
        new_accrued=window.new_accrued,
        previous_last_accrual_at=stake.last_accrual_at,
        new_last_accrual_at=now,
        rate=rate,
        expected_version=stake.version,
        new_period_start_at=window.period_start_at,
        new_period_accrued=window.period_accrued,
    )


def run_accrual_pass(
    now: datetime,
    due_stakes: Iterable[Stake],
    resolver: RateResolver,
    quantum: Decimal = MONEY_QUANTUM,
) -> AccrualPassReport:
    """
    Accrue every due stake up to `now`.

    Stakes are processed in id order. A stake that fails (terminal status,
    bad rate, clock moving backwards, an overflowing balance, or any error
    raised by the host resolver) becomes an AccrualFailure; it never aborts
    the pass.

    Returns:
        AccrualPassReport with one result per successful stake. Nothing is
        persisted here.
    """
    results: List[AccrualResult] = []
    failures: List[AccrualFailure] = []

    for stake in sorted(due_stakes, key=lambda s: s.id):
        try:
            results.append(accrue_stake(stake, now, resolver, quantum))
        except Exception as exc:
            failures.append(_failure(logger, stake.id, exc, "Accrual failed for stake"))

    return AccrualPassReport(now=now, results=tuple(results), failures=tuple(failures))


def apply_accrual_result(stake: Stake, result: AccrualResult) -> Stake:
    """
    Apply a result to the snapshot it was computed against.

    The version is left unchanged; the store bumps it on write.

    Raises:
        InvalidInput: If the result belongs to another stake.
        StaleState: If the stake moved since the result was computed.
        InvalidTransition: If the stake is no longer ACTIVE.
    """
    if result.stake_id != stake.id:
        raise InvalidInput(f"Result for stake {result.stake_id} applied to stake {stake.id}")
    if (
        stake.version != result.expected_version
        or stake.last_accrual_at != result.previous_last_accrual_at
        or stake.accrued_amount != result.previous_accrued
    ):
        raise StaleState(
            f"Stake {stake.id} changed since accrual was computed: "
            f"expected v{result.expected_version} at {result.previous_last_accrual_at.isoformat()}, "
            f"found v{stake.version} at {stake.last_accrual_at.isoformat()}"
        )
    if stake.status is not StakeStatus.ACTIVE:
        raise InvalidTransition(
            f"Cannot apply accrual to stake {stake.id}: status is {stake.status.value}"
        )
    return replace(
        stake,
        accrued_amount=result.new_accrued,
        last_accrual_at=result.new_last_accrual_at,
        period_start_at=result.new_period_start_at,
        period_accrued=result.new_period_accrued,
        updated_at=result.new_last_accrual_at,
    )


# ============================================================================
# ORCHESTRATION
# ============================================================================

class AccrualEngine:
    """
    Drives accrual passes and lifecycle transitions against a store.

    Each stake is persisted on its own: a failure on one never blocks the
    others. StaleState is the only error retried; everything else is
    reported.

    Example:
        store = InMemoryStakeStore()
        sink = InMemoryLedgerSink()
        engine = AccrualEngine(store, StaticRateResolver(), sink)

        stake = engine.open_stake(
            goal_id="goal_1", user_id="alice", principal=Decimal("1000"),
            apr_model=FixedApr(Decimal("0.05")), start_at=datetime(2025, 1, 1),
        )
        engine.step(datetime(2025, 1, 2))
        engine.transition(stake.id, Trigger.GOAL_SUCCEEDED, datetime(2025, 1, 2))
    """

    def __init__(
        self,
        store: "StakeStore",
        resolver: RateResolver,
        sink: Optional["LedgerSink"] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.sink = sink
        self.config = config or EngineConfig()
        self.logger = logger.bind(component="accrual_engine")

    def _record(self, entries: List[LedgerEntry]) -> None:
        if self.sink is not None and entries:
            self.sink.record(entries)

    # ------------------------------------------------------------------
    # Stake creation
    # ------------------------------------------------------------------

    def open_stake(self, **kwargs) -> Stake:
        """Create a stake, add it to the store, and record its creation fee."""
        stake, entries = create_stake(**kwargs)
        stored = self.store.add(stake)
        self._record(entries)
        self.logger.info(
            "Stake opened",
            stake_id=stored.id,
            user_id=stored.user_id,
            principal=str(stored.principal),
            creation_fee=str(entries[0].amount) if entries else "0",
        )
        return stored

    # ------------------------------------------------------------------
    # Accrual
    # ------------------------------------------------------------------

    def _persist(self, result: AccrualResult, now: datetime) -> Optional[AccrualResult]:
        """
        Persist one result, recomputing after each StaleState.

        Returns the result that was applied, or None if the fresh snapshot
        had nothing left to accrue.
        """
        attempt = 0
        while True:
            if result.is_noop:
                return None
            try:
                self.store.apply_accrual(result)
                return result
            except StaleState:
                if attempt >= self.config.max_stale_retries:
                    raise
                attempt += 1
                self.logger.info(
                    "Stale accrual, recomputing",
                    stake_id=result.stake_id,
                    attempt=attempt,
                )
                fresh = self.store.get(result.stake_id)
                result = accrue_stake(fresh, now, self.resolver, self.config.money_quantum)

    def step(self, now: datetime) -> AccrualPassReport:
        """
        Run one accrual pass over the store's due set at `now`.

        Returns:
            Report of the results actually persisted plus every failure
            (computation or persistence).
        """
        due = self.store.find_due(now)
        computed = run_accrual_pass(now, due, self.resolver, self.config.money_quantum)

        applied: List[AccrualResult] = []
        failures: List[AccrualFailure] = list(computed.failures)
        for result in computed.results:
            try:
                persisted = self._persist(result, now)
            except Exception as exc:
                failures.append(
                    _failure(self.logger, result.stake_id, exc, "Could not persist accrual")
                )
                continue
            if persisted is not None:
                applied.append(persisted)

        report = AccrualPassReport(now=now, results=tuple(applied), failures=tuple(failures))
        self.logger.info(
            "Accrual pass complete",
            now=now.isoformat(),
            due=len(due),
            stakes_updated=report.stakes_updated,
            total_accrued=str(report.total_accrued),
            failed=len(report.failures),
        )
        return report

    def run(self, timestamps: Iterable[datetime]) -> List[AccrualPassReport]:
        """Run step() at each timestamp in order."""
        return [self.step(now) for now in timestamps]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def transition(
        self,
        stake_id: str,
        trigger: Trigger,
        at: datetime,
        accrue_first: bool = True,
    ) -> Tuple[Stake, List[LedgerEntry]]:
        """
        Apply a lifecycle trigger to a stored stake.

        With accrue_first, interest up to `at` is accrued before the stake
        freezes, and both changes are saved as one write.

        Raises:
            NotFound: If the stake id is unknown.
            InvalidTransition: If the stake is not ACTIVE.
            InvalidInput: If `at` precedes last_accrual_at.
            StaleState: If retries are exhausted.
        """
        attempt = 0
        while True:
            current = self.store.get(stake_id)
            stake = current
            if accrue_first and stake.is_active and at > stake.last_accrual_at:
                result = accrue_stake(stake, at, self.resolver, self.config.money_quantum)
                stake = apply_accrual_result(stake, result)

            new_stake, entries = transition_stake(stake, trigger, at)
            try:
                saved = self.store.save(new_stake, expected_version=current.version)
                break
            except StaleState:
                if attempt >= self.config.max_stale_retries:
                    raise
                attempt += 1
                self.logger.info(
                    "Stale transition, retrying",
                    stake_id=stake_id,
                    trigger=trigger.value,
                    attempt=attempt,
                )

        self._record(entries)
        self.logger.info(
            "Stake transitioned",
            stake_id=stake_id,
            trigger=trigger.value,
            status=saved.status.value,
            accrued=str(saved.accrued_amount),
            entries=len(entries),
        )
        return saved, entries
