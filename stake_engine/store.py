"""
store.py - Stake Store and Ledger Sink

The engine performs no I/O of its own. It talks to two collaborators:

- StakeStore: due-stake queries and atomic per-stake writes guarded by an
  optimistic-concurrency token (Stake.version)
- LedgerSink: durable record of the ledger entries emitted by transitions

Both are Protocols. InMemoryStakeStore and InMemoryLedgerSink are reference
implementations for tests and single-process hosts.

Concurrency:
    Every write checks the version the caller read. The first writer wins and
    bumps the version; a second writer holding the old version gets
    StaleState and must re-read and recompute.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Protocol, runtime_checkable
import threading

import structlog

from .core import InvalidInput, LedgerEntry, NotFound, StakeStatus, StaleState
from .scheduler import AccrualResult, apply_accrual_result
from .stake import Stake


logger = structlog.get_logger(__name__)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class StakeStore(Protocol):
    """Persistence boundary for stakes, keyed by id with a version token."""

    def add(self, stake: Stake) -> Stake:
        """Insert a new stake."""
        ...

    def get(self, stake_id: str) -> Stake:
        """Current snapshot. Raises NotFound."""
        ...

    def find_due(self, now: datetime) -> List[Stake]:
        """Active stakes not yet accrued for the period containing `now`."""
        ...

    def apply_accrual(self, result: AccrualResult) -> Stake:
        """Apply a result computed against the current version. Raises StaleState."""
        ...

    def save(self, stake: Stake, expected_version: int) -> Stake:
        """Replace a stake if its version is still expected_version. Raises StaleState."""
        ...


@runtime_checkable
class LedgerSink(Protocol):
    """Durable record of fee charges and bonus credits."""

    def record(self, entries: Iterable[LedgerEntry]) -> int:
        """Record entries; returns how many were new."""
        ...


# ============================================================================
# DUE POLICY
# ============================================================================

class DuePolicy(Enum):
    """
    When an Active stake counts as due for accrual.

    CALENDAR_DAY: last_accrual_at falls on an earlier calendar day than now
    ROLLING_24H:  at least 24 hours have passed since last_accrual_at
    """
    CALENDAR_DAY = "calendar_day"
    ROLLING_24H = "rolling_24h"

    def is_due(self, last_accrual_at: datetime, now: datetime) -> bool:
        if self is DuePolicy.CALENDAR_DAY:
            return last_accrual_at.date() < now.date()
        return now - last_accrual_at >= timedelta(days=1)


# ============================================================================
# IN-MEMORY STAKE STORE
# ============================================================================

class InMemoryStakeStore:
    """
    Thread-safe in-memory StakeStore.

    Every successful write bumps Stake.version by one. Reads return the
    immutable snapshot itself, so callers can never mutate stored state.

    Example:
        store = InMemoryStakeStore(due_policy=DuePolicy.ROLLING_24H)
        store.add(stake)
        for s in store.find_due(now):
            ...
    """

    def __init__(self, due_policy: DuePolicy = DuePolicy.CALENDAR_DAY):
        self.due_policy = due_policy
        self._stakes: Dict[str, Stake] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._stakes)

    def __contains__(self, stake_id: str) -> bool:
        return stake_id in self._stakes

    def _current(self, stake_id: str) -> Stake:
        try:
            return self._stakes[stake_id]
        except KeyError:
            raise NotFound(f"Stake {stake_id} not found") from None

    def add(self, stake: Stake) -> Stake:
        """
        Insert a new stake.

        Raises:
            InvalidInput: If a stake with the same id already exists.
        """
        with self._lock:
            if stake.id in self._stakes:
                raise InvalidInput(f"Stake {stake.id} already exists")
            self._stakes[stake.id] = stake
        logger.debug("Stake added", stake_id=stake.id, version=stake.version)
        return stake

    def get(self, stake_id: str) -> Stake:
        with self._lock:
            return self._current(stake_id)

    def all(self) -> List[Stake]:
        with self._lock:
            return sorted(self._stakes.values(), key=lambda s: s.id)

    def find_due(self, now: datetime) -> List[Stake]:
        """Active stakes due under this store's policy, in id order."""
        with self._lock:
            due = [
                s for s in self._stakes.values()
                if s.status is StakeStatus.ACTIVE
                and s.last_accrual_at <= now
                and self.due_policy.is_due(s.last_accrual_at, now)
            ]
        return sorted(due, key=lambda s: s.id)

    def _select(self, predicate) -> List[Stake]:
        with self._lock:
            matched = [s for s in self._stakes.values() if predicate(s)]
        return sorted(matched, key=lambda s: s.id)

    def list_by_user(self, user_id: str) -> List[Stake]:
        return self._select(lambda s: s.user_id == user_id)

    def list_by_group(self, group_id: str) -> List[Stake]:
        return self._select(lambda s: s.group_id == group_id)

    def list_by_corporate_account(self, corporate_account_id: str) -> List[Stake]:
        return self._select(lambda s: s.corporate_account_id == corporate_account_id)

    def list_by_goal(self, goal_id: str) -> List[Stake]:
        return self._select(lambda s: s.goal_id == goal_id)

    def apply_accrual(self, result: AccrualResult) -> Stake:
        """
        Apply an accrual result atomically.

        Raises:
            NotFound: If the stake is absent.
            StaleState: If the stake moved since the result was computed.
            InvalidTransition: If the stake is no longer ACTIVE.
        """
        with self._lock:
            current = self._current(result.stake_id)
            try:
                updated = apply_accrual_result(current, result)
            except StaleState:
                logger.warning(
                    "Stale accrual rejected",
                    stake_id=result.stake_id,
                    expected_version=result.expected_version,
                    found_version=current.version,
                )
                raise
            stored = replace(updated, version=current.version + 1)
            self._stakes[stored.id] = stored
        return stored

    def save(self, stake: Stake, expected_version: int) -> Stake:
        """
        Replace a stake if nobody wrote it since expected_version.

        Raises:
            NotFound: If the stake is absent.
            StaleState: If the stored version is not expected_version.
        """
        with self._lock:
            current = self._current(stake.id)
            if current.version != expected_version:
                logger.warning(
                    "Stale save rejected",
                    stake_id=stake.id,
                    expected_version=expected_version,
                    found_version=current.version,
                )
                raise StaleState(
                    f"Stake {stake.id} is at v{current.version}, expected v{expected_version}"
                )
            stored = replace(stake, version=current.version + 1)
            self._stakes[stored.id] = stored
        return stored

    def __repr__(self):
        return f"InMemoryStakeStore({len(self._stakes)} stakes, {self.due_policy.value})"


# ============================================================================
# IN-MEMORY LEDGER SINK
# ============================================================================

class InMemoryLedgerSink:
    """
    In-memory LedgerSink, idempotent by entry_id.

    Re-recording an entry (same stake, kind, amount and timestamp) is a no-op,
    so a transition result can be safely re-submitted.
    """

    def __init__(self):
        self.entries: List[LedgerEntry] = []
        self.seen_entry_ids: set = set()
        self._lock = threading.Lock()

    def record(self, entries: Iterable[LedgerEntry]) -> int:
        recorded = 0
        with self._lock:
            for entry in entries:
                if entry.entry_id in self.seen_entry_ids:
                    logger.debug("Ledger entry already recorded", entry_id=entry.entry_id)
                    continue
                self.seen_entry_ids.add(entry.entry_id)
                self.entries.append(entry)
                recorded += 1
        return recorded

    def entries_for(self, stake_id: str) -> List[LedgerEntry]:
        with self._lock:
            return [e for e in self.entries if e.stake_id == stake_id]

    def __len__(self) -> int:
        return len(self.entries)
