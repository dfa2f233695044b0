"""
Core types and pure functions for the staking accrual engine.

This module provides the foundational pieces every other module builds on:
1. Decimal context configuration and engine-wide constants
2. Enums: StakeStatus, Trigger, LedgerEntryKind
3. Exceptions: StakeEngineError and the typed error kinds
4. Immutable data structures: LedgerEntry
5. Content hashing for deterministic entry identifiers

All functions in this module are pure. Nothing here performs I/O.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, DefaultContext, ROUND_HALF_EVEN, getcontext
from enum import Enum
import hashlib
from typing import Any, Dict, Optional


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All money math relies on deterministic Decimal arithmetic.
# The global context is configured once at module load time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
# Context parameters:
#   - prec=50: Enough headroom that intermediate products never round
#   - rounding=ROUND_HALF_EVEN: Banker's rounding (unbiased)
#
# Decimal contexts are per thread; DefaultContext is the template for
# threads started after import, so it gets the same settings.
#
for _context in (getcontext(), DefaultContext):
    _context.prec = 50
    _context.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

SECONDS_PER_DAY = 86400
DAYS_PER_YEAR = 365

# No leap-year adjustment: a year is always 365 days of accrual.
SECONDS_PER_YEAR = DAYS_PER_YEAR * SECONDS_PER_DAY

# Minimum representable unit of the stake's currency.
MONEY_QUANTUM = Decimal("1e-8")

ZERO = Decimal("0")
ONE = Decimal("1")

# How many times the engine re-reads and recomputes after a StaleState.
DEFAULT_MAX_STALE_RETRIES = 3


# ============================================================================
# ENUMS
# ============================================================================

class StakeStatus(Enum):
    """
    Lifecycle state of a stake.

    ACTIVE is the only state that accrues. The other three are terminal:
    no transition ever leaves them.
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    FORFEITED = "forfeited"
    WITHDRAWN = "withdrawn"

    @property
    def is_terminal(self) -> bool:
        return self is not StakeStatus.ACTIVE


class Trigger(Enum):
    """External signal that moves a stake out of ACTIVE."""
    GOAL_SUCCEEDED = "goal_succeeded"    # -> COMPLETED
    GOAL_FAILED = "goal_failed"          # -> FORFEITED
    USER_WITHDRAWAL = "user_withdrawal"  # -> WITHDRAWN


class LedgerEntryKind(Enum):
    """Classification of a one-time financial adjustment."""
    CREATION_FEE = "creation_fee"
    WITHDRAWAL_FEE = "withdrawal_fee"
    EARLY_COMPLETION_BONUS = "early_completion_bonus"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class StakeEngineError(Exception):
    """Base exception for all staking engine errors."""
    pass


class InvalidInput(StakeEngineError, ValueError):
    """Raised for negative principal/rate, bad fee rates, or a zero compounding period."""
    pass


class InvalidTransition(StakeEngineError):
    """Raised when a lifecycle trigger or accrual is applied to a non-Active stake."""
    pass


class StaleState(StakeEngineError):
    """
    Raised by a store when the optimistic-concurrency token has moved.

    This is the one error callers are expected to retry: re-read the stake,
    recompute, and re-submit.
    """
    pass


class NotFound(StakeEngineError, KeyError):
    """Raised by a store when a referenced stake id is absent."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable.
        return str(self.args[0]) if self.args else ""


# ============================================================================
# ENTRY IDS
# ============================================================================

def _compute_entry_id(
    stake_id: str,
    kind: LedgerEntryKind,
    amount: Decimal,
    effective_at: datetime,
) -> str:
    """
    Deterministic content hash for a ledger entry.

    Same stake, kind, amount and timestamp always produce the same id, so a
    sink can drop duplicates when a transition result is re-submitted.
    The amount is normalized first: 1.5 and 1.50000000 hash identically.
    """
    content = "|".join([
        stake_id,
        kind.value,
        format(amount.normalize(), 'f'),
        effective_at.isoformat(),
    ])
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# LEDGER ENTRY
# ============================================================================

@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    A one-time financial adjustment emitted by a lifecycle transition.

    The engine never persists these; the external ledger/transaction sink does.

    Attributes:
        stake_id: Stake the adjustment belongs to
        kind: Fee charge or bonus credit
        amount: Non-negative amount in the stake's denomination
        effective_at: Timestamp of the transition that produced it
        user_id: Owner charged or credited
        metadata: Optional extra context (rates used, base amounts)
        entry_id: Content-addressable id (auto-computed)
    """
    stake_id: str
    kind: LedgerEntryKind
    amount: Decimal
    effective_at: datetime
    user_id: str = ""
    metadata: Optional[Dict[str, Any]] = None
    entry_id: str = field(default="")

    def __post_init__(self):
        if not self.stake_id or not self.stake_id.strip():
            raise InvalidInput("LedgerEntry stake_id cannot be empty")
        if not isinstance(self.amount, Decimal):
            raise InvalidInput(f"LedgerEntry amount must be Decimal, got {type(self.amount)}")
        if not self.amount.is_finite() or self.amount < ZERO:
            raise InvalidInput(f"LedgerEntry amount must be finite and non-negative, got {self.amount}")
        if not self.entry_id:
            object.__setattr__(
                self, 'entry_id',
                _compute_entry_id(self.stake_id, self.kind, self.amount, self.effective_at),
            )

    @property
    def is_credit(self) -> bool:
        """True if the entry credits the owner rather than charging them."""
        return self.kind is LedgerEntryKind.EARLY_COMPLETION_BONUS

    def __repr__(self) -> str:
        sign = "+" if self.is_credit else "-"
        return f"LedgerEntry({self.kind.value} {sign}{self.amount} stake={self.stake_id})"
