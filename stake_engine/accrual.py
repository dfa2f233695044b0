"""
accrual.py - Accrual Math

Pure, deterministic interest math for staked principal.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs/outputs):
   - AccrualMethod: compounding policy (simple, or compounding every N days)
   - StakingQuote: accrued amount plus informational fee breakdown
   - AccrualWindow: one stake accrued up to a target time, with its new
     compounding boundary
   - AccrualProjection: one day of a forward projection

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - Never read or write lastAccrualAt; the caller supplies elapsed seconds,
     so the same function serves "since start" and "since last accrual"

3. SNAPSHOT FUNCTIONS (calculate_stake_accrual, project_*):
   - Take a stake snapshot and a resolved rate, delegate to calculate_accrual()
   - Compounding stakes carry their last period boundary (period_start_at,
     period_accrued); interest accrued inside an open period earns nothing
     until the boundary closes

Key Formulas (SECONDS_PER_YEAR = 365 * 86400, no leap years):
    simple:      accrued = P * r * t / SECONDS_PER_YEAR
    compounding: period_rate = r * d / 365,  n = floor(t / (d * 86400))
                 accrued = P * ((1 + period_rate)^n - 1)
                         + P * (1 + period_rate)^n * period_rate * remainder / period_seconds

Each function rounds exactly once, at its output.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import MAX_EMAX, MIN_EMIN, Decimal, InvalidOperation, Overflow, localcontext
from typing import List, TYPE_CHECKING

from .core import (
    DAYS_PER_YEAR, MONEY_QUANTUM, ONE, SECONDS_PER_DAY, SECONDS_PER_YEAR, ZERO,
    InvalidInput, StakeStatus,
)
from .money import Numeric, apply_rate, apply_ratio, quantize_money, to_decimal

if TYPE_CHECKING:
    from .stake import Stake


# ============================================================================
# ACCRUAL METHOD
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccrualMethod:
    """
    Compounding policy for a stake.

    Attributes:
        compounding: False for simple (non-compounding) interest
        period_days: Length of one compounding period; ignored when simple
    """
    compounding: bool = False
    period_days: int = 1

    def __post_init__(self):
        if self.compounding and (not isinstance(self.period_days, int) or self.period_days <= 0):
            raise InvalidInput(
                f"period_days must be a positive integer when compounding, got {self.period_days!r}"
            )

    @property
    def name(self) -> str:
        if not self.compounding:
            return "simple"
        return {1: "daily", 7: "weekly", 30: "monthly"}.get(
            self.period_days, f"every_{self.period_days}_days"
        )


ACCRUAL_SIMPLE = AccrualMethod()
ACCRUAL_DAILY = AccrualMethod(compounding=True, period_days=1)
ACCRUAL_WEEKLY = AccrualMethod(compounding=True, period_days=7)
ACCRUAL_MONTHLY = AccrualMethod(compounding=True, period_days=30)


# ============================================================================
# TIME HELPERS
# ============================================================================

def seconds_between(start: datetime, end: datetime) -> Decimal:
    """
    Exact elapsed seconds from start to end as a Decimal.

    Built from timedelta components rather than total_seconds() so that
    microseconds never pass through a float.
    """
    delta: timedelta = end - start
    return (
        Decimal(delta.days) * SECONDS_PER_DAY
        + Decimal(delta.seconds)
        + Decimal(delta.microseconds).scaleb(-6)
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_accrual(
    principal: Numeric,
    elapsed_seconds: Numeric,
    rate: Numeric,
    compounding: bool = False,
    compounding_period_days: int = 1,
    quantum: Decimal = MONEY_QUANTUM,
) -> Decimal:
    """
    Interest earned on principal over elapsed_seconds at an annual rate.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Args:
        principal: Amount earning interest (>= 0)
        elapsed_seconds: Accrual window length (>= 0)
        rate: Annualized rate as a decimal fraction (0.05 for 5%), >= 0
        compounding: Compound per period instead of simple interest
        compounding_period_days: Period length; must be > 0 when compounding
        quantum: Output rounding unit

    Returns:
        Accrued amount (>= 0), rounded half-even to quantum.

    Raises:
        InvalidInput: Negative principal, elapsed time or rate, or a
                      non-positive period when compounding.

    Example:
        calculate_accrual(Decimal("1000"), 365 * 86400, Decimal("0.05"))
        # Decimal("50.00000000")
    """
    principal = to_decimal(principal, "principal")
    elapsed = to_decimal(elapsed_seconds, "elapsed_seconds")
    rate = to_decimal(rate, "rate")

    if principal < ZERO:
        raise InvalidInput(f"principal cannot be negative, got {principal}")
    if elapsed < ZERO:
        raise InvalidInput(f"elapsed_seconds cannot be negative, got {elapsed}")
    if rate < ZERO:
        raise InvalidInput(f"rate cannot be negative, got {rate}")
    if compounding and (
        isinstance(compounding_period_days, bool)
        or not isinstance(compounding_period_days, int)
        or compounding_period_days <= 0
    ):
        raise InvalidInput(
            f"compounding_period_days must be a positive integer, got {compounding_period_days!r}"
        )

    if principal == ZERO or elapsed == ZERO or rate == ZERO:
        return quantize_money(ZERO, quantum)

    if not compounding:
        return apply_rate(principal, rate, elapsed, SECONDS_PER_YEAR, quantum)

    period_seconds = compounding_period_days * SECONDS_PER_DAY
    periods = int(elapsed // period_seconds)
    remainder = elapsed - periods * period_seconds

    # Work in (1 + period_rate) scaled by 365 so that the only division is the
    # final one: growth = a^n / b^n with a = 365 + r*d, b = 365.
    # 365^n leaves the default exponent range after about a thousand years
    # of daily periods.
    b = Decimal(DAYS_PER_YEAR)
    a = b + rate * compounding_period_days
    try:
        with localcontext() as ctx:
            ctx.Emax = MAX_EMAX
            ctx.Emin = MIN_EMIN
            a_n = a ** periods
            b_n = b ** periods

            whole_periods = (a_n - b_n) * b * period_seconds
            partial_period = a_n * rate * compounding_period_days * remainder
            return apply_ratio(
                principal,
                whole_periods + partial_period,
                b_n * b * period_seconds,
                quantum,
            )
    except (Overflow, InvalidOperation):
        raise InvalidInput(
            f"Accrual of {principal} at {rate} over {elapsed} seconds exceeds "
            f"the representable money range"
        ) from None


@dataclass(frozen=True, slots=True)
class StakingQuote:
    """
    Accrued amount with the fee picture if the stake were withdrawn now.

    Fees here are informational; the lifecycle applies them at transitions.
    """
    accrued: Decimal
    total_before_fees: Decimal
    staking_fee: Decimal
    withdrawal_fee: Decimal
    net_if_withdrawn: Decimal


def _check_fee_rate(value: Numeric, name: str) -> Decimal:
    rate = to_decimal(value, name)
    if rate < ZERO or rate > ONE:
        raise InvalidInput(f"{name} must be in [0, 1], got {rate}")
    return rate


def calculate_staking_quote(
    principal: Numeric,
    elapsed_seconds: Numeric,
    rate: Numeric,
    compounding: bool = False,
    compounding_period_days: int = 1,
    staking_fee_percent: Numeric = ZERO,
    withdrawal_fee_percent: Numeric = ZERO,
) -> StakingQuote:
    """
    Accrual plus fee breakdown for a hypothetical withdrawal.

    PURE FUNCTION.

        total_before_fees = principal + accrued
        staking_fee       = principal * staking_fee_percent
        withdrawal_fee    = total_before_fees * withdrawal_fee_percent
        net_if_withdrawn  = total_before_fees - staking_fee - withdrawal_fee

    All outputs are floored at zero.
    """
    principal = to_decimal(principal, "principal")
    staking_fee_rate = _check_fee_rate(staking_fee_percent, "staking_fee_percent")
    withdrawal_fee_rate = _check_fee_rate(withdrawal_fee_percent, "withdrawal_fee_percent")

    accrued = calculate_accrual(
        principal, elapsed_seconds, rate, compounding, compounding_period_days
    )
    total_before_fees = quantize_money(principal + accrued)
    staking_fee = apply_rate(principal, staking_fee_rate)
    withdrawal_fee = apply_rate(total_before_fees, withdrawal_fee_rate)
    net = total_before_fees - staking_fee - withdrawal_fee

    return StakingQuote(
        accrued=max(ZERO, accrued),
        total_before_fees=max(ZERO, total_before_fees),
        staking_fee=max(ZERO, staking_fee),
        withdrawal_fee=max(ZERO, withdrawal_fee),
        net_if_withdrawn=max(ZERO, net),
    )


# ============================================================================
# PROJECTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccrualProjection:
    """Projected stake balance at one future date."""
    date: datetime
    accrued_amount: Decimal
    increment: Decimal
    total_value: Decimal


@dataclass(frozen=True, slots=True)
class AccrualWindow:
    """
    Accrual of one stake from its last_accrual_at up to a target time.

    period_start_at / period_accrued are the stake's compounding boundary
    after the window: the last period boundary at or before the target, and
    the accrued amount at that boundary.
    """
    incremental: Decimal
    new_accrued: Decimal
    period_start_at: datetime
    period_accrued: Decimal


def accrual_base(stake: "Stake") -> Decimal:
    """
    Amount that earns interest in the stake's open period.

    Compounding stakes earn on principal plus the interest accrued up to the
    last period boundary; interest accrued inside the open period joins the
    base only once that period closes. Simple stakes earn on principal only.
    """
    if stake.accrual_method.compounding:
        return stake.principal + stake.period_accrued
    return stake.principal


def calculate_stake_accrual(
    stake: "Stake",
    until: datetime,
    rate: Numeric,
    quantum: Decimal = MONEY_QUANTUM,
) -> AccrualWindow:
    """
    Accrue a stake snapshot from last_accrual_at to `until`.

    PURE FUNCTION - reads the snapshot, returns the new balance and boundary.

    Simple stakes add interest on principal for the window. Compounding
    stakes close every period boundary the window crosses (growing the base
    by whole periods from the current boundary), then add simple interest
    on the grown base for the part of the open period that has elapsed.
    Passes inside one period never touch the base, so any number of passes
    across a period end on the same balance as one pass over it.

    Raises:
        InvalidInput: If `until` precedes last_accrual_at, the rate is
                      invalid, or the snapshot's balance sits above what its
                      boundary implies.

    Example:
        # Weekly compounding: six daily passes stay inside the first period
        # and the seventh closes it, matching one 7-day calculate_accrual().
        window = calculate_stake_accrual(stake, start + timedelta(days=7), rate)
        window.period_start_at == start + timedelta(days=7)
    """
    if until < stake.last_accrual_at:
        raise InvalidInput(
            f"until ({until.isoformat()}) precedes last accrual "
            f"({stake.last_accrual_at.isoformat()}) for stake {stake.id}"
        )
    method = stake.accrual_method

    if not method.compounding:
        incremental = calculate_accrual(
            stake.principal, seconds_between(stake.last_accrual_at, until), rate,
            quantum=quantum,
        )
        return AccrualWindow(
            incremental=incremental,
            new_accrued=stake.accrued_amount + incremental,
            period_start_at=stake.period_start_at,
            period_accrued=stake.period_accrued,
        )

    period = timedelta(days=method.period_days)
    closed = (until - stake.period_start_at) // period
    boundary = stake.period_start_at + closed * period
    boundary_accrued = stake.period_accrued
    if closed:
        boundary_accrued += calculate_accrual(
            stake.principal + stake.period_accrued,
            seconds_between(stake.period_start_at, boundary),
            rate, True, method.period_days, quantum,
        )

    open_period = calculate_accrual(
        stake.principal + boundary_accrued,
        seconds_between(boundary, until),
        rate, True, method.period_days, quantum,
    )
    new_accrued = boundary_accrued + open_period
    if new_accrued < stake.accrued_amount:
        raise InvalidInput(
            f"Stake {stake.id} holds {stake.accrued_amount} accrued, above the "
            f"{new_accrued} its period boundary implies"
        )
    return AccrualWindow(
        incremental=new_accrued - stake.accrued_amount,
        new_accrued=new_accrued,
        period_start_at=boundary,
        period_accrued=boundary_accrued,
    )


def project_accrual(
    stake: "Stake",
    rate: Numeric,
    as_of: datetime,
    days: int = 30,
) -> List[AccrualProjection]:
    """
    Project a stake's accrued amount for each day from as_of to as_of + days.

    Projections are computed from the stake's last_accrual_at, exactly as the
    scheduler would if it ran on that day. Non-Active stakes are frozen, so
    their projection is flat.

    Raises:
        InvalidInput: If days is negative or the rate is invalid.
    """
    if days < 0:
        raise InvalidInput(f"days cannot be negative, got {days}")

    projections = []
    for day in range(days + 1):
        target = as_of + timedelta(days=day)
        if stake.status is StakeStatus.ACTIVE and target > stake.last_accrual_at:
            increment = calculate_stake_accrual(stake, target, rate).incremental
        else:
            increment = quantize_money(ZERO)
        accrued = stake.accrued_amount + increment
        projections.append(AccrualProjection(
            date=target,
            accrued_amount=accrued,
            increment=increment,
            total_value=stake.principal + accrued,
        ))

    return projections
