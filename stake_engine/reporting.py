"""
reporting.py - Accrual summaries

Read-only aggregates over stake snapshots. Nothing here mutates a stake or
the store.

    summarize_stakes()  - balances, average APR, pending and forward accrual
                          for the Active stakes of one owner
    stake_statistics()  - counts by status and success rate over all stakes
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, TYPE_CHECKING

from .accrual import calculate_stake_accrual
from .core import ZERO, StakeStatus
from .money import apply_ratio, money_sum, quantize_money
from .rates import RateResolver
from .stake import Stake

if TYPE_CHECKING:
    from .store import InMemoryStakeStore


@dataclass(frozen=True, slots=True)
class AccrualSummary:
    """
    Accrual picture for a set of Active stakes as of one instant.

    pending_accrual is what the next accrual pass at `as_of` would add.
    daily/weekly/monthly_accrual are forward estimates at today's rates.
    """
    as_of: datetime
    total_stakes: int
    total_principal: Decimal
    total_accrued: Decimal
    average_apr: Decimal
    pending_accrual: Decimal
    daily_accrual: Decimal
    weekly_accrual: Decimal
    monthly_accrual: Decimal
    user_id: Optional[str] = None

    @property
    def total_value(self) -> Decimal:
        return self.total_principal + self.total_accrued


@dataclass(frozen=True, slots=True)
class StakeStatistics:
    """Stake counts by status across every lifecycle state."""
    total_stakes: int
    active_stakes: int
    completed_stakes: int
    forfeited_stakes: int
    withdrawn_stakes: int
    total_principal: Decimal
    total_accrued: Decimal

    @property
    def success_rate(self) -> Decimal:
        """Completed share of stakes that reached a goal outcome."""
        decided = self.completed_stakes + self.forfeited_stakes
        if decided == 0:
            return ZERO
        return apply_ratio(Decimal(self.completed_stakes), 1, decided)


def _forward(stake: Stake, rate: Decimal, days: int) -> Decimal:
    until = stake.last_accrual_at + timedelta(days=days)
    return calculate_stake_accrual(stake, until, rate).incremental


def summarize_stakes(
    stakes: Iterable[Stake],
    resolver: RateResolver,
    at: datetime,
    user_id: Optional[str] = None,
) -> AccrualSummary:
    """
    Summarize the Active stakes among `stakes` as of `at`.

    Non-Active stakes are ignored. average_apr is the plain mean of the
    resolved rates, zero when there are no Active stakes.

    Raises:
        InvalidInput: If the resolver cannot rate a stake.
    """
    active: List[Stake] = [s for s in stakes if s.status is StakeStatus.ACTIVE]

    rates = [resolver.resolve(s, at) for s in active]
    pending = []
    daily = []
    weekly = []
    monthly = []
    for stake, rate in zip(active, rates):
        if at > stake.last_accrual_at:
            pending.append(calculate_stake_accrual(stake, at, rate).incremental)
        daily.append(_forward(stake, rate, 1))
        weekly.append(_forward(stake, rate, 7))
        monthly.append(_forward(stake, rate, 30))

    if active:
        average_apr = apply_ratio(money_sum(rates), 1, len(active))
    else:
        average_apr = quantize_money(ZERO)

    return AccrualSummary(
        as_of=at,
        total_stakes=len(active),
        total_principal=money_sum(s.principal for s in active),
        total_accrued=money_sum(s.accrued_amount for s in active),
        average_apr=average_apr,
        pending_accrual=money_sum(pending),
        daily_accrual=money_sum(daily),
        weekly_accrual=money_sum(weekly),
        monthly_accrual=money_sum(monthly),
        user_id=user_id,
    )


def summarize_user(
    store: "InMemoryStakeStore",
    user_id: str,
    resolver: RateResolver,
    at: datetime,
) -> AccrualSummary:
    """summarize_stakes() over one user's stakes in a store."""
    return summarize_stakes(store.list_by_user(user_id), resolver, at, user_id=user_id)


def stake_statistics(stakes: Iterable[Stake]) -> StakeStatistics:
    stakes = list(stakes)

    def count(status: StakeStatus) -> int:
        return sum(1 for s in stakes if s.status is status)

    return StakeStatistics(
        total_stakes=len(stakes),
        active_stakes=count(StakeStatus.ACTIVE),
        completed_stakes=count(StakeStatus.COMPLETED),
        forfeited_stakes=count(StakeStatus.FORFEITED),
        withdrawn_stakes=count(StakeStatus.WITHDRAWN),
        total_principal=money_sum(s.principal for s in stakes),
        total_accrued=money_sum(s.accrued_amount for s in stakes),
    )
