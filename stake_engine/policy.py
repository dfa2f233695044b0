"""
policy.py - Fee & Bonus Policy

Pure rules for the three one-time adjustments of a stake's life:

    creation fee    = principal * fee_rate_on_stake
    withdrawal fee  = (principal + accrued_amount) * fee_rate_on_withdrawal
    early bonus     = accrued_amount * early_completion_bonus
                      (only when completed before planned_end_at)

Each rule is a pure function of the stake snapshot at the transition
instant. None of them guards against being called twice; the lifecycle
state machine owns that by checking status and one-shot flags before it
invokes a rule.

Fee schedules (FeeSchedule, FeeBucket) supply default fee rates for newly
created stakes.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Mapping, Optional

from .core import ONE, ZERO, InvalidInput
from .money import apply_rate, quantize_money, to_decimal
from .stake import Stake


# ============================================================================
# FEE SCHEDULES
# ============================================================================

@dataclass(frozen=True, slots=True)
class FeeSchedule:
    """Default fee rates applied to newly created stakes (fractions in [0, 1])."""
    staking_fee_rate: Decimal = Decimal("0.005")
    withdrawal_fee_rate: Decimal = Decimal("0.0025")

    def __post_init__(self):
        for name in ('staking_fee_rate', 'withdrawal_fee_rate'):
            rate = to_decimal(getattr(self, name), name)
            if rate < ZERO or rate > ONE:
                raise InvalidInput(f"{name} must be in [0, 1], got {rate}")
            object.__setattr__(self, name, rate)


class FeeBucket(Enum):
    """Experiment bucket selecting a fee schedule."""
    A = "A"
    B = "B"
    C = "C"


DEFAULT_FEE_SCHEDULE = FeeSchedule()

DEFAULT_FEE_SCHEDULES: Dict[FeeBucket, FeeSchedule] = {
    FeeBucket.A: DEFAULT_FEE_SCHEDULE,
    FeeBucket.B: FeeSchedule(staking_fee_rate=Decimal("0.0075")),
    FeeBucket.C: FeeSchedule(staking_fee_rate=Decimal("0.0035")),
}


def fee_schedule_for(
    bucket: FeeBucket,
    schedules: Optional[Mapping[FeeBucket, FeeSchedule]] = None,
) -> FeeSchedule:
    """Fee schedule for a bucket, falling back to the default schedule."""
    table = DEFAULT_FEE_SCHEDULES if schedules is None else schedules
    return table.get(bucket, DEFAULT_FEE_SCHEDULE)


# ============================================================================
# POLICY RULES
# ============================================================================

def calculate_creation_fee(stake: Stake) -> Decimal:
    """
    Fee charged once at creation, deducted from the funding source.

    principal itself is untouched and keeps accruing in full.
    """
    return apply_rate(stake.principal, stake.fee_rate_on_stake)


def calculate_withdrawal_fee(stake: Stake) -> Decimal:
    """Fee charged once on Active -> Withdrawn, on principal plus accrued."""
    return apply_rate(stake.principal + stake.accrued_amount, stake.fee_rate_on_withdrawal)


def is_early_completion(stake: Stake, completed_at: datetime) -> bool:
    """
    True if completion beats the planned end and a bonus rate is set.

    A stake without planned_end_at has no deadline to beat.
    """
    if stake.early_completion_bonus is None or stake.planned_end_at is None:
        return False
    return completed_at < stake.planned_end_at


def calculate_early_completion_bonus(stake: Stake, completed_at: datetime) -> Decimal:
    """
    Bonus credited once on Active -> Completed.

    Returns zero when the completion is not early or no bonus rate is set.

    Example:
        # accrued 40.00, bonus rate 0.10, completed a week early
        calculate_early_completion_bonus(stake, completed_at)  # 4.00000000
    """
    if not is_early_completion(stake, completed_at):
        return quantize_money(ZERO)
    return apply_rate(stake.accrued_amount, stake.early_completion_bonus)
