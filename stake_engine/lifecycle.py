"""
lifecycle.py - Stake Lifecycle State Machine

States and transitions:

    create_stake() ──► ACTIVE ──GOAL_SUCCEEDED──► COMPLETED  (early bonus, once)
                         │
                         ├────GOAL_FAILED─────► FORFEITED  (disposition is external)
                         │
                         └──USER_WITHDRAWAL───► WITHDRAWN  (withdrawal fee, once)

All three terminal states are final. Any trigger applied to a non-Active
stake raises InvalidTransition; nothing is silently ignored.

transition() is a total function of (snapshot, trigger, timestamp) and
returns (new snapshot, ledger entries). There is no hidden state: the
one-shot flags live on the snapshot itself.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Tuple
import uuid

from .accrual import AccrualMethod, ACCRUAL_SIMPLE
from .core import (
    ZERO, InvalidInput, InvalidTransition,
    LedgerEntry, LedgerEntryKind, StakeStatus, Trigger,
)
from .money import Numeric, to_decimal
from .policy import (
    FeeSchedule,
    calculate_creation_fee,
    calculate_early_completion_bonus,
    calculate_withdrawal_fee,
    is_early_completion,
)
from .rates import AprModel, AprSchedule
from .stake import Stake


def _entries(*candidates: Optional[LedgerEntry]) -> List[LedgerEntry]:
    """Drop absent and zero-amount entries."""
    return [e for e in candidates if e is not None and e.amount > ZERO]


# ============================================================================
# CREATION
# ============================================================================

def create_stake(
    goal_id: str,
    user_id: str,
    principal: Numeric,
    apr_model: AprModel,
    start_at: datetime,
    accrual_method: Optional[AccrualMethod] = None,
    fee_rate_on_stake: Optional[Numeric] = None,
    fee_rate_on_withdrawal: Optional[Numeric] = None,
    fee_schedule: Optional[FeeSchedule] = None,
    apr_schedule: Optional[AprSchedule] = None,
    early_completion_bonus: Optional[Numeric] = None,
    planned_end_at: Optional[datetime] = None,
    group_id: Optional[str] = None,
    corporate_account_id: Optional[str] = None,
    charity_id: Optional[str] = None,
    stake_id: Optional[str] = None,
) -> Tuple[Stake, List[LedgerEntry]]:
    """
    Create an Active stake and charge its creation fee.

    The stake starts with accrued_amount = 0 and last_accrual_at = start_at.
    Explicit fee rates and accrual method win over the schedules; the
    schedule defaults apply where a value is not given.

    Args:
        goal_id: Goal the stake backs
        user_id: Owner of the stake
        principal: Amount staked (must be positive)
        apr_model: FixedApr or VariableApr
        start_at: Accrual start timestamp
        accrual_method: Simple or compounding policy; defaults to the
            apr_schedule tier for the principal, else simple
        fee_rate_on_stake: Creation fee rate in [0, 1]
        fee_rate_on_withdrawal: Withdrawal fee rate in [0, 1]
        fee_schedule: Source of default fee rates
        apr_schedule: Source of the default compounding policy
        early_completion_bonus: Optional bonus rate on accrued amount
        planned_end_at: Goal deadline; required for the bonus to ever apply
        group_id / corporate_account_id / charity_id: Optional ownership links
        stake_id: Explicit id (a UUID4 is generated otherwise)

    Returns:
        (stake, entries) where entries holds the creation fee if non-zero.

    Raises:
        InvalidInput: If principal <= 0, a rate is out of range, or
                      planned_end_at precedes start_at.

    Example:
        stake, entries = create_stake(
            goal_id="goal_1",
            user_id="alice",
            principal=Decimal("1000"),
            apr_model=FixedApr(Decimal("0.05")),
            start_at=datetime(2025, 1, 1),
            fee_rate_on_stake=Decimal("0.01"),
        )
        # entries == [LedgerEntry(creation_fee -10.00000000 ...)]
    """
    principal = to_decimal(principal, "principal")
    if principal <= ZERO:
        raise InvalidInput(f"principal must be positive, got {principal}")
    if not goal_id or not goal_id.strip():
        raise InvalidInput("goal_id cannot be empty")
    if not user_id or not user_id.strip():
        raise InvalidInput("user_id cannot be empty")
    if planned_end_at is not None and planned_end_at < start_at:
        raise InvalidInput(
            f"planned_end_at ({planned_end_at}) cannot precede start_at ({start_at})"
        )

    schedule = fee_schedule or FeeSchedule()
    if fee_rate_on_stake is None:
        fee_rate_on_stake = schedule.staking_fee_rate
    if fee_rate_on_withdrawal is None:
        fee_rate_on_withdrawal = schedule.withdrawal_fee_rate
    if accrual_method is None:
        accrual_method = (
            apr_schedule.tier_for(principal).accrual_method if apr_schedule else ACCRUAL_SIMPLE
        )

    stake = Stake(
        id=stake_id or str(uuid.uuid4()),
        goal_id=goal_id,
        user_id=user_id,
        principal=principal,
        start_at=start_at,
        apr_model=apr_model,
        accrual_method=accrual_method,
        fee_rate_on_stake=fee_rate_on_stake,
        fee_rate_on_withdrawal=fee_rate_on_withdrawal,
        early_completion_bonus=early_completion_bonus,
        planned_end_at=planned_end_at,
        accrued_amount=ZERO,
        last_accrual_at=start_at,
        status=StakeStatus.ACTIVE,
        created_at=start_at,
        updated_at=start_at,
        group_id=group_id,
        corporate_account_id=corporate_account_id,
        charity_id=charity_id,
    )

    fee = calculate_creation_fee(stake)
    entry = LedgerEntry(
        stake_id=stake.id,
        kind=LedgerEntryKind.CREATION_FEE,
        amount=fee,
        effective_at=start_at,
        user_id=user_id,
        metadata={'rate': stake.fee_rate_on_stake, 'base': stake.principal},
    )
    return replace(stake, creation_fee_charged=True), _entries(entry)


# ============================================================================
# TRANSITIONS
# ============================================================================

def _complete(stake: Stake, at: datetime) -> Tuple[Stake, List[LedgerEntry]]:
    if stake.bonus_applied:
        raise InvalidTransition(f"Early-completion bonus already applied to stake {stake.id}")

    early = is_early_completion(stake, at)
    bonus = calculate_early_completion_bonus(stake, at)
    entry = None
    if early:
        entry = LedgerEntry(
            stake_id=stake.id,
            kind=LedgerEntryKind.EARLY_COMPLETION_BONUS,
            amount=bonus,
            effective_at=at,
            user_id=stake.user_id,
            metadata={'rate': stake.early_completion_bonus, 'base': stake.accrued_amount},
        )

    # The bonus lands in accrued_amount before it freezes.
    new_stake = replace(
        stake,
        status=StakeStatus.COMPLETED,
        accrued_amount=stake.accrued_amount + bonus,
        bonus_applied=early,
        closed_at=at,
        updated_at=at,
    )
    return new_stake, _entries(entry)


def _forfeit(stake: Stake, at: datetime) -> Tuple[Stake, List[LedgerEntry]]:
    # Disposition of principal and accrued funds belongs to the distribution subsystem.
    new_stake = replace(stake, status=StakeStatus.FORFEITED, closed_at=at, updated_at=at)
    return new_stake, []


def _withdraw(stake: Stake, at: datetime) -> Tuple[Stake, List[LedgerEntry]]:
    if stake.withdrawal_fee_charged:
        raise InvalidTransition(f"Withdrawal fee already charged on stake {stake.id}")

    fee = calculate_withdrawal_fee(stake)
    entry = LedgerEntry(
        stake_id=stake.id,
        kind=LedgerEntryKind.WITHDRAWAL_FEE,
        amount=fee,
        effective_at=at,
        user_id=stake.user_id,
        metadata={'rate': stake.fee_rate_on_withdrawal, 'base': stake.total_value},
    )
    new_stake = replace(
        stake,
        status=StakeStatus.WITHDRAWN,
        withdrawal_fee_charged=True,
        closed_at=at,
        updated_at=at,
    )
    return new_stake, _entries(entry)


_HANDLERS = {
    Trigger.GOAL_SUCCEEDED: _complete,
    Trigger.GOAL_FAILED: _forfeit,
    Trigger.USER_WITHDRAWAL: _withdraw,
}


def transition(
    stake: Stake,
    trigger: Trigger,
    at: datetime,
) -> Tuple[Stake, List[LedgerEntry]]:
    """
    Apply a lifecycle trigger to an Active stake.

    The stake's accrued amount is frozen as given; callers that want
    interest up to `at` run an accrual pass first.

    Args:
        stake: Current snapshot (must be ACTIVE)
        trigger: GOAL_SUCCEEDED, GOAL_FAILED or USER_WITHDRAWAL
        at: Transition timestamp (not before last_accrual_at)

    Returns:
        (new snapshot, ledger entries). The new snapshot keeps the same
        version; the store bumps it on write.

    Raises:
        InvalidTransition: If the stake is not ACTIVE, or a one-shot
                           adjustment was already applied.
        InvalidInput: If `at` precedes last_accrual_at or the trigger is unknown.
    """
    handler = _HANDLERS.get(trigger) if isinstance(trigger, Trigger) else None
    if handler is None:
        raise InvalidInput(f"Unknown trigger {trigger!r}")
    if stake.status is not StakeStatus.ACTIVE:
        raise InvalidTransition(
            f"Cannot apply {trigger.value} to stake {stake.id}: status is {stake.status.value}"
        )
    if at < stake.last_accrual_at:
        raise InvalidInput(
            f"Transition time {at.isoformat()} precedes last accrual "
            f"{stake.last_accrual_at.isoformat()} for stake {stake.id}"
        )
    return handler(stake, at)


def complete_stake(stake: Stake, at: datetime) -> Tuple[Stake, List[LedgerEntry]]:
    """Goal succeeded: Active -> Completed."""
    return transition(stake, Trigger.GOAL_SUCCEEDED, at)


def forfeit_stake(stake: Stake, at: datetime) -> Tuple[Stake, List[LedgerEntry]]:
    """Goal failed or deadline passed: Active -> Forfeited."""
    return transition(stake, Trigger.GOAL_FAILED, at)


def withdraw_stake(stake: Stake, at: datetime) -> Tuple[Stake, List[LedgerEntry]]:
    """User-initiated early exit: Active -> Withdrawn."""
    return transition(stake, Trigger.USER_WITHDRAWAL, at)
