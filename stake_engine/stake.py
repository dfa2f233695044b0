"""
stake.py - Stake snapshot

The Stake is an immutable value snapshot of one unit of staked capital tied
to one goal and one owner. Every change produces a NEW instance (value
semantics); persistence belongs to the external store.

Invariants checked on construction:
- principal >= 0, accrued_amount >= 0
- fee rates in [0, 1], early_completion_bonus >= 0
- last_accrual_at >= start_at
- start_at <= period_start_at <= last_accrual_at, 0 <= period_accrued <= accrued_amount
- a terminal status carries closed_at

Adapters:
- stake_to_dict(): flatten to primitives for an external store
- stake_from_dict(): inverse of stake_to_dict()
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from .accrual import AccrualMethod, ACCRUAL_SIMPLE
from .core import ONE, ZERO, InvalidInput, StakeStatus
from .money import to_decimal
from .rates import AprModel, FixedApr, VariableApr


@dataclass(frozen=True, slots=True)
class Stake:
    """
    Immutable snapshot of a stake at a point in time.

    principal is fixed at creation. accrued_amount changes only through
    accrual (and the one early-completion bonus). last_accrual_at only moves
    forward. The three *_charged/*_applied flags are one-shot markers owned
    by the lifecycle state machine. version is the optimistic-concurrency
    token the store checks on every write.
    """
    id: str
    goal_id: str
    user_id: str
    principal: Decimal
    start_at: datetime
    apr_model: AprModel
    accrual_method: AccrualMethod = ACCRUAL_SIMPLE
    fee_rate_on_stake: Decimal = Decimal("0")
    fee_rate_on_withdrawal: Decimal = Decimal("0")
    early_completion_bonus: Optional[Decimal] = None
    planned_end_at: Optional[datetime] = None
    accrued_amount: Decimal = Decimal("0")
    last_accrual_at: Optional[datetime] = None
    period_start_at: Optional[datetime] = None
    period_accrued: Optional[Decimal] = None
    status: StakeStatus = StakeStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    group_id: Optional[str] = None
    corporate_account_id: Optional[str] = None
    charity_id: Optional[str] = None
    creation_fee_charged: bool = False
    withdrawal_fee_charged: bool = False
    bonus_applied: bool = False
    version: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise InvalidInput("Stake id cannot be empty")

        # Convert numeric fields that might be passed as float/int/str
        for name in ('principal', 'fee_rate_on_stake', 'fee_rate_on_withdrawal', 'accrued_amount'):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))
        if self.early_completion_bonus is not None:
            object.__setattr__(
                self, 'early_completion_bonus',
                to_decimal(self.early_completion_bonus, "early_completion_bonus"),
            )

        if self.last_accrual_at is None:
            object.__setattr__(self, 'last_accrual_at', self.start_at)
        # Without an explicit boundary the snapshot sits on one.
        if self.period_start_at is None:
            object.__setattr__(self, 'period_start_at', self.last_accrual_at)
        if self.period_accrued is None:
            object.__setattr__(self, 'period_accrued', self.accrued_amount)
        else:
            object.__setattr__(self, 'period_accrued', to_decimal(self.period_accrued, "period_accrued"))
        if self.created_at is None:
            object.__setattr__(self, 'created_at', self.start_at)
        if self.updated_at is None:
            object.__setattr__(self, 'updated_at', self.created_at)

        if self.principal < ZERO:
            raise InvalidInput(f"principal cannot be negative, got {self.principal}")
        if self.accrued_amount < ZERO:
            raise InvalidInput(f"accrued_amount cannot be negative, got {self.accrued_amount}")
        for name in ('fee_rate_on_stake', 'fee_rate_on_withdrawal'):
            rate = getattr(self, name)
            if rate < ZERO or rate > ONE:
                raise InvalidInput(f"{name} must be in [0, 1], got {rate}")
        if self.early_completion_bonus is not None and self.early_completion_bonus < ZERO:
            raise InvalidInput(
                f"early_completion_bonus cannot be negative, got {self.early_completion_bonus}"
            )
        if self.last_accrual_at < self.start_at:
            raise InvalidInput(
                f"last_accrual_at ({self.last_accrual_at}) precedes start_at ({self.start_at})"
            )
        if not self.start_at <= self.period_start_at <= self.last_accrual_at:
            raise InvalidInput(
                f"period_start_at ({self.period_start_at}) must lie between start_at "
                f"and last_accrual_at ({self.last_accrual_at})"
            )
        if self.period_accrued < ZERO or self.period_accrued > self.accrued_amount:
            raise InvalidInput(
                f"period_accrued must lie in [0, accrued_amount], got {self.period_accrued}"
            )
        if self.status.is_terminal and self.closed_at is None:
            raise InvalidInput(f"Stake {self.id} in status {self.status.value} needs closed_at")

    @property
    def is_active(self) -> bool:
        return self.status is StakeStatus.ACTIVE

    @property
    def total_value(self) -> Decimal:
        return self.principal + self.accrued_amount

    @property
    def is_group_stake(self) -> bool:
        return self.group_id is not None

    @property
    def is_corporate_stake(self) -> bool:
        return self.corporate_account_id is not None

    def __repr__(self) -> str:
        return (
            f"Stake({self.id}: {self.principal} + {self.accrued_amount} "
            f"[{self.status.value}] v{self.version})"
        )


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def _apr_model_to_dict(model: AprModel) -> Dict[str, Any]:
    if isinstance(model, FixedApr):
        return {'kind': 'fixed', 'rate': str(model.rate)}
    return {'kind': 'variable', 'name': model.name}


def _apr_model_from_dict(raw: Dict[str, Any]) -> AprModel:
    kind = raw.get('kind')
    if kind == 'fixed':
        return FixedApr(to_decimal(raw['rate'], 'rate'))
    if kind == 'variable':
        return VariableApr(raw['name'])
    raise InvalidInput(f"Unknown apr_model kind '{kind}'")


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def stake_to_dict(stake: Stake) -> Dict[str, Any]:
    """
    Flatten a stake to primitives for an external store.

    Decimals become strings (never floats) and datetimes become ISO-8601.
    This is the inverse of stake_from_dict().
    """
    return {
        'id': stake.id,
        'goal_id': stake.goal_id,
        'user_id': stake.user_id,
        'principal': str(stake.principal),
        'start_at': stake.start_at.isoformat(),
        'apr_model': _apr_model_to_dict(stake.apr_model),
        'accrual_method': {
            'compounding': stake.accrual_method.compounding,
            'period_days': stake.accrual_method.period_days,
        },
        'fee_rate_on_stake': str(stake.fee_rate_on_stake),
        'fee_rate_on_withdrawal': str(stake.fee_rate_on_withdrawal),
        'early_completion_bonus': (
            str(stake.early_completion_bonus) if stake.early_completion_bonus is not None else None
        ),
        'planned_end_at': _optional_iso(stake.planned_end_at),
        'accrued_amount': str(stake.accrued_amount),
        'last_accrual_at': stake.last_accrual_at.isoformat(),
        'period_start_at': stake.period_start_at.isoformat(),
        'period_accrued': str(stake.period_accrued),
        'status': stake.status.value,
        'created_at': stake.created_at.isoformat(),
        'updated_at': stake.updated_at.isoformat(),
        'closed_at': _optional_iso(stake.closed_at),
        'group_id': stake.group_id,
        'corporate_account_id': stake.corporate_account_id,
        'charity_id': stake.charity_id,
        'creation_fee_charged': stake.creation_fee_charged,
        'withdrawal_fee_charged': stake.withdrawal_fee_charged,
        'bonus_applied': stake.bonus_applied,
        'version': stake.version,
    }


def stake_from_dict(raw: Dict[str, Any]) -> Stake:
    """
    Rebuild a Stake from stake_to_dict() output.

    Raises:
        InvalidInput: If a required field is missing or malformed.
    """
    try:
        method = raw.get('accrual_method') or {}
        bonus = raw.get('early_completion_bonus')
        return Stake(
            id=raw['id'],
            goal_id=raw['goal_id'],
            user_id=raw['user_id'],
            principal=to_decimal(raw['principal'], 'principal'),
            start_at=datetime.fromisoformat(raw['start_at']),
            apr_model=_apr_model_from_dict(raw['apr_model']),
            accrual_method=AccrualMethod(
                compounding=method.get('compounding', False),
                period_days=method.get('period_days', 1),
            ),
            fee_rate_on_stake=to_decimal(raw.get('fee_rate_on_stake', "0"), 'fee_rate_on_stake'),
            fee_rate_on_withdrawal=to_decimal(raw.get('fee_rate_on_withdrawal', "0"), 'fee_rate_on_withdrawal'),
            early_completion_bonus=to_decimal(bonus, 'early_completion_bonus') if bonus is not None else None,
            planned_end_at=_optional_datetime(raw.get('planned_end_at')),
            accrued_amount=to_decimal(raw.get('accrued_amount', "0"), 'accrued_amount'),
            last_accrual_at=_optional_datetime(raw.get('last_accrual_at')),
            period_start_at=_optional_datetime(raw.get('period_start_at')),
            period_accrued=raw.get('period_accrued'),
            status=StakeStatus(raw.get('status', StakeStatus.ACTIVE.value)),
            created_at=_optional_datetime(raw.get('created_at')),
            updated_at=_optional_datetime(raw.get('updated_at')),
            closed_at=_optional_datetime(raw.get('closed_at')),
            group_id=raw.get('group_id'),
            corporate_account_id=raw.get('corporate_account_id'),
            charity_id=raw.get('charity_id'),
            creation_fee_charged=raw.get('creation_fee_charged', False),
            withdrawal_fee_charged=raw.get('withdrawal_fee_charged', False),
            bonus_applied=raw.get('bonus_applied', False),
            version=raw.get('version', 0),
        )
    except KeyError as exc:
        raise InvalidInput(f"Stake record missing field {exc.args[0]!r}") from None
