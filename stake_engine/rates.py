"""
rates.py - APR models and rate resolution

Maps a stake's APR model to a concrete annual rate at evaluation time.

Classes:
- FixedApr / VariableApr: the two shapes of a stake's aprModel
- RateResolver: Protocol the scheduler consumes
- AprTier / AprSchedule: principal-banded rates
- StaticRateResolver: fixed rates plus static or tiered variable models
- TimeSeriesRateResolver: variable models whose rate changes over time

Rates are annualized decimal fractions (Decimal("0.05") for 5%).
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Protocol, Tuple, Union, runtime_checkable, TYPE_CHECKING

from .accrual import AccrualMethod
from .core import ZERO, InvalidInput
from .money import Numeric, to_decimal

if TYPE_CHECKING:
    from .stake import Stake


# ============================================================================
# APR MODELS
# ============================================================================

@dataclass(frozen=True, slots=True)
class FixedApr:
    """A fixed annual rate, resolved trivially."""
    rate: Decimal

    def __post_init__(self):
        rate = to_decimal(self.rate, "rate")
        if rate < ZERO:
            raise InvalidInput(f"rate cannot be negative, got {rate}")
        object.__setattr__(self, 'rate', rate)


@dataclass(frozen=True, slots=True)
class VariableApr:
    """A named variable-rate model resolved externally at evaluation time."""
    name: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise InvalidInput("VariableApr name cannot be empty")


AprModel = Union[FixedApr, VariableApr]


def _checked_rate(rate: Decimal, source: str) -> Decimal:
    rate = to_decimal(rate, "rate")
    if rate < ZERO:
        raise InvalidInput(f"{source} resolved to a negative rate: {rate}")
    return rate


@runtime_checkable
class RateResolver(Protocol):
    """
    Protocol for rate resolvers.

    Implementations map a stake's apr_model to a non-negative annual rate
    at a specific timestamp.
    """

    def resolve(self, stake: "Stake", at: datetime) -> Decimal:
        """Return the annual rate for the stake at the given time."""
        ...


# ============================================================================
# TIERED SCHEDULE
# ============================================================================

@dataclass(frozen=True, slots=True)
class AprTier:
    """
    One principal band of an APR schedule.

    A tier applies when min_principal <= principal <= max_principal
    (max_principal None means unbounded).
    """
    min_principal: Decimal
    apr: Decimal
    max_principal: Optional[Decimal] = None
    compounding: bool = False
    period_days: int = 1

    def __post_init__(self):
        object.__setattr__(self, 'min_principal', to_decimal(self.min_principal, "min_principal"))
        object.__setattr__(self, 'apr', to_decimal(self.apr, "apr"))
        if self.max_principal is not None:
            object.__setattr__(self, 'max_principal', to_decimal(self.max_principal, "max_principal"))
            if self.max_principal < self.min_principal:
                raise InvalidInput(
                    f"max_principal ({self.max_principal}) cannot be below min_principal ({self.min_principal})"
                )
        if self.apr < ZERO:
            raise InvalidInput(f"apr cannot be negative, got {self.apr}")

    def contains(self, principal: Decimal) -> bool:
        if principal < self.min_principal:
            return False
        return self.max_principal is None or principal <= self.max_principal

    @property
    def accrual_method(self) -> AccrualMethod:
        return AccrualMethod(compounding=self.compounding, period_days=self.period_days)


@dataclass(frozen=True, slots=True)
class AprSchedule:
    """
    Principal-banded APR schedule.

    Tiers are kept sorted by min_principal. Where bands overlap at a
    boundary, the higher band wins.
    """
    tiers: Tuple[AprTier, ...]

    def __post_init__(self):
        if not self.tiers:
            raise InvalidInput("AprSchedule needs at least one tier")
        object.__setattr__(
            self, 'tiers', tuple(sorted(self.tiers, key=lambda t: t.min_principal))
        )

    def tier_for(self, principal: Numeric) -> AprTier:
        """Last tier containing the principal, or the first tier if none does."""
        principal = to_decimal(principal, "principal")
        matching = [t for t in self.tiers if t.contains(principal)]
        return matching[-1] if matching else self.tiers[0]


DEFAULT_APR_SCHEDULE = AprSchedule(tiers=(
    AprTier(min_principal=Decimal("0"), max_principal=Decimal("500"), apr=Decimal("0.02")),
    AprTier(min_principal=Decimal("500"), max_principal=Decimal("2500"), apr=Decimal("0.03"),
            compounding=True, period_days=7),
    AprTier(min_principal=Decimal("2500"), apr=Decimal("0.04"), compounding=True, period_days=1),
))


# ============================================================================
# RESOLVERS
# ============================================================================

class StaticRateResolver:
    """
    Rate resolver backed by in-process rate tables.

    FixedApr models resolve to their own rate. A VariableApr name is looked
    up first in the static rate map, then in the named tiered schedules
    (banded by the stake's principal).
    """

    def __init__(
        self,
        variable_rates: Optional[Mapping[str, Numeric]] = None,
        schedules: Optional[Mapping[str, AprSchedule]] = None,
    ):
        self.variable_rates: Dict[str, Decimal] = {
            name: _checked_rate(rate, name) for name, rate in (variable_rates or {}).items()
        }
        self.schedules: Dict[str, AprSchedule] = dict(schedules or {})

    def resolve(self, stake: "Stake", at: datetime) -> Decimal:
        model = stake.apr_model
        if isinstance(model, FixedApr):
            return model.rate
        if model.name in self.variable_rates:
            return self.variable_rates[model.name]
        if model.name in self.schedules:
            tier = self.schedules[model.name].tier_for(stake.principal)
            return _checked_rate(tier.apr, model.name)
        raise InvalidInput(f"No rate available for variable APR model '{model.name}'")

    def update_rate(self, name: str, rate: Numeric) -> None:
        """Set or replace a named variable rate."""
        self.variable_rates[name] = _checked_rate(rate, name)

    def __repr__(self):
        return f"StaticRateResolver({len(self.variable_rates)} rates, {len(self.schedules)} schedules)"


class TimeSeriesRateResolver:
    """
    Rate resolver for variable models whose rate changes over time.

    Uses the most recent rate effective at or before the evaluation time.
    FixedApr models resolve to their own rate.
    """

    def __init__(self, rate_paths: Optional[Dict[str, List[Tuple[datetime, Numeric]]]] = None):
        self.rate_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        for name, path in (rate_paths or {}).items():
            for effective_from, rate in path:
                self.add_rate(name, effective_from, rate)

    def add_rate(self, name: str, effective_from: datetime, rate: Numeric) -> None:
        """Record a rate for a model, effective from the given timestamp."""
        history = self.rate_history.setdefault(name, [])
        history.append((effective_from, _checked_rate(rate, name)))
        history.sort(key=lambda item: item[0])

    def rate_at(self, name: str, at: datetime) -> Decimal:
        history = self.rate_history.get(name)
        if not history:
            raise InvalidInput(f"No rate available for variable APR model '{name}'")
        idx = bisect_right([t for t, _ in history], at)
        if idx == 0:
            raise InvalidInput(f"No rate for model '{name}' effective at {at.isoformat()}")
        return history[idx - 1][1]

    def resolve(self, stake: "Stake", at: datetime) -> Decimal:
        model = stake.apr_model
        if isinstance(model, FixedApr):
            return model.rate
        return self.rate_at(model.name, at)
