"""
conftest.py - Shared pytest fixtures for stake engine tests

Provides common fixtures used across unit, conformance and functional tests:
- A fixed start time and a rate resolver
- Stake factories
- Store, sink and engine setups
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from stake_engine import (
    AccrualEngine,
    DuePolicy,
    EngineConfig,
    FixedApr,
    InMemoryLedgerSink,
    InMemoryStakeStore,
    StaticRateResolver,
    DEFAULT_APR_SCHEDULE,
)

from tests.stake_factory import make_stake, T0


# =============================================================================
# TIME AND RATES
# =============================================================================

@pytest.fixture
def t0():
    """Stake start time used throughout the tests."""
    return T0


@pytest.fixture
def one_day():
    return timedelta(days=1)


@pytest.fixture
def resolver():
    """Resolver with a flat variable rate and the default tiered schedule."""
    return StaticRateResolver(
        variable_rates={"market": Decimal("0.04")},
        schedules={"tiered": DEFAULT_APR_SCHEDULE},
    )


# =============================================================================
# STAKES
# =============================================================================

@pytest.fixture
def stake():
    """1000 at 5% simple, starting at T0."""
    return make_stake()


@pytest.fixture
def stake_factory():
    return make_stake


# =============================================================================
# STORE / SINK / ENGINE
# =============================================================================

@pytest.fixture
def store():
    return InMemoryStakeStore()


@pytest.fixture
def rolling_store():
    return InMemoryStakeStore(due_policy=DuePolicy.ROLLING_24H)


@pytest.fixture
def sink():
    return InMemoryLedgerSink()


@pytest.fixture
def engine(store, resolver, sink):
    return AccrualEngine(store, resolver, sink, EngineConfig(max_stale_retries=2))


@pytest.fixture
def opened_stake(engine, t0):
    """A stake opened through the engine (creation fee recorded in the sink)."""
    return engine.open_stake(
        goal_id="goal_1",
        user_id="alice",
        principal=Decimal("1000"),
        apr_model=FixedApr(Decimal("0.05")),
        start_at=t0,
        fee_rate_on_stake=Decimal("0.01"),
        fee_rate_on_withdrawal=Decimal("0.02"),
        early_completion_bonus=Decimal("0.10"),
        planned_end_at=t0 + timedelta(days=400),
        stake_id="stake_1",
    )
