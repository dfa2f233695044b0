"""
stake_engine - Staking Accrual Engine

Interest accrual, fees, bonuses and lifecycle for goal-backed stakes.

Usage:
    from stake_engine import (
        AccrualEngine, InMemoryStakeStore, InMemoryLedgerSink,
        StaticRateResolver, FixedApr, ACCRUAL_DAILY, Trigger,
    )

    store = InMemoryStakeStore()
    sink = InMemoryLedgerSink()
    engine = AccrualEngine(store, StaticRateResolver(), sink)

    stake = engine.open_stake(
        goal_id="goal_1",
        user_id="alice",
        principal=Decimal("1000"),
        apr_model=FixedApr(Decimal("0.05")),
        accrual_method=ACCRUAL_DAILY,
        start_at=datetime(2025, 1, 1),
    )

    # Daily batch pass (idempotent: re-running at the same time adds nothing)
    report = engine.step(datetime(2025, 1, 2))

    # Goal succeeded: accrue to now, apply any early bonus, freeze
    stake, entries = engine.transition(stake.id, Trigger.GOAL_SUCCEEDED, datetime(2025, 1, 2))
"""

# Core types
from .core import (
    StakeStatus,
    Trigger,
    LedgerEntry,
    LedgerEntryKind,
    StakeEngineError,
    InvalidInput,
    InvalidTransition,
    StaleState,
    NotFound,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    DAYS_PER_YEAR,
    MONEY_QUANTUM,
    DEFAULT_MAX_STALE_RETRIES,
)

# Decimal arithmetic
from .money import (
    to_decimal,
    quantize_money,
    apply_rate,
    apply_ratio,
    money_sum,
)

# Accrual math
from .accrual import (
    AccrualMethod,
    ACCRUAL_SIMPLE,
    ACCRUAL_DAILY,
    ACCRUAL_WEEKLY,
    ACCRUAL_MONTHLY,
    AccrualProjection,
    AccrualWindow,
    StakingQuote,
    accrual_base,
    calculate_accrual,
    calculate_staking_quote,
    calculate_stake_accrual,
    project_accrual,
    seconds_between,
)

# Rates
from .rates import (
    FixedApr,
    VariableApr,
    RateResolver,
    AprTier,
    AprSchedule,
    DEFAULT_APR_SCHEDULE,
    StaticRateResolver,
    TimeSeriesRateResolver,
)

# Stake snapshot
from .stake import (
    Stake,
    stake_to_dict,
    stake_from_dict,
)

# Fee & bonus policy
from .policy import (
    FeeSchedule,
    FeeBucket,
    DEFAULT_FEE_SCHEDULE,
    DEFAULT_FEE_SCHEDULES,
    fee_schedule_for,
    calculate_creation_fee,
    calculate_withdrawal_fee,
    calculate_early_completion_bonus,
    is_early_completion,
)

# Lifecycle
from .lifecycle import (
    create_stake,
    transition,
    complete_stake,
    forfeit_stake,
    withdraw_stake,
)

# Scheduler
from .scheduler import (
    AccrualResult,
    AccrualFailure,
    AccrualPassReport,
    EngineConfig,
    AccrualEngine,
    accrue_stake,
    run_accrual_pass,
    apply_accrual_result,
)

# Store and sink
from .store import (
    StakeStore,
    LedgerSink,
    DuePolicy,
    InMemoryStakeStore,
    InMemoryLedgerSink,
)

# Reporting
from .reporting import (
    AccrualSummary,
    StakeStatistics,
    summarize_stakes,
    summarize_user,
    stake_statistics,
)

# Shorter name for the accrual math entry point
compute_accrual = calculate_accrual

__version__ = "0.1.0"
