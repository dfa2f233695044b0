"""
test_rates.py - Unit tests for APR models and rate resolvers
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from stake_engine import (
    AprSchedule,
    AprTier,
    DEFAULT_APR_SCHEDULE,
    FixedApr,
    InvalidInput,
    RateResolver,
    StaticRateResolver,
    TimeSeriesRateResolver,
    VariableApr,
)
from tests.stake_factory import make_stake, T0


class TestAprModels:

    def test_fixed_coerces_to_decimal(self):
        assert FixedApr(0.05).rate == Decimal("0.05")

    def test_fixed_negative_rejected(self):
        with pytest.raises(InvalidInput):
            FixedApr(Decimal("-0.01"))

    def test_variable_needs_name(self):
        with pytest.raises(InvalidInput):
            VariableApr("  ")


class TestAprSchedule:

    @pytest.mark.parametrize("principal,apr,compounding,period", [
        ("100", "0.02", False, 1),
        ("500", "0.03", True, 7),
        ("1000", "0.03", True, 7),
        ("2500", "0.04", True, 1),
        ("100000", "0.04", True, 1),
    ])
    def test_default_tiers(self, principal, apr, compounding, period):
        tier = DEFAULT_APR_SCHEDULE.tier_for(Decimal(principal))
        assert tier.apr == Decimal(apr)
        assert tier.accrual_method.compounding is compounding
        if compounding:
            assert tier.accrual_method.period_days == period

    def test_tiers_sorted(self):
        schedule = AprSchedule(tiers=(
            AprTier(min_principal=Decimal("100"), apr=Decimal("0.03")),
            AprTier(min_principal=Decimal("0"), max_principal=Decimal("100"), apr=Decimal("0.01")),
        ))
        assert [t.min_principal for t in schedule.tiers] == [Decimal("0"), Decimal("100")]

    def test_falls_back_to_first_tier(self):
        schedule = AprSchedule(tiers=(
            AprTier(min_principal=Decimal("100"), apr=Decimal("0.03")),
        ))
        assert schedule.tier_for(Decimal("5")).apr == Decimal("0.03")

    def test_empty_schedule_rejected(self):
        with pytest.raises(InvalidInput):
            AprSchedule(tiers=())

    def test_inverted_band_rejected(self):
        with pytest.raises(InvalidInput):
            AprTier(min_principal=Decimal("10"), max_principal=Decimal("5"), apr=Decimal("0.01"))


class TestStaticRateResolver:

    def test_satisfies_protocol(self, resolver):
        assert isinstance(resolver, RateResolver)

    def test_fixed_resolves_trivially(self, resolver):
        assert resolver.resolve(make_stake(rate="0.07"), T0) == Decimal("0.07")

    def test_named_variable_rate(self, resolver):
        stake = make_stake(apr_model=VariableApr("market"))
        assert resolver.resolve(stake, T0) == Decimal("0.04")

    def test_tiered_variable_rate(self, resolver):
        small = make_stake(principal="200", apr_model=VariableApr("tiered"))
        large = make_stake(principal="5000", apr_model=VariableApr("tiered"))
        assert resolver.resolve(small, T0) == Decimal("0.02")
        assert resolver.resolve(large, T0) == Decimal("0.04")

    def test_unknown_model_rejected(self, resolver):
        with pytest.raises(InvalidInput):
            resolver.resolve(make_stake(apr_model=VariableApr("nope")), T0)

    def test_update_rate(self, resolver):
        resolver.update_rate("market", Decimal("0.06"))
        assert resolver.resolve(make_stake(apr_model=VariableApr("market")), T0) == Decimal("0.06")

    def test_negative_rate_rejected(self):
        with pytest.raises(InvalidInput):
            StaticRateResolver(variable_rates={"bad": Decimal("-0.01")})


class TestTimeSeriesRateResolver:

    def test_latest_rate_at_or_before(self):
        resolver = TimeSeriesRateResolver({
            "market": [
                (T0 + timedelta(days=10), Decimal("0.06")),
                (T0, Decimal("0.04")),
            ],
        })
        stake = make_stake(apr_model=VariableApr("market"))

        assert resolver.resolve(stake, T0) == Decimal("0.04")
        assert resolver.resolve(stake, T0 + timedelta(days=9)) == Decimal("0.04")
        assert resolver.resolve(stake, T0 + timedelta(days=10)) == Decimal("0.06")

    def test_before_first_rate_rejected(self):
        resolver = TimeSeriesRateResolver({"market": [(T0, Decimal("0.04"))]})
        with pytest.raises(InvalidInput):
            resolver.rate_at("market", T0 - timedelta(seconds=1))

    def test_fixed_model_ignores_history(self):
        resolver = TimeSeriesRateResolver()
        assert resolver.resolve(make_stake(rate="0.05"), T0) == Decimal("0.05")
