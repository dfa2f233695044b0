"""
test_store.py - Unit tests for the in-memory stake store and ledger sink
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from stake_engine import (
    DuePolicy,
    InMemoryLedgerSink,
    InMemoryStakeStore,
    InvalidInput,
    LedgerEntry,
    LedgerEntryKind,
    LedgerSink,
    NotFound,
    StakeStatus,
    StakeStore,
    StaleState,
    accrue_stake,
)
from tests.stake_factory import make_stake, T0


class TestDuePolicy:

    def test_calendar_day(self):
        last = datetime(2025, 1, 1, 23, 0)
        assert not DuePolicy.CALENDAR_DAY.is_due(last, datetime(2025, 1, 1, 23, 59))
        assert DuePolicy.CALENDAR_DAY.is_due(last, datetime(2025, 1, 2, 0, 1))

    def test_rolling_24h(self):
        last = datetime(2025, 1, 1, 23, 0)
        assert not DuePolicy.ROLLING_24H.is_due(last, datetime(2025, 1, 2, 22, 59))
        assert DuePolicy.ROLLING_24H.is_due(last, datetime(2025, 1, 2, 23, 0))


class TestInMemoryStakeStore:

    def test_satisfies_protocol(self, store):
        assert isinstance(store, StakeStore)

    def test_add_and_get(self, store):
        stake = make_stake()
        store.add(stake)
        assert store.get("stake_1") is stake
        assert "stake_1" in store
        assert len(store) == 1

    def test_duplicate_add_rejected(self, store):
        store.add(make_stake())
        with pytest.raises(InvalidInput):
            store.add(make_stake())

    def test_missing_stake(self, store):
        with pytest.raises(NotFound) as exc_info:
            store.get("nope")
        assert str(exc_info.value) == "Stake nope not found"
        with pytest.raises(KeyError):
            store.get("nope")

    def test_find_due_calendar_day(self, store):
        store.add(make_stake("fresh", last_accrual_at=datetime(2025, 1, 2, 6, 0)))
        store.add(make_stake("stale", last_accrual_at=datetime(2025, 1, 1, 18, 0)))
        store.add(make_stake("closed", status=StakeStatus.WITHDRAWN, closed_at=T0))

        due = store.find_due(datetime(2025, 1, 2, 12, 0))
        assert [s.id for s in due] == ["stale"]

    def test_find_due_rolling(self, rolling_store):
        rolling_store.add(make_stake("a", last_accrual_at=datetime(2025, 1, 1, 18, 0)))
        rolling_store.add(make_stake("b", last_accrual_at=datetime(2025, 1, 1, 6, 0)))

        due = rolling_store.find_due(datetime(2025, 1, 2, 12, 0))
        assert [s.id for s in due] == ["b"]

    def test_list_by_owner(self, store):
        store.add(make_stake("a", user_id="alice", group_id="g1"))
        store.add(make_stake("b", user_id="bob", group_id="g1", corporate_account_id="corp"))
        store.add(make_stake("c", user_id="alice", goal_id="goal_2"))

        assert [s.id for s in store.list_by_user("alice")] == ["a", "c"]
        assert [s.id for s in store.list_by_group("g1")] == ["a", "b"]
        assert [s.id for s in store.list_by_corporate_account("corp")] == ["b"]
        assert [s.id for s in store.list_by_goal("goal_2")] == ["c"]
        assert [s.id for s in store.all()] == ["a", "b", "c"]

    def test_apply_accrual_bumps_version(self, store, resolver):
        store.add(make_stake())
        result = accrue_stake(store.get("stake_1"), T0 + timedelta(days=1), resolver)
        stored = store.apply_accrual(result)
        assert stored.version == 1
        assert stored.accrued_amount == Decimal("0.13698630")
        assert store.get("stake_1") == stored

    def test_apply_accrual_twice_is_stale(self, store, resolver):
        store.add(make_stake())
        result = accrue_stake(store.get("stake_1"), T0 + timedelta(days=1), resolver)
        store.apply_accrual(result)
        with pytest.raises(StaleState):
            store.apply_accrual(result)
        assert store.get("stake_1").version == 1

    def test_save_checks_version(self, store):
        store.add(make_stake())
        saved = store.save(make_stake(charity_id="charity"), expected_version=0)
        assert saved.version == 1
        assert saved.charity_id == "charity"
        with pytest.raises(StaleState):
            store.save(make_stake(), expected_version=0)

    def test_save_unknown_stake(self, store):
        with pytest.raises(NotFound):
            store.save(make_stake(), expected_version=0)


class TestInMemoryLedgerSink:

    def _entry(self, amount="5"):
        return LedgerEntry(
            stake_id="stake_1",
            kind=LedgerEntryKind.CREATION_FEE,
            amount=Decimal(amount),
            effective_at=T0,
        )

    def test_satisfies_protocol(self, sink):
        assert isinstance(sink, LedgerSink)

    def test_records_once_by_entry_id(self, sink):
        assert sink.record([self._entry()]) == 1
        assert sink.record([self._entry()]) == 0
        assert sink.record([self._entry("5.00")]) == 0
        assert sink.record([self._entry("6")]) == 1
        assert len(sink) == 2

    def test_entries_for(self, sink):
        other = LedgerEntry(
            stake_id="stake_2",
            kind=LedgerEntryKind.WITHDRAWAL_FEE,
            amount=Decimal("1"),
            effective_at=T0,
        )
        sink.record([self._entry(), other])
        assert sink.entries_for("stake_2") == [other]
