"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the stake engine.
Any compliant store, scheduler or lifecycle implementation MUST pass these tests.

The tests are organized by invariant:
1. test_monotonicity.py - Accrued balance never decreases while active
2. test_idempotency.py - Re-running a pass or replaying a result changes nothing
3. test_freeze_on_terminal.py - Terminal stakes never accrue or transition again
4. test_fee_once.py - Each one-time fee or bonus reaches the ledger at most once
5. test_determinism.py - Same inputs, same balances and entry ids

These tests use hypothesis for property-based testing.
"""
