"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the simulation core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_time_properties.py - Turn/period bijection and monotonic time
2. test_atomicity_properties.py - Rejected commands leave state unchanged
3. test_accounting_properties.py - Cash/credit/margin/P&L identity, netting, idempotent repricing

These tests use hypothesis for property-based testing.
"""
