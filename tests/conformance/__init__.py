"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the equity ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Balances sum to supply; supply only grows by minting
2. atomicity.py - Rejected operations change nothing and log nothing
3. idempotency.py - Replaying a log prefix always yields the same state
4. determinism.py - Replay reconstructs the live ledger exactly
5. temporal.py - Event ordering and multiplier history
6. percentages.py - Fixed-point percentages and the rounding residual

These tests use hypothesis for property-based testing.
"""
