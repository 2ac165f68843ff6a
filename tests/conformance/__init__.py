"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of a lending pool.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Custody matches aggregates, assets are never created or destroyed
2. atomicity.py - All-or-nothing operations, compensation of partial settlement
3. reentrancy.py - One operation in progress per pool
4. invariants.py - Collateral floor, no negative balances, one position per principal

These tests use hypothesis for property-based testing.
"""
