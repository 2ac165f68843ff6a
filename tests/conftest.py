"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, functional and conformance tests:
- An asset book with funded wallets and its custodian adapter
- A reputation registry with one eligible and one ineligible principal
- A collateral-ratio pool with supplied liquidity
- A gated loan-to-value pool with a funded pool wallet
"""

import pytest

from lending import BookCustodian, ReputationRegistry

from tests.builders import OWNER, make_book, make_ratio_pool, make_gated_pool


@pytest.fixture
def book():
    """Funded asset book with no pool liquidity."""
    return make_book()


@pytest.fixture
def custodian(book):
    return BookCustodian(book)


@pytest.fixture
def registry():
    """Registry where alice scores 42 and bob scores 20."""
    reg = ReputationRegistry(owner=OWNER)
    reg.set_score(OWNER, "alice", 42)
    reg.set_score(OWNER, "bob", 20)
    return reg


@pytest.fixture
def ratio_pool(book):
    """Conventional 0.5 collateral-ratio pool with 1_000 USDC supplied by carol."""
    return make_ratio_pool(book=book)


@pytest.fixture
def gated_book():
    return make_book(pool_liquidity=10_000)


@pytest.fixture
def gated_pool(gated_book, registry):
    """0.8 loan-to-value pool gated on min_score 30."""
    return make_gated_pool(book=gated_book, gate=registry, min_score=30)
