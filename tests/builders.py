"""
builders.py - Pool and book construction helpers for lending tests

- make_book: asset book with ETH/USDC registered and standard wallets funded
- make_ratio_pool / make_gated_pool: the two pool variants, ready to use
- capture_state: snapshot of everything an operation could change
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, Optional

from lending import (
    AssetBook, BookCustodian, Custodian, LendingPool,
    FixedRatioPolicy, LoanToValuePolicy, BorrowLimitMode, CollateralPolicy,
    to_fixed,
)


COLLATERAL = "ETH"
DEBT = "USDC"
POOL_WALLET = "pool"
OWNER = "admin"

WALLETS = (POOL_WALLET, "alice", "bob", "carol", "liquidator")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_book(wallets: Iterable[str] = WALLETS, pool_liquidity: int = 0) -> AssetBook:
    """
    Create a book with ETH and USDC registered and the standard wallets funded.

    alice, bob:  1_000 ETH and 1_000 USDC each
    carol:       10_000 USDC (liquidity provider)
    liquidator:  10_000 USDC
    pool:        pool_liquidity USDC (whole units)
    """
    book = AssetBook("custody")
    book.register_asset(COLLATERAL)
    book.register_asset(DEBT)
    for wallet in wallets:
        book.register_wallet(wallet)
    for borrower in ("alice", "bob"):
        if book.is_registered(borrower):
            book.issue(borrower, COLLATERAL, to_fixed(1_000))
            book.issue(borrower, DEBT, to_fixed(1_000))
    for provider in ("carol", "liquidator"):
        if book.is_registered(provider):
            book.issue(provider, DEBT, to_fixed(10_000))
    if pool_liquidity:
        book.issue(POOL_WALLET, DEBT, to_fixed(pool_liquidity))
    return book


def make_pool(
    policy: CollateralPolicy,
    custodian: Custodian,
    name: str = "pool",
) -> LendingPool:
    return LendingPool(
        policy,
        custodian,
        collateral_asset=COLLATERAL,
        debt_asset=DEBT,
        owner=OWNER,
        pool_wallet=POOL_WALLET,
        name=name,
    )


def make_ratio_pool(
    ratio: str = "0.5",
    mode: BorrowLimitMode = BorrowLimitMode.CONVENTIONAL,
    book: Optional[AssetBook] = None,
    supply: int = 1_000,
    **policy_kwargs: Any,
) -> LendingPool:
    """Collateral-ratio pool with `supply` USDC of liquidity supplied by carol."""
    book = book if book is not None else make_book()
    policy = FixedRatioPolicy(collateral_ratio=to_fixed(ratio), limit_mode=mode, **policy_kwargs)
    pool = make_pool(policy, BookCustodian(book), name="ratio")
    if supply:
        pool.supply("carol", to_fixed(supply))
    return pool


def make_gated_pool(
    ltv: str = "0.8",
    book: Optional[AssetBook] = None,
    **policy_kwargs: Any,
) -> LendingPool:
    """Loan-to-value pool whose wallet holds 10_000 USDC of lendable funds."""
    book = book if book is not None else make_book(pool_liquidity=10_000)
    policy = LoanToValuePolicy(loan_to_value=to_fixed(ltv), **policy_kwargs)
    return make_pool(policy, BookCustodian(book), name="gated")


def capture_state(pool: LendingPool, book: Optional[AssetBook] = None) -> Dict[str, Any]:
    """Everything an operation could change, for before/after comparison."""
    state: Dict[str, Any] = {
        'positions': pool.positions(),
        'totals': pool.totals,
        'events': len(pool.events),
        'min_score': pool.policy.min_score,
    }
    if book is not None:
        state['balances'] = {
            (w, a): book.get_balance(w, a)
            for w in sorted(book.registered_wallets)
            for a in sorted(book.assets)
        }
    return state


