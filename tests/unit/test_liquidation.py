"""
test_liquidation.py - Unit tests for liquidation planning and execution

Tests:
- plan_liquidation: partial and whole-position plans, precondition order
- LendingPool.liquidate: settlement, ledger update, events
- Solvency check with and without enforcement
"""

from datetime import datetime

import pytest

from lending import (
    Position, EventKind, FixedRatioPolicy, LoanToValuePolicy, to_fixed,
    plan_liquidation, LiquidationPlan,
    InvalidAmount, NoDebt, AmountExceedsDebt, PositionHealthy, InsufficientCollateral,
)

from tests.builders import make_book, make_ratio_pool, make_gated_pool, capture_state
from tests.fakes import MutablePrice


T0 = datetime(2025, 1, 1)
HALF = FixedRatioPolicy(collateral_ratio=to_fixed("0.5"))
LTV = LoanToValuePolicy(loan_to_value=to_fixed("0.8"))


def units(n):
    return to_fixed(n)


class TestPlanLiquidation:
    """Pure planning: no state is touched."""

    def test_partial_plan(self):
        position = Position("alice", units(100), units(60), T0)
        plan = plan_liquidation(HALF, "alice", position, "liq", units(20))
        assert plan == LiquidationPlan("alice", "liq", units(20), units(10), False)
        remaining = plan.apply(position)
        assert (remaining.collateral, remaining.debt) == (units(90), units(40))

    def test_plan_that_empties_position(self):
        position = Position("alice", units(10), units(20), T0)
        plan = plan_liquidation(HALF, "alice", position, "liq", units(20))
        assert plan.closes_position
        assert plan.apply(position) is None

    def test_whole_position_plan_ignores_amount(self):
        position = Position("alice", units(100), units(90), T0)
        plan = plan_liquidation(LTV, "alice", position, "liq", units(1))
        assert (plan.debt_covered, plan.collateral_seized) == (units(90), units(100))
        assert plan.closes_position

    def test_missing_amount(self):
        position = Position("alice", units(100), units(60), T0)
        with pytest.raises(InvalidAmount):
            plan_liquidation(HALF, "alice", position, "liq", None)

    def test_invalid_amount_checked_first(self):
        with pytest.raises(InvalidAmount):
            plan_liquidation(HALF, "alice", None, "liq", 0)

    def test_no_position(self):
        with pytest.raises(NoDebt):
            plan_liquidation(HALF, "alice", None, "liq", units(1))
        with pytest.raises(NoDebt):
            plan_liquidation(LTV, "alice", None, "liq")

    def test_no_debt(self):
        position = Position("alice", units(100), 0, T0)
        with pytest.raises(NoDebt):
            plan_liquidation(HALF, "alice", position, "liq", units(1))

    def test_cover_exceeds_debt(self):
        position = Position("alice", units(100), units(60), T0)
        with pytest.raises(AmountExceedsDebt):
            plan_liquidation(HALF, "alice", position, "liq", units(60) + 1)

    def test_healthy_position(self):
        position = Position("alice", units(100), units(50), T0)
        with pytest.raises(PositionHealthy):
            plan_liquidation(HALF, "alice", position, "liq", units(10))
        with pytest.raises(PositionHealthy):
            plan_liquidation(LTV, "alice", Position("alice", units(100), units(80), T0), "liq")

    def test_healthy_position_without_enforcement(self):
        lenient = FixedRatioPolicy(collateral_ratio=to_fixed("0.5"), enforce_solvency=False)
        position = Position("alice", units(100), units(50), T0)
        plan = plan_liquidation(lenient, "alice", position, "liq", units(10))
        assert plan.collateral_seized == units(5)


class TestPoolLiquidation:
    """Liquidation through the engine, driven by a collateral price drop."""

    @pytest.fixture
    def setup(self):
        book = make_book()
        feed = MutablePrice()
        pool = make_ratio_pool(book=book, price_feed=feed)
        pool.deposit_collateral("alice", units(100))
        pool.borrow("alice", units(50))
        return pool, book, feed

    def test_healthy_position_rejected(self, setup):
        pool, book, _ = setup
        before = capture_state(pool, book)
        with pytest.raises(PositionHealthy):
            pool.liquidate("liquidator", "alice", units(10))
        assert capture_state(pool, book) == before

    def test_partial_liquidation_after_price_drop(self, setup):
        pool, book, feed = setup
        feed.price = to_fixed("0.8")
        assert pool.is_liquidatable("alice")

        plan = pool.liquidate("liquidator", "alice", units(20))

        assert plan.collateral_seized == to_fixed("12.5")
        position = pool.get_position("alice")
        assert (position.collateral, position.debt) == (to_fixed("87.5"), units(30))
        assert pool.totals.total_collateral == to_fixed("87.5")
        assert pool.totals.total_borrowed == units(30)
        assert book.get_balance("liquidator", "USDC") == units(9_980)
        assert book.get_balance("liquidator", "ETH") == to_fixed("12.5")
        assert book.get_balance("pool", "ETH") == to_fixed("87.5")

        event = pool.events[-1]
        assert event.kind is EventKind.LIQUIDATE
        assert event.principals == ("alice", "liquidator")
        assert event.amounts['debt_covered'] == units(20)

    def test_seizure_beyond_collateral(self, setup):
        pool, _, feed = setup
        feed.price = to_fixed("0.1")
        with pytest.raises(InsufficientCollateral):
            pool.liquidate("liquidator", "alice", units(50))
        pool.liquidate("liquidator", "alice", units(10))
        assert pool.get_position("alice").collateral == units(50)

    def test_no_debt(self, setup):
        pool, _, _ = setup
        pool.deposit_collateral("bob", units(10))
        with pytest.raises(NoDebt):
            pool.liquidate("liquidator", "bob", units(1))


class TestWholePositionLiquidation:

    @pytest.fixture
    def setup(self):
        book = make_book(pool_liquidity=10_000)
        feed = MutablePrice()
        pool = make_gated_pool(book=book, price_feed=feed)
        pool.open_position("alice", units(100))
        return pool, book, feed

    def test_healthy_loan_rejected(self, setup):
        pool, _, _ = setup
        with pytest.raises(PositionHealthy):
            pool.liquidate("liquidator", "alice")

    def test_seizes_everything(self, setup):
        pool, book, feed = setup
        feed.price = to_fixed("0.9")
        plan = pool.liquidate("liquidator", "alice")
        assert (plan.debt_covered, plan.collateral_seized) == (units(80), units(100))
        assert pool.get_position("alice") is None
        assert pool.totals.total_collateral == 0
        assert pool.totals.total_borrowed == 0
        assert book.get_balance("liquidator", "ETH") == units(100)
        assert book.get_balance("liquidator", "USDC") == units(9_920)
        assert pool.events[-1].balances['collateral'] == 0

    def test_caller_asserted_mode(self):
        pool = make_gated_pool(enforce_solvency=False)
        pool.open_position("alice", units(100))
        pool.liquidate("liquidator", "alice")
        assert pool.get_position("alice") is None
