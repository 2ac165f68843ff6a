"""
liquidation.py - Pure liquidation planning

plan_liquidation() decides, without touching any state, how much debt a
liquidator covers and how much collateral it receives. The LendingPool then
settles the plan through the custodian and applies it to the ledger.

Preconditions are checked in this order:
    1. amount_to_cover is a positive amount (partial-liquidation policies only)
    2. the borrower has outstanding debt             -> NoDebt
    3. amount_to_cover does not exceed the debt      -> AmountExceedsDebt
    4. the position is undercollateralized           -> PositionHealthy
       (only when the policy enforces solvency)
    5. the seized collateral is available            -> InsufficientCollateral
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .core import (
    Position,
    NoDebt, AmountExceedsDebt, PositionHealthy, InsufficientCollateral,
    require_amount, checked_sub,
)
from .policy import CollateralPolicy


@dataclass(frozen=True, slots=True)
class LiquidationPlan:
    """
    Outcome of a liquidation, before settlement.

    Attributes:
        borrower: Principal whose position is liquidated.
        liquidator: Principal paying the debt in and receiving collateral.
        debt_covered: Debt-asset amount the liquidator pays in.
        collateral_seized: Collateral transferred to the liquidator.
        closes_position: True when the position is deleted afterwards.
    """
    borrower: str
    liquidator: str
    debt_covered: int
    collateral_seized: int
    closes_position: bool

    def apply(self, position: Position) -> Optional[Position]:
        """Return the borrower's position after the plan, or None if it is closed."""
        if self.closes_position:
            return None
        return position.with_balances(
            checked_sub(position.collateral, self.collateral_seized),
            checked_sub(position.debt, self.debt_covered),
        )


def plan_liquidation(
    policy: CollateralPolicy,
    borrower: str,
    position: Optional[Position],
    liquidator: str,
    amount_to_cover: Optional[int] = None,
) -> LiquidationPlan:
    """
    Plan the liquidation of a borrower's position.

    Whole-position policies ignore amount_to_cover: the liquidator covers the
    entire debt and receives the entire collateral.

    Raises:
        InvalidAmount, NoDebt, AmountExceedsDebt, PositionHealthy,
        InsufficientCollateral
    """
    if not policy.seizes_whole_position:
        require_amount(amount_to_cover, "amount_to_cover")

    if position is None or position.debt == 0:
        raise NoDebt(f"{borrower} has no outstanding debt")

    if policy.seizes_whole_position:
        cover = position.debt
    else:
        cover = amount_to_cover
        if cover > position.debt:
            raise AmountExceedsDebt(
                f"Cover {cover} exceeds {borrower}'s debt of {position.debt}"
            )

    if policy.enforce_solvency and not policy.is_liquidatable(position):
        raise PositionHealthy(f"{borrower}'s position is within its borrow limit")

    if policy.seizes_whole_position:
        return LiquidationPlan(
            borrower=borrower,
            liquidator=liquidator,
            debt_covered=cover,
            collateral_seized=position.collateral,
            closes_position=True,
        )

    seized = policy.compute_seizure(cover)
    if seized > position.collateral:
        raise InsufficientCollateral(
            f"Covering {cover} requires {seized} collateral, {borrower} holds {position.collateral}"
        )

    return LiquidationPlan(
        borrower=borrower,
        liquidator=liquidator,
        debt_covered=cover,
        collateral_seized=seized,
        closes_position=(seized == position.collateral and cover == position.debt),
    )
