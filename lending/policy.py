"""
policy.py - Collateralization policies

A policy is the strategy that parameterizes a LendingPool. Both pool variants
run the same engine; they differ only in the policy they are built with.

ARCHITECTURE:
=============

1. FROZEN DATACLASSES: every policy is immutable. A privileged parameter
   update produces a new policy via dataclasses.replace().

2. CAPABILITY SET: each policy answers the same questions
   - check_eligibility(principal)     (gate consulted only when opening)
   - compute_max_borrow(collateral)   (most debt the collateral supports)
   - compute_min_collateral(debt)     (least collateral the debt requires)
   - compute_seizure(amount_to_cover) (collateral paid to a liquidator)
   - is_liquidatable(position)        (solvency check)

3. VARIANT FLAGS (class-level):
   - atomic_open: opening deposits collateral and borrows in one step,
     and a full repay closes the position
   - seizes_whole_position: liquidation takes all collateral for all debt

Key Formulas (value = collateral * price / 1e18, price defaults to 1e18):
    FixedRatioPolicy, CONVENTIONAL:  max_borrow = value * ratio / 1e18
    FixedRatioPolicy, SOURCE_PARITY: max_borrow = value * 1e18 / ratio
    LoanToValuePolicy:               max_borrow = value * ltv / 1e18
    seizure (ratio policies):        collateral worth amount_to_cover * ratio / 1e18
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional

from .core import (
    SCALE, Position, EligibilityGate, PriceFeed,
    ConfigurationError, EligibilityTooLow, OracleUnavailable,
    mul_div, mul_div_up,
)


class BorrowLimitMode(Enum):
    """
    How a FixedRatioPolicy turns collateral into a borrow limit.

    CONVENTIONAL: the ratio is the fraction of collateral value that may be
                  borrowed (ratio <= 1e18).
    SOURCE_PARITY: collateral value is divided by the ratio (the legacy
                   formula). With a ratio below 1e18 this allows borrowing
                   more than the collateral is worth.
    """
    CONVENTIONAL = "conventional"
    SOURCE_PARITY = "source_parity"


@dataclass(frozen=True, slots=True)
class FixedPrice:
    """PriceFeed returning a constant quote. The default is 1:1 (SCALE)."""
    price: int = SCALE

    def __post_init__(self):
        if isinstance(self.price, bool) or not isinstance(self.price, int) or self.price <= 0:
            raise ConfigurationError(f"Price must be a positive int, got {self.price!r}")

    def collateral_price(self) -> int:
        return self.price


def _require_fraction(value: int, name: str, allow_above_one: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive int in 1e18 scale, got {value!r}")
    if not allow_above_one and value > SCALE:
        raise ConfigurationError(f"{name} must not exceed 1e18, got {value}")


# ============================================================================
# BASE POLICY
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class CollateralPolicy(ABC):
    """
    Shared eligibility and valuation behavior for every policy.

    Attributes:
        gate: Optional eligibility oracle; None admits every principal.
        min_score: Score a principal needs to open a position.
        price_feed: Optional collateral price; None means 1:1 with the debt asset.
        enforce_solvency: Require a position to be undercollateralized before
                          it can be liquidated.
    """
    gate: Optional[EligibilityGate] = None
    min_score: int = 0
    price_feed: Optional[PriceFeed] = None
    enforce_solvency: bool = True

    atomic_open: ClassVar[bool] = False
    seizes_whole_position: ClassVar[bool] = False

    def __post_init__(self):
        if isinstance(self.min_score, bool) or not isinstance(self.min_score, int) or self.min_score < 0:
            raise ConfigurationError(f"min_score must be a non-negative int, got {self.min_score!r}")

    @property
    def name(self) -> str:
        return type(self).__name__

    # ------------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------------

    def check_eligibility(self, principal: str) -> None:
        """
        Admit or reject a principal that is opening a position.

        Raises:
            EligibilityTooLow: If the gate's score is below min_score
            OracleUnavailable: Propagated from the gate unchanged
        """
        if self.gate is None:
            return
        score = self.gate.score(principal)
        if isinstance(score, bool) or not isinstance(score, int):
            raise OracleUnavailable(f"Eligibility gate returned a non-integer score: {score!r}")
        if score < self.min_score:
            raise EligibilityTooLow(
                f"{principal} has score {score}, minimum to open is {self.min_score}"
            )

    # ------------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------------

    def collateral_price(self) -> int:
        if self.price_feed is None:
            return SCALE
        price = self.price_feed.collateral_price()
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise OracleUnavailable(f"Price feed returned an unusable quote: {price!r}")
        return price

    def collateral_value(self, collateral: int) -> int:
        """Value of a collateral amount in debt-asset units."""
        return mul_div(collateral, self.collateral_price(), SCALE)

    def collateral_for_value(self, value: int, round_up: bool = False) -> int:
        """Collateral amount worth the given debt-asset value."""
        if round_up:
            return mul_div_up(value, SCALE, self.collateral_price())
        return mul_div(value, SCALE, self.collateral_price())

    # ------------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------------

    @abstractmethod
    def compute_max_borrow(self, collateral: int) -> int:
        """Most debt the given collateral supports."""

    @abstractmethod
    def compute_min_collateral(self, debt: int) -> int:
        """Least collateral the given debt requires."""

    @abstractmethod
    def compute_seizure(self, amount_to_cover: int) -> int:
        """Collateral paid to a liquidator covering amount_to_cover."""

    def is_liquidatable(self, position: Position) -> bool:
        """A position is liquidatable once its debt exceeds what its collateral supports."""
        return position.debt > self.compute_max_borrow(position.collateral)


# ============================================================================
# FIXED COLLATERAL RATIO (pool variant)
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class FixedRatioPolicy(CollateralPolicy):
    """
    Pool-level lending against a fixed collateral ratio.

    Suppliers and borrowers are independent: supply() adds liquidity, while
    deposit_collateral() / borrow() / withdraw_collateral() manage a position.

    enforce_solvency defaults to True in CONVENTIONAL mode and False in
    SOURCE_PARITY mode, where liquidation eligibility is caller-asserted.

    Example:
        policy = FixedRatioPolicy(collateral_ratio=to_fixed("0.5"))
        policy.compute_max_borrow(to_fixed(100))  # to_fixed(50)
    """
    collateral_ratio: int
    limit_mode: BorrowLimitMode = BorrowLimitMode.CONVENTIONAL
    enforce_solvency: Optional[bool] = None

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.limit_mode, BorrowLimitMode):
            raise ConfigurationError(f"Unknown borrow limit mode: {self.limit_mode!r}")
        _require_fraction(
            self.collateral_ratio, "collateral_ratio",
            allow_above_one=self.limit_mode is BorrowLimitMode.SOURCE_PARITY,
        )
        if self.enforce_solvency is None:
            object.__setattr__(
                self, 'enforce_solvency',
                self.limit_mode is BorrowLimitMode.CONVENTIONAL,
            )

    def compute_max_borrow(self, collateral: int) -> int:
        value = self.collateral_value(collateral)
        if self.limit_mode is BorrowLimitMode.SOURCE_PARITY:
            return mul_div(value, SCALE, self.collateral_ratio)
        return mul_div(value, self.collateral_ratio, SCALE)

    def compute_min_collateral(self, debt: int) -> int:
        """
        Smallest collateral that keeps the given debt within the limit.

        CONVENTIONAL inverts compute_max_borrow and rounds up.
        SOURCE_PARITY uses the legacy floor: debt * ratio / 1e18.
        """
        if self.limit_mode is BorrowLimitMode.SOURCE_PARITY:
            value = mul_div(debt, self.collateral_ratio, SCALE)
        else:
            value = mul_div_up(debt, SCALE, self.collateral_ratio)
        return self.collateral_for_value(value, round_up=True)

    def compute_seizure(self, amount_to_cover: int) -> int:
        value = mul_div(amount_to_cover, self.collateral_ratio, SCALE)
        return self.collateral_for_value(value)


# ============================================================================
# LOAN-TO-VALUE (gated variant)
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class LoanToValuePolicy(CollateralPolicy):
    """
    One loan per principal, opened and borrowed in a single step.

    open_position() borrows collateral * loan_to_value immediately; repaying
    the whole debt returns the collateral and deletes the position.
    Liquidation seizes the entire position.

    Example:
        policy = LoanToValuePolicy(
            loan_to_value=to_fixed("0.8"),
            gate=registry,
            min_score=30,
        )
    """
    loan_to_value: int

    atomic_open: ClassVar[bool] = True
    seizes_whole_position: ClassVar[bool] = True

    def __post_init__(self):
        super().__post_init__()
        _require_fraction(self.loan_to_value, "loan_to_value")

    def compute_max_borrow(self, collateral: int) -> int:
        return mul_div(self.collateral_value(collateral), self.loan_to_value, SCALE)

    def compute_min_collateral(self, debt: int) -> int:
        # Capability set only: loan-to-value positions never withdraw collateral.
        value = mul_div_up(debt, SCALE, self.loan_to_value)
        return self.collateral_for_value(value, round_up=True)

    def compute_seizure(self, amount_to_cover: int) -> int:
        """Capability set only: liquidation of a loan always takes the whole position."""
        return self.collateral_for_value(amount_to_cover)
