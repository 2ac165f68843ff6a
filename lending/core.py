"""
Core types and pure functions for the collateralized lending ledger.

This module provides the foundational pieces shared by every other module:
1. Fixed-point arithmetic: integers with an implicit 18-digit fractional scale
2. Exceptions: LendingError and the validation / policy / external taxonomy
3. Immutable data structures: Position, PoolTotals, Transfer, PoolEvent
4. Protocols: Custodian, EligibilityGate, PriceFeed

All functions in this module are pure. Nothing here holds or mutates pool state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, Context, InvalidOperation, ROUND_HALF_EVEN, localcontext
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Protocol, Tuple, Union, runtime_checkable


# ============================================================================
# FIXED-POINT CONSTANTS
# ============================================================================
#
# Every monetary quantity in the system is an int scaled by 10**18.
# Decimal is only used at the edges (configuration, display) and always
# under a dedicated context so the global Decimal context is never touched.
#

FIXED_DECIMALS = 18
SCALE = 10 ** FIXED_DECIMALS

# Precision large enough to hold any 1e18-scaled amount exactly.
_FIXED_CONTEXT = Context(prec=80, rounding=ROUND_HALF_EVEN)

# Reserved wallet for issuance in the asset book.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

FixedInput = Union[int, str, Decimal]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-related errors."""
    pass


# --- Validation errors: bad input, nothing was mutated ---

class ValidationError(LendingError):
    """Raised when an operation's input is malformed or exceeds an available balance."""
    pass


class InvalidAmount(ValidationError):
    """Raised when an amount is zero, negative, not an integer, or not representable."""
    pass


class AmountExceedsDebt(ValidationError):
    """Raised when a repayment or liquidation cover exceeds the outstanding debt."""
    pass


class InsufficientBalance(ValidationError):
    """Raised when a supply withdrawal exceeds the provider's supplied balance."""
    pass


class ArithmeticUnderflow(ValidationError):
    """Raised when a checked subtraction would drive a quantity below zero."""
    pass


# --- Policy violations: well-formed input rejected by the collateral policy ---

class PolicyViolation(LendingError):
    """Raised when an operation is well-formed but not permitted by the pool policy."""
    pass


class EligibilityTooLow(PolicyViolation):
    """Raised when a principal's eligibility score is below the opening threshold."""
    pass


class PositionAlreadyActive(PolicyViolation):
    """Raised when opening a position for a principal that already has one."""
    pass


class NoActivePosition(PolicyViolation):
    """Raised when an operation requires a position the principal does not have."""
    pass


class NoCollateral(PolicyViolation):
    """Raised when borrowing without any deposited collateral."""
    pass


class ExceedsLimit(PolicyViolation):
    """Raised when a borrow would take debt above the policy's maximum."""
    pass


class InsufficientCollateral(PolicyViolation):
    """Raised when remaining or seizable collateral does not cover what is required."""
    pass


class NoDebt(PolicyViolation):
    """Raised when liquidating a principal with no outstanding debt."""
    pass


class PositionHealthy(PolicyViolation):
    """Raised when liquidating a position that still satisfies the collateral policy."""
    pass


class UnsupportedOperation(PolicyViolation):
    """Raised when an operation does not exist in the configured pool variant."""
    pass


class Unauthorized(PolicyViolation):
    """Raised when a privileged operation is attempted by a non-owner identity."""
    pass


# --- External dependency failures ---

class ExternalDependencyError(LendingError):
    """Raised when a collaborator outside the engine fails."""
    pass


class OracleUnavailable(ExternalDependencyError):
    """Raised when the eligibility gate or price feed cannot answer."""
    pass


class CustodianError(ExternalDependencyError):
    """Raised when the custodian cannot complete an asset transfer."""
    pass


class ReentrancyViolation(LendingError):
    """Raised when a pool is re-entered while one of its operations is in progress."""
    pass


class ConfigurationError(LendingError, ValueError):
    """Raised when pool or policy parameters are invalid."""
    pass


# ============================================================================
# FIXED-POINT ARITHMETIC
# ============================================================================

def to_fixed(value: FixedInput) -> int:
    """
    Convert a human-readable quantity to its 1e18-scaled integer form.

    Ints are treated as whole units. Strings and Decimals may carry up to 18
    fractional digits; anything finer is rejected rather than truncated.

    Example:
        to_fixed("12.5")  # 12_500_000_000_000_000_000
        to_fixed(100)     # 100 * 10**18
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Boolean is not a quantity: {value!r}")
    if isinstance(value, int):
        return value * SCALE
    if isinstance(value, float):
        raise InvalidAmount(f"Floats are not accepted, pass a str or Decimal: {value!r}")
    with localcontext(_FIXED_CONTEXT):
        try:
            d = Decimal(value)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise InvalidAmount(f"Not a decimal quantity: {value!r}") from exc
        if not d.is_finite():
            raise InvalidAmount(f"Quantity must be finite, got {value!r}")
        scaled = d.scaleb(FIXED_DECIMALS)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(
                f"Quantity {value!r} has more than {FIXED_DECIMALS} fractional digits"
            )
        return int(scaled)


def from_fixed(amount: int) -> Decimal:
    """Convert a 1e18-scaled integer back to an exact Decimal."""
    with localcontext(_FIXED_CONTEXT):
        return Decimal(amount) / Decimal(SCALE)


def mul_div(a: int, b: int, denominator: int) -> int:
    """Compute floor(a * b / denominator) on non-negative integers."""
    if denominator <= 0:
        raise ArithmeticUnderflow(f"Denominator must be positive, got {denominator}")
    return (a * b) // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """Compute ceil(a * b / denominator) on non-negative integers."""
    if denominator <= 0:
        raise ArithmeticUnderflow(f"Denominator must be positive, got {denominator}")
    return -((-(a * b)) // denominator)


def checked_sub(a: int, b: int) -> int:
    """Subtract b from a, failing instead of going below zero."""
    if b > a:
        raise ArithmeticUnderflow(f"{a} - {b} would underflow")
    return a - b


def require_amount(value: Any, name: str = "amount", allow_zero: bool = False) -> int:
    """
    Validate an operation amount.

    Amounts are plain ints in 1e18 scale. Bools, floats and negative values
    are never amounts; zero is rejected unless allow_zero is set.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be an int in 1e18 scale, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(f"{name} must be positive, got {value}")
    return value


def _require_non_negative_int(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of an asset book execution attempt.

    APPLIED: All transfers were validated and applied.
    REJECTED: Validation failed; no transfer was applied.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class EventKind(Enum):
    """Classification of committed pool operations, one per event."""
    SUPPLY = "supply"
    DEPOSIT_COLLATERAL = "deposit_collateral"
    OPEN = "open"
    BORROW = "borrow"
    REPAY = "repay"
    CLOSE = "close"
    WITHDRAW_COLLATERAL = "withdraw_collateral"
    WITHDRAW_SUPPLY = "withdraw_supply"
    LIQUIDATE = "liquidate"
    PARAMETER_UPDATE = "parameter_update"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    A principal's collateral and debt record within one pool.

    Attributes:
        principal: Identifier of the position holder.
        collateral: Collateral held on the principal's behalf (1e18 scale).
        debt: Amount owed in the borrowed asset (1e18 scale).
        opened_at: Logical time the position was created.
        active: False only for the cleared record of a closed position.

    A closed position never carries balances: active == False implies
    collateral == 0 and debt == 0.
    """
    principal: str
    collateral: int
    debt: int
    opened_at: datetime
    active: bool = True

    def __post_init__(self):
        if not self.principal or not self.principal.strip():
            raise ValueError("Position principal cannot be empty")
        _require_non_negative_int(self.collateral, "collateral")
        _require_non_negative_int(self.debt, "debt")
        if not self.active and (self.collateral or self.debt):
            raise ValueError(
                f"Inactive position for {self.principal} must be fully cleared"
            )

    @property
    def is_empty(self) -> bool:
        """True when the position holds neither collateral nor debt."""
        return self.collateral == 0 and self.debt == 0

    def with_balances(self, collateral: int, debt: int) -> Position:
        """Return a copy with new balances, keeping identity and opening time."""
        return Position(self.principal, collateral, debt, self.opened_at, self.active)

    def __repr__(self) -> str:
        return (
            f"Position({self.principal}: collateral={from_fixed(self.collateral)}, "
            f"debt={from_fixed(self.debt)})"
        )


@dataclass(frozen=True, slots=True)
class PoolTotals:
    """Pool-wide aggregates over every position and supplied balance."""
    total_collateral: int = 0
    total_supplied: int = 0
    total_borrowed: int = 0

    def __post_init__(self):
        _require_non_negative_int(self.total_collateral, "total_collateral")
        _require_non_negative_int(self.total_supplied, "total_supplied")
        _require_non_negative_int(self.total_borrowed, "total_borrowed")


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single movement of an asset between two wallets.

    Attributes:
        asset: Symbol of the asset being moved.
        source: Wallet debited.
        dest: Wallet credited.
        amount: Positive quantity in 1e18 scale.
        memo: Free-form reference (operation kind and principal).
    """
    asset: str
    source: str
    dest: str
    amount: int
    memo: str = ""

    def __post_init__(self):
        if not self.asset or not self.asset.strip():
            raise ValueError("Transfer asset cannot be empty")
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")
        _require_non_negative_int(self.amount, "amount")
        if self.amount == 0:
            raise ValueError("Transfer amount is zero")

    def reversed(self) -> Transfer:
        """Return the compensating transfer that undoes this one."""
        return Transfer(self.asset, self.dest, self.source, self.amount, f"{self.memo}:reversal")

    def __repr__(self) -> str:
        return f"Transfer({from_fixed(self.amount)} {self.asset}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PoolEvent:
    """
    Append-only record of one committed pool operation.

    Attributes:
        sequence_number: Monotonic position in the pool's event log.
        kind: Which operation committed.
        principals: Principals involved (borrower first, then liquidator).
        amounts: Amounts moved by the operation, keyed by name.
        balances: Resulting key balances (position and pool totals).
        timestamp: Pool clock at commit time.
        pool_name: Name of the pool that committed the operation.
    """
    sequence_number: int
    kind: EventKind
    principals: Tuple[str, ...]
    amounts: Mapping[str, int]
    balances: Mapping[str, int]
    timestamp: datetime
    pool_name: str

    def __post_init__(self):
        object.__setattr__(self, 'amounts', MappingProxyType(dict(self.amounts)))
        object.__setattr__(self, 'balances', MappingProxyType(dict(self.balances)))

    def __repr__(self) -> str:
        amounts = ", ".join(f"{k}={from_fixed(v)}" for k, v in self.amounts.items())
        who = ",".join(self.principals)
        return f"PoolEvent(#{self.sequence_number} {self.kind.value} [{who}] {amounts})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class Custodian(Protocol):
    """
    Asset-transfer capability the engine uses to move value in and out.

    Implementations must either complete the transfer or raise CustodianError.
    The call is synchronous; the engine observes the failure immediately.
    """

    def transfer(self, transfer: Transfer) -> None:
        """Move transfer.amount of transfer.asset from source to dest."""
        ...


@runtime_checkable
class EligibilityGate(Protocol):
    """
    Admission-control oracle consulted only when a position is opened.

    score() is a pure query. It may raise OracleUnavailable, which fails the
    calling operation; there is no fallback score.
    """

    def score(self, principal: str) -> int:
        """Return the admission score for a principal."""
        ...


@runtime_checkable
class PriceFeed(Protocol):
    """
    External collateral price, quoted in debt-asset units per collateral unit (1e18 scale).

    Price discovery itself is out of scope; the engine only reads the quote.
    """

    def collateral_price(self) -> int:
        """Return the current collateral price."""
        ...
