"""
engine.py - LendingPool, the borrow/repay state machine

The LendingPool is the only object that mutates pool state. One engine serves
both pool variants; the CollateralPolicy it is constructed with decides which
operations exist and how limits are computed.

Every state-changing operation follows the same sequence:
    1. acquire the pool guard (re-entry from the same thread is rejected)
    2. snapshot the position ledger
    3. validate input, ledger state and policy (eligibility only when opening)
    4. settle custodian transfers, compensating completed ones on failure
    5. apply ledger updates (aggregates move in the same call)
    6. append exactly one PoolEvent
    7. release the guard; on any failure the snapshot is restored first

Per-principal lifecycle: NoPosition -> Active -> NoPosition. Closed positions
are deleted, never kept as inactive records.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
import logging
import threading

from .core import (
    Position, PoolTotals, PoolEvent, EventKind, Transfer,
    Custodian,
    LendingError, ValidationError, ExternalDependencyError, ConfigurationError,
    CustodianError, ReentrancyViolation, UnsupportedOperation, Unauthorized,
    PositionAlreadyActive, NoActivePosition, NoCollateral, ExceedsLimit,
    InsufficientCollateral, InsufficientBalance, AmountExceedsDebt, InvalidAmount,
    require_amount, checked_sub,
)
from .policy import CollateralPolicy
from .positions import PositionLedger
from .liquidation import LiquidationPlan, plan_liquidation

logger = logging.getLogger(__name__)


class LendingPool:
    """
    A single lending pool: positions, supplied liquidity and the event log.

    Thread Safety:
        All operations and reads run under one per-pool lock. A call that
        re-enters the pool from the thread already holding the lock (for
        example from a custodian or gate callback) raises ReentrancyViolation.

    Example:
        book = AssetBook()
        ...
        pool = LendingPool(
            LoanToValuePolicy(loan_to_value=to_fixed("0.8")),
            BookCustodian(book),
            collateral_asset="ETH",
            debt_asset="USDC",
            owner="admin",
        )
        borrowed = pool.open_or_supply("alice", to_fixed(100))  # to_fixed(80)
    """

    def __init__(
        self,
        policy: CollateralPolicy,
        custodian: Custodian,
        *,
        collateral_asset: str,
        debt_asset: str,
        owner: str,
        pool_wallet: str = "pool",
        name: str = "pool",
        initial_time: Optional[datetime] = None,
    ):
        if not isinstance(policy, CollateralPolicy):
            raise ConfigurationError(f"Expected a CollateralPolicy, got {type(policy).__name__}")
        if not isinstance(custodian, Custodian):
            raise ConfigurationError(f"Custodian must implement transfer(), got {type(custodian).__name__}")
        if not collateral_asset or not debt_asset:
            raise ConfigurationError("Collateral and debt assets must be named")
        if collateral_asset == debt_asset:
            raise ConfigurationError("Collateral and debt assets must differ")
        if not owner or not pool_wallet or not name:
            raise ConfigurationError("Pool owner, wallet and name cannot be empty")

        self.name = name
        self.collateral_asset = collateral_asset
        self.debt_asset = debt_asset
        self.pool_wallet = pool_wallet
        self._owner = owner
        self._policy = policy
        self._custodian = custodian
        self._ledger = PositionLedger()
        self._events: List[PoolEvent] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self._guard = threading.Lock()
        self._guard_holder: Optional[int] = None

    # ========================================================================
    # GUARD AND OPERATION SCOPE
    # ========================================================================

    @contextmanager
    def _guarded(self) -> Iterator[None]:
        me = threading.get_ident()
        if self._guard_holder == me:
            raise ReentrancyViolation(f"Pool {self.name} re-entered while an operation is in progress")
        with self._guard:
            self._guard_holder = me
            try:
                yield
            finally:
                self._guard_holder = None

    @contextmanager
    def _operation(self, op: str) -> Iterator[None]:
        """Run one state-changing operation: all of it commits or none of it does."""
        with self._guarded():
            snapshot = self._ledger.snapshot()
            try:
                yield
            except Exception as exc:
                self._ledger.restore(snapshot)
                if isinstance(exc, ExternalDependencyError):
                    logger.warning("%s rejected on pool %s: %s", op, self.name, exc)
                elif isinstance(exc, LendingError):
                    logger.info("%s rejected on pool %s: %s", op, self.name, exc)
                else:
                    logger.exception("%s failed on pool %s", op, self.name)
                raise

    def _settle(self, transfers: Sequence[Transfer]) -> None:
        """
        Run custodian transfers in order.

        If one fails, the transfers already completed in this call are undone
        in reverse order before the original error propagates.
        """
        completed: List[Transfer] = []
        for transfer in transfers:
            try:
                self._custodian.transfer(transfer)
            except Exception:
                self._compensate(completed)
                raise
            completed.append(transfer)

    def _compensate(self, completed: List[Transfer]) -> None:
        for transfer in reversed(completed):
            try:
                self._custodian.transfer(transfer.reversed())
            except Exception as exc:
                logger.error(
                    "Compensation of %r failed on pool %s; custody no longer matches the ledger",
                    transfer, self.name,
                )
                raise CustodianError(f"Could not compensate {transfer!r}") from exc

    def _record(
        self,
        kind: EventKind,
        principals: Tuple[str, ...],
        amounts: Mapping[str, int],
        balances: Optional[Mapping[str, int]] = None,
    ) -> PoolEvent:
        totals = self._ledger.totals
        resulting: Dict[str, int] = dict(balances or {})
        resulting.update(
            total_collateral=totals.total_collateral,
            total_supplied=totals.total_supplied,
            total_borrowed=totals.total_borrowed,
        )
        event = PoolEvent(
            sequence_number=len(self._events),
            kind=kind,
            principals=principals,
            amounts=amounts,
            balances=resulting,
            timestamp=self._current_time,
            pool_name=self.name,
        )
        self._events.append(event)
        logger.debug("Committed %r", event)
        return event

    def _require_variant(self, atomic: bool, op: str) -> None:
        if self._policy.atomic_open != atomic:
            raise UnsupportedOperation(f"{op} is not available with {self._policy.name}")

    def _require_principal(self, principal: str) -> None:
        if not isinstance(principal, str) or not principal.strip():
            raise ValidationError(f"Principal must be a non-empty string, got {principal!r}")
        if principal == self.pool_wallet:
            raise ValidationError(f"{principal} is the pool's own wallet")

    def _store(self, position: Position) -> None:
        if position.is_empty:
            self._ledger.remove(position.principal)
        else:
            self._ledger.upsert(position)

    def _transfer_in(self, asset: str, principal: str, amount: int, memo: str) -> Transfer:
        return Transfer(asset, principal, self.pool_wallet, amount, f"{memo}:{principal}")

    def _transfer_out(self, asset: str, principal: str, amount: int, memo: str) -> Transfer:
        return Transfer(asset, self.pool_wallet, principal, amount, f"{memo}:{principal}")

    # ========================================================================
    # OPENING AND FUNDING
    # ========================================================================

    def open_or_supply(self, principal: str, amount: int) -> int:
        """
        Variant entry point: open a loan (loan-to-value) or supply liquidity (ratio).

        Returns:
            The amount borrowed when a position is opened, 0 when supplying.
        """
        if self._policy.atomic_open:
            return self.open_position(principal, amount)
        self.supply(principal, amount)
        return 0

    def supply(self, principal: str, amount: int) -> None:
        """Add debt-asset liquidity to the pool on behalf of a provider."""
        with self._operation("supply"):
            self._require_variant(False, "supply")
            self._require_principal(principal)
            require_amount(amount)

            self._settle([self._transfer_in(self.debt_asset, principal, amount, "supply")])

            supplied = self._ledger.get_supplied(principal) + amount
            self._ledger.set_supplied(principal, supplied)
            self._record(EventKind.SUPPLY, (principal,), {'amount': amount}, {'supplied': supplied})

    def deposit_collateral(self, principal: str, amount: int) -> None:
        """
        Add collateral to a principal's position, creating it if needed.

        Eligibility is consulted only when this call creates the position.
        """
        with self._operation("deposit_collateral"):
            self._require_variant(False, "deposit_collateral")
            self._require_principal(principal)
            require_amount(amount)

            position = self._ledger.get(principal)
            if position is None:
                self._policy.check_eligibility(principal)
                position = Position(principal, 0, 0, self._current_time)

            self._settle([self._transfer_in(self.collateral_asset, principal, amount, "deposit")])

            updated = position.with_balances(position.collateral + amount, position.debt)
            self._ledger.upsert(updated)
            self._record(
                EventKind.DEPOSIT_COLLATERAL, (principal,), {'amount': amount},
                {'collateral': updated.collateral, 'debt': updated.debt},
            )

    def open_position(self, principal: str, collateral: int) -> int:
        """
        Deposit collateral and borrow against it in one step.

        Returns:
            The borrowed amount, collateral value times loan_to_value.

        Raises:
            InvalidAmount: If collateral is not positive or too small to borrow against
            PositionAlreadyActive: If the principal already has a position
            EligibilityTooLow: If the gate's score is below min_score
            OracleUnavailable: If the gate or price feed cannot answer
        """
        with self._operation("open_position"):
            self._require_variant(True, "open_position")
            self._require_principal(principal)
            require_amount(collateral, "collateral")

            if principal in self._ledger:
                raise PositionAlreadyActive(f"{principal} already has an active position")
            self._policy.check_eligibility(principal)

            borrowed = self._policy.compute_max_borrow(collateral)
            if borrowed == 0:
                raise InvalidAmount(f"Collateral {collateral} is too small to borrow against")

            self._settle([
                self._transfer_in(self.collateral_asset, principal, collateral, "open"),
                self._transfer_out(self.debt_asset, principal, borrowed, "open"),
            ])

            position = Position(principal, collateral, borrowed, self._current_time)
            self._ledger.upsert(position)
            self._record(
                EventKind.OPEN, (principal,),
                {'collateral': collateral, 'borrowed': borrowed},
                {'collateral': position.collateral, 'debt': position.debt},
            )
            return borrowed

    # ========================================================================
    # BORROWING AND REPAYMENT
    # ========================================================================

    def borrow(self, principal: str, amount: int) -> None:
        """Borrow the debt asset against deposited collateral, up to the policy limit."""
        with self._operation("borrow"):
            self._require_variant(False, "borrow")
            self._require_principal(principal)
            require_amount(amount)

            position = self._ledger.get(principal)
            if position is None or position.collateral == 0:
                raise NoCollateral(f"{principal} has no collateral deposited")

            new_debt = position.debt + amount
            limit = self._policy.compute_max_borrow(position.collateral)
            if new_debt > limit:
                raise ExceedsLimit(f"Debt of {new_debt} would exceed {principal}'s limit of {limit}")

            self._settle([self._transfer_out(self.debt_asset, principal, amount, "borrow")])

            updated = position.with_balances(position.collateral, new_debt)
            self._ledger.upsert(updated)
            self._record(
                EventKind.BORROW, (principal,), {'amount': amount},
                {'collateral': updated.collateral, 'debt': updated.debt},
            )

    def repay(self, principal: str, amount: int) -> None:
        """
        Pay down debt.

        With an atomic-open policy, repaying the whole debt also returns the
        collateral and deletes the position (recorded as a CLOSE event).
        """
        with self._operation("repay"):
            self._require_principal(principal)
            require_amount(amount)

            position = self._ledger.get(principal)
            if position is None:
                raise NoActivePosition(f"{principal} has no active position")
            if amount > position.debt:
                raise AmountExceedsDebt(f"Repayment {amount} exceeds {principal}'s debt of {position.debt}")
            new_debt = checked_sub(position.debt, amount)

            if self._policy.atomic_open and new_debt == 0:
                transfers = [self._transfer_in(self.debt_asset, principal, amount, "repay")]
                if position.collateral:
                    transfers.append(
                        self._transfer_out(self.collateral_asset, principal, position.collateral, "close")
                    )
                self._settle(transfers)

                self._ledger.remove(principal)
                self._record(
                    EventKind.CLOSE, (principal,),
                    {'repaid': amount, 'collateral_returned': position.collateral},
                    {'collateral': 0, 'debt': 0},
                )
                return

            self._settle([self._transfer_in(self.debt_asset, principal, amount, "repay")])

            updated = position.with_balances(position.collateral, new_debt)
            self._store(updated)
            self._record(
                EventKind.REPAY, (principal,), {'amount': amount},
                {'collateral': updated.collateral, 'debt': updated.debt},
            )

    # ========================================================================
    # WITHDRAWALS
    # ========================================================================

    def withdraw_collateral(self, principal: str, amount: int) -> None:
        """Withdraw collateral, never below the minimum the outstanding debt requires."""
        with self._operation("withdraw_collateral"):
            self._require_variant(False, "withdraw_collateral")
            self._require_principal(principal)
            require_amount(amount)

            position = self._ledger.get(principal)
            if position is None:
                raise NoActivePosition(f"{principal} has no active position")
            if amount > position.collateral:
                raise InsufficientCollateral(
                    f"Withdrawal {amount} exceeds {principal}'s collateral of {position.collateral}"
                )

            remaining = checked_sub(position.collateral, amount)
            required = self._policy.compute_min_collateral(position.debt)
            updated = position.with_balances(remaining, position.debt)
            if remaining < required or (self._policy.enforce_solvency and self._policy.is_liquidatable(updated)):
                raise InsufficientCollateral(
                    f"Remaining collateral {remaining} is below the {required} required for debt {position.debt}"
                )

            self._settle([self._transfer_out(self.collateral_asset, principal, amount, "withdraw")])

            self._store(updated)
            self._record(
                EventKind.WITHDRAW_COLLATERAL, (principal,), {'amount': amount},
                {'collateral': updated.collateral, 'debt': updated.debt},
            )

    def withdraw_supply(self, principal: str, amount: int) -> None:
        """Withdraw supplied liquidity. No collateral check applies."""
        with self._operation("withdraw_supply"):
            self._require_variant(False, "withdraw_supply")
            self._require_principal(principal)
            require_amount(amount)

            supplied = self._ledger.get_supplied(principal)
            if amount > supplied:
                raise InsufficientBalance(f"Withdrawal {amount} exceeds {principal}'s supply of {supplied}")

            self._settle([self._transfer_out(self.debt_asset, principal, amount, "withdraw_supply")])

            remaining = checked_sub(supplied, amount)
            self._ledger.set_supplied(principal, remaining)
            self._record(EventKind.WITHDRAW_SUPPLY, (principal,), {'amount': amount}, {'supplied': remaining})

    # ========================================================================
    # LIQUIDATION
    # ========================================================================

    def liquidate(
        self,
        liquidator: str,
        borrower: str,
        amount_to_cover: Optional[int] = None,
    ) -> LiquidationPlan:
        """
        Cover part or all of a borrower's debt in exchange for collateral.

        The liquidator pays amount_to_cover of the debt asset into the pool and
        receives the seized collateral. Whole-position policies ignore
        amount_to_cover and close the position.

        Returns:
            The settled LiquidationPlan.
        """
        with self._operation("liquidate"):
            self._require_principal(liquidator)
            self._require_principal(borrower)

            position = self._ledger.get(borrower)
            plan = plan_liquidation(self._policy, borrower, position, liquidator, amount_to_cover)

            transfers = [self._transfer_in(self.debt_asset, liquidator, plan.debt_covered, "liquidate")]
            if plan.collateral_seized:
                transfers.append(
                    self._transfer_out(self.collateral_asset, liquidator, plan.collateral_seized, "liquidate")
                )
            self._settle(transfers)

            remaining = plan.apply(position)
            if remaining is None or remaining.is_empty:
                self._ledger.remove(borrower)
                balances = {'collateral': 0, 'debt': 0}
            else:
                self._ledger.upsert(remaining)
                balances = {'collateral': remaining.collateral, 'debt': remaining.debt}

            self._record(
                EventKind.LIQUIDATE, (borrower, liquidator),
                {'debt_covered': plan.debt_covered, 'collateral_seized': plan.collateral_seized},
                balances,
            )
            logger.info(
                "Liquidated %s on pool %s: %s covered %d, seized %d",
                borrower, self.name, liquidator, plan.debt_covered, plan.collateral_seized,
            )
            return plan

    # ========================================================================
    # PRIVILEGED UPDATES
    # ========================================================================

    def set_min_score(self, acting_as: str, min_score: int) -> None:
        """
        Change the eligibility threshold for opening positions. Owner only.

        Raises:
            Unauthorized: If acting_as is not the pool owner
            ConfigurationError: If min_score is not a non-negative int
        """
        with self._operation("set_min_score"):
            if acting_as != self._owner:
                raise Unauthorized(f"{acting_as} is not the owner of pool {self.name}")
            previous = self._policy.min_score
            self._policy = replace(self._policy, min_score=min_score)
            self._record(
                EventKind.PARAMETER_UPDATE, (acting_as,),
                {'min_score': min_score, 'previous_min_score': previous},
            )
            logger.info("Pool %s min_score changed from %d to %d by %s", self.name, previous, min_score, acting_as)

    # ========================================================================
    # READS
    # ========================================================================

    @property
    def policy(self) -> CollateralPolicy:
        with self._guarded():
            return self._policy

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def totals(self) -> PoolTotals:
        with self._guarded():
            return self._ledger.totals

    @property
    def events(self) -> Tuple[PoolEvent, ...]:
        """The append-only event log, oldest first."""
        with self._guarded():
            return tuple(self._events)

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_position(self, principal: str) -> Optional[Position]:
        with self._guarded():
            return self._ledger.get(principal)

    def positions(self) -> Dict[str, Position]:
        with self._guarded():
            return self._ledger.positions()

    def supplied_balance(self, principal: str) -> int:
        with self._guarded():
            return self._ledger.get_supplied(principal)

    def max_borrowable(self, principal: str) -> int:
        """Additional debt the principal could take on right now (0 if none)."""
        with self._guarded():
            position = self._ledger.get(principal)
            if position is None:
                return 0
            limit = self._policy.compute_max_borrow(position.collateral)
            return max(0, limit - position.debt)

    def is_liquidatable(self, principal: str) -> bool:
        """True if the principal has debt above what its collateral supports."""
        with self._guarded():
            position = self._ledger.get(principal)
            if position is None or position.debt == 0:
                return False
            return self._policy.is_liquidatable(position)

    def verify_aggregates(self) -> Dict:
        with self._guarded():
            return self._ledger.verify_aggregates()

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the pool's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._guarded():
            if new_time < self._current_time:
                raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
            self._current_time = new_time

    def __repr__(self) -> str:
        return f"LendingPool({self.name}, {self._policy.name}, positions={len(self._ledger)})"
