"""
positions.py - Position Ledger

Pure storage for one pool: per-principal positions, per-provider supplied
balances, and the pool-wide aggregates derived from them.

No method here applies lending policy. The only guarantee this module makes is
aggregate consistency: every mutation of a position or supplied balance updates
the matching aggregate in the same call, so

    totals.total_collateral == sum(p.collateral for p in positions)
    totals.total_borrowed   == sum(p.debt for p in positions)
    totals.total_supplied   == sum(supplied balances)

holds between any two calls.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .core import Position, PoolTotals, checked_sub


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Immutable copy of a PositionLedger, used to roll back a failed operation."""
    positions: Tuple[Tuple[str, Position], ...]
    supplied: Tuple[Tuple[str, int], ...]
    totals: PoolTotals


class PositionLedger:
    """
    Keyed store of positions and supplied balances with paired aggregates.

    Positions are immutable values; upsert() replaces the stored value and
    adjusts totals by the difference from the previous one.

    Thread Safety:
        Not thread-safe. The owning LendingPool serializes all access.
    """

    def __init__(self):
        self._positions: Dict[str, Position] = {}
        self._supplied: Dict[str, int] = {}
        self._totals = PoolTotals()

    # ========================================================================
    # READS
    # ========================================================================

    @property
    def totals(self) -> PoolTotals:
        return self._totals

    def get(self, principal: str) -> Optional[Position]:
        """Return the principal's position, or None if there is none."""
        return self._positions.get(principal)

    def get_supplied(self, principal: str) -> int:
        """Return the principal's supplied balance (0 if never supplied)."""
        return self._supplied.get(principal, 0)

    def positions(self) -> Dict[str, Position]:
        return dict(self._positions)

    def suppliers(self) -> Dict[str, int]:
        return dict(self._supplied)

    def __contains__(self, principal: str) -> bool:
        return principal in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    # ========================================================================
    # MUTATION (always paired with an aggregate update)
    # ========================================================================

    def upsert(self, position: Position) -> None:
        """
        Insert or replace a position and move the aggregates by the difference.

        Args:
            position: New value for position.principal
        """
        previous = self._positions.get(position.principal)
        old_collateral = previous.collateral if previous else 0
        old_debt = previous.debt if previous else 0

        totals = self._totals
        new_totals = PoolTotals(
            total_collateral=checked_sub(totals.total_collateral + position.collateral, old_collateral),
            total_supplied=totals.total_supplied,
            total_borrowed=checked_sub(totals.total_borrowed + position.debt, old_debt),
        )
        self._positions[position.principal] = position
        self._totals = new_totals

    def remove(self, principal: str) -> Optional[Position]:
        """
        Delete a position and subtract its balances from the aggregates.

        Returns:
            The removed position, or None if the principal had none.
        """
        previous = self._positions.get(principal)
        if previous is None:
            return None
        totals = self._totals
        new_totals = PoolTotals(
            total_collateral=checked_sub(totals.total_collateral, previous.collateral),
            total_supplied=totals.total_supplied,
            total_borrowed=checked_sub(totals.total_borrowed, previous.debt),
        )
        del self._positions[principal]
        self._totals = new_totals
        return previous

    def set_supplied(self, principal: str, amount: int) -> None:
        """Set a provider's supplied balance; zero removes the entry."""
        old = self._supplied.get(principal, 0)
        totals = self._totals
        new_totals = PoolTotals(
            total_collateral=totals.total_collateral,
            total_supplied=checked_sub(totals.total_supplied + amount, old),
            total_borrowed=totals.total_borrowed,
        )
        if amount:
            self._supplied[principal] = amount
        else:
            self._supplied.pop(principal, None)
        self._totals = new_totals

    # ========================================================================
    # SNAPSHOT / RESTORE
    # ========================================================================

    def snapshot(self) -> LedgerSnapshot:
        """Capture the full ledger state. Positions are immutable, so a shallow copy suffices."""
        return LedgerSnapshot(
            positions=tuple(self._positions.items()),
            supplied=tuple(self._supplied.items()),
            totals=self._totals,
        )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        """Replace the ledger state with a previously captured snapshot."""
        self._positions = dict(snapshot.positions)
        self._supplied = dict(snapshot.supplied)
        self._totals = snapshot.totals

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def verify_aggregates(self) -> Dict[str, Any]:
        """
        Recompute every aggregate from the stored records and compare.

        This is a test and audit aid; operations never call it.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every aggregate matches its recomputed sum
            - 'totals': PoolTotals - the stored aggregates
            - 'recomputed': PoolTotals - sums over the stored records
            - 'discrepancies': List[Dict] - field, stored, recomputed for each mismatch

        Example:
            result = pool.verify_aggregates()
            assert result['valid'], result['discrepancies']
        """
        recomputed = PoolTotals(
            total_collateral=sum(p.collateral for p in self._positions.values()),
            total_supplied=sum(self._supplied.values()),
            total_borrowed=sum(p.debt for p in self._positions.values()),
        )
        discrepancies: List[Dict[str, Any]] = []
        for name in ("total_collateral", "total_supplied", "total_borrowed"):
            stored = getattr(self._totals, name)
            actual = getattr(recomputed, name)
            if stored != actual:
                discrepancies.append({
                    'field': name,
                    'stored': stored,
                    'recomputed': actual,
                })
        inactive = [p.principal for p in self._positions.values() if not p.active]
        for principal in inactive:
            discrepancies.append({'field': 'active', 'principal': principal})

        return {
            'valid': not discrepancies,
            'totals': self._totals,
            'recomputed': recomputed,
            'discrepancies': discrepancies,
        }
