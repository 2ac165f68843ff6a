"""
custody.py - Double-Entry Asset Book and Custodian Adapter

AssetBook is an in-memory custody layer: wallets hold balances of registered
assets, and value only moves through atomic, validated transfer batches.
BookCustodian adapts it to the Custodian protocol the lending engine calls.

Key responsibilities:
    - Executes transfer batches atomically (all transfers apply or none do)
    - Rejects overdrafts and transfers touching unregistered wallets or assets
    - Keeps a transfer log and verifies conservation (double entry)
    - Issues new supply only through the system wallet
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Iterable, List, Set, Optional, Tuple, Any
import logging
import threading

from .core import (
    Transfer, ExecuteResult, SYSTEM_WALLET,
    LendingError, CustodianError,
    require_amount,
)

logger = logging.getLogger(__name__)


class AssetNotRegistered(LendingError):
    """Raised when an asset symbol is not registered in the book."""
    pass


class WalletNotRegistered(LendingError):
    """Raised when a wallet is not registered in the book."""
    pass


class AssetBook:
    """
    Multi-asset wallet book with atomic batch execution.

    Design Principles:
        - Always validates: every batch is checked against registration and
          non-negative balances before anything is applied.
        - Always logs: every applied transfer is appended to transfer_log.

    Thread Safety:
        execute() validates and applies each batch under the book's own lock,
        so pools with separate guards can share one book. Registration is
        setup-time only and is not locked.

    Example:
        book = AssetBook("custody")
        book.register_asset("ETH")
        book.register_wallet("alice")
        book.issue("alice", "ETH", to_fixed(10))
        book.execute([Transfer("ETH", "alice", "pool", to_fixed(4))])
    """

    def __init__(self, name: str = "book"):
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.assets: Set[str] = set()
        self.registered_wallets: Set[str] = set()
        self.transfer_log: List[Transfer] = []
        self._lock = threading.Lock()

        # The system wallet is the issuance source and may go negative.
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # READS
    # ========================================================================

    def get_balance(self, wallet_id: str, asset: str) -> int:
        """
        Get a wallet's balance of one asset.

        Raises:
            WalletNotRegistered: If wallet is not registered
            AssetNotRegistered: If asset is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if asset not in self.assets:
            raise AssetNotRegistered(f"Asset {asset} not registered")
        return self.balances[wallet_id].get(asset, 0)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, asset: str) -> int:
        """Sum of one asset across every wallet, the system wallet included."""
        if asset not in self.assets:
            raise AssetNotRegistered(f"Asset {asset} not registered")
        return sum(self.balances[w].get(asset, 0) for w in sorted(self.registered_wallets))

    def circulating_supply(self, asset: str) -> int:
        """Sum of one asset across every wallet except the system wallet."""
        if asset not in self.assets:
            raise AssetNotRegistered(f"Asset {asset} not registered")
        return sum(
            self.balances[w].get(asset, 0)
            for w in sorted(self.registered_wallets)
            if w != SYSTEM_WALLET
        )

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Verify that every asset's total supply is conserved.

        Issuance debits the system wallet, so total_supply() is zero for every
        asset unless balances were created outside execute().

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Total supply per asset
            - 'discrepancies': List[Dict] - asset, expected, actual for each violation
        """
        expected_supplies = expected_supplies or {}
        supplies = {}
        discrepancies = []

        for asset in sorted(self.assets):
            current = self.total_supply(asset)
            supplies[asset] = current
            expected = expected_supplies.get(asset, 0)
            if current != expected:
                discrepancies.append({
                    'asset': asset,
                    'expected': expected,
                    'actual': current,
                })

        for asset, expected in expected_supplies.items():
            if asset not in supplies:
                discrepancies.append({
                    'asset': asset,
                    'expected': expected,
                    'actual': 0,
                    'error': 'asset not registered',
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def register_asset(self, asset: str) -> None:
        """
        Register a new asset symbol.

        Raises:
            ValueError: If asset is already registered
        """
        if asset in self.assets:
            raise ValueError(f"Asset {asset} already registered")
        self.assets.add(asset)
        logger.debug("Registered asset %s in book %s", asset, self.name)

    def issue(self, wallet_id: str, asset: str, amount: int) -> ExecuteResult:
        """Mint amount of asset into a wallet, debiting the system wallet."""
        require_amount(amount)
        return self.execute([Transfer(asset, SYSTEM_WALLET, wallet_id, amount, "issue")])

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, transfers: Iterable[Transfer]) -> ExecuteResult:
        """
        Apply a batch of transfers atomically.

        Returns:
            ExecuteResult.APPLIED if every transfer was applied
            ExecuteResult.REJECTED if validation failed (nothing applied)
        """
        batch = list(transfers)
        if not batch:
            return ExecuteResult.APPLIED

        with self._lock:
            valid, reason = self._validate(batch)
            if not valid:
                logger.info("Book %s rejected batch: %s", self.name, reason)
                return ExecuteResult.REJECTED

            for t in batch:
                self.balances[t.source][t.asset] -= t.amount
                self.balances[t.dest][t.asset] += t.amount
            self.transfer_log.extend(batch)
        return ExecuteResult.APPLIED

    def _validate(self, batch: List[Transfer]) -> Tuple[bool, str]:
        for t in batch:
            if t.asset not in self.assets:
                return False, f"asset not registered: {t.asset}"
            if t.source not in self.registered_wallets:
                return False, f"wallet not registered: {t.source}"
            if t.dest not in self.registered_wallets:
                return False, f"wallet not registered: {t.dest}"

        net: Dict[Tuple[str, str], int] = {}
        for t in batch:
            net[(t.source, t.asset)] = net.get((t.source, t.asset), 0) - t.amount
            net[(t.dest, t.asset)] = net.get((t.dest, t.asset), 0) + t.amount

        # SYSTEM_WALLET is exempt: it is the issuance source
        for (wallet, asset), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet].get(asset, 0) + delta
            if proposed < 0:
                return False, f"{wallet} {asset}: balance would be {proposed} < 0"

        return True, ""

    def clone(self) -> AssetBook:
        """Create a fully independent copy of this book."""
        cloned = AssetBook.__new__(AssetBook)
        cloned.name = self.name
        cloned.assets = set(self.assets)
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.balances = {
            w: defaultdict(int, balances) for w, balances in self.balances.items()
        }
        cloned.transfer_log = list(self.transfer_log)
        cloned._lock = threading.Lock()
        return cloned


class BookCustodian:
    """
    Custodian backed by an AssetBook.

    Each call executes a single-transfer batch; a rejected batch surfaces as
    CustodianError so the engine can compensate and abort.
    """

    def __init__(self, book: AssetBook):
        self.book = book

    def transfer(self, transfer: Transfer) -> None:
        result = self.book.execute([transfer])
        if result is not ExecuteResult.APPLIED:
            raise CustodianError(
                f"Transfer of {transfer.amount} {transfer.asset} from "
                f"{transfer.source} to {transfer.dest} was rejected"
            )
