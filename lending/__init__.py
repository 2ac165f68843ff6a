"""
lending - Collateralized Lending Ledger

One accounting engine for two pool variants, parameterized by a collateral
policy: a fixed collateral-ratio pool with separate suppliers and borrowers,
and an eligibility-gated loan-to-value pool that opens and closes whole loans.

Usage:
    from lending import (
        AssetBook, BookCustodian, LendingPool, LoanToValuePolicy,
        ReputationRegistry, SYSTEM_WALLET, to_fixed,
    )

    book = AssetBook("custody")
    for asset in ("ETH", "USDC"):
        book.register_asset(asset)
    for wallet in ("pool", "alice"):
        book.register_wallet(wallet)
    book.issue("alice", "ETH", to_fixed(100))
    book.issue("pool", "USDC", to_fixed(1_000))

    registry = ReputationRegistry(owner="admin")
    registry.set_score("admin", "alice", 42)

    pool = LendingPool(
        LoanToValuePolicy(loan_to_value=to_fixed("0.8"), gate=registry, min_score=30),
        BookCustodian(book),
        collateral_asset="ETH",
        debt_asset="USDC",
        owner="admin",
    )
    borrowed = pool.open_or_supply("alice", to_fixed(100))   # to_fixed(80)
    pool.repay("alice", borrowed)                            # position closed
"""

# Core types
from .core import (
    SCALE,
    FIXED_DECIMALS,
    SYSTEM_WALLET,
    to_fixed,
    from_fixed,
    mul_div,
    mul_div_up,
    checked_sub,
    require_amount,
    ExecuteResult,
    EventKind,
    Position,
    PoolTotals,
    Transfer,
    PoolEvent,
    Custodian,
    EligibilityGate,
    PriceFeed,
    LendingError,
    ValidationError,
    InvalidAmount,
    AmountExceedsDebt,
    InsufficientBalance,
    ArithmeticUnderflow,
    PolicyViolation,
    EligibilityTooLow,
    PositionAlreadyActive,
    NoActivePosition,
    NoCollateral,
    ExceedsLimit,
    InsufficientCollateral,
    NoDebt,
    PositionHealthy,
    UnsupportedOperation,
    Unauthorized,
    ExternalDependencyError,
    OracleUnavailable,
    CustodianError,
    ReentrancyViolation,
    ConfigurationError,
)

# Storage
from .positions import PositionLedger, LedgerSnapshot

# Policies
from .policy import (
    BorrowLimitMode,
    FixedPrice,
    CollateralPolicy,
    FixedRatioPolicy,
    LoanToValuePolicy,
)

# Eligibility
from .eligibility import ReputationRegistry

# Custody
from .custody import AssetBook, BookCustodian, AssetNotRegistered, WalletNotRegistered

# Liquidation
from .liquidation import LiquidationPlan, plan_liquidation

# Engine
from .engine import LendingPool

# Configuration
from .config import (
    AppConfig,
    PoolConfig,
    EligibilityConfig,
    LoggingConfig,
    load_config,
    build_policy,
    build_pool,
)
from .logging_setup import configure_logging

__all__ = [
    # Fixed point
    'SCALE', 'FIXED_DECIMALS', 'SYSTEM_WALLET', 'to_fixed', 'from_fixed',
    'mul_div', 'mul_div_up', 'checked_sub', 'require_amount',
    # Types
    'ExecuteResult', 'EventKind', 'Position', 'PoolTotals', 'Transfer', 'PoolEvent',
    'Custodian', 'EligibilityGate', 'PriceFeed',
    # Exceptions
    'LendingError', 'ValidationError', 'InvalidAmount', 'AmountExceedsDebt',
    'InsufficientBalance', 'ArithmeticUnderflow', 'PolicyViolation',
    'EligibilityTooLow', 'PositionAlreadyActive', 'NoActivePosition',
    'NoCollateral', 'ExceedsLimit', 'InsufficientCollateral', 'NoDebt',
    'PositionHealthy', 'UnsupportedOperation', 'Unauthorized',
    'ExternalDependencyError', 'OracleUnavailable', 'CustodianError',
    'ReentrancyViolation', 'ConfigurationError',
    'AssetNotRegistered', 'WalletNotRegistered',
    # Components
    'PositionLedger', 'LedgerSnapshot',
    'BorrowLimitMode', 'FixedPrice', 'CollateralPolicy', 'FixedRatioPolicy',
    'LoanToValuePolicy', 'ReputationRegistry', 'AssetBook', 'BookCustodian',
    'LiquidationPlan', 'plan_liquidation', 'LendingPool',
    # Configuration
    'AppConfig', 'PoolConfig', 'EligibilityConfig', 'LoggingConfig',
    'load_config', 'build_policy', 'build_pool', 'configure_logging',
]

__version__ = '1.0.0'
