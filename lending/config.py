"""Configuration loader: reads a pool YAML file, interpolates env vars, validates, builds pools."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .core import ConfigurationError, Custodian, EligibilityGate, LendingError, PriceFeed, to_fixed
from .engine import LendingPool
from .policy import BorrowLimitMode, CollateralPolicy, FixedRatioPolicy, LoanToValuePolicy

logger = logging.getLogger(__name__)

VARIANT_COLLATERAL_RATIO = "collateral_ratio"
VARIANT_LOAN_TO_VALUE = "loan_to_value"
_VARIANTS = (VARIANT_COLLATERAL_RATIO, VARIANT_LOAN_TO_VALUE)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EligibilityConfig:
    enabled: bool = False
    min_score: int = 0


@dataclass(frozen=True)
class PoolConfig:
    name: str = "pool"
    variant: str = VARIANT_COLLATERAL_RATIO
    collateral_asset: str = ""
    debt_asset: str = ""
    pool_wallet: str = "pool"
    owner: str = ""
    collateral_ratio: Optional[str] = None
    loan_to_value: Optional[str] = None
    borrow_limit_mode: str = BorrowLimitMode.CONVENTIONAL.value
    enforce_solvency: Optional[bool] = None
    eligibility: EligibilityConfig = field(default_factory=EligibilityConfig)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    pools: Tuple[PoolConfig, ...] = ()
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def pool(self, name: str) -> PoolConfig:
        for cfg in self.pools:
            if cfg.name == name:
                return cfg
        raise KeyError(f"No pool named '{name}' is configured")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML -> dataclass builders
# ---------------------------------------------------------------------------


def _as_decimal_string(value: Any) -> Optional[str]:
    # YAML turns 0.8 into a float; str() keeps the literal the user wrote.
    if value is None or value == "":
        return None
    return str(value)


def _as_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "on"):
        return True
    if text in ("false", "no", "0", "off"):
        return False
    raise ConfigurationError(f"Not a boolean: {value!r}")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _build_eligibility(raw: Dict[str, Any]) -> EligibilityConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"eligibility must be a mapping, got {raw!r}")
    return EligibilityConfig(
        enabled=bool(_as_bool(raw.get("enabled", False))),
        min_score=_as_int(raw.get("min_score", 0), "min_score"),
    )


def _build_pools(raw: list) -> Tuple[PoolConfig, ...]:
    if not isinstance(raw, list):
        raise ConfigurationError(f"pools must be a list, got {type(raw).__name__}")
    pools = []
    for index, p in enumerate(raw):
        if not isinstance(p, dict):
            raise ConfigurationError(f"pools[{index}] must be a mapping, got {p!r}")
        pools.append(
            PoolConfig(
                name=p.get("name", "pool"),
                variant=p.get("variant", VARIANT_COLLATERAL_RATIO),
                collateral_asset=p.get("collateral_asset", ""),
                debt_asset=p.get("debt_asset", ""),
                pool_wallet=p.get("pool_wallet", "pool"),
                owner=p.get("owner", ""),
                collateral_ratio=_as_decimal_string(p.get("collateral_ratio")),
                loan_to_value=_as_decimal_string(p.get("loan_to_value")),
                borrow_limit_mode=p.get("borrow_limit_mode", BorrowLimitMode.CONVENTIONAL.value),
                enforce_solvency=_as_bool(p.get("enforce_solvency")),
                eligibility=_build_eligibility(p.get("eligibility") or {}),
            )
        )
    return tuple(pools)


def _build_logging(raw: Dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(raw.get("level", "INFO")).upper())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: Union[str, Path, None] = None) -> AppConfig:
    """Load and validate pool configuration from YAML + .env.

    Args:
        config_path: Path to the YAML file. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        pools=_build_pools(raw.get("pools") or []),
        logging=_build_logging(raw.get("logging") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise ConfigurationError on invalid configuration."""
    if not cfg.pools:
        raise ConfigurationError("At least one pool must be configured")

    names = [p.name for p in cfg.pools]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Pool names must be unique, got {names}")

    for pool in cfg.pools:
        if pool.variant not in _VARIANTS:
            raise ConfigurationError(f"Pool '{pool.name}' has unknown variant '{pool.variant}'")
        if not pool.collateral_asset or not pool.debt_asset:
            raise ConfigurationError(f"Pool '{pool.name}' must name its collateral and debt assets")
        if pool.collateral_asset == pool.debt_asset:
            raise ConfigurationError(f"Pool '{pool.name}' lends the asset it takes as collateral")
        if not pool.owner:
            raise ConfigurationError(f"Pool '{pool.name}' has no owner")
        if pool.eligibility.min_score < 0:
            raise ConfigurationError(f"Pool '{pool.name}' has a negative min_score")
        if pool.variant == VARIANT_COLLATERAL_RATIO and pool.collateral_ratio is None:
            raise ConfigurationError(f"Pool '{pool.name}' needs a collateral_ratio")
        if pool.variant == VARIANT_LOAN_TO_VALUE and pool.loan_to_value is None:
            raise ConfigurationError(f"Pool '{pool.name}' needs a loan_to_value")
        if pool.borrow_limit_mode not in {m.value for m in BorrowLimitMode}:
            raise ConfigurationError(
                f"Pool '{pool.name}' has unknown borrow_limit_mode '{pool.borrow_limit_mode}'"
            )
        # Surface bad ratios at load time rather than when the pool is built.
        build_policy(pool)


def _fixed_parameter(value: str, name: str) -> int:
    try:
        return to_fixed(value)
    except LendingError as exc:
        raise ConfigurationError(f"{name} is not a decimal number: {value!r}") from exc


def build_policy(
    cfg: PoolConfig,
    gate: Optional[EligibilityGate] = None,
    price_feed: Optional[PriceFeed] = None,
) -> CollateralPolicy:
    """Construct the CollateralPolicy described by a PoolConfig.

    The gate is only attached when eligibility is enabled for the pool.
    """
    common: Dict[str, Any] = dict(
        gate=gate if cfg.eligibility.enabled else None,
        min_score=cfg.eligibility.min_score,
        price_feed=price_feed,
    )
    if cfg.variant == VARIANT_LOAN_TO_VALUE:
        if cfg.enforce_solvency is not None:
            common["enforce_solvency"] = cfg.enforce_solvency
        return LoanToValuePolicy(
            loan_to_value=_fixed_parameter(cfg.loan_to_value, "loan_to_value"),
            **common,
        )
    return FixedRatioPolicy(
        collateral_ratio=_fixed_parameter(cfg.collateral_ratio, "collateral_ratio"),
        limit_mode=BorrowLimitMode(cfg.borrow_limit_mode),
        enforce_solvency=cfg.enforce_solvency,
        **common,
    )


def build_pool(
    cfg: PoolConfig,
    custodian: Custodian,
    gate: Optional[EligibilityGate] = None,
    price_feed: Optional[PriceFeed] = None,
) -> LendingPool:
    """Construct a LendingPool from a PoolConfig."""
    if cfg.eligibility.enabled and gate is None:
        raise ConfigurationError(f"Pool '{cfg.name}' has eligibility enabled but no gate was given")
    return LendingPool(
        build_policy(cfg, gate=gate, price_feed=price_feed),
        custodian,
        collateral_asset=cfg.collateral_asset,
        debt_asset=cfg.debt_asset,
        owner=cfg.owner,
        pool_wallet=cfg.pool_wallet,
        name=cfg.name,
    )
