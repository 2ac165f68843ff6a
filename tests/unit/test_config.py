"""Unit tests for config loading, env interpolation, validation and pool construction."""
from __future__ import annotations

from pathlib import Path

import pytest

from lending import (
    AppConfig, PoolConfig, EligibilityConfig, BorrowLimitMode, FixedRatioPolicy,
    LoanToValuePolicy, LendingPool, ReputationRegistry, BookCustodian, ConfigurationError,
    load_config, build_policy, build_pool, to_fixed,
)
from lending.config import _interpolate_env

from tests.builders import make_book


RATIO_YAML = """\
logging:
  level: debug
pools:
  - name: ratio
    variant: collateral_ratio
    collateral_asset: ETH
    debt_asset: USDC
    owner: admin
    collateral_ratio: 0.75
"""


def write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(content)
    return path


class TestInterpolateEnv:
    def test_simple_substitution(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_VAR", "hello")
        assert _interpolate_env("${MY_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR_XYZ", raising=False)
        assert _interpolate_env("${NONEXISTENT_VAR_XYZ}") == ""

    def test_nested(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OWNER", "treasury")
        result = _interpolate_env({"pools": [{"owner": "${OWNER}", "name": "p"}]})
        assert result == {"pools": [{"owner": "treasury", "name": "p"}]}

    def test_non_string_passthrough(self) -> None:
        assert _interpolate_env(42) == 42
        assert _interpolate_env(True) is True


class TestLoadConfig:
    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        cfg = load_config(write(tmp_path, RATIO_YAML))
        assert isinstance(cfg, AppConfig)
        assert cfg.logging.level == "DEBUG"
        pool = cfg.pool("ratio")
        assert pool.collateral_ratio == "0.75"
        assert pool.borrow_limit_mode == "conventional"
        assert pool.eligibility == EligibilityConfig()

    def test_bundled_config(self) -> None:
        cfg = load_config()
        assert {p.name for p in cfg.pools} == {"ratio-pool", "gated-pool"}
        assert cfg.pool("gated-pool").eligibility.min_score == 30

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_env_interpolation_in_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POOL_OWNER", "treasury")
        monkeypatch.setenv("POOL_LTV", "0.6")
        content = """\
pools:
  - name: gated
    variant: loan_to_value
    collateral_asset: ETH
    debt_asset: USDC
    owner: "${POOL_OWNER}"
    loan_to_value: "${POOL_LTV}"
"""
        cfg = load_config(write(tmp_path, content))
        assert cfg.pools[0].owner == "treasury"
        assert cfg.pools[0].loan_to_value == "0.6"

    def test_unknown_pool_name(self, tmp_path: Path) -> None:
        cfg = load_config(write(tmp_path, RATIO_YAML))
        with pytest.raises(KeyError):
            cfg.pool("missing")


class TestValidation:
    @pytest.mark.parametrize("content", [
        "pools: []\n",
        RATIO_YAML.replace("variant: collateral_ratio", "variant: perpetual"),
        RATIO_YAML.replace("    owner: admin\n", ""),
        RATIO_YAML.replace("    collateral_ratio: 0.75\n", ""),
        RATIO_YAML.replace("collateral_ratio: 0.75", "collateral_ratio: 1.5"),
        RATIO_YAML.replace("collateral_ratio: 0.75", "collateral_ratio: lots"),
        RATIO_YAML.replace("debt_asset: USDC", "debt_asset: ETH"),
        RATIO_YAML + "    borrow_limit_mode: upside_down\n",
        RATIO_YAML + "    eligibility:\n      min_score: -3\n",
        RATIO_YAML + "    eligibility:\n      min_score: 30.9\n",
        RATIO_YAML + "    eligibility:\n      min_score: true\n",
        RATIO_YAML + "    eligibility: yes\n",
        "pools:\n  - ratio\n",
        "pools: ratio\n",
    ])
    def test_invalid_configs_rejected(self, tmp_path: Path, content: str) -> None:
        with pytest.raises(ConfigurationError):
            load_config(write(tmp_path, content))

    def test_integral_float_score_accepted(self, tmp_path: Path) -> None:
        cfg = load_config(write(tmp_path, RATIO_YAML + "    eligibility:\n      min_score: 30.0\n"))
        assert cfg.pool("ratio").eligibility.min_score == 30

    def test_configuration_error_is_value_error(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            load_config(write(tmp_path, "pools: []\n"))

    def test_duplicate_names_rejected(self, tmp_path: Path) -> None:
        body = RATIO_YAML.split("pools:\n")[1]
        with pytest.raises(ConfigurationError):
            load_config(write(tmp_path, "pools:\n" + body + body))


class TestBuildPolicy:
    def test_ratio_policy(self) -> None:
        cfg = PoolConfig(
            variant="collateral_ratio", collateral_asset="ETH", debt_asset="USDC",
            owner="admin", collateral_ratio="0.25", borrow_limit_mode="source_parity",
        )
        policy = build_policy(cfg)
        assert isinstance(policy, FixedRatioPolicy)
        assert policy.collateral_ratio == to_fixed("0.25")
        assert policy.limit_mode is BorrowLimitMode.SOURCE_PARITY
        assert policy.enforce_solvency is False

    def test_ltv_policy_with_gate(self) -> None:
        registry = ReputationRegistry("admin")
        cfg = PoolConfig(
            variant="loan_to_value", collateral_asset="ETH", debt_asset="USDC", owner="admin",
            loan_to_value="0.8", eligibility=EligibilityConfig(enabled=True, min_score=30),
        )
        policy = build_policy(cfg, gate=registry)
        assert isinstance(policy, LoanToValuePolicy)
        assert policy.loan_to_value == to_fixed("0.8")
        assert policy.gate is registry
        assert policy.min_score == 30

    def test_gate_dropped_when_disabled(self) -> None:
        cfg = PoolConfig(
            variant="loan_to_value", collateral_asset="ETH", debt_asset="USDC",
            owner="admin", loan_to_value="0.8",
        )
        assert build_policy(cfg, gate=ReputationRegistry("admin")).gate is None

    def test_explicit_solvency_flag(self) -> None:
        cfg = PoolConfig(
            variant="loan_to_value", collateral_asset="ETH", debt_asset="USDC",
            owner="admin", loan_to_value="0.8", enforce_solvency=False,
        )
        assert build_policy(cfg).enforce_solvency is False


class TestBuildPool:
    def test_builds_working_pool(self, tmp_path: Path) -> None:
        cfg = load_config(write(tmp_path, RATIO_YAML)).pool("ratio")
        pool = build_pool(cfg, BookCustodian(make_book()))
        assert isinstance(pool, LendingPool)
        assert pool.name == "ratio"
        pool.supply("carol", to_fixed(100))
        pool.deposit_collateral("alice", to_fixed(100))
        assert pool.max_borrowable("alice") == to_fixed(75)

    def test_enabled_eligibility_requires_gate(self) -> None:
        cfg = PoolConfig(
            variant="loan_to_value", collateral_asset="ETH", debt_asset="USDC", owner="admin",
            loan_to_value="0.8", eligibility=EligibilityConfig(enabled=True, min_score=1),
        )
        with pytest.raises(ConfigurationError):
            build_pool(cfg, BookCustodian(make_book()))
