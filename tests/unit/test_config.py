"""Unit tests for config loading, env interpolation, and validation."""
from __future__ import annotations

import copy
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import yaml

from margin_ledger.config import (
    AppConfig,
    GroupConfig,
    LedgerConfig,
    LiquidatorConfig,
    RetryConfig,
    _interpolate_env,
    load_config,
)
from margin_ledger.errors import ConfigurationError

BASE: dict[str, Any] = {
    "liquidator": {"owner": "liq"},
    "ledger": {"group_id": "group-1", "rpc_endpoints": ["https://rpc.test.com"]},
    "group": {
        "assets": [
            {"symbol": "BTC", "mint": "m1", "decimals": 6},
            {"symbol": "USDC", "mint": "m2", "decimals": 6},
        ]
    },
    "price_oracle": {"provider": "static", "static": {"prices": {"BTC": "40000"}}},
    "notifications": {"telegram": {"enabled": False}},
}


def _write(tmp_path: Path, **sections: Any) -> Path:
    raw = copy.deepcopy(BASE)
    for name, value in sections.items():
        if value is None:
            raw.pop(name, None)
        else:
            raw[name] = value
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(yaml.safe_dump(raw))
    return cfg_file


class TestInterpolateEnv:
    def test_simple_substitution(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_VAR", "hello")
        assert _interpolate_env("${MY_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR_XYZ", raising=False)
        assert _interpolate_env("${NONEXISTENT_VAR_XYZ}") == ""

    def test_nested_structures(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOK", "secret")
        result = _interpolate_env({"key": ["${TOK}", "plain"], "n": 3})
        assert result == {"key": ["secret", "plain"], "n": 3}


class TestLoadConfig:
    def test_loads_valid_yaml(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        assert isinstance(cfg, AppConfig)
        assert cfg.liquidator.owner == "liq-wallet"
        assert cfg.liquidator.liquidation_margin == Decimal("1.02")
        assert cfg.liquidator.sell_discount == Decimal("0.95")
        assert cfg.retry.max_attempts == 4
        assert cfg.ledger.rpc_timeout == 10
        assert cfg.group.tradable_symbols == ("BTC", "ETH")
        assert cfg.price_oracle.pyth.feeds == {"BTC": "aaa", "ETH": "bbb"}
        assert cfg.notifications.telegram.chat_id == "999"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_env_interpolation_in_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TEST_OWNER", "0xABCDEF")
        cfg = load_config(_write(tmp_path, liquidator={"owner": "${TEST_OWNER}"}))
        assert cfg.liquidator.owner == "0xABCDEF"

    def test_static_prices_are_decimals(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path))
        assert cfg.price_oracle.static_prices == {"BTC": Decimal("40000")}

    def test_unbounded_retries(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, retry={"max_attempts": None}))
        assert cfg.retry.max_attempts is None
        assert cfg.retry.policy().max_attempts is None

    def test_retry_policy_from_config(self) -> None:
        policy = RetryConfig(max_attempts=2, step_timeout_seconds=7).policy()
        assert policy.max_attempts == 2
        assert policy.timeout_seconds == 7

    def test_boolean_flags_from_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LIQUIDATE_INSOLVENT", "false")
        monkeypatch.setenv("RESUME_DRAINS", "False")
        monkeypatch.setenv("TG_ENABLED", "no")
        cfg = load_config(
            _write(
                tmp_path,
                liquidator={
                    "owner": "liq",
                    "liquidate_insolvent": "${LIQUIDATE_INSOLVENT}",
                    "resume_owned_drains": "${RESUME_DRAINS}",
                },
                notifications={"telegram": {"enabled": "${TG_ENABLED}"}},
            )
        )
        assert cfg.liquidator.liquidate_insolvent is False
        assert cfg.liquidator.resume_owned_drains is False
        assert cfg.notifications.telegram.enabled is False

    def test_boolean_flag_true_string(self, tmp_path: Path) -> None:
        cfg = load_config(
            _write(tmp_path, liquidator={"owner": "liq", "liquidate_insolvent": "true"})
        )
        assert cfg.liquidator.liquidate_insolvent is True

    def test_bad_boolean(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="liquidate_insolvent"):
            load_config(
                _write(tmp_path, liquidator={"owner": "liq", "liquidate_insolvent": "maybe"})
            )


class TestValidation:
    def test_missing_owner(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="owner must be set"):
            load_config(_write(tmp_path, liquidator=None))

    def test_no_endpoints(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="At least one ledger RPC endpoint"):
            load_config(_write(tmp_path, ledger={"group_id": "g", "rpc_endpoints": []}))

    def test_missing_group_id(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="group_id must be set"):
            load_config(_write(tmp_path, ledger={"rpc_endpoints": ["https://x"]}))

    def test_quote_only_group(self, tmp_path: Path) -> None:
        group = {"assets": [{"symbol": "USDC", "mint": "m", "decimals": 6}]}
        with pytest.raises(ConfigurationError, match="at least one tradable asset"):
            load_config(_write(tmp_path, group=group))

    def test_duplicate_symbols(self, tmp_path: Path) -> None:
        group = {
            "assets": [
                {"symbol": "BTC", "mint": "m1", "decimals": 6},
                {"symbol": "BTC", "mint": "m2", "decimals": 6},
            ]
        }
        with pytest.raises(ConfigurationError, match="Duplicate asset symbols"):
            load_config(_write(tmp_path, group=group))

    def test_unknown_provider(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Unknown price oracle provider"):
            load_config(_write(tmp_path, price_oracle={"provider": "chainlink"}))

    def test_unpriced_asset(self, tmp_path: Path) -> None:
        oracle = {"provider": "pyth", "pyth": {"feeds": {"ETH": "abc"}}}
        with pytest.raises(ConfigurationError, match="no price for asset 'BTC'"):
            load_config(_write(tmp_path, price_oracle=oracle))

    def test_bad_number(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="liquidation_margin"):
            load_config(
                _write(tmp_path, liquidator={"owner": "liq", "liquidation_margin": "lots"})
            )

    def test_margin_below_one(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="liquidation_margin"):
            load_config(
                _write(tmp_path, liquidator={"owner": "liq", "liquidation_margin": "0.9"})
            )

    def test_configuration_error_is_value_error(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, liquidator=None))


class TestFrozenConfigs:
    def test_liquidator_config_immutable(self) -> None:
        c = LiquidatorConfig()
        with pytest.raises(AttributeError):
            c.owner = "someone"  # type: ignore[misc]

    def test_ledger_config_immutable(self) -> None:
        c = LedgerConfig(rpc_endpoints=("a",))
        with pytest.raises(AttributeError):
            c.rpc_timeout = 999  # type: ignore[misc]

    def test_group_config_immutable(self) -> None:
        g = GroupConfig()
        with pytest.raises(AttributeError):
            g.assets = ()  # type: ignore[misc]
