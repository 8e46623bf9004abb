"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiquidatorConfig:
    owner: str = ""
    scan_interval_seconds: int = 60
    liquidation_margin: Decimal = Decimal("1.01")
    sell_discount: Decimal = Decimal("0.95")
    buy_premium: Decimal = Decimal("1.05")
    withdraw_buffer: Decimal = Decimal("0.999")
    liquidate_insolvent: bool = False
    resume_owned_drains: bool = True


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int | None = 5
    backoff_seconds: float = 2.0
    jitter_seconds: float = 0.5
    step_timeout_seconds: float = 30.0

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            jitter_seconds=self.jitter_seconds,
            timeout_seconds=self.step_timeout_seconds,
        )


@dataclass(frozen=True)
class LedgerConfig:
    group_id: str = ""
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class AssetConfig:
    symbol: str = ""
    mint: str = ""
    decimals: int = 0


@dataclass(frozen=True)
class GroupConfig:
    """Assets the operator expects the ledger's group to hold, quote last."""

    assets: tuple[AssetConfig, ...] = ()

    @property
    def tradable_symbols(self) -> tuple[str, ...]:
        return tuple(a.symbol for a in self.assets[:-1])


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    max_price_age_seconds: int = 60
    pyth: PythConfig = field(default_factory=PythConfig)
    static_prices: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    liquidator: LiquidatorConfig = field(default_factory=LiquidatorConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    group: GroupConfig = field(default_factory=GroupConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


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
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _decimal(raw: Any, name: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}


def _bool(raw: Any, name: str) -> bool:
    """YAML booleans pass through; strings from ${VAR} interpolation are parsed."""
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}")


def _build_liquidator(raw: dict[str, Any]) -> LiquidatorConfig:
    defaults = LiquidatorConfig()
    return LiquidatorConfig(
        owner=raw.get("owner", ""),
        scan_interval_seconds=int(raw.get("scan_interval_seconds", 60)),
        liquidation_margin=_decimal(
            raw.get("liquidation_margin", defaults.liquidation_margin), "liquidation_margin"
        ),
        sell_discount=_decimal(raw.get("sell_discount", defaults.sell_discount), "sell_discount"),
        buy_premium=_decimal(raw.get("buy_premium", defaults.buy_premium), "buy_premium"),
        withdraw_buffer=_decimal(
            raw.get("withdraw_buffer", defaults.withdraw_buffer), "withdraw_buffer"
        ),
        liquidate_insolvent=_bool(raw.get("liquidate_insolvent", False), "liquidate_insolvent"),
        resume_owned_drains=_bool(raw.get("resume_owned_drains", True), "resume_owned_drains"),
    )


def _build_retry(raw: dict[str, Any]) -> RetryConfig:
    max_attempts = raw.get("max_attempts", 5)
    return RetryConfig(
        max_attempts=None if max_attempts is None else int(max_attempts),
        backoff_seconds=float(raw.get("backoff_seconds", 2.0)),
        jitter_seconds=float(raw.get("jitter_seconds", 0.5)),
        step_timeout_seconds=float(raw.get("step_timeout_seconds", 30.0)),
    )


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(
        group_id=raw.get("group_id", ""),
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_group(raw: dict[str, Any]) -> GroupConfig:
    assets: list[AssetConfig] = []
    for a in raw.get("assets", []):
        assets.append(
            AssetConfig(
                symbol=a.get("symbol", ""),
                mint=a.get("mint", ""),
                decimals=int(a.get("decimals", 0)),
            )
        )
    return GroupConfig(assets=tuple(assets))


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    static_raw = raw.get("static", {}).get("prices", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        max_price_age_seconds=int(raw.get("max_price_age_seconds", 60)),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
        static_prices={k: _decimal(v, f"static price of {k}") for k, v in static_raw.items()},
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=_bool(tg.get("enabled", False), "telegram.enabled"),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).

    Raises:
        FileNotFoundError: the file does not exist.
        ConfigurationError: the configuration is invalid.
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
        liquidator=_build_liquidator(raw.get("liquidator", {})),
        retry=_build_retry(raw.get("retry", {})),
        ledger=_build_ledger(raw.get("ledger", {})),
        group=_build_group(raw.get("group", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise ConfigurationError on invalid configuration."""
    if not cfg.liquidator.owner:
        raise ConfigurationError("liquidator.owner must be set")
    if cfg.liquidator.scan_interval_seconds <= 0:
        raise ConfigurationError("liquidator.scan_interval_seconds must be positive")
    if cfg.liquidator.liquidation_margin < 1:
        raise ConfigurationError("liquidator.liquidation_margin must be at least 1")
    if not 0 < cfg.liquidator.sell_discount <= 1:
        raise ConfigurationError("liquidator.sell_discount must be in (0, 1]")
    if cfg.liquidator.buy_premium < 1:
        raise ConfigurationError("liquidator.buy_premium must be at least 1")
    if not 0 < cfg.liquidator.withdraw_buffer <= 1:
        raise ConfigurationError("liquidator.withdraw_buffer must be in (0, 1]")

    if cfg.retry.max_attempts is not None and cfg.retry.max_attempts < 1:
        raise ConfigurationError("retry.max_attempts must be at least 1")

    if not cfg.ledger.group_id:
        raise ConfigurationError("ledger.group_id must be set")
    if not cfg.ledger.rpc_endpoints:
        raise ConfigurationError("At least one ledger RPC endpoint must be configured")

    if len(cfg.group.assets) < 2:
        raise ConfigurationError(
            "group.assets must list at least one tradable asset and the quote asset"
        )
    symbols = [a.symbol for a in cfg.group.assets]
    if "" in symbols:
        raise ConfigurationError("Every group asset needs a symbol")
    if len(set(symbols)) != len(symbols):
        raise ConfigurationError(f"Duplicate asset symbols in group: {symbols}")
    for asset in cfg.group.assets:
        if asset.decimals < 0:
            raise ConfigurationError(f"Asset '{asset.symbol}' has negative decimals")

    provider = cfg.price_oracle.provider
    if provider == "pyth":
        priced = cfg.price_oracle.pyth.feeds
    elif provider == "static":
        priced = cfg.price_oracle.static_prices
    else:
        raise ConfigurationError(f"Unknown price oracle provider '{provider}'")
    for symbol in cfg.group.tradable_symbols:
        if symbol not in priced:
            raise ConfigurationError(
                f"Price oracle '{provider}' has no price for asset '{symbol}'"
            )
