"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest

from margin_ledger import fixed
from margin_ledger.config import (
    AppConfig,
    AssetConfig,
    GroupConfig,
    LedgerConfig,
    LiquidatorConfig,
    NotificationsConfig,
    PriceOracleConfig,
    PythConfig,
    RetryConfig,
    TelegramConfig,
)
from margin_ledger.errors import RpcTransportError
from margin_ledger.models import Asset, GroupState, InterestIndex, MarketRef
from margin_ledger.oracles.static import StaticOracle
from margin_ledger.paper import PaperLedger, PaperVenue, VenueMarket

BTC, ETH, USDC = 0, 1, 2
DECIMALS = 6


def ui(amount: str | int) -> int:
    """UI amount to native units at the test group's 6 decimals."""
    return fixed.ui_to_native(Decimal(str(amount)), DECIMALS)


# ---------------------------------------------------------------------------
# Group / venue / ledger fixtures
# ---------------------------------------------------------------------------


def make_group(**overrides) -> GroupState:
    values = dict(
        group_id="group-1",
        assets=(
            Asset("BTC", "mint-btc", DECIMALS),
            Asset("ETH", "mint-eth", DECIMALS),
            Asset("USDC", "mint-usdc", DECIMALS),
        ),
        indexes=(InterestIndex(), InterestIndex(), InterestIndex()),
        markets=(
            MarketRef("BTC/USDC", base_lot_size=100, quote_lot_size=10),
            MarketRef("ETH/USDC", base_lot_size=1000, quote_lot_size=10),
        ),
        oracles=("oracle-btc", "oracle-eth"),
        vault_balances=(0, 0, 0),
        total_deposits=(0, 0, 0),
        total_borrows=(0, 0, 0),
        maint_coll_ratio=Decimal("1.1"),
        init_coll_ratio=Decimal("1.2"),
        borrow_limits=(ui(10), ui(100), ui(1_000_000)),
        signer="group-signer",
    )
    values.update(overrides)
    return GroupState(**values)


@pytest.fixture()
def group() -> GroupState:
    return make_group()


@pytest.fixture()
def oracle() -> StaticOracle:
    return StaticOracle({"BTC": "40000", "ETH": "2000"})


@pytest.fixture()
def venue(group: GroupState) -> PaperVenue:
    venue = PaperVenue(
        [
            VenueMarket(
                market_id=m.market_id,
                base_decimals=group.assets[i].decimals,
                quote_decimals=group.assets[group.quote_index].decimals,
                base_lot_size=m.base_lot_size,
                quote_lot_size=m.quote_lot_size,
            )
            for i, m in enumerate(group.markets)
        ]
    )
    venue.set_reference_price("BTC/USDC", Decimal("40000"))
    venue.set_reference_price("ETH/USDC", Decimal("2000"))
    return venue


@pytest.fixture()
def ledger(group: GroupState, venue: PaperVenue, oracle: StaticOracle) -> PaperLedger:
    # A frozen clock keeps every index at 1.0.
    return PaperLedger(group, venue, oracle, clock=lambda: 0.0)


def move_price(oracle: StaticOracle, venue: PaperVenue, symbol: str, price: str) -> None:
    oracle.set_price(symbol, price)
    venue.set_reference_price(f"{symbol}/USDC", Decimal(price))


async def open_funded_account(
    ledger: PaperLedger, owner: str, deposits: dict[int, int]
) -> str:
    account_id = ledger.open_account(owner)
    for asset_index, quantity in deposits.items():
        ledger.fund_wallet(owner, asset_index, quantity)
        await ledger.deposit(account_id, owner, asset_index, quantity)
    return account_id


async def open_levered_account(ledger: PaperLedger) -> str:
    """alice: 4000 USDC collateral, 0.08 BTC borrowed and withdrawn (ratio 1.25 at 40000).

    bob supplies the BTC that alice borrows.
    """
    await open_funded_account(ledger, "bob", {BTC: ui(1)})
    account_id = await open_funded_account(ledger, "alice", {USDC: ui(4000)})
    await ledger.borrow(account_id, "alice", BTC, ui("0.08"))
    await ledger.withdraw(account_id, "alice", BTC, ui("0.08"))
    return account_id


class LostReplyLedger:
    """Applies the first ``failures`` calls of one ledger method, then reports a transport error.

    Models a write that landed on the ledger whose reply never arrived.
    """

    def __init__(self, inner: PaperLedger, method: str, failures: int = 1) -> None:
        self._inner = inner
        self._method = method
        self._failures = failures
        self.calls = 0

    def __getattr__(self, name: str):
        target = getattr(self._inner, name)
        if name != self._method:
            return target

        async def lost(*args, **kwargs):
            self.calls += 1
            result = await target(*args, **kwargs)
            if self.calls <= self._failures:
                raise RpcTransportError(f"{name} reply lost")
            return result

        return lost


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_group_config() -> GroupConfig:
    return GroupConfig(
        assets=(
            AssetConfig("BTC", "mint-btc", DECIMALS),
            AssetConfig("ETH", "mint-eth", DECIMALS),
            AssetConfig("USDC", "mint-usdc", DECIMALS),
        )
    )


@pytest.fixture()
def sample_app_config(sample_group_config: GroupConfig) -> AppConfig:
    return AppConfig(
        liquidator=LiquidatorConfig(owner="liquidator", scan_interval_seconds=1),
        retry=RetryConfig(
            max_attempts=3, backoff_seconds=0, jitter_seconds=0, step_timeout_seconds=5
        ),
        ledger=LedgerConfig(
            group_id="group-1",
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            rpc_timeout=5,
        ),
        group=sample_group_config,
        price_oracle=PriceOracleConfig(
            provider="static",
            static_prices={"BTC": Decimal("40000"), "ETH": Decimal("2000")},
            pyth=PythConfig(feeds={"BTC": "aaa111", "ETH": "bbb222"}),
        ),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    liquidator:
      owner: "liq-wallet"
      scan_interval_seconds: 30
      liquidation_margin: "1.02"
      liquidate_insolvent: false
    retry:
      max_attempts: 4
      backoff_seconds: 1.5
      jitter_seconds: 0
      step_timeout_seconds: 10
    ledger:
      group_id: "group-1"
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    group:
      assets:
        - {symbol: BTC, mint: mint-btc, decimals: 6}
        - {symbol: ETH, mint: mint-eth, decimals: 6}
        - {symbol: USDC, mint: mint-usdc, decimals: 6}
    price_oracle:
      provider: pyth
      max_price_age_seconds: 30
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {BTC: "aaa", ETH: "bbb"}
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
