"""Unit tests for data models."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest
from conftest import BTC, USDC, ui

from margin_ledger import fixed
from margin_ledger.errors import UnknownAssetError, UnknownMarketError
from margin_ledger.models import (
    AccountState,
    GroupState,
    InterestIndex,
    OpenOrdersBalances,
    PriceVector,
    Valuation,
)


class TestGroupState:
    def test_slots(self, group: GroupState) -> None:
        assert group.num_assets == 3
        assert group.num_markets == 2
        assert group.quote_index == USDC

    def test_frozen(self, group: GroupState) -> None:
        with pytest.raises(AttributeError):
            group.init_coll_ratio = Decimal("2")  # type: ignore[misc]

    def test_asset_lookup_by_symbol_or_mint(self, group: GroupState) -> None:
        assert group.get_asset_index("ETH") == 1
        assert group.get_asset_index("mint-usdc") == USDC

    def test_unknown_asset(self, group: GroupState) -> None:
        with pytest.raises(UnknownAssetError):
            group.get_asset_index("DOGE")
        with pytest.raises(UnknownAssetError):
            group.check_asset_index(3)

    def test_market_lookup(self, group: GroupState) -> None:
        assert group.get_market_index("ETH/USDC") == 1
        with pytest.raises(UnknownMarketError):
            group.get_market_index("USDC/USDC")
        with pytest.raises(UnknownMarketError):
            group.check_market_index(2)

    def test_native_totals_follow_indexes(self, group: GroupState) -> None:
        doubled = replace(
            group,
            indexes=(InterestIndex(borrow=2 * fixed.ONE, deposit=2 * fixed.ONE),)
            + group.indexes[1:],
            total_deposits=(fixed.to_fixed(5), 0, 0),
            total_borrows=(fixed.to_fixed(3), 0, 0),
        )
        assert doubled.native_total_deposit(BTC) == 10
        assert doubled.native_total_borrow(BTC) == 6


class TestInterestIndex:
    def test_defaults(self) -> None:
        index = InterestIndex()
        assert index.borrow == fixed.ONE
        assert index.deposit == fixed.ONE
        assert index.last_update == 0


class TestAccountState:
    def test_empty(self, group: GroupState) -> None:
        account = AccountState.empty("acct-1", group, "alice")
        assert account.deposits == (0, 0, 0)
        assert account.borrows == (0, 0, 0)
        assert account.open_orders == (None, None)
        assert account.group_id == group.group_id

    def test_native_and_ui_amounts(self, group: GroupState) -> None:
        account = AccountState(
            account_id="acct-1",
            group_id=group.group_id,
            owner="alice",
            deposits=(0, 0, fixed.to_fixed(ui(2700))),
            borrows=(fixed.to_fixed(ui("0.08")), 0, 0),
            open_orders=(None, None),
        )
        assert account.native_deposit(group, USDC) == ui(2700)
        assert account.ui_deposit(group, USDC) == Decimal("2700")
        assert account.ui_borrow(group, BTC) == Decimal("0.08")

    def test_with_open_orders_returns_copy(self, group: GroupState) -> None:
        account = AccountState.empty("acct-1", group, "alice")
        updated = account.with_open_orders(1, "oo-7")
        assert updated.open_orders == (None, "oo-7")
        assert account.open_orders == (None, None)


class TestOpenOrdersBalances:
    def test_has_unsettled(self) -> None:
        oo = OpenOrdersBalances("oo-1", "BTC/USDC", "alice", base_total=5)
        assert not oo.has_unsettled
        assert OpenOrdersBalances("oo-1", "BTC/USDC", "alice", quote_free=1).has_unsettled


class TestPriceVector:
    def test_indexing(self) -> None:
        prices = PriceVector((Decimal("40000"), Decimal("2000"), Decimal(1)))
        assert prices[0] == Decimal("40000")
        assert len(prices) == 3


class TestValuation:
    def test_has_liabilities(self) -> None:
        v = Valuation("acct-1", (0,), (0,), Decimal(0), Decimal(0), None)
        assert not v.has_liabilities
