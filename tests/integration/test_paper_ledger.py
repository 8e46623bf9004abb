"""Integration tests for the in-memory ledger and venue."""
from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import BTC, USDC, move_price, open_funded_account, open_levered_account, ui

from margin_ledger.errors import (
    CollateralRatioError,
    InsufficientFundsError,
    InvalidOwnerError,
    NotLiquidatableError,
    SizeTooSmallError,
    UnknownAccountError,
    UnknownAssetError,
    UnknownOrderError,
)
from margin_ledger.models import GroupState, OrderType, SelfTradeBehavior, Side
from margin_ledger.oracles.static import StaticOracle
from margin_ledger.paper import PaperLedger, PaperVenue


class TestDepositWithdraw:
    @pytest.mark.asyncio
    async def test_wallet_round_trip(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {USDC: ui(100)})
        assert ledger.wallet_balance("alice", USDC) == 0

        await ledger.withdraw(account_id, "alice", USDC, ui(40))
        account = await ledger.get_account(account_id)
        group = await ledger.get_group()
        assert account.native_deposit(group, USDC) == ui(60)
        assert ledger.wallet_balance("alice", USDC) == ui(40)

    @pytest.mark.asyncio
    async def test_deposit_needs_wallet_funds(self, ledger: PaperLedger) -> None:
        account_id = ledger.open_account("alice")
        with pytest.raises(InsufficientFundsError):
            await ledger.deposit(account_id, "alice", USDC, 1)

    @pytest.mark.asyncio
    async def test_deposit_unknown_asset(self, ledger: PaperLedger) -> None:
        account_id = ledger.open_account("alice")
        with pytest.raises(UnknownAssetError):
            await ledger.deposit(account_id, "alice", 7, 1)
        assert ledger.wallet_balance("alice", 7) == 0

    @pytest.mark.asyncio
    async def test_anyone_may_deposit(self, ledger: PaperLedger) -> None:
        account_id = ledger.open_account("alice")
        ledger.fund_wallet("bob", USDC, ui(5))
        await ledger.deposit(account_id, "bob", USDC, ui(5))
        account = await ledger.get_account(account_id)
        assert account.native_deposit(await ledger.get_group(), USDC) == ui(5)

    @pytest.mark.asyncio
    async def test_withdraw_requires_owner(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {USDC: ui(100)})
        with pytest.raises(InvalidOwnerError):
            await ledger.withdraw(account_id, "mallory", USDC, ui(1))

    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger: PaperLedger) -> None:
        with pytest.raises(UnknownAccountError):
            await ledger.get_account("acct-404")

    @pytest.mark.asyncio
    async def test_rejected_write_leaves_state_untouched(self, ledger: PaperLedger) -> None:
        account_id = await open_levered_account(ledger)
        group_before = await ledger.get_group()
        account_before = await ledger.get_account(account_id)

        with pytest.raises(CollateralRatioError):
            await ledger.withdraw(account_id, "alice", USDC, ui(500))

        assert await ledger.get_group() == group_before
        assert await ledger.get_account(account_id) == account_before
        assert ledger.wallet_balance("alice", USDC) == 0


class TestLiquidate:
    @pytest.mark.asyncio
    async def test_healthy_account_is_not_liquidatable(self, ledger: PaperLedger) -> None:
        account_id = await open_levered_account(ledger)
        ledger.fund_wallet("liq", USDC, ui(1000))
        with pytest.raises(NotLiquidatableError):
            await ledger.liquidate(account_id, "liq", (0, 0, ui(1000)))
        assert ledger.wallet_balance("liq", USDC) == ui(1000)

    @pytest.mark.asyncio
    async def test_transfers_ownership(
        self, ledger: PaperLedger, oracle: StaticOracle, venue: PaperVenue
    ) -> None:
        account_id = await open_levered_account(ledger)
        move_price(oracle, venue, "BTC", "46000")
        ledger.fund_wallet("liq", USDC, ui(1000))

        await ledger.liquidate(account_id, "liq", (0, 0, 420_160_000))

        account = await ledger.get_account(account_id)
        assert account.owner == "liq"
        assert ledger.wallet_balance("liq", USDC) == ui(1000) - 420_160_000
        assert [a.account_id for a in await ledger.get_accounts_for_owner("liq")] == [account_id]
        with pytest.raises(InvalidOwnerError):
            await ledger.withdraw(account_id, "alice", USDC, 1)

    @pytest.mark.asyncio
    async def test_wrong_number_of_deposit_quantities(
        self, ledger: PaperLedger, oracle: StaticOracle, venue: PaperVenue
    ) -> None:
        account_id = await open_levered_account(ledger)
        move_price(oracle, venue, "BTC", "46000")
        ledger.fund_wallet("liq", USDC, ui(1000))

        with pytest.raises(UnknownAssetError):
            await ledger.liquidate(account_id, "liq", (0, 0, 0, 420_160_000))

        assert (await ledger.get_account(account_id)).owner == "alice"
        assert ledger.wallet_balance("liq", USDC) == ui(1000)


class TestOrders:
    @pytest.mark.asyncio
    async def test_resting_order_locks_funds(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {BTC: ui("0.5")})
        await ledger.place_order(account_id, "alice", BTC, Side.SELL, Decimal("50000"), ui("0.5"))

        account = await ledger.get_account(account_id)
        group = await ledger.get_group()
        (oo, _) = await ledger.get_open_orders(account)
        orders = await ledger.get_orders(account, BTC)

        assert account.native_deposit(group, BTC) == 0
        assert oo.base_total == ui("0.5")
        assert oo.base_free == 0
        assert len(orders) == 1
        assert orders[0].price == Decimal("50000")

    @pytest.mark.asyncio
    async def test_cancel_then_settle_returns_funds(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {BTC: ui("0.5")})
        await ledger.place_order(account_id, "alice", BTC, Side.SELL, Decimal("50000"), ui("0.5"))
        account = await ledger.get_account(account_id)
        (order,) = await ledger.get_orders(account, BTC)

        await ledger.cancel_order(account_id, "alice", BTC, order.order_id)
        await ledger.settle_funds(account_id, "alice", BTC)

        account = await ledger.get_account(account_id)
        assert account.native_deposit(await ledger.get_group(), BTC) == ui("0.5")
        assert await ledger.get_orders(account, BTC) == []
        with pytest.raises(UnknownOrderError):
            await ledger.cancel_order(account_id, "alice", BTC, order.order_id)

    @pytest.mark.asyncio
    async def test_crossing_buy_fills_at_reference(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {USDC: ui(1000)})
        await ledger.place_order(account_id, "alice", BTC, Side.BUY, Decimal("42000"), ui("0.01"))
        await ledger.settle_funds(account_id, "alice", BTC)

        account = await ledger.get_account(account_id)
        group = await ledger.get_group()
        assert account.native_deposit(group, BTC) == ui("0.01")
        # filled at 40000, not the 42000 limit
        assert account.native_deposit(group, USDC) == ui(600)

    @pytest.mark.asyncio
    async def test_resting_order_fills_when_price_moves(
        self, ledger: PaperLedger, oracle: StaticOracle, venue: PaperVenue
    ) -> None:
        account_id = await open_funded_account(ledger, "alice", {BTC: ui("0.1")})
        await ledger.place_order(account_id, "alice", BTC, Side.SELL, Decimal("41000"), ui("0.1"))
        move_price(oracle, venue, "BTC", "41500")
        await ledger.settle_funds(account_id, "alice", BTC)

        account = await ledger.get_account(account_id)
        assert account.native_deposit(await ledger.get_group(), USDC) == ui(4100)

    @pytest.mark.asyncio
    async def test_shortfall_is_borrowed(self, ledger: PaperLedger) -> None:
        await open_funded_account(ledger, "bob", {USDC: ui(10_000)})
        account_id = await open_funded_account(ledger, "alice", {USDC: ui(1000)})
        await ledger.place_order(
            account_id, "alice", BTC, Side.BUY, Decimal("30000"), ui("0.05")
        )
        account = await ledger.get_account(account_id)
        assert account.native_borrow(await ledger.get_group(), USDC) == ui(500)

    @pytest.mark.asyncio
    async def test_post_only_that_crosses_is_cancelled(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {BTC: ui("0.1")})
        await ledger.place_order(
            account_id, "alice", BTC, Side.SELL, Decimal("39000"), ui("0.1"),
            order_type=OrderType.POST_ONLY,
        )
        account = await ledger.get_account(account_id)
        (oo, _) = await ledger.get_open_orders(account)
        assert await ledger.get_orders(account, BTC) == []
        assert oo.base_free == ui("0.1")

    @pytest.mark.asyncio
    async def test_size_below_lot(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(ledger, "alice", {BTC: ui("0.1")})
        with pytest.raises(SizeTooSmallError):
            await ledger.place_order(account_id, "alice", BTC, Side.SELL, Decimal("40000"), 99)

    @pytest.mark.asyncio
    async def test_self_trade_decrements_both_orders(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(
            ledger, "alice", {BTC: ui("0.1"), USDC: ui(10_000)}
        )
        await ledger.place_order(account_id, "alice", BTC, Side.SELL, Decimal("41000"), ui("0.05"))
        await ledger.place_order(account_id, "alice", BTC, Side.BUY, Decimal("41500"), ui("0.03"))

        account = await ledger.get_account(account_id)
        (oo, _) = await ledger.get_open_orders(account)
        (order,) = await ledger.get_orders(account, BTC)
        assert order.side is Side.SELL
        assert order.size == ui("0.02")
        # nothing traded: the overlap went back to free balances
        assert oo.base_free == ui("0.03")
        assert oo.quote_free == ui(1245)

    @pytest.mark.asyncio
    async def test_self_trade_cancels_resting_order(self, ledger: PaperLedger) -> None:
        account_id = await open_funded_account(
            ledger, "alice", {BTC: ui("0.1"), USDC: ui(10_000)}
        )
        await ledger.place_order(account_id, "alice", BTC, Side.SELL, Decimal("41000"), ui("0.05"))
        await ledger.place_order(
            account_id, "alice", BTC, Side.BUY, Decimal("41500"), ui("0.03"),
            self_trade_behavior=SelfTradeBehavior.CANCEL_PROVIDE,
        )

        account = await ledger.get_account(account_id)
        (oo, _) = await ledger.get_open_orders(account)
        assert await ledger.get_orders(account, BTC) == []
        # resting sell released, buy filled at the 40000 reference
        assert oo.base_free == ui("0.08")
        assert oo.quote_free == ui(45)

    @pytest.mark.asyncio
    async def test_cancel_all_without_open_orders(self, ledger: PaperLedger) -> None:
        account_id = ledger.open_account("alice")
        assert await ledger.cancel_all_by_market(account_id, "alice", BTC) == 0


class TestInterest:
    @pytest.mark.asyncio
    async def test_borrow_grows_with_time(
        self, group: GroupState, venue: PaperVenue, oracle: StaticOracle
    ) -> None:
        now = [0.0]
        ledger = PaperLedger(group, venue, oracle, clock=lambda: now[0])
        account_id = await open_levered_account(ledger)

        now[0] = 365 * 24 * 60 * 60
        # any write brings the indexes current
        ledger.fund_wallet("alice", USDC, 1)
        await ledger.deposit(account_id, "alice", USDC, 1)

        group = await ledger.get_group()
        account = await ledger.get_account(account_id)
        assert account.native_borrow(group, BTC) > ui("0.08")
