"""Post-liquidation drain: cancel, settle, rebalance, withdraw.

Every step re-reads the account before acting, so a step retried after a
timeout skips whatever already took effect.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from .. import fixed
from ..errors import OrdersStillOpenError
from ..interfaces.ledger import LedgerClient
from ..interfaces.price_oracle import PriceOracle
from ..models import (
    AccountState,
    GroupState,
    OpenOrdersBalances,
    PriceVector,
    Side,
    Valuation,
)
from ..retry import RetryPolicy
from ..valuation import build_price_vector, value_account

logger = logging.getLogger(__name__)


class DrainStep(str, Enum):
    CANCEL_ORDERS = "cancel_orders"
    SETTLE_FUNDS = "settle_funds"
    REBALANCE = "rebalance"
    WITHDRAW_SURPLUS = "withdraw_surplus"


@dataclass(frozen=True)
class RebalanceOrder:
    market_index: int
    side: Side
    price: Decimal
    size: int
    net_value: Decimal


@dataclass(frozen=True)
class DrainResult:
    account_id: str
    steps: tuple[DrainStep, ...]
    flat: bool
    withdrawn: int = 0


# ---------------------------------------------------------------------------
# Pure planning
# ---------------------------------------------------------------------------


def net_values(group: GroupState, valuation: Valuation, prices: PriceVector) -> list[tuple[int, Decimal]]:
    """``(market_index, (assets - liabilities) * price)``, largest first."""
    values = []
    for i in range(group.num_markets):
        net = valuation.assets[i] - valuation.liabilities[i]
        values.append((i, fixed.native_to_ui(net, group.assets[i].decimals) * prices[i]))
    values.sort(key=lambda item: item[1], reverse=True)
    return values


def plan_rebalance(
    group: GroupState,
    account: AccountState,
    valuation: Valuation,
    prices: PriceVector,
    sell_discount: Decimal = Decimal("0.95"),
    buy_premium: Decimal = Decimal("1.05"),
) -> list[RebalanceOrder]:
    """Orders that close every tradable position.

    Greedy: surplus assets are sold first, largest net value first, so their
    quote proceeds are available before liabilities are bought back. The
    ordering is inherited, not proven to avoid a transient shortfall.

    Sell sizes come from the ledger deposit only, so funds already locked
    on the venue are never offered twice. Sells are floored to the market's
    base lot and skipped below one lot.
    Buys are rounded up to a whole lot so the liability is fully covered.
    """
    orders: list[RebalanceOrder] = []
    for i, value in net_values(group, valuation, prices):
        lot = group.markets[i].base_lot_size
        if value > 0:
            size = account.native_deposit(group, i) // lot * lot
            side = Side.SELL
            price = prices[i] * sell_discount
        elif value < 0:
            size = -(-valuation.liabilities[i] // lot) * lot
            side = Side.BUY
            price = prices[i] * buy_premium
        else:
            continue
        if size <= 0:
            logger.debug("Skipping dust on market %d (%s)", i, value)
            continue
        orders.append(RebalanceOrder(i, side, price, size, value))
    return orders


def needs_drain(
    group: GroupState,
    account: AccountState,
    open_orders: list[OpenOrdersBalances | None] | None = None,
) -> bool:
    """True while the account has debt, venue balances or tradable holdings of a lot or more."""
    for i in range(group.num_assets):
        if account.native_borrow(group, i) > 0:
            return True
    for i in range(group.num_markets):
        if account.native_deposit(group, i) >= group.markets[i].base_lot_size:
            return True
    for oo in open_orders or ():
        if oo is not None and (oo.base_total > 0 or oo.quote_total > 0):
            return True
    return False


# ---------------------------------------------------------------------------
# Drainer
# ---------------------------------------------------------------------------


class Drainer:
    """Drives one liquidator-owned account back to a single-currency state."""

    def __init__(
        self,
        ledger: LedgerClient,
        oracle: PriceOracle,
        owner: str,
        policy: RetryPolicy,
        sell_discount: Decimal = Decimal("0.95"),
        buy_premium: Decimal = Decimal("1.05"),
        withdraw_buffer: Decimal = Decimal("0.999"),
    ) -> None:
        self._ledger = ledger
        self._oracle = oracle
        self._owner = owner
        self._policy = policy
        self._sell_discount = sell_discount
        self._buy_premium = buy_premium
        self._withdraw_buffer = withdraw_buffer

    async def _prices(self, group: GroupState) -> PriceVector:
        symbols = [a.symbol for a in group.assets[: group.num_markets]]
        return build_price_vector(group, await self._oracle.fetch_prices(symbols))

    @staticmethod
    def _markets_with_open_orders(account: AccountState) -> list[int]:
        return [i for i, oo in enumerate(account.open_orders) if oo is not None]

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def cancel_orders(self, account_id: str) -> int:
        """Cancel every resting order, concurrently per market, then confirm none remain."""
        account = await self._ledger.get_account(account_id)
        markets = self._markets_with_open_orders(account)
        if not markets:
            return 0

        counts = await asyncio.gather(
            *(self._ledger.cancel_all_by_market(account_id, self._owner, i) for i in markets)
        )
        remaining = await asyncio.gather(*(self._ledger.get_orders(account, i) for i in markets))
        still_open = sum(len(orders) for orders in remaining)
        if still_open:
            raise OrdersStillOpenError(
                f"{still_open} orders still open on account {account_id}"
            )
        cancelled = sum(counts)
        if cancelled:
            logger.info("Cancelled %d orders on account %s", cancelled, account_id)
        return cancelled

    async def settle_funds(self, account_id: str) -> int:
        """Settle every market with free balances, then net same-asset debt."""
        group = await self._ledger.get_group()
        account = await self._ledger.get_account(account_id)
        open_orders = await self._ledger.get_open_orders(account)

        settled = 0
        for i, oo in enumerate(open_orders):
            if oo is not None and oo.has_unsettled:
                await self._ledger.settle_funds(account_id, self._owner, i)
                settled += 1

        if settled:
            account = await self._ledger.get_account(account_id)
        for i in range(group.num_assets):
            owed = account.native_borrow(group, i)
            if owed > 0 and account.native_deposit(group, i) > 0:
                await self._ledger.settle_borrow(account_id, self._owner, i, owed)
                settled += 1
        return settled

    async def rebalance(self, account_id: str) -> list[RebalanceOrder]:
        """Place the orders that close the account's positions.

        Orders left resting by an earlier attempt are cancelled and settled
        first, so liabilities they would cover are not bought twice.
        """
        await self.cancel_orders(account_id)
        await self.settle_funds(account_id)

        group = await self._ledger.get_group()
        account = await self._ledger.get_account(account_id)
        open_orders = await self._ledger.get_open_orders(account)
        prices = await self._prices(group)

        valuation = value_account(group, account, prices, open_orders)
        orders = plan_rebalance(
            group, account, valuation, prices, self._sell_discount, self._buy_premium
        )
        for order in orders:
            logger.info(
                "Rebalance %s: %s %d on market %d @ %s (net $%.2f)",
                account_id,
                order.side.value,
                order.size,
                order.market_index,
                order.price,
                order.net_value,
            )
            await self._ledger.place_order(
                account_id, self._owner, order.market_index, order.side, order.price, order.size
            )
            await self._ledger.settle_funds(account_id, self._owner, order.market_index)
        return orders

    async def withdraw_surplus(self, account_id: str) -> int:
        """Withdraw the quote deposit, less the buffer, once no debt remains."""
        group = await self._ledger.get_group()
        account = await self._ledger.get_account(account_id)
        if any(account.native_borrow(group, i) > 0 for i in range(group.num_assets)):
            logger.info("Account %s still has liabilities; withdrawal deferred", account_id)
            return 0

        quote = group.quote_index
        balance = account.native_deposit(group, quote)
        quantity = fixed.ui_to_native_floor(Decimal(balance) * self._withdraw_buffer, 0)
        if quantity <= 0:
            return 0
        await self._ledger.withdraw(account_id, self._owner, quote, quantity)
        logger.info(
            "Withdrew %s %s from account %s",
            fixed.native_to_ui(quantity, group.assets[quote].decimals),
            group.assets[quote].symbol,
            account_id,
        )
        return quantity

    # ------------------------------------------------------------------
    # Sequence
    # ------------------------------------------------------------------

    async def drain(self, account_id: str) -> DrainResult:
        """Run every step in order, each under the retry policy."""
        steps: list[DrainStep] = []

        await self._policy.run(f"cancel orders {account_id}", lambda: self.cancel_orders(account_id))
        steps.append(DrainStep.CANCEL_ORDERS)

        await self._policy.run(f"settle funds {account_id}", lambda: self.settle_funds(account_id))
        steps.append(DrainStep.SETTLE_FUNDS)

        await self._policy.run(f"rebalance {account_id}", lambda: self.rebalance(account_id))
        steps.append(DrainStep.REBALANCE)

        # Orders that rested instead of filling stay on the book until the next pass.
        await self._policy.run(f"settle funds {account_id}", lambda: self.settle_funds(account_id))

        withdrawn = await self._policy.run(
            f"withdraw surplus {account_id}", lambda: self.withdraw_surplus(account_id)
        )
        steps.append(DrainStep.WITHDRAW_SURPLUS)

        group = await self._ledger.get_group()
        account = await self._ledger.get_account(account_id)
        open_orders = await self._ledger.get_open_orders(account)
        flat = not needs_drain(group, account, open_orders)
        return DrainResult(account_id, tuple(steps), flat, withdrawn)
