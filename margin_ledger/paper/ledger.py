"""In-memory authoritative margin ledger.

Each write fetches prices first, then reads, computes and commits without
yielding to the event loop, so concurrent callers only ever observe whole
transactions.
"""
from __future__ import annotations

import itertools
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from decimal import Decimal

from .. import accounting
from ..errors import (
    InsufficientFundsError,
    InvalidOwnerError,
    UnknownAccountError,
    UnknownAssetError,
    UnknownOrderError,
)
from ..interest import DEFAULT_RATE_MODEL, RateModel, accrue_group, check_group_indexes
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.venue import Venue
from ..models import (
    AccountState,
    GroupState,
    OpenOrdersBalances,
    Order,
    OrderType,
    PriceVector,
    SelfTradeBehavior,
    Side,
)
from ..valuation import build_price_vector
from .venue import check_order, order_funds

logger = logging.getLogger(__name__)


class PaperLedger:
    """Single-group ledger settling trades through a :class:`Venue`.

    Deposits are drawn from, and withdrawals paid into, per-(owner, asset)
    wallet balances funded with :meth:`fund_wallet`.
    """

    def __init__(
        self,
        group: GroupState,
        venue: Venue,
        oracle: PriceOracle,
        rate_model: RateModel = DEFAULT_RATE_MODEL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._group = group
        self._venue = venue
        self._oracle = oracle
        self._rate_model = rate_model
        self._clock = clock
        self._accounts: dict[str, AccountState] = {}
        self._wallets: dict[tuple[str, int], int] = defaultdict(int)
        self._ids = itertools.count(1)

    @property
    def venue(self) -> Venue:
        return self._venue

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def open_account(self, owner: str) -> str:
        account_id = f"acct-{next(self._ids)}"
        self._accounts[account_id] = AccountState.empty(account_id, self._group, owner)
        logger.info("Opened margin account %s for %s", account_id, owner)
        return account_id

    def fund_wallet(self, owner: str, asset_index: int, quantity: int) -> None:
        self._group.check_asset_index(asset_index)
        self._wallets[(owner, asset_index)] += quantity

    def wallet_balance(self, owner: str, asset_index: int) -> int:
        return self._wallets.get((owner, asset_index), 0)

    def replace_group(self, group: GroupState) -> None:
        """Swap in a new group snapshot (fixtures and simulations)."""
        self._group = group

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _tx(self, op: str) -> str:
        return f"paper-{op}-{next(self._ids)}"

    def _account(self, account_id: str) -> AccountState:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise UnknownAccountError(f"Unknown margin account '{account_id}'") from None

    @staticmethod
    def _check_owner(account: AccountState, owner: str) -> None:
        if account.owner != owner:
            raise InvalidOwnerError(
                f"{owner} does not own margin account {account.account_id}"
            )

    def _check_wallet(self, owner: str, asset_index: int, quantity: int) -> None:
        balance = self._wallets.get((owner, asset_index), 0)
        if quantity > balance:
            raise InsufficientFundsError(
                f"Wallet of {owner} holds {balance} of asset {asset_index}, needs {quantity}"
            )

    def _accrued_group(self) -> GroupState:
        group = accrue_group(self._group, int(self._clock()), self._rate_model)
        check_group_indexes(self._group, group)
        return group

    async def _prices(self) -> PriceVector:
        symbols = [a.symbol for a in self._group.assets[: self._group.num_markets]]
        raw = await self._oracle.fetch_prices(symbols)
        return build_price_vector(self._group, raw)

    def _snapshot_open_orders(self, account: AccountState) -> list[OpenOrdersBalances | None]:
        return [
            self._venue.open_orders(oo_id) if oo_id is not None else None
            for oo_id in account.open_orders
        ]

    def _commit(self, group: GroupState, account: AccountState) -> None:
        self._group = group
        self._accounts[account.account_id] = account

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_group(self) -> GroupState:
        return self._group

    async def get_account(self, account_id: str) -> AccountState:
        return self._account(account_id)

    async def get_accounts_for_group(self) -> list[AccountState]:
        return list(self._accounts.values())

    async def get_accounts_for_owner(self, owner: str) -> list[AccountState]:
        return [a for a in self._accounts.values() if a.owner == owner]

    async def get_open_orders(
        self, account: AccountState
    ) -> list[OpenOrdersBalances | None]:
        return self._snapshot_open_orders(account)

    async def get_orders(self, account: AccountState, market_index: int) -> list[Order]:
        self._group.check_market_index(market_index)
        oo_id = account.open_orders[market_index]
        if oo_id is None:
            return []
        return self._venue.orders_for(oo_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def deposit(
        self, account_id: str, depositor: str, asset_index: int, quantity: int
    ) -> str:
        account = self._account(account_id)
        self._group.check_asset_index(asset_index)
        self._check_wallet(depositor, asset_index, quantity)
        group, account = accounting.deposit(
            self._accrued_group(), account, asset_index, quantity
        )
        self._wallets[(depositor, asset_index)] -= quantity
        self._commit(group, account)
        return self._tx("deposit")

    async def withdraw(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str:
        prices = await self._prices()
        account = self._account(account_id)
        self._check_owner(account, owner)
        group, account = accounting.withdraw(
            self._accrued_group(),
            account,
            asset_index,
            quantity,
            prices,
            self._snapshot_open_orders(account),
        )
        self._wallets[(owner, asset_index)] += quantity
        self._commit(group, account)
        return self._tx("withdraw")

    async def borrow(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str:
        prices = await self._prices()
        account = self._account(account_id)
        self._check_owner(account, owner)
        group, account = accounting.borrow(
            self._accrued_group(),
            account,
            asset_index,
            quantity,
            prices,
            self._snapshot_open_orders(account),
        )
        self._commit(group, account)
        return self._tx("borrow")

    async def settle_borrow(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str:
        account = self._account(account_id)
        self._check_owner(account, owner)
        group, account = accounting.settle_borrow(
            self._accrued_group(), account, asset_index, quantity
        )
        self._commit(group, account)
        return self._tx("settle-borrow")

    async def liquidate(
        self, account_id: str, liquidator: str, deposit_quantities: tuple[int, ...]
    ) -> str:
        prices = await self._prices()
        account = self._account(account_id)
        if len(deposit_quantities) != self._group.num_assets:
            raise UnknownAssetError(
                f"Expected {self._group.num_assets} deposit quantities, got {len(deposit_quantities)}"
            )
        for i, quantity in enumerate(deposit_quantities):
            if quantity:
                self._check_wallet(liquidator, i, quantity)
        group, account = accounting.liquidate(
            self._accrued_group(),
            account,
            liquidator,
            tuple(deposit_quantities),
            prices,
            self._snapshot_open_orders(account),
        )
        for i, quantity in enumerate(deposit_quantities):
            self._wallets[(liquidator, i)] -= quantity
        self._commit(group, account)
        logger.info("Account %s liquidated by %s", account_id, liquidator)
        return self._tx("liquidate")

    async def place_order(
        self,
        account_id: str,
        owner: str,
        market_index: int,
        side: Side,
        price: Decimal,
        size: int,
        order_type: OrderType = OrderType.LIMIT,
        client_id: int | None = None,
        self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.DECREMENT_TAKE,
    ) -> str:
        prices = await self._prices()
        account = self._account(account_id)
        self._check_owner(account, owner)
        group = self._accrued_group()
        group.check_market_index(market_index)
        market_ref = group.markets[market_index]
        check_order(market_ref, price, size)

        base, quote = order_funds(
            side,
            price,
            size,
            group.assets[market_index].decimals,
            group.assets[group.quote_index].decimals,
        )
        asset_index = market_index if side is Side.SELL else group.quote_index
        group, account = accounting.reserve_for_order(
            group,
            account,
            asset_index,
            base + quote,
            prices,
            self._snapshot_open_orders(account),
        )

        oo_id = account.open_orders[market_index]
        if oo_id is None:
            oo_id = self._venue.create_open_orders(market_ref.market_id, account.owner)
            account = account.with_open_orders(market_index, oo_id)
        self._venue.lock(oo_id, base=base, quote=quote)
        self._venue.place_order(
            oo_id, side, price, size, order_type, client_id, self_trade_behavior
        )
        self._commit(group, account)
        return self._tx("place-order")

    def _open_orders_id(self, account: AccountState, market_index: int) -> str | None:
        self._group.check_market_index(market_index)
        return account.open_orders[market_index]

    async def cancel_order(
        self, account_id: str, owner: str, market_index: int, order_id: str
    ) -> str:
        account = self._account(account_id)
        self._check_owner(account, owner)
        oo_id = self._open_orders_id(account, market_index)
        if oo_id is None:
            raise UnknownOrderError(
                f"Account {account_id} has no open orders on market {market_index}"
            )
        self._venue.cancel_order(oo_id, order_id)
        return self._tx("cancel")

    async def cancel_all_by_market(
        self, account_id: str, owner: str, market_index: int
    ) -> int:
        account = self._account(account_id)
        self._check_owner(account, owner)
        oo_id = self._open_orders_id(account, market_index)
        if oo_id is None:
            return 0
        return self._venue.cancel_all(oo_id)

    async def settle_funds(self, account_id: str, owner: str, market_index: int) -> str:
        account = self._account(account_id)
        self._check_owner(account, owner)
        oo_id = self._open_orders_id(account, market_index)
        if oo_id is None:
            return self._tx("settle")
        balances = self._venue.open_orders(oo_id)
        group, account = accounting.credit_settlement(
            self._accrued_group(),
            account,
            market_index,
            balances.base_free,
            balances.quote_free,
        )
        self._venue.settle(oo_id)
        self._commit(group, account)
        return self._tx("settle")
