"""Ledger client protocol — authoritative margin ledger abstraction."""
from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from ..models import (
    AccountState,
    GroupState,
    OpenOrdersBalances,
    Order,
    OrderType,
    SelfTradeBehavior,
    Side,
)


class LedgerClient(Protocol):
    """Reads and atomic writes against one margin group.

    Every write either applies completely or raises; it returns an opaque
    transaction reference.
    """

    async def get_group(self) -> GroupState: ...

    async def get_account(self, account_id: str) -> AccountState: ...

    async def get_accounts_for_group(self) -> list[AccountState]: ...

    async def get_accounts_for_owner(self, owner: str) -> list[AccountState]: ...

    async def get_open_orders(
        self, account: AccountState
    ) -> list[OpenOrdersBalances | None]: ...

    async def get_orders(self, account: AccountState, market_index: int) -> list[Order]: ...

    async def deposit(
        self, account_id: str, depositor: str, asset_index: int, quantity: int
    ) -> str: ...

    async def withdraw(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str: ...

    async def borrow(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str: ...

    async def settle_borrow(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str: ...

    async def liquidate(
        self, account_id: str, liquidator: str, deposit_quantities: tuple[int, ...]
    ) -> str: ...

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
    ) -> str: ...

    async def cancel_order(
        self, account_id: str, owner: str, market_index: int, order_id: str
    ) -> str: ...

    async def cancel_all_by_market(
        self, account_id: str, owner: str, market_index: int
    ) -> int: ...

    async def settle_funds(self, account_id: str, owner: str, market_index: int) -> str: ...
