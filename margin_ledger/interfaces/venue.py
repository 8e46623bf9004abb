"""Venue protocol — external order book abstraction."""
from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from ..models import OpenOrdersBalances, Order, OrderType, SelfTradeBehavior, Side


class Venue(Protocol):
    """Order-book venue holding one open-orders record per (account, market).

    The ledger moves funds into a record with :meth:`lock` before placing an
    order, and takes free balances back out with :meth:`settle`.
    """

    def create_open_orders(self, market_id: str, owner: str) -> str: ...

    def lock(self, open_orders_id: str, base: int = 0, quote: int = 0) -> None: ...

    def place_order(
        self,
        open_orders_id: str,
        side: Side,
        price: Decimal,
        size: int,
        order_type: OrderType = OrderType.LIMIT,
        client_id: int | None = None,
        self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.DECREMENT_TAKE,
    ) -> Order | None: ...

    def cancel_order(self, open_orders_id: str, order_id: str) -> None: ...

    def cancel_all(self, open_orders_id: str) -> int: ...

    def orders_for(self, open_orders_id: str) -> list[Order]: ...

    def open_orders(self, open_orders_id: str) -> OpenOrdersBalances: ...

    def settle(self, open_orders_id: str) -> tuple[int, int]: ...
