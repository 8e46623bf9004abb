"""In-memory order-book venue.

There is no matching engine: an order fills in full as soon as its limit
crosses the market's reference price, otherwise it rests until the reference
price moves through it or it is cancelled.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from .. import fixed
from ..errors import (
    InsufficientFundsError,
    InvalidPriceError,
    SizeTooSmallError,
    UnknownMarketError,
    UnknownOrderError,
)
from ..models import MarketRef, OpenOrdersBalances, Order, OrderType, SelfTradeBehavior, Side

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VenueMarket:
    market_id: str
    base_decimals: int
    quote_decimals: int
    base_lot_size: int = 1
    quote_lot_size: int = 1


def order_funds(
    side: Side, price: Decimal, size: int, base_decimals: int, quote_decimals: int
) -> tuple[int, int]:
    """Native (base, quote) an order must lock: the size to sell or the cost to buy."""
    if side is Side.SELL:
        return size, 0
    if side is Side.BUY:
        ui_cost = price * fixed.native_to_ui(size, base_decimals)
        return 0, fixed.ui_to_native(ui_cost, quote_decimals)
    raise ValueError(f"Unknown side: {side!r}")


def check_order(market: VenueMarket | MarketRef, price: Decimal, size: int) -> None:
    """Reject orders the venue would refuse before any funds move."""
    if price <= 0:
        raise InvalidPriceError(f"Price must be positive, got {price}")
    if size < market.base_lot_size:
        raise SizeTooSmallError(
            f"Size {size} below lot size {market.base_lot_size} on {market.market_id}"
        )


class _Record:
    """Mutable balances of one open-orders record."""

    def __init__(self, open_orders_id: str, market_id: str, owner: str) -> None:
        self.open_orders_id = open_orders_id
        self.market_id = market_id
        self.owner = owner
        self.base_free = 0
        self.base_locked = 0
        self.quote_free = 0
        self.quote_locked = 0

    def snapshot(self) -> OpenOrdersBalances:
        return OpenOrdersBalances(
            open_orders_id=self.open_orders_id,
            market_id=self.market_id,
            owner=self.owner,
            base_free=self.base_free,
            base_total=self.base_free + self.base_locked,
            quote_free=self.quote_free,
            quote_total=self.quote_free + self.quote_locked,
        )


class PaperVenue:
    """Venue keeping open-orders records and resting orders in memory."""

    def __init__(self, markets: list[VenueMarket] | tuple[VenueMarket, ...]) -> None:
        self._markets = {m.market_id: m for m in markets}
        self._reference: dict[str, Decimal] = {}
        self._records: dict[str, _Record] = {}
        self._orders: dict[str, Order] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def market(self, market_id: str) -> VenueMarket:
        try:
            return self._markets[market_id]
        except KeyError:
            raise UnknownMarketError(f"Venue has no market '{market_id}'") from None

    def _record(self, open_orders_id: str) -> _Record:
        try:
            return self._records[open_orders_id]
        except KeyError:
            raise UnknownOrderError(
                f"Unknown open orders record '{open_orders_id}'"
            ) from None

    def reference_price(self, market_id: str) -> Decimal | None:
        return self._reference.get(market_id)

    def open_orders(self, open_orders_id: str) -> OpenOrdersBalances:
        return self._record(open_orders_id).snapshot()

    def orders_for(self, open_orders_id: str) -> list[Order]:
        return [o for o in self._orders.values() if o.open_orders_id == open_orders_id]

    # ------------------------------------------------------------------
    # Funds
    # ------------------------------------------------------------------

    def create_open_orders(self, market_id: str, owner: str) -> str:
        self.market(market_id)
        oo_id = f"oo-{next(self._ids)}"
        self._records[oo_id] = _Record(oo_id, market_id, owner)
        logger.debug("Created open orders %s on %s for %s", oo_id, market_id, owner)
        return oo_id

    def lock(self, open_orders_id: str, base: int = 0, quote: int = 0) -> None:
        """Credit funds arriving from the ledger to the record's free balances."""
        record = self._record(open_orders_id)
        record.base_free += base
        record.quote_free += quote

    def settle(self, open_orders_id: str) -> tuple[int, int]:
        """Release and return the free (base, quote) balances."""
        record = self._record(open_orders_id)
        released = (record.base_free, record.quote_free)
        record.base_free = 0
        record.quote_free = 0
        return released

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def _crosses(self, side: Side, price: Decimal, market_id: str) -> bool:
        reference = self._reference.get(market_id)
        if reference is None:
            return False
        if side is Side.BUY:
            return price >= reference
        if side is Side.SELL:
            return price <= reference
        raise ValueError(f"Unknown side: {side!r}")

    def _fill(self, record: _Record, side: Side, limit: Decimal, fill_price: Decimal, size: int) -> None:
        market = self.market(record.market_id)
        if side is Side.SELL:
            record.base_locked -= size
            _, proceeds = order_funds(
                Side.BUY, fill_price, size, market.base_decimals, market.quote_decimals
            )
            record.quote_free += proceeds
        else:
            _, reserved = order_funds(side, limit, size, market.base_decimals, market.quote_decimals)
            _, cost = order_funds(side, fill_price, size, market.base_decimals, market.quote_decimals)
            record.quote_locked -= reserved
            record.quote_free += reserved - cost
            record.base_free += size
        logger.info(
            "Filled %s %s %d @ %s on %s", record.open_orders_id, side.value, size,
            fill_price, record.market_id,
        )

    def _unlock(self, record: _Record, base: int, quote: int) -> None:
        record.base_locked -= base
        record.base_free += base
        record.quote_locked -= quote
        record.quote_free += quote

    def _shrink(
        self, record: _Record, market: VenueMarket, side: Side, price: Decimal, old: int, new: int
    ) -> None:
        """Unlock the funds an order no longer needs after its size drops from ``old`` to ``new``."""
        old_base, old_quote = order_funds(side, price, old, market.base_decimals, market.quote_decimals)
        new_base, new_quote = order_funds(side, price, new, market.base_decimals, market.quote_decimals)
        self._unlock(record, old_base - new_base, old_quote - new_quote)

    def _own_matches(self, open_orders_id: str, side: Side, price: Decimal) -> list[Order]:
        """Resting orders of the same record that an incoming order would trade against, best first."""
        matches = []
        for order in self.orders_for(open_orders_id):
            if order.side is side:
                continue
            if side is Side.BUY and price >= order.price:
                matches.append(order)
            elif side is Side.SELL and price <= order.price:
                matches.append(order)
        matches.sort(key=lambda o: o.price, reverse=side is Side.SELL)
        return matches

    def _prevent_self_trade(
        self,
        record: _Record,
        market: VenueMarket,
        side: Side,
        price: Decimal,
        size: int,
        behavior: SelfTradeBehavior,
    ) -> int:
        """Resolve matches against the record's own orders; returns the size left to trade."""
        matches = self._own_matches(record.open_orders_id, side, price)
        if behavior is SelfTradeBehavior.CANCEL_PROVIDE:
            for order in matches:
                self.cancel_order(record.open_orders_id, order.order_id)
                logger.info("Self trade on %s: cancelled resting %s", market.market_id, order.order_id)
            return size
        if behavior is SelfTradeBehavior.DECREMENT_TAKE:
            remaining = size
            for order in matches:
                if remaining == 0:
                    break
                overlap = min(remaining, order.size)
                remaining -= overlap
                if overlap == order.size:
                    self.cancel_order(record.open_orders_id, order.order_id)
                else:
                    self._shrink(record, market, order.side, order.price, order.size, order.size - overlap)
                    self._orders[order.order_id] = replace(order, size=order.size - overlap)
                logger.info(
                    "Self trade on %s: decremented %s and the incoming order by %d",
                    market.market_id, order.order_id, overlap,
                )
            return remaining
        raise ValueError(f"Unknown self-trade behavior: {behavior!r}")

    def place_order(
        self,
        open_orders_id: str,
        side: Side,
        price: Decimal,
        size: int,
        order_type: OrderType = OrderType.LIMIT,
        client_id: int | None = None,
        self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.DECREMENT_TAKE,
    ) -> Order | None:
        """Place an order funded from the record's free balances.

        Returns the resting order, or None when it filled immediately or was
        cancelled (IOC that does not cross, post-only that would cross, or an
        order used up against the record's own orders).
        """
        record = self._record(open_orders_id)
        market = self.market(record.market_id)
        check_order(market, price, size)

        base, quote = order_funds(side, price, size, market.base_decimals, market.quote_decimals)
        if base > record.base_free or quote > record.quote_free:
            raise InsufficientFundsError(
                f"Open orders {open_orders_id} cannot fund {side.value} {size} @ {price}"
            )
        record.base_free -= base
        record.base_locked += base
        record.quote_free -= quote
        record.quote_locked += quote

        crosses = self._crosses(side, price, market.market_id)
        if order_type is OrderType.POST_ONLY:
            if crosses:
                self._unlock(record, base, quote)
                logger.info("Post-only order on %s would cross; cancelled", market.market_id)
                return None
        elif order_type not in (OrderType.IOC, OrderType.LIMIT):
            raise ValueError(f"Unknown order type: {order_type!r}")

        remaining = self._prevent_self_trade(record, market, side, price, size, self_trade_behavior)
        if remaining < size:
            self._shrink(record, market, side, price, size, remaining)
            size = remaining
        if size == 0:
            return None

        if order_type is OrderType.IOC and not crosses:
            base, quote = order_funds(side, price, size, market.base_decimals, market.quote_decimals)
            self._unlock(record, base, quote)
            return None

        if crosses:
            self._fill(record, side, price, self._reference[market.market_id], size)
            return None

        order = Order(
            order_id=f"ord-{next(self._ids)}",
            market_id=market.market_id,
            open_orders_id=open_orders_id,
            side=side,
            price=price,
            size=size,
            order_type=order_type,
            client_id=client_id,
        )
        self._orders[order.order_id] = order
        return order

    def cancel_order(self, open_orders_id: str, order_id: str) -> None:
        order = self._orders.get(order_id)
        if order is None or order.open_orders_id != open_orders_id:
            raise UnknownOrderError(f"Order '{order_id}' not found on {open_orders_id}")
        record = self._record(open_orders_id)
        market = self.market(record.market_id)
        base, quote = order_funds(
            order.side, order.price, order.size, market.base_decimals, market.quote_decimals
        )
        self._unlock(record, base, quote)
        del self._orders[order_id]

    def cancel_all(self, open_orders_id: str) -> int:
        """Cancel every resting order of a record; returns how many were cancelled."""
        orders = self.orders_for(open_orders_id)
        for order in orders:
            self.cancel_order(open_orders_id, order.order_id)
        return len(orders)

    def set_reference_price(self, market_id: str, price: Decimal) -> int:
        """Move a market's reference price and fill resting orders it crosses."""
        self.market(market_id)
        self._reference[market_id] = price
        filled = 0
        for order in list(self._orders.values()):
            if order.market_id != market_id:
                continue
            if not self._crosses(order.side, order.price, market_id):
                continue
            record = self._record(order.open_orders_id)
            self._fill(record, order.side, order.price, order.price, order.size)
            del self._orders[order.order_id]
            filled += 1
        return filled
