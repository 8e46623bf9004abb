"""Fixed-price oracle for paper trading and dry runs."""
from __future__ import annotations

import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


class StaticOracle:
    """Serve prices from memory. Prices can be moved with :meth:`set_price`."""

    def __init__(self, prices: dict[str, Decimal | float | str] | None = None) -> None:
        self._prices = {k: Decimal(str(v)) for k, v in (prices or {}).items()}

    def set_price(self, symbol: str, price: Decimal | float | str) -> None:
        self._prices[symbol] = Decimal(str(price))

    def remove_price(self, symbol: str) -> None:
        self._prices.pop(symbol, None)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        if symbols is None:
            return dict(self._prices)
        return {s: self._prices[s] for s in symbols if s in self._prices}
