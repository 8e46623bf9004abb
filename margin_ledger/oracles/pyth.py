"""Pyth Network price oracle service."""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from collections.abc import Callable
from decimal import Decimal

import aiohttp
import certifi

from ..config import PythConfig

logger = logging.getLogger(__name__)


class PythOracle:
    """Fetch prices from Pyth Network oracle.

    Feeds whose ``publish_time`` is older than ``max_price_age_seconds`` are
    dropped, so the caller sees them as missing rather than stale.
    """

    def __init__(
        self,
        config: PythConfig,
        max_price_age_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)
        self.max_price_age_seconds = max_price_age_seconds
        self._clock = clock

    @staticmethod
    def parse_price(price_data: dict) -> Decimal:
        """Scale a Hermes ``{"price", "expo"}`` pair to a Decimal."""
        price_raw = int(price_data.get("price", 0))
        expo = int(price_data.get("expo", 0))
        return Decimal(price_raw).scaleb(expo)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        """Fetch current prices from Pyth Network.

        Args:
            symbols: Optional list of symbols to fetch. If None, fetches all
                     configured feeds.
        """
        prices: dict[str, Decimal] = {}

        feeds = self.price_feeds
        if symbols is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in symbols}

        feed_ids = list(set(feeds.values()))
        if not feed_ids:
            return prices

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return prices

                    data = await response.json()
                    parsed = data.get("parsed", [])

                    # Create reverse mapping from feed ID to asset names
                    id_to_assets: dict[str, list[str]] = {}
                    for asset, feed_id in feeds.items():
                        id_to_assets.setdefault(feed_id, []).append(asset)

                    now = self._clock()
                    for item in parsed:
                        feed_id = item.get("id")
                        if feed_id not in id_to_assets:
                            continue
                        price_data = item.get("price", {})

                        publish_time = price_data.get("publish_time")
                        if publish_time is not None:
                            age = now - int(publish_time)
                            if age > self.max_price_age_seconds:
                                logger.warning(
                                    "Dropping stale Pyth price for %s (%.0fs old)",
                                    ", ".join(id_to_assets[feed_id]),
                                    age,
                                )
                                continue

                        price = self.parse_price(price_data)
                        for asset in id_to_assets[feed_id]:
                            prices[asset] = price

                    logger.info("Fetched prices from Pyth Network:")
                    for asset, price in sorted(prices.items()):
                        logger.info("  %s: $%.4f", asset, price)

        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error("Error fetching prices from Pyth: %s", e)

        return prices
