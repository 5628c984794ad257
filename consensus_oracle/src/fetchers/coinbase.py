"""Coinbase Exchange fetcher.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/ticker
Rate Limit: High (no key required)
Batch: No (one ticker request per asset, issued concurrently)
"""

import asyncio
import logging

from .base import BaseFetcher, FetcherError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for Coinbase Exchange API.

    No API key required for public ticker endpoint.
    """

    name = "coinbase"
    DEFAULT_WEIGHT = 0.2
    BASE_URL = "https://api.exchange.coinbase.com"

    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices from Coinbase Exchange.

        :param assets: Asset symbols (e.g., ["btc", "eth"]).
        :param quote: Quote currency (e.g., "usd").
        :returns: Dict mapping asset to price.
        """
        results = await asyncio.gather(
            *(self._fetch_ticker(asset, quote) for asset in assets)
        )
        prices = {
            asset: price
            for asset, price in zip(assets, results, strict=True)
            if price is not None
        }
        return self._require_prices(prices)

    async def _fetch_ticker(self, asset: str, quote: str) -> float | None:
        """Fetch a single product ticker.

        :param asset: Asset symbol.
        :param quote: Quote currency.
        :returns: Price or None on failure.
        """
        symbol = f"{asset.upper()}-{quote.upper()}"
        try:
            data = await self._get_json(f"{self.BASE_URL}/products/{symbol}/ticker")
        except FetcherError as e:
            logger.warning(f"[coinbase] Failed to fetch {symbol}: {e}")
            return None

        if not isinstance(data, dict) or "price" not in data:
            logger.warning(f"[coinbase] No price in response for {symbol}: {data}")
            return None
        return parse_price(data["price"])
