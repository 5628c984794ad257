"""CoinMarketCap fetcher.

Endpoint: https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest
Rate Limit: 333 calls/day (free tier)
API Key: Required
"""

import logging

from .base import BaseFetcher, FetcherConfigError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinMarketCapFetcher(BaseFetcher):
    """Fetcher for CoinMarketCap API.

    The quotes endpoint accepts comma-separated symbols, so every asset is
    fetched in a single call. API key is REQUIRED.
    """

    name = "coinmarketcap"
    DEFAULT_WEIGHT = 0.3
    BASE_URL = "https://pro-api.coinmarketcap.com"

    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices from CoinMarketCap.

        :param assets: Asset symbols (e.g., ["btc", "eth"]).
        :param quote: Quote currency (e.g., "usd").
        :returns: Dict mapping asset to price.
        :raises FetcherConfigError: If no API key is configured.
        """
        if not self.api_key:
            raise FetcherConfigError("[coinmarketcap] API key required but not provided")

        quote_upper = quote.upper()
        data = await self._get_json(
            f"{self.BASE_URL}/v1/cryptocurrency/quotes/latest",
            params={
                "symbol": ",".join(a.upper() for a in assets),
                "convert": quote_upper,
            },
            headers={"X-CMC_PRO_API_KEY": self.api_key},
        )

        symbols = data.get("data") if isinstance(data, dict) else None
        if not isinstance(symbols, dict):
            logger.warning(f"[coinmarketcap] No data in response: {data}")
            return self._require_prices({})

        prices: dict[str, float] = {}
        for asset in assets:
            symbol_data = symbols.get(asset.upper())
            # v2 responses return a list of matches, take the first one
            if isinstance(symbol_data, list):
                symbol_data = symbol_data[0] if symbol_data else None
            if not isinstance(symbol_data, dict):
                logger.debug(f"[coinmarketcap] Symbol {asset.upper()} not found")
                continue

            quote_data = symbol_data.get("quote", {}).get(quote_upper)
            price = parse_price(quote_data.get("price")) if isinstance(quote_data, dict) else None
            if price is not None:
                prices[asset] = price

        return self._require_prices(prices)
