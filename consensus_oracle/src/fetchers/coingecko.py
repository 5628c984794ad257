"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={ids}&vs_currencies={quote}
Rate Limit: 30 calls/min (free), higher with API key
Batch: Yes (all assets in one call)
"""

import logging

from .base import BaseFetcher, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko API.

    API tiers:
        - Free: api.coingecko.com (no key, 30 calls/min)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    DEFAULT_WEIGHT = 0.4
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        weight: float | None = None,
    ):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]  # Strip "demo:" prefix
        super().__init__(api_key=api_key, timeout=timeout, weight=weight)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key:
            return self.BASE_URL_FREE
        return self.BASE_URL_FREE if self._is_demo else self.BASE_URL_PRO

    @property
    def api_header(self) -> tuple[str, str] | None:
        """Return appropriate header name and value for API key."""
        if not self.api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return (header_name, self.api_key)

    # Map common symbols to CoinGecko IDs
    COIN_IDS = {
        "btc": "bitcoin",
        "eth": "ethereum",
        "usdt": "tether",
        "usdc": "usd-coin",
        "sol": "solana",
        "avax": "avalanche-2",
        "dot": "polkadot",
        "link": "chainlink",
    }

    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices for all assets in one CoinGecko request.

        :param assets: Asset symbols (e.g., ["btc", "eth"]).
        :param quote: Quote currency (e.g., "usd").
        :returns: Dict mapping asset to price.
        """
        ids: dict[str, str] = {}
        for asset in assets:
            coin_id = self.COIN_IDS.get(asset.lower())
            if coin_id:
                ids[asset] = coin_id
            else:
                logger.warning(f"[coingecko] Unknown coin: {asset}")

        quote_lower = quote.lower()
        headers = {}
        if self.api_header:
            header_name, header_value = self.api_header
            headers[header_name] = header_value

        data = await self._get_json(
            f"{self.base_url}/simple/price",
            params={"ids": ",".join(ids.values()), "vs_currencies": quote_lower},
            headers=headers if headers else None,
        )
        if not isinstance(data, dict):
            return self._require_prices({})

        prices: dict[str, float] = {}
        for asset, coin_id in ids.items():
            entry = data.get(coin_id)
            price = parse_price(entry.get(quote_lower)) if isinstance(entry, dict) else None
            if price is None:
                logger.debug(f"[coingecko] No {quote_lower} price for {coin_id}")
                continue
            prices[asset] = price

        return self._require_prices(prices)
