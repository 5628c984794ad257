"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair={PAIRS}
Rate Limit: High (no key required)
Batch: Yes (comma-separated pairs)
"""

import logging

from .base import BaseFetcher, SourceFetchError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public API.

    No API key required.
    """

    name = "kraken"
    DEFAULT_WEIGHT = 0.2
    BASE_URL = "https://api.kraken.com/0/public"

    # Kraken uses non-standard ticker symbols
    SYMBOL_MAP = {
        "btc": "XBT",  # Kraken uses XBT instead of BTC
    }

    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices for all assets in one Ticker request.

        :param assets: Asset symbols (e.g., ["btc", "eth"]).
        :param quote: Quote currency (e.g., "usd").
        :returns: Dict mapping asset to price.
        :raises SourceFetchError: If Kraken reports an API error.
        """
        kraken_pairs = {
            asset: f"{self.SYMBOL_MAP.get(asset.lower(), asset.upper())}{quote.upper()}"
            for asset in assets
        }

        data = await self._get_json(
            f"{self.BASE_URL}/Ticker",
            params={"pair": ",".join(kraken_pairs.values())},
        )
        if not isinstance(data, dict):
            raise SourceFetchError(f"[kraken] Unexpected response: {data}")
        if data.get("error"):
            raise SourceFetchError(f"[kraken] API error: {data['error']}")

        result = data.get("result") or {}
        prices: dict[str, float] = {}
        for asset, kraken_pair in kraken_pairs.items():
            pair_data = self._find_pair(result, kraken_pair)
            if pair_data is None:
                logger.debug(f"[kraken] {kraken_pair} not in response")
                continue

            # 'c' is the last trade closed array: [price, lot volume]
            closed = pair_data.get("c") or [None]
            price = parse_price(closed[0])
            if price is not None:
                prices[asset] = price

        return self._require_prices(prices)

    @staticmethod
    def _find_pair(result: dict, kraken_pair: str) -> dict | None:
        """Locate a pair in Kraken's result, which may use X/Z-prefixed keys.

        :param result: The "result" object of a Ticker response.
        :param kraken_pair: Requested pair, e.g. "XBTUSD".
        :returns: Pair data dict or None.
        """
        if kraken_pair in result:
            return result[kraken_pair]
        for key, value in result.items():
            # e.g. "XXBTZUSD" for "XBTUSD", "XETHZUSD" for "ETHUSD"
            if len(key) == len(kraken_pair) + 2 and key[0] == "X" and key[-4] == "Z":
                if key[1:-4] + key[-3:] == kraken_pair:
                    return value
        return None
