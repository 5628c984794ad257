"""Binance fetcher with USDT to USD conversion.

Binance lists USDT pairs for most assets. For /usd quotes this fetcher reads
<ASSET>USDT and converts with the USDT/USD rate. The rate comes from the
USDTUSD ticker where Binance lists it, otherwise from USDCUSDT with USDC
standing in for USD. With neither ticker present USDT is taken at par.

Endpoint: https://api.binance.com/api/v3/ticker/price
Rate Limit: High (no key required for public endpoints)
"""

import logging

from .base import BaseFetcher, SourceFetchError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BinanceFetcher(BaseFetcher):
    """Binance public ticker fetcher.

    Includes USDT depeg detection - if USDT deviates >2% from 1.0,
    the whole reading is rejected.
    """

    name = "binance"
    DEFAULT_WEIGHT = 0.3
    BASE_URL = "https://api.binance.com/api/v3"

    # USDT depeg threshold (2%)
    USDT_DEPEG_THRESHOLD = 0.02

    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices from the full Binance ticker list.

        :param assets: Asset symbols (e.g., ["btc", "eth"]).
        :param quote: Quote currency (e.g., "usd").
        :returns: Dict mapping asset to price.
        :raises SourceFetchError: On USDT depeg or unusable response.
        """
        data = await self._get_json(f"{self.BASE_URL}/ticker/price")
        if not isinstance(data, list):
            raise SourceFetchError(f"[binance] Unexpected ticker response: {data}")

        tickers: dict[str, float] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            price = parse_price(item.get("price"))
            if "symbol" in item and price is not None:
                tickers[item["symbol"]] = price

        quote_upper = quote.upper()
        rate = 1.0
        if quote_upper == "USD":
            suffix = "USDT"
            usdt_rate = self._usdt_rate(tickers)
            if usdt_rate is not None:
                if self._is_depeg(usdt_rate):
                    raise SourceFetchError(
                        f"[binance] USDT depeg detected: rate={usdt_rate:.4f}"
                    )
                rate = usdt_rate
            else:
                logger.warning("[binance] No USDT/USD rate listed, assuming par")
        else:
            suffix = quote_upper

        prices: dict[str, float] = {}
        for asset in assets:
            symbol = f"{asset.upper()}{suffix}"
            price = tickers.get(symbol)
            if price is None:
                logger.debug(f"[binance] No ticker for {symbol}")
                continue
            prices[asset] = price * rate

        return self._require_prices(prices)

    def _is_depeg(self, rate: float) -> bool:
        """Check if stablecoin has depegged (>2% from 1.0).

        :param rate: Stablecoin/USD rate.
        :returns: True if depegged beyond threshold.
        """
        return abs(rate - 1.0) > self.USDT_DEPEG_THRESHOLD

    @staticmethod
    def _usdt_rate(tickers: dict[str, float]) -> float | None:
        """USDT/USD rate from the ticker list.

        :param tickers: Symbol to price mapping.
        :returns: The rate, or None if no usable ticker is listed.
        """
        if "USDTUSD" in tickers:
            return tickers["USDTUSD"]
        usdc_in_usdt = tickers.get("USDCUSDT")
        if usdc_in_usdt:
            return 1.0 / usdc_in_usdt
        return None
