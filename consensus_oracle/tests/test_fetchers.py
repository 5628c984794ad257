"""Unit tests for price fetchers."""

from typing import Callable

import httpx
import pytest

from consensus_oracle.src.fetchers import (
    BaseFetcher,
    BinanceFetcher,
    CoinbaseFetcher,
    CoinGeckoFetcher,
    CoinMarketCapFetcher,
    FetcherConfigError,
    FetcherHTTPError,
    KrakenFetcher,
    SourceFetchError,
    get_available_fetchers,
    get_fetcher,
    parse_price,
)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def mock_http():
    """Install a MockTransport-backed shared client for the test."""

    def install(handler: Handler) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        BaseFetcher.set_shared_client(client)

    yield install
    BaseFetcher.set_shared_client(None)


class TestRegistry:
    """Test fetcher registry."""

    def test_available_fetchers(self) -> None:
        """All shipped fetchers are registered."""
        assert get_available_fetchers() == [
            "binance",
            "coinbase",
            "coingecko",
            "coinmarketcap",
            "kraken",
        ]

    def test_default_weights(self) -> None:
        """Default weights match the reference configuration."""
        assert get_fetcher("coingecko").weight == 0.4
        assert get_fetcher("coinmarketcap").weight == 0.3
        assert get_fetcher("binance").weight == 0.3

    def test_weight_override(self) -> None:
        """Configured weights override the default."""
        assert get_fetcher("kraken", weight=0.5).weight == 0.5

    @pytest.mark.parametrize("weight", [0.0, -0.1, 1.5])
    def test_invalid_weight(self, weight: float) -> None:
        """Weights must be in (0, 1]."""
        with pytest.raises(ValueError):
            get_fetcher("binance", weight=weight)

    def test_unknown_fetcher(self) -> None:
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown fetcher"):
            get_fetcher("nope")


class TestParsePrice:
    """Test raw price parsing."""

    @pytest.mark.parametrize(
        "value, expected",
        [("41000.5", 41000.5), (41000, 41000.0), (0, None), ("-1", None),
         ("abc", None), (None, None), (True, None), ("nan", None), ("inf", None)],
    )
    def test_parse_price(self, value, expected) -> None:
        """Only positive finite numbers are prices."""
        assert parse_price(value) == expected


class TestCoinGecko:
    """Test CoinGecko fetcher."""

    @pytest.mark.asyncio
    async def test_fetch(self, mock_http) -> None:
        """Both assets come from one simple/price request."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json={"bitcoin": {"usd": 41000}, "ethereum": {"usd": 2500.5}}
            )

        mock_http(handler)
        prices = await CoinGeckoFetcher().fetch(["btc", "eth"], "usd")

        assert prices == {"btc": 41000.0, "eth": 2500.5}
        assert len(requests) == 1
        assert requests[0].url.params["ids"] == "bitcoin,ethereum"
        assert requests[0].url.params["vs_currencies"] == "usd"

    @pytest.mark.asyncio
    async def test_missing_asset_omitted(self, mock_http) -> None:
        """Assets absent from the response are left out, not zeroed."""
        mock_http(lambda r: httpx.Response(200, json={"bitcoin": {"usd": 41000}}))
        prices = await CoinGeckoFetcher().fetch(["btc", "eth"], "usd")
        assert prices == {"btc": 41000.0}

    @pytest.mark.asyncio
    async def test_demo_key_header(self, mock_http) -> None:
        """Demo keys use the free host with the demo header."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"bitcoin": {"usd": 41000}})

        mock_http(handler)
        await CoinGeckoFetcher(api_key="demo:CG-123").fetch(["btc"], "usd")

        assert requests[0].url.host == "api.coingecko.com"
        assert requests[0].headers["x-cg-demo-api-key"] == "CG-123"

    @pytest.mark.asyncio
    async def test_http_error(self, mock_http) -> None:
        """Non-2xx responses raise FetcherHTTPError."""
        mock_http(lambda r: httpx.Response(429, text="rate limited"))
        with pytest.raises(FetcherHTTPError) as exc_info:
            await CoinGeckoFetcher().fetch(["btc"], "usd")
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_empty_response(self, mock_http) -> None:
        """A response without any usable price is an error."""
        mock_http(lambda r: httpx.Response(200, json={}))
        with pytest.raises(SourceFetchError):
            await CoinGeckoFetcher().fetch(["btc", "eth"], "usd")

    @pytest.mark.asyncio
    async def test_invalid_json(self, mock_http) -> None:
        """Malformed bodies are source errors."""
        mock_http(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(SourceFetchError):
            await CoinGeckoFetcher().fetch(["btc"], "usd")


class TestCoinMarketCap:
    """Test CoinMarketCap fetcher."""

    @pytest.mark.asyncio
    async def test_requires_api_key(self) -> None:
        """The fetcher refuses to run without a key."""
        with pytest.raises(FetcherConfigError):
            await CoinMarketCapFetcher().fetch(["btc"], "usd")

    @pytest.mark.asyncio
    async def test_fetch(self, mock_http) -> None:
        """Quotes for both symbols are parsed from one request."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "data": {
                    "BTC": {"quote": {"USD": {"price": 41500.0}}},
                    "ETH": [{"quote": {"USD": {"price": 2510.0}}}],
                }
            })

        mock_http(handler)
        prices = await CoinMarketCapFetcher(api_key="key").fetch(["btc", "eth"], "usd")

        assert prices == {"btc": 41500.0, "eth": 2510.0}
        assert requests[0].headers["X-CMC_PRO_API_KEY"] == "key"
        assert requests[0].url.params["symbol"] == "BTC,ETH"


class TestBinance:
    """Test Binance fetcher."""

    @pytest.mark.asyncio
    async def test_usdt_pairs_converted(self, mock_http) -> None:
        """USD quotes use USDT pairs times the USDTUSD rate."""
        mock_http(lambda r: httpx.Response(200, json=[
            {"symbol": "BTCUSDT", "price": "40000.00"},
            {"symbol": "ETHUSDT", "price": "2500.00"},
            {"symbol": "USDTUSD", "price": "1.0010"},
            {"symbol": "SOLUSDT", "price": "100.00"},
        ]))
        prices = await BinanceFetcher().fetch(["btc", "eth"], "usd")

        assert prices["btc"] == pytest.approx(40040.0)
        assert prices["eth"] == pytest.approx(2502.5)

    @pytest.mark.asyncio
    async def test_usdt_at_par_without_rate(self, mock_http) -> None:
        """Without a listed rate USDT is taken at par."""
        mock_http(lambda r: httpx.Response(200, json=[{"symbol": "BTCUSDT", "price": "40800"}]))
        assert await BinanceFetcher().fetch(["btc", "eth"], "usd") == {"btc": 40800.0}

    @pytest.mark.asyncio
    async def test_depeg_rejected(self, mock_http) -> None:
        """A depegged USDT rejects the whole reading."""
        mock_http(lambda r: httpx.Response(200, json=[
            {"symbol": "BTCUSDT", "price": "40000"},
            {"symbol": "USDTUSD", "price": "0.95"},
        ]))
        with pytest.raises(SourceFetchError, match="depeg"):
            await BinanceFetcher().fetch(["btc"], "usd")

    @pytest.mark.asyncio
    async def test_rate_from_usdc_pair(self, mock_http) -> None:
        """Without USDTUSD the rate is derived from USDCUSDT."""
        mock_http(lambda r: httpx.Response(200, json=[
            {"symbol": "BTCUSDT", "price": "40000"},
            {"symbol": "USDCUSDT", "price": "1.0100"},
        ]))
        prices = await BinanceFetcher().fetch(["btc"], "usd")

        assert prices["btc"] == pytest.approx(40000.0 / 1.01)

    @pytest.mark.asyncio
    async def test_depeg_detected_from_usdc_pair(self, mock_http) -> None:
        """A USDCUSDT price far from 1.0 flags a USDT depeg."""
        mock_http(lambda r: httpx.Response(200, json=[
            {"symbol": "BTCUSDT", "price": "40000"},
            {"symbol": "USDCUSDT", "price": "1.0600"},
        ]))
        with pytest.raises(SourceFetchError, match="depeg"):
            await BinanceFetcher().fetch(["btc"], "usd")


class TestCoinbase:
    """Test Coinbase fetcher."""

    @pytest.mark.asyncio
    async def test_partial_tickers(self, mock_http) -> None:
        """A failing product ticker does not fail the others."""

        def handler(request: httpx.Request) -> httpx.Response:
            if "BTC-USD" in request.url.path:
                return httpx.Response(200, json={"price": "41000.10"})
            return httpx.Response(404, json={"message": "NotFound"})

        mock_http(handler)
        assert await CoinbaseFetcher().fetch(["btc", "eth"], "usd") == {"btc": 41000.1}


class TestKraken:
    """Test Kraken fetcher."""

    @pytest.mark.asyncio
    async def test_prefixed_pairs(self, mock_http) -> None:
        """X/Z-prefixed result keys are matched to requested pairs."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "error": [],
                "result": {
                    "XXBTZUSD": {"c": ["41010.5", "0.01"]},
                    "XETHZUSD": {"c": ["2499.9", "1.2"]},
                },
            })

        mock_http(handler)
        prices = await KrakenFetcher().fetch(["btc", "eth"], "usd")

        assert prices == {"btc": 41010.5, "eth": 2499.9}
        assert requests[0].url.params["pair"] == "XBTUSD,ETHUSD"

    @pytest.mark.asyncio
    async def test_api_error(self, mock_http) -> None:
        """Kraken error arrays are source errors."""
        mock_http(lambda r: httpx.Response(200, json={"error": ["EQuery:Unknown asset pair"]}))
        with pytest.raises(SourceFetchError):
            await KrakenFetcher().fetch(["btc"], "usd")
