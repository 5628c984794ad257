"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement the fetch() method,
which returns prices for every requested asset the source could quote in a
single call. A shared httpx.AsyncClient is used across all fetchers to avoid
connection overhead.

Fetchers raise instead of returning partial garbage: an asset the source did
not report is simply left out of the result, and a response with no usable
asset at all raises SourceFetchError.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"
        DEFAULT_WEIGHT = 0.2

        async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
            data = await self._get_json("https://api.example.com/prices")
            prices = {a: p for a in assets if (p := parse_price(data.get(a)))}
            return self._require_prices(prices)
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """Base exception for fetcher errors."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when fetcher configuration is invalid (e.g., missing API key)."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class SourceFetchError(FetcherError):
    """Raised when a source response cannot be turned into any price."""

    pass


def parse_price(value: Any) -> float | None:
    """Convert a raw API value to a usable price.

    :param value: Raw value from a JSON response (str, int, float or None).
    :returns: Positive finite float, or None if the value is unusable.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


class BaseFetcher(ABC):
    """Abstract base class for price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "coingecko")
        - fetch(): Async method returning prices for the requested assets

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :cvar DEFAULT_WEIGHT: Consensus weight used when none is configured.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    :ivar weight: Weight of this source in the consensus, in (0, 1].
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    DEFAULT_WEIGHT = 0.3

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        weight: float | None = None,
    ):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        :param weight: Consensus weight (default: DEFAULT_WEIGHT).
        :raises ValueError: If weight is outside (0, 1].
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.weight = self.DEFAULT_WEIGHT if weight is None else float(weight)
        if not 0 < self.weight <= 1:
            raise ValueError(
                f"Weight for {self.name or type(self).__name__} must be in (0, 1], "
                f"got {self.weight}"
            )

    @property
    def has_api_key(self) -> bool:
        """Check if this fetcher has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all fetcher instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (e.g., with a mock transport).

        :param client: Client to share, or None to recreate lazily.
        """
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch current prices for the requested assets.

        :param assets: Asset symbols (lowercase, e.g., ["btc", "eth"]).
        :param quote: Quote currency symbol (e.g., "usd").
        :returns: Dict mapping asset symbol to price. Assets the source did
            not report are absent.
        :raises FetcherError: If no usable price could be obtained.
        """
        pass

    def _require_prices(self, prices: dict[str, float]) -> dict[str, float]:
        """Raise if a parsed response yielded no price at all.

        :param prices: Parsed asset prices.
        :returns: The same dict when non-empty.
        :raises SourceFetchError: If prices is empty.
        """
        if not prices:
            raise SourceFetchError(f"[{self.name}] Response contained no usable prices")
        return prices

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises FetcherHTTPError: On non-2xx response.
        :raises FetcherError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise FetcherHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        """GET a URL and decode its JSON body.

        :param url: Request URL.
        :returns: Decoded JSON document.
        :raises SourceFetchError: If the body is not valid JSON.
        """
        response = await self._get(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise SourceFetchError(f"[{self.name}] Invalid JSON response: {e}") from e


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.

    .. code-block:: python

        @register_fetcher
        class CoinbaseFetcher(BaseFetcher):
            name = "coinbase"
            ...
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str,
    api_key: str | None = None,
    weight: float | None = None,
    timeout: float | None = None,
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "coingecko", "binance").
    :param api_key: Optional API key.
    :param weight: Optional consensus weight overriding the default.
    :param timeout: Optional HTTP timeout in seconds.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, timeout=timeout, weight=weight)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
