"""
Price fetchers for multiple API sources.

This module provides a unified interface for fetching cryptocurrency prices
for several assets at once from various exchanges and aggregator APIs.

Usage:
    from consensus_oracle.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['binance', 'coinbase', 'coingecko', 'coinmarketcap', 'kraken']

    # Create a fetcher instance
    fetcher = get_fetcher("coingecko", weight=0.4)
    prices = await fetcher.fetch(["btc", "eth"], "usd")

    # For fetchers requiring API keys
    fetcher = get_fetcher("coinmarketcap", api_key="your-api-key")
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    SourceFetchError,
    get_available_fetchers,
    get_fetcher,
    parse_price,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .binance import BinanceFetcher
from .coinbase import CoinbaseFetcher
from .coingecko import CoinGeckoFetcher
from .coinmarketcap import CoinMarketCapFetcher
from .kraken import KrakenFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    "FetcherConfigError",
    "FetcherHTTPError",
    "SourceFetchError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "parse_price",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "BinanceFetcher",
    "CoinbaseFetcher",
    "CoinGeckoFetcher",
    "CoinMarketCapFetcher",
    "KrakenFetcher",
]
