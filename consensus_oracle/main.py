#!/usr/bin/env python3
"""Price Consensus Oracle.

Fetches cryptocurrency prices from multiple weighted sources, reduces them to
a single consensus value with a confidence score and optionally commits the
reference price to an on-chain oracle contract.

Configure via CLI arguments or environment variables (CLI takes precedence).
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.PriceOracle import DEFAULT_SOURCES, PriceOracle
from .src.AssetPair import AssetPair
from .src.fetchers import get_available_fetchers
from .src.Web3Ledger import Web3Ledger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: coingecko=abc123,coinmarketcap=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_COINGECKO, API_KEY_COINMARKETCAP, etc.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in os.environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                source = key[len(prefix):].lower()
                api_keys[source] = value
                break

    return api_keys


def parse_weights(weight_str: str | None) -> dict[str, float]:
    """Parse comma-separated source weights.

    Format: source1=weight1,source2=weight2
    Example: coingecko=0.4,binance=0.3

    :param weight_str: Comma-separated weight string.
    :returns: Dict mapping source names to weights.
    :raises ValueError: If an item is malformed or a weight is not in (0, 1].
    """
    if not weight_str:
        return {}

    weights = {}
    for item in weight_str.split(","):
        item = item.strip()
        if not item:
            continue
        source, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Invalid weight '{item}'. Expected source=weight")
        weight = float(value)
        if not 0 < weight <= 1:
            raise ValueError(f"Weight for {source.strip()} must be in (0, 1], got {weight}")
        weights[source.strip().lower()] = weight
    return weights


def parse_ranges(range_str: str | None) -> dict[str, tuple[float, float]] | None:
    """Parse plausible price ranges.

    Format: asset1=low:high,asset2=low:high
    Example: btc=1000:500000,eth=100:50000

    :param range_str: Comma-separated range string.
    :returns: Dict mapping assets to (low, high), or None if not given.
    :raises ValueError: If an item is malformed or low >= high.
    """
    if not range_str:
        return None

    ranges = {}
    for item in range_str.split(","):
        item = item.strip()
        if not item:
            continue
        asset, sep, bounds = item.partition("=")
        low, colon, high = bounds.partition(":")
        if not sep or not colon:
            raise ValueError(f"Invalid range '{item}'. Expected asset=low:high")
        low_value, high_value = float(low), float(high)
        if low_value >= high_value:
            raise ValueError(f"Invalid range for {asset.strip()}: {low_value} >= {high_value}")
        ranges[asset.strip().lower()] = (low_value, high_value)
    return ranges


def main() -> None:
    """Main entry point for the Price Consensus Oracle CLI."""
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="Price Consensus Oracle: Weighted multi-source price feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Local-only BTC/ETH consensus from the default sources
  python -m consensus_oracle.main --assets btc,eth \\
      --api-keys coinmarketcap=your-api-key

  # Custom weights with free sources only
  python -m consensus_oracle.main --sources coingecko,binance,kraken \\
      --weights coingecko=0.4,binance=0.3,kraken=0.3

  # Commit the BTC price on-chain
  python -m consensus_oracle.main --web3-provider-url http://localhost:8545 \\
      --contract-address 0x5FbDB2315678afecb367f032d93F642f64180aa3

Environment variables (CLI args take precedence):
  ASSETS, QUOTE, SOURCES, WEIGHTS, SAMPLE_PERIOD, CLEANUP_PERIOD, RETENTION_DAYS,
  MAX_HISTORY, STALENESS_SECONDS, COMMIT_DEVIATION_PERCENT, FETCH_TIMEOUT,
  COMMIT_TIMEOUT, CONFIDENCE_FLOOR, MIN_CONFIDENCE, PLAUSIBLE_RANGES,
  WEB3_PROVIDER_URL, ORACLE_CONTRACT_ADDRESS, ORACLE_PRIVATE_KEY,
  ORACLE_CONTRACT_ABI, ORACLE_CONTRACT_METHOD,
  API_KEY_COINGECKO, API_KEY_COINMARKETCAP, etc.
""",
    )

    parser.add_argument(
        "--assets",
        type=str,
        help="Reference and counter asset (e.g., btc,eth)",
        default=os.environ.get("ASSETS") or "btc,eth",
    )

    parser.add_argument(
        "--quote",
        type=str,
        help="Quote currency (default: usd)",
        default=os.environ.get("QUOTE") or "usd",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or ",".join(DEFAULT_SOURCES),
    )

    parser.add_argument(
        "--weights",
        type=str,
        help="Comma-separated source weights (e.g., coingecko=0.4,binance=0.3)",
        default=os.environ.get("WEIGHTS"),
    )

    parser.add_argument(
        "--sample-period",
        dest="sample_period",
        type=float,
        help="Seconds between price updates (default: 300)",
        default=float(os.environ.get("SAMPLE_PERIOD") or "300"),
    )

    parser.add_argument(
        "--cleanup-period",
        dest="cleanup_period",
        type=float,
        help="Seconds between history cleanups (default: 86400)",
        default=float(os.environ.get("CLEANUP_PERIOD") or "86400"),
    )

    parser.add_argument(
        "--retention-days",
        dest="retention_days",
        type=float,
        help="Days of price history kept (default: 30)",
        default=float(os.environ.get("RETENTION_DAYS") or "30"),
    )

    parser.add_argument(
        "--max-history",
        dest="max_history",
        type=int,
        help="Maximum number of history entries (default: 1000)",
        default=int(os.environ.get("MAX_HISTORY") or "1000"),
    )

    parser.add_argument(
        "--staleness",
        dest="staleness",
        type=float,
        help="Commit on-chain at least every N seconds (default: 900)",
        default=float(os.environ.get("STALENESS_SECONDS") or "900"),
    )

    parser.add_argument(
        "--commit-deviation",
        dest="commit_deviation",
        type=float,
        help="Commit on-chain when the price moved more than this percent (default: 5.0)",
        default=float(os.environ.get("COMMIT_DEVIATION_PERCENT") or "5.0"),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--commit-timeout",
        dest="commit_timeout",
        type=float,
        help="Timeout for on-chain commits in seconds (default: 60.0)",
        default=float(os.environ.get("COMMIT_TIMEOUT") or "60.0"),
    )

    parser.add_argument(
        "--confidence-floor",
        dest="confidence_floor",
        type=float,
        help="Lowest reported confidence (default: 0.1)",
        default=float(os.environ.get("CONFIDENCE_FLOOR") or "0.1"),
    )

    parser.add_argument(
        "--min-confidence",
        dest="min_confidence",
        type=float,
        help="Confidence below which a plausibility warning is raised (default: 0.3)",
        default=float(os.environ.get("MIN_CONFIDENCE") or "0.3"),
    )

    parser.add_argument(
        "--plausible-ranges",
        dest="plausible_ranges",
        type=str,
        help="Plausible price ranges (e.g., btc=1000:500000,eth=100:50000)",
        default=os.environ.get("PLAUSIBLE_RANGES"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=abc,coinmarketcap=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "--web3-provider-url",
        dest="web3_provider_url",
        type=str,
        help="JSON-RPC provider URL (on-chain commits disabled if not set)",
        default=os.environ.get("WEB3_PROVIDER_URL"),
    )

    parser.add_argument(
        "--contract-address",
        dest="contract_address",
        type=str,
        help="Address of the oracle contract",
        default=os.environ.get("ORACLE_CONTRACT_ADDRESS"),
    )

    parser.add_argument(
        "--contract-abi",
        dest="contract_abi",
        type=str,
        help="Path to the contract ABI or compiler artifact JSON (default: updatePrice(uint256))",
        default=os.environ.get("ORACLE_CONTRACT_ABI"),
    )

    parser.add_argument(
        "--contract-method",
        dest="contract_method",
        type=str,
        help="Contract function receiving the scaled price (default: updatePrice)",
        default=os.environ.get("ORACLE_CONTRACT_METHOD") or "updatePrice",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    for flag, value in (
        ("--sample-period", args.sample_period),
        ("--cleanup-period", args.cleanup_period),
        ("--retention-days", args.retention_days),
        ("--max-history", args.max_history),
        ("--staleness", args.staleness),
        ("--fetch-timeout", args.fetch_timeout),
        ("--commit-timeout", args.commit_timeout),
        ("--commit-deviation", args.commit_deviation),
    ):
        if value <= 0:
            parser.error(f"{flag} must be positive")

    try:
        pair = AssetPair.from_string(f"{args.assets}/{args.quote}")
    except ValueError as e:
        parser.error(str(e))

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    # Validate sources
    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    try:
        weights = parse_weights(args.weights)
        plausible_ranges = parse_ranges(args.plausible_ranges)
    except ValueError as e:
        parser.error(str(e))

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    # Private key only from the environment, never from the command line
    private_key = os.environ.get("ORACLE_PRIVATE_KEY")

    # Log configuration
    logger.info("=" * 60)
    logger.info("Price Consensus Oracle")
    logger.info("=" * 60)
    logger.info(f"Assets:            {pair}")
    logger.info(f"Sources:           {', '.join(sources)}")
    if weights:
        logger.info(f"Weights:           {weights}")
    logger.info(f"Sample Period:     {args.sample_period:g}s")
    logger.info(f"Retention:         {args.retention_days:g} days (max {args.max_history} entries)")
    logger.info(f"Commit Policy:     every {args.staleness:g}s or >{args.commit_deviation:g}% change")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")

    try:
        ledger = None
        if args.web3_provider_url and args.contract_address and private_key:
            abi = Web3Ledger.load_abi(args.contract_abi) if args.contract_abi else None
            ledger = Web3Ledger(
                rpc_url=args.web3_provider_url,
                contract_address=args.contract_address,
                private_key=private_key,
                abi=abi,
                method=args.contract_method,
            )
            logger.info(f"Ledger:            {ledger.describe()}")
        else:
            logger.info("Ledger:            disabled (local-only mode)")
        logger.info("=" * 60)

        price_oracle = PriceOracle(
            pair=pair,
            sources=sources,
            weights=weights,
            api_keys=api_keys,
            ledger=ledger,
            sample_period=args.sample_period,
            cleanup_period=args.cleanup_period,
            retention_days=args.retention_days,
            max_history_length=args.max_history,
            staleness_seconds=args.staleness,
            commit_deviation_percent=args.commit_deviation,
            fetch_timeout=args.fetch_timeout,
            commit_timeout=args.commit_timeout,
            confidence_floor=args.confidence_floor,
            min_confidence=args.min_confidence,
            plausible_ranges=plausible_ranges,
        )
        asyncio.run(price_oracle.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
