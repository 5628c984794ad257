"""PriceOracle: Main orchestrator for the multi-source price consensus oracle.

This module wires the pipeline together and exposes the read API used by
consumers and operators.

Architecture:
    - FeedAggregator fetches every source concurrently, tolerating failures
    - ConsensusEngine reduces readings to a weighted mean with a confidence score
    - PlausibilityValidator rejects implausible values before acceptance
    - UpdateDecisionPolicy applies hysteresis before writing to the ledger
    - HistoryStore keeps a bounded in-memory record of accepted values
    - AlertEngine fires threshold alerts on accepted values
    - ScheduleController runs single-flight cycles on a timer
    - Without a ledger the oracle runs local-only and never commits
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping

from .AlertEngine import AlertEngine, AlertEvent, AlertRule, ThresholdSpec
from .AssetPair import AssetPair
from .ConsensusEngine import ConsensusEngine, ConsensusResult
from .EmergencyOverride import EmergencyOverride
from .errors import NoPriceDataError
from .FeedAggregator import FeedAggregator
from .fetchers import BaseFetcher, get_available_fetchers, get_fetcher
from .HistoryStore import HistoryStore, HourlyBucket
from .LedgerCommitter import LedgerCommitter
from .PlausibilityValidator import PlausibilityValidator
from .ScheduleController import SECONDS_PER_DAY, OracleStatus, ScheduleController
from .SourceHealth import SourceHealth
from .UpdateDecisionPolicy import UpdateDecisionPolicy

logger = logging.getLogger(__name__)

DEFAULT_SOURCES = ["coingecko", "coinmarketcap", "binance"]


@dataclass(frozen=True)
class Conversion:
    """Result of converting an amount between the pair's assets.

    :ivar amount_in: Amount of from_asset supplied.
    :ivar amount_out: Equivalent amount of to_asset.
    :ivar from_asset: Asset converted from.
    :ivar to_asset: Asset converted to.
    :ivar rate: Units of to_asset per one unit of from_asset.
    :ivar confidence: Confidence of the price used.
    :ivar timestamp: Unix timestamp of the price used.
    """

    amount_in: float
    amount_out: float
    from_asset: str
    to_asset: str
    rate: float
    confidence: float
    timestamp: float


class PriceOracle:
    """Main orchestrator for consensus price feeds.

    :ivar pair: Reference and counter asset.
    :ivar sources: List of price source names.
    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar ledger: Ledger commit capability, None in local-only mode.
    :ivar controller: Cycle scheduler owning the shared pointers.
    """

    def __init__(
        self,
        pair: AssetPair | str = "btc,eth/usd",
        sources: list[str] | None = None,
        weights: dict[str, float] | None = None,
        api_keys: dict[str, str] | None = None,
        ledger: LedgerCommitter | None = None,
        sample_period: float = 300.0,
        cleanup_period: float = SECONDS_PER_DAY,
        retention_days: float = 30.0,
        max_history_length: int = HistoryStore.DEFAULT_MAX_HISTORY_LENGTH,
        staleness_seconds: float = 900.0,
        commit_deviation_percent: float = 5.0,
        fetch_timeout: float = 10.0,
        commit_timeout: float = 60.0,
        confidence_floor: float = 0.1,
        min_confidence: float = 0.3,
        plausible_ranges: dict[str, tuple[float, float]] | None = None,
        fetchers: dict[str, BaseFetcher] | None = None,
        on_update: Callable[[ConsensusResult], None] | None = None,
        on_alert: Callable[[AlertEvent], None] | None = None,
    ) -> None:
        """Initialize the price oracle.

        :param pair: Asset pair or pair string (default: "btc,eth/usd").
        :param sources: Source names (default: coingecko, coinmarketcap, binance).
        :param weights: Dict mapping source names to consensus weights,
            overriding each fetcher's default.
        :param api_keys: Dict mapping source names to API keys.
        :param ledger: Ledger commit capability (default: None, local-only).
        :param sample_period: Seconds between update cycles (default: 300).
        :param cleanup_period: Seconds between history cleanups (default: 86400).
        :param retention_days: History retention in days (default: 30).
        :param max_history_length: History capacity (default: 1000).
        :param staleness_seconds: Commit at least this often (default: 900).
        :param commit_deviation_percent: Commit when the reference price moved
            more than this (default: 5.0).
        :param fetch_timeout: Per-source timeout in seconds (default: 10.0).
        :param commit_timeout: Ledger commit timeout in seconds (default: 60.0).
        :param confidence_floor: Lowest confidence reported (default: 0.1).
        :param min_confidence: Plausibility confidence floor (default: 0.3).
        :param plausible_ranges: Per-asset (low, high) plausibility bounds.
        :param fetchers: Pre-built fetchers, used instead of sources/weights/api_keys.
        :param on_update: Optional callback for every accepted result.
        :param on_alert: Optional callback for every fired alert.
        :raises ValueError: If sources, weights or the pair are invalid.
        """
        self.pair = pair if isinstance(pair, AssetPair) else AssetPair.from_string(pair)
        self.api_keys = api_keys or {}
        self.ledger = ledger

        if fetchers is None:
            sources = list(sources) if sources is not None else list(DEFAULT_SOURCES)
            if not sources:
                raise ValueError("At least one price source must be specified")

            # Validate sources against registered fetchers
            available = get_available_fetchers()
            invalid = [s for s in sources if s not in available]
            if invalid:
                raise ValueError(f"Unknown sources: {invalid}. Available: {available}")

            weights = weights or {}
            unused = [s for s in weights if s not in sources]
            if unused:
                raise ValueError(f"Weights given for unconfigured sources: {unused}")

            fetchers = {
                source: get_fetcher(
                    source,
                    api_key=self.api_keys.get(source),
                    weight=weights.get(source),
                    timeout=fetch_timeout,
                )
                for source in sources
            }

        self.fetchers = fetchers
        self.sources = list(fetchers)

        assets = self.pair.assets
        self.source_health = SourceHealth(self.sources)
        self.aggregator = FeedAggregator(
            fetchers=self.fetchers,
            assets=assets,
            quote=self.pair.quote,
            fetch_timeout=fetch_timeout,
            source_health=self.source_health,
        )
        self.engine = ConsensusEngine(self.pair.reference, confidence_floor=confidence_floor)
        self.validator = PlausibilityValidator(
            self.pair.reference,
            plausible_ranges=plausible_ranges,
            min_confidence=min_confidence,
        )
        self.policy = UpdateDecisionPolicy(
            self.pair.reference,
            staleness_seconds=staleness_seconds,
            deviation_percent=commit_deviation_percent,
            local_only=ledger is None,
        )
        self.history = HistoryStore(max_history_length)
        self.alerts = AlertEngine(assets, on_trigger=on_alert)
        self.override = EmergencyOverride(assets, self.validator)

        self.controller = ScheduleController(
            aggregator=self.aggregator,
            engine=self.engine,
            validator=self.validator,
            policy=self.policy,
            history=self.history,
            alerts=self.alerts,
            override=self.override,
            ledger=ledger,
            sample_period=sample_period,
            cleanup_period=cleanup_period,
            retention_seconds=retention_days * SECONDS_PER_DAY,
            commit_timeout=commit_timeout,
            on_update=on_update,
        )

        logger.info(
            f"PriceOracle initialized: pair={self.pair}, "
            f"sources={[(s, f.weight) for s, f in self.fetchers.items()]}, "
            f"sample_period={sample_period:g}s, "
            f"ledger={ledger.describe() if ledger else 'none (local-only)'}"
        )

    def get_current_prices(self) -> ConsensusResult | None:
        """Most recent accepted value, or None before the first cycle."""
        return self.controller.last_accepted

    def convert(self, amount: float, from_asset: str | None = None) -> Conversion:
        """Convert an amount between the reference and counter asset.

        :param amount: Non-negative amount of from_asset.
        :param from_asset: Asset to convert from (default: reference asset).
        :returns: Conversion based on the most recent accepted value.
        :raises NoPriceDataError: If no value has been accepted yet.
        :raises ValueError: If amount is negative or the asset is unknown.

        .. code-block:: python

            >>> oracle.convert(2).amount_out  # 2 BTC in ETH
            32.5
        """
        if amount < 0:
            raise ValueError(f"Amount must be non-negative, got {amount}")
        from_asset = (from_asset or self.pair.reference).lower()
        to_asset = self.pair.other(from_asset)

        current = self.controller.last_accepted
        if current is None:
            raise NoPriceDataError("No price data available")

        try:
            rate = current.rate(from_asset, to_asset)
        except KeyError:
            raise NoPriceDataError(
                f"No {from_asset}/{to_asset} price in the current value"
            ) from None

        return Conversion(
            amount_in=amount,
            amount_out=amount * rate,
            from_asset=from_asset,
            to_asset=to_asset,
            rate=rate,
            confidence=current.confidence,
            timestamp=current.captured_at,
        )

    def get_history(
        self, since_seconds: float = 86400.0, resolution: str = "raw"
    ) -> list[ConsensusResult] | list[HourlyBucket]:
        """Get accepted values over a trailing window.

        :param since_seconds: Window length in seconds (default: 24 hours).
        :param resolution: "raw" for entries or "hourly" for averaged buckets.
        :returns: Entries or buckets, oldest first.
        :raises ValueError: If resolution is unknown.
        """
        if resolution == "raw":
            return self.history.query(since_seconds)
        if resolution == "hourly":
            return self.history.resample_hourly(since_seconds)
        raise ValueError(f"Unknown resolution '{resolution}'. Expected 'raw' or 'hourly'")

    def get_status(self) -> OracleStatus:
        return self.controller.get_status()

    def create_alert_rule(
        self,
        thresholds: Mapping[str, ThresholdSpec],
        notify_target: str | None = None,
    ) -> AlertRule:
        """Register a price alert rule.

        :param thresholds: Asset symbol to bounds, e.g. ``{"btc": {"upper": 50000}}``.
        :param notify_target: Optional webhook URL.
        :returns: The created rule.
        :raises AlertRuleError: If the definition is invalid.
        """
        return self.alerts.create_rule(thresholds, notify_target)

    def deactivate_alert_rule(self, rule_id: str) -> AlertRule:
        return self.alerts.deactivate_rule(rule_id)

    async def force_override(
        self, asset_prices: Mapping[str, float | str], reason: str
    ) -> ConsensusResult:
        """Accept operator-supplied prices. See ScheduleController.force_override."""
        return await self.controller.force_override(asset_prices, reason)

    async def update_now(self) -> ConsensusResult | None:
        """Run one cycle immediately; dropped if a cycle is in flight."""
        return await self.controller.run_cycle()

    async def run(self) -> None:
        """Run the oracle until shutdown() is called."""
        try:
            await self.controller.run()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop the timers, drain in-flight work and close HTTP clients."""
        await self.controller.shutdown()
        # Clean up shared HTTP client
        await BaseFetcher.close_shared_client()
