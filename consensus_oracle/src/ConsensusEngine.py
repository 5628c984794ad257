"""ConsensusEngine: Weighted consensus with confidence and spread metrics.

Algorithm:
    1. Keep readings that are ok and carry a positive weight
    2. Per asset, compute the weighted mean over readings that report it;
       a reading missing an asset does not vote on that asset
    3. Over the reference asset, compute confidence from the coefficient of
       variation (clamped to [floor, 1.0], 0.5 with fewer than 2 prices)
    4. Over the same prices, compute deviation as (max - min) / min

.. code-block:: python

    >>> engine = ConsensusEngine("btc")
    >>> result = engine.reduce([
    ...     Reading("a", {"btc": 100.0}, weight=0.5),
    ...     Reading("b", {"btc": 102.0}, weight=0.5),
    ... ])
    >>> result.asset_prices["btc"]
    101.0
    >>> round(result.deviation, 4)
    0.02
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from .FeedAggregator import Reading

# Confidence assigned when agreement cannot be assessed.
SINGLE_SOURCE_CONFIDENCE = 0.5


@dataclass(frozen=True)
class ConsensusResult:
    """The reduced, trusted prices of one accepted cycle.

    :ivar asset_prices: Asset symbol to consensus price.
    :ivar sources: Sources that contributed non-zero weight.
    :ivar confidence: Agreement score in [0, 1].
    :ivar deviation: Relative spread of reference asset prices (>= 0).
    :ivar captured_at: Unix timestamp of the result.
    :ivar emergency: True for operator overrides.
    :ivar reason: Operator supplied reason for overrides.
    """

    asset_prices: dict[str, float]
    sources: list[str]
    confidence: float
    deviation: float
    captured_at: float
    emergency: bool = False
    reason: str | None = None

    def price(self, asset: str) -> float | None:
        """Get the consensus price of an asset, if present."""
        return self.asset_prices.get(asset)

    def rate(self, base: str, counter: str) -> float:
        """Units of counter per one unit of base.

        :param base: Asset being converted from.
        :param counter: Asset being converted to.
        :returns: price(base) / price(counter).
        :raises KeyError: If either asset has no price.
        """
        return self.asset_prices[base] / self.asset_prices[counter]

    @property
    def timestamp_iso(self) -> str:
        """ISO-8601 UTC rendering of captured_at."""
        return datetime.fromtimestamp(self.captured_at, tz=timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "assetPrices": dict(self.asset_prices),
            "sources": list(self.sources),
            "confidence": self.confidence,
            "deviation": self.deviation,
            "timestamp": self.timestamp_iso,
            "emergency": self.emergency,
            "reason": self.reason,
        }


# Retained history entries are accepted consensus results.
HistoryEntry = ConsensusResult


@dataclass
class _AssetAccumulator:
    weighted_sum: float = 0.0
    total_weight: float = 0.0
    prices: list[float] = field(default_factory=list)


class ConsensusEngine:
    """Reduces source readings to a weighted consensus.

    The reduction is pure: it holds configuration only and never touches
    shared state or performs I/O.

    :ivar reference_asset: Asset used for confidence and deviation.
    :ivar confidence_floor: Lower clamp for confidence.
    """

    def __init__(self, reference_asset: str, confidence_floor: float = 0.1) -> None:
        """Initialize the engine.

        :param reference_asset: Asset symbol used for confidence/deviation.
        :param confidence_floor: Minimum confidence (default: 0.1).
        :raises ValueError: If confidence_floor is outside [0, 1].
        """
        if not 0 <= confidence_floor <= 1:
            raise ValueError("confidence_floor must be within [0, 1]")
        self.reference_asset = reference_asset
        self.confidence_floor = confidence_floor

    def reduce(
        self,
        readings: Sequence[Reading],
        *,
        captured_at: float | None = None,
    ) -> ConsensusResult:
        """Reduce readings to a ConsensusResult.

        :param readings: Readings from one cycle, failed ones included.
        :param captured_at: Optional timestamp override (default: now).
        :returns: Consensus prices with confidence and deviation.
        :raises ValueError: If no ok reading contributes any weight.
        """
        accumulators: dict[str, _AssetAccumulator] = {}
        sources: list[str] = []

        for reading in readings:
            if not reading.ok or reading.weight <= 0:
                continue
            contributed = False
            for asset, price in reading.asset_prices.items():
                if price is None or not math.isfinite(price) or price <= 0:
                    continue
                acc = accumulators.setdefault(asset, _AssetAccumulator())
                acc.weighted_sum += price * reading.weight
                acc.total_weight += reading.weight
                acc.prices.append(price)
                contributed = True
            if contributed:
                sources.append(reading.source)

        if not sources:
            raise ValueError("reduce() requires at least one successful reading")

        asset_prices = {
            asset: acc.weighted_sum / acc.total_weight
            for asset, acc in accumulators.items()
        }

        reference = accumulators.get(self.reference_asset)
        reference_prices = reference.prices if reference else []

        return ConsensusResult(
            asset_prices=asset_prices,
            sources=sources,
            confidence=self.confidence(reference_prices),
            deviation=self.deviation(reference_prices),
            captured_at=time.time() if captured_at is None else captured_at,
        )

    def confidence(self, prices: Sequence[float]) -> float:
        """Confidence from the coefficient of variation of prices.

        :param prices: Reference asset prices, one per contributing source.
        :returns: clamp(1 - stddev/mean, floor, 1.0), or 0.5 if < 2 prices.
        """
        if len(prices) < 2:
            return SINGLE_SOURCE_CONFIDENCE

        mean = sum(prices) / len(prices)
        variance = sum((p - mean) ** 2 for p in prices) / len(prices)
        cv = math.sqrt(variance) / mean
        return max(self.confidence_floor, min(1.0, 1 - cv))

    @staticmethod
    def deviation(prices: Sequence[float]) -> float:
        """Relative spread between the highest and lowest price.

        :param prices: Reference asset prices.
        :returns: (max - min) / min, or 0 if fewer than 2 prices.
        """
        if len(prices) < 2:
            return 0.0
        low = min(prices)
        return (max(prices) - low) / low
