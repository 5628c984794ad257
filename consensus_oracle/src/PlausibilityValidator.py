"""PlausibilityValidator: Sanity checks for candidate consensus values.

Two tiers of checks run against every candidate, ordinary or override:

- Hard checks reject immediately: the reference asset is missing, or any
  price is non-positive or non-finite.
- Soft checks (per-asset plausible ranges and a confidence floor) are logged
  as warnings; the candidate is rejected only when more than
  ``max_soft_failures`` of them fail.
"""

from __future__ import annotations

import logging
import math

from .ConsensusEngine import ConsensusResult
from .errors import PlausibilityError

logger = logging.getLogger(__name__)

DEFAULT_PLAUSIBLE_RANGES: dict[str, tuple[float, float]] = {
    "btc": (1_000.0, 500_000.0),
    "eth": (100.0, 50_000.0),
}


class PlausibilityValidator:
    """Validates ConsensusResult values before they are accepted.

    :ivar reference_asset: Asset that must always be present.
    :ivar plausible_ranges: Asset to exclusive (low, high) bounds.
    :ivar min_confidence: Confidence must exceed this value.
    :ivar max_soft_failures: Soft failures tolerated before rejecting.
    """

    def __init__(
        self,
        reference_asset: str,
        plausible_ranges: dict[str, tuple[float, float]] | None = None,
        min_confidence: float = 0.3,
        max_soft_failures: int = 2,
    ) -> None:
        """Initialize the validator.

        :param reference_asset: Asset symbol that must be priced.
        :param plausible_ranges: Per-asset (low, high) bounds
            (default: DEFAULT_PLAUSIBLE_RANGES).
        :param min_confidence: Confidence floor for the soft check (default: 0.3).
        :param max_soft_failures: Tolerated soft failures (default: 2).
        :raises ValueError: If a range is inverted or max_soft_failures < 0.
        """
        ranges = DEFAULT_PLAUSIBLE_RANGES if plausible_ranges is None else plausible_ranges
        for asset, (low, high) in ranges.items():
            if low >= high:
                raise ValueError(f"Invalid plausible range for {asset}: {low} >= {high}")
        if max_soft_failures < 0:
            raise ValueError("max_soft_failures must be non-negative")

        self.reference_asset = reference_asset
        self.plausible_ranges = dict(ranges)
        self.min_confidence = min_confidence
        self.max_soft_failures = max_soft_failures

    def validate(self, result: ConsensusResult) -> list[str]:
        """Validate a candidate result.

        :param result: Candidate consensus value.
        :returns: Soft check warnings that were tolerated (possibly empty).
        :raises PlausibilityError: On any hard failure, or when soft failures
            exceed max_soft_failures.
        """
        hard: list[str] = []
        if self.reference_asset not in result.asset_prices:
            hard.append(f"{self.reference_asset.upper()} price missing")
        for asset, price in result.asset_prices.items():
            if not math.isfinite(price) or price <= 0:
                hard.append(f"{asset.upper()} price must be positive, got {price}")
        if hard:
            raise PlausibilityError(hard)

        soft: list[str] = []
        for asset, (low, high) in self.plausible_ranges.items():
            price = result.asset_prices.get(asset)
            if price is None:
                continue
            if price <= low:
                soft.append(f"{asset.upper()} price seems too low ({price:.2f} <= {low:g})")
            elif price >= high:
                soft.append(f"{asset.upper()} price seems too high ({price:.2f} >= {high:g})")
        if result.confidence <= self.min_confidence:
            soft.append(
                f"Price confidence too low ({result.confidence:.2f} <= {self.min_confidence})"
            )

        if soft:
            logger.warning(f"Price validation warnings: {soft}")
            if len(soft) > self.max_soft_failures:
                raise PlausibilityError(soft)

        return soft
