"""EmergencyOverride: Operator-supplied prices that bypass the feeds.

An override skips fetching and consensus but never validation: the value is
checked by the same PlausibilityValidator as ordinary cycles and is then
committed, recorded and alerted on like any other accepted result.
"""

from __future__ import annotations

import logging
import time
from typing import Mapping

from .ConsensusEngine import ConsensusResult
from .errors import PlausibilityError
from .PlausibilityValidator import PlausibilityValidator

logger = logging.getLogger(__name__)

OVERRIDE_SOURCE = "manual_override"


class EmergencyOverride:
    """Builds validated override results.

    :ivar assets: Assets every override must price.
    :ivar validator: Validator applied to every override.
    """

    def __init__(self, assets: list[str], validator: PlausibilityValidator) -> None:
        """Initialize the override builder.

        :param assets: Asset symbols that must be supplied.
        :param validator: Plausibility validator shared with ordinary cycles.
        """
        self.assets = [a.lower() for a in assets]
        self.validator = validator

    def build(
        self,
        asset_prices: Mapping[str, float | str],
        reason: str,
        *,
        captured_at: float | None = None,
    ) -> ConsensusResult:
        """Build and validate an override result.

        :param asset_prices: Asset symbol to operator price.
        :param reason: Why the override is needed; must be non-empty.
        :param captured_at: Optional timestamp override (default: now).
        :returns: ConsensusResult flagged as emergency with full confidence.
        :raises PlausibilityError: If prices are missing, malformed or implausible.
        """
        if not reason or not reason.strip():
            raise PlausibilityError(["Override reason is required"])

        normalized = {asset.lower(): value for asset, value in asset_prices.items()}
        failures: list[str] = []
        prices: dict[str, float] = {}
        for asset in self.assets:
            if asset not in normalized:
                failures.append(f"{asset.upper()} price missing")
                continue
            try:
                prices[asset] = float(normalized[asset])
            except (TypeError, ValueError):
                failures.append(f"{asset.upper()} price is not a number: {normalized[asset]!r}")
        unknown = sorted(set(normalized) - set(self.assets))
        if unknown:
            failures.append(f"Unknown assets: {unknown}")
        if failures:
            raise PlausibilityError(failures)

        result = ConsensusResult(
            asset_prices=prices,
            sources=[OVERRIDE_SOURCE],
            confidence=1.0,
            deviation=0.0,
            captured_at=time.time() if captured_at is None else captured_at,
            emergency=True,
            reason=reason.strip(),
        )
        self.validator.validate(result)
        return result
