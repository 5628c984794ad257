"""FeedAggregator: Concurrent fan-out to all configured price sources.

Each configured source is queried once per cycle, concurrently, with its own
timeout. A failing or slow source produces a failed Reading and never aborts
the batch; partial success is the normal case. Only when no source returns a
usable reading does the batch itself fail with AllFeedsFailedError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import AllFeedsFailedError
from .fetchers import FetcherError, parse_price

if TYPE_CHECKING:
    from .fetchers import BaseFetcher
    from .SourceHealth import SourceHealth

logger = logging.getLogger(__name__)


@dataclass
class Reading:
    """One source's quote for a single cycle.

    :ivar source: Source name.
    :ivar asset_prices: Asset symbol to price; only reported assets present.
    :ivar weight: Consensus weight of the source, in (0, 1].
    :ivar captured_at: Unix timestamp when the reading completed.
    :ivar ok: Whether the source produced any usable price.
    :ivar error: Error message when ok is False.
    """

    source: str
    asset_prices: dict[str, float] = field(default_factory=dict)
    weight: float = 1.0
    captured_at: float = 0.0
    ok: bool = True
    error: str | None = None


class FeedAggregator:
    """Fetches readings from all sources concurrently.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar assets: Asset symbols requested from every source.
    :ivar quote: Quote currency symbol.
    :ivar fetch_timeout: Per-source timeout in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        assets: list[str],
        quote: str = "usd",
        fetch_timeout: float = 10.0,
        source_health: SourceHealth | None = None,
    ) -> None:
        """Initialize the aggregator.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param assets: Asset symbols to fetch (e.g., ["btc", "eth"]).
        :param quote: Quote currency (default: "usd").
        :param fetch_timeout: Timeout for each source (default: 10.0).
        :param source_health: Optional tracker receiving every outcome.
        :raises ValueError: If no fetchers are configured or timeout invalid.
        """
        if not fetchers:
            raise ValueError("At least one price source must be configured")
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")

        self.fetchers = fetchers
        self.assets = list(assets)
        self.quote = quote
        self.fetch_timeout = fetch_timeout
        self.source_health = source_health

    async def fetch_all(self) -> list[Reading]:
        """Fetch one reading from every configured source.

        :returns: One Reading per source, in configuration order.
        :raises AllFeedsFailedError: If no reading is ok.
        """
        readings = await asyncio.gather(
            *(self._fetch_source(name, fetcher) for name, fetcher in self.fetchers.items())
        )

        ok_count = sum(1 for r in readings if r.ok)
        if ok_count == 0:
            errors = {r.source: r.error or "unknown error" for r in readings}
            logger.error(
                f"All {len(readings)} price feeds failed: "
                + ", ".join(f"{s}: {e}" for s, e in errors.items())
            )
            raise AllFeedsFailedError(len(readings), errors)

        logger.debug(f"Fetched {ok_count}/{len(readings)} readings")
        return list(readings)

    async def _fetch_source(self, name: str, fetcher: BaseFetcher) -> Reading:
        """Fetch a single source with timeout, never raising.

        :param name: Source name.
        :param fetcher: Fetcher instance to use.
        :returns: Reading, failed if the source errored or timed out.
        """
        try:
            raw = await asyncio.wait_for(
                fetcher.fetch(self.assets, self.quote),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            return self._failed(name, fetcher, f"timeout after {self.fetch_timeout}s")
        except FetcherError as e:
            return self._failed(name, fetcher, str(e))
        except Exception as e:  # unexpected adapter failure
            return self._failed(name, fetcher, f"{type(e).__name__}: {e}")

        prices: dict[str, float] = {}
        for asset in self.assets:
            price = parse_price(raw.get(asset))
            if price is not None:
                prices[asset] = price

        if not prices:
            return self._failed(name, fetcher, "no usable prices in response")

        now = time.time()
        if self.source_health is not None:
            self.source_health.record_success(name, now=now)
        logger.debug(f"[{name}] {self._format_prices(prices)}")
        return Reading(
            source=name,
            asset_prices=prices,
            weight=fetcher.weight,
            captured_at=now,
        )

    def _failed(self, name: str, fetcher: BaseFetcher, error: str) -> Reading:
        logger.warning(f"[{name}] Fetch failed: {error}")
        if self.source_health is not None:
            self.source_health.record_failure(name, error)
        return Reading(
            source=name,
            weight=fetcher.weight,
            captured_at=time.time(),
            ok=False,
            error=error,
        )

    @staticmethod
    def _format_prices(prices: dict[str, float]) -> str:
        return ", ".join(f"{asset}=${price:.2f}" for asset, price in prices.items())
