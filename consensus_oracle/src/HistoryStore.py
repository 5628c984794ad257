"""HistoryStore: Bounded in-memory history of accepted consensus values.

Entries are kept oldest first. Two independent bounds apply:

    - a length bound (max_history_length), enforced on every append by
      dropping the oldest entries
    - a time bound (retention window), enforced by evict_older_than(),
      which the scheduler calls from its cleanup timer

All methods take an internal lock, so readers on other threads only ever
see complete entries and receive copies rather than live views.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass

from .ConsensusEngine import HistoryEntry

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class HourlyBucket:
    """Average prices over one backward-looking hour window.

    :ivar timestamp: Unix timestamp of the window end.
    :ivar avg_prices: Asset symbol to average price in the window.
    :ivar sample_count: Number of entries in the window.
    """

    timestamp: float
    avg_prices: dict[str, float]
    sample_count: int


class HistoryStore:
    """Append-only, bounded, thread-safe history.

    :ivar max_history_length: Maximum number of retained entries.
    """

    DEFAULT_MAX_HISTORY_LENGTH = 1000

    def __init__(self, max_history_length: int = DEFAULT_MAX_HISTORY_LENGTH) -> None:
        """Initialize the store.

        :param max_history_length: Maximum entries kept (default: 1000).
        :raises ValueError: If max_history_length < 1.
        """
        if max_history_length < 1:
            raise ValueError("max_history_length must be at least 1")
        self.max_history_length = max_history_length
        self._entries: deque[HistoryEntry] = deque(maxlen=max_history_length)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, entry: HistoryEntry) -> None:
        """Append an entry, dropping the oldest one if full.

        :param entry: Accepted consensus value.
        """
        with self._lock:
            self._entries.append(entry)

    def latest(self) -> HistoryEntry | None:
        """Get the most recent entry, if any."""
        with self._lock:
            return self._entries[-1] if self._entries else None

    def all(self) -> list[HistoryEntry]:
        """Get a copy of every retained entry, oldest first."""
        with self._lock:
            return list(self._entries)

    def query(self, since_seconds: float, now: float | None = None) -> list[HistoryEntry]:
        """Get entries captured within the last since_seconds.

        :param since_seconds: Window length in seconds.
        :param now: Optional reference time (default: now).
        :returns: Matching entries, oldest first.
        """
        cutoff = (time.time() if now is None else now) - since_seconds
        with self._lock:
            return [e for e in self._entries if e.captured_at > cutoff]

    def resample_hourly(
        self, since_seconds: float, now: float | None = None
    ) -> list[HourlyBucket]:
        """Average entries per hour window, looking backward from now.

        Window i covers [now - (i+1)h, now - ih). Windows without samples
        are omitted rather than zero-filled.

        :param since_seconds: How far back to resample.
        :param now: Optional reference time (default: now).
        :returns: Buckets in chronological order (oldest first).
        """
        now = time.time() if now is None else now
        hours = max(0, math.ceil(since_seconds / SECONDS_PER_HOUR))
        entries = self.query(since_seconds, now=now)

        buckets: list[HourlyBucket] = []
        for i in range(hours):
            window_end = now - i * SECONDS_PER_HOUR
            window_start = window_end - SECONDS_PER_HOUR
            in_window = [e for e in entries if window_start <= e.captured_at < window_end]
            if not in_window:
                continue

            sums: dict[str, float] = {}
            counts: dict[str, int] = {}
            for entry in in_window:
                for asset, price in entry.asset_prices.items():
                    sums[asset] = sums.get(asset, 0.0) + price
                    counts[asset] = counts.get(asset, 0) + 1

            buckets.append(
                HourlyBucket(
                    timestamp=window_end,
                    avg_prices={a: sums[a] / counts[a] for a in sums},
                    sample_count=len(in_window),
                )
            )

        buckets.reverse()
        return buckets

    def evict_older_than(self, retention_seconds: float, now: float | None = None) -> int:
        """Remove entries older than the retention window.

        Safe to call repeatedly and concurrently with append().

        :param retention_seconds: Entries captured at or before
            now - retention_seconds are removed.
        :param now: Optional reference time (default: now).
        :returns: Number of entries removed.
        """
        cutoff = (time.time() if now is None else now) - retention_seconds
        with self._lock:
            kept = [e for e in self._entries if e.captured_at > cutoff]
            removed = len(self._entries) - len(kept)
            if removed:
                self._entries = deque(kept, maxlen=self.max_history_length)

        if removed > 0:
            logger.info(f"Cleaned up {removed} old price records")
        return removed
