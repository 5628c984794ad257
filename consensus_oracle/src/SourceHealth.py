"""SourceHealth: Per-source success and failure tracking.

Every fetch outcome is recorded so operators can see which feeds are
degraded through the oracle status. A success resets the consecutive
failure counter; totals are kept for the lifetime of the process.

.. code-block:: python

    >>> health = SourceHealth(["coingecko", "binance"])
    >>> health.record_failure("binance", "HTTP 500: oops")
    1
    >>> health.get_source_status("binance").last_error
    'HTTP 500: oops'
    >>> health.get_failing_sources()
    ['binance']
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace


@dataclass
class SourceStatus:
    """Tracks the status of a single source.

    :ivar consecutive_failures: Number of consecutive failures.
    :ivar total_failures: Total failures since tracking began.
    :ivar total_successes: Total successes since tracking began.
    :ivar last_error: Most recent error message, cleared on success.
    :ivar last_success_at: Unix timestamp of the last successful fetch.
    """

    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_error: str | None = None
    last_success_at: float | None = None


class SourceHealth:
    """Tracks fetch outcomes per source.

    :ivar sources: List of tracked source names.
    """

    def __init__(self, sources: list[str]) -> None:
        """Initialize the tracker.

        :param sources: List of source names to track.
        """
        self.sources = list(sources)
        self._status: dict[str, SourceStatus] = {s: SourceStatus() for s in sources}
        self._lock = threading.Lock()

    def _get_or_create(self, source: str) -> SourceStatus:
        if source not in self._status:
            self.sources.append(source)
            self._status[source] = SourceStatus()
        return self._status[source]

    def record_failure(self, source: str, error: str) -> int:
        """Record a failure for a source.

        :param source: Source name that failed.
        :param error: Error message.
        :returns: Number of consecutive failures.
        """
        with self._lock:
            status = self._get_or_create(source)
            status.consecutive_failures += 1
            status.total_failures += 1
            status.last_error = error
            return status.consecutive_failures

    def record_success(self, source: str, now: float | None = None) -> None:
        """Record a successful fetch, resetting the failure counter.

        :param source: Source name that succeeded.
        :param now: Optional timestamp override.
        """
        with self._lock:
            status = self._get_or_create(source)
            status.consecutive_failures = 0
            status.total_successes += 1
            status.last_error = None
            status.last_success_at = time.time() if now is None else now

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Get a snapshot of a specific source's status.

        :param source: Source name to query.
        :returns: SourceStatus copy or None if source not tracked.
        """
        with self._lock:
            status = self._status.get(source)
            return replace(status) if status is not None else None

    def get_all_status(self) -> dict[str, SourceStatus]:
        """Get a snapshot of all sources.

        :returns: Dict mapping source names to status copies.
        """
        with self._lock:
            return {s: replace(st) for s, st in self._status.items()}

    def get_failing_sources(self) -> list[str]:
        """Get sources whose most recent fetch failed.

        :returns: List of source names.
        """
        with self._lock:
            return [s for s in self.sources if self._status[s].consecutive_failures > 0]
