"""ScheduleController: Periodic, single-flight update cycles.

Each cycle moves through IDLE -> SAMPLING -> COMMITTING -> RECORDING -> IDLE:

    1. Acquire the single-flight guard, or drop the request
    2. Fetch readings from all sources concurrently
    3. Reduce to a consensus value and validate it
    4. Commit to the ledger if the update policy asks for it
    5. Record in history
    6. Evaluate alert rules
    7. Update operational statistics
    8. Release the guard

A trigger that arrives while a cycle is in flight is dropped with a logged
skip, never queued; the next tick supersedes it. Emergency overrides enter
at step 4 and share the commit/record/alert path, serialized with cycles by
an asyncio.Lock.

Two timers run until shutdown(): sampling (default every 5 minutes, first
tick immediately) and history cleanup (default daily).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, Mapping

from .errors import CommitError, OracleError, PlausibilityError

if TYPE_CHECKING:
    from .AlertEngine import AlertEngine
    from .ConsensusEngine import ConsensusEngine, ConsensusResult
    from .EmergencyOverride import EmergencyOverride
    from .FeedAggregator import FeedAggregator
    from .HistoryStore import HistoryStore
    from .LedgerCommitter import CommitReceipt, LedgerCommitter
    from .PlausibilityValidator import PlausibilityValidator
    from .SourceHealth import SourceStatus
    from .UpdateDecisionPolicy import UpdateDecisionPolicy

logger = logging.getLogger(__name__)

# Number of decimals of the scaled price committed to the ledger.
PRICE_DECIMALS = 8

SECONDS_PER_DAY = 24 * 60 * 60


def scale_price(price: float, decimals: int = PRICE_DECIMALS) -> int:
    """Scale a price to integer ledger units, truncating extra precision.

    :param price: Price in quote currency.
    :param decimals: Number of decimals kept (default: 8).
    :returns: int(price * 10**decimals).
    """
    return int(price * (10**decimals))


class CycleState(str, Enum):
    """Phase of the update cycle currently executing."""

    IDLE = "idle"
    SAMPLING = "sampling"
    COMMITTING = "committing"
    RECORDING = "recording"


@dataclass
class OperationalStats:
    """Running counters over all update cycles.

    :ivar total_cycles: Cycles started (skipped triggers excluded).
    :ivar successful_cycles: Cycles that produced an accepted value.
    :ivar failed_cycles: Cycles aborted by an error.
    :ivar skipped_cycles: Triggers dropped because a cycle was in flight.
    :ivar average_cycle_latency_ms: Mean latency of successful cycles.
    :ivar last_error: Most recent cycle error message.
    """

    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    skipped_cycles: int = 0
    average_cycle_latency_ms: float = 0.0
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        """Successful cycles as a percentage of all cycles."""
        if self.total_cycles == 0:
            return 0.0
        return self.successful_cycles / self.total_cycles * 100

    def record_success(self, latency_ms: float) -> None:
        self.total_cycles += 1
        self.successful_cycles += 1
        count = self.successful_cycles
        self.average_cycle_latency_ms = (
            self.average_cycle_latency_ms * (count - 1) + latency_ms
        ) / count

    def record_failure(self, error: str) -> None:
        self.total_cycles += 1
        self.failed_cycles += 1
        self.last_error = error


@dataclass(frozen=True)
class OracleStatus:
    """Point-in-time snapshot of the oracle for status endpoints."""

    stats: OperationalStats
    state: CycleState
    is_running: bool
    local_only: bool
    last_update_timestamp: float | None
    last_commit_timestamp: float | None
    configured_sources: list[tuple[str, float]]
    history_length: int
    active_alert_count: int
    source_health: dict[str, SourceStatus] = field(default_factory=dict)


class ScheduleController:
    """Owns the update cadence, the single-flight guard and shared pointers.

    :ivar last_accepted: Most recent accepted result (external "current price").
    :ivar last_committed: Most recent result confirmed on the ledger.
    :ivar stats: Running operational statistics.
    :ivar state: Phase of the cycle currently executing.
    """

    def __init__(
        self,
        aggregator: FeedAggregator,
        engine: ConsensusEngine,
        validator: PlausibilityValidator,
        policy: UpdateDecisionPolicy,
        history: HistoryStore,
        alerts: AlertEngine,
        override: EmergencyOverride,
        ledger: LedgerCommitter | None = None,
        sample_period: float = 300.0,
        cleanup_period: float = SECONDS_PER_DAY,
        retention_seconds: float = 30 * SECONDS_PER_DAY,
        commit_timeout: float = 60.0,
        on_update: Callable[[ConsensusResult], None] | None = None,
    ) -> None:
        """Initialize the controller.

        :param aggregator: Concurrent feed fetcher.
        :param engine: Consensus reducer.
        :param validator: Plausibility checks for every candidate.
        :param policy: Ledger commit policy.
        :param history: History store.
        :param alerts: Alert engine.
        :param override: Emergency override builder.
        :param ledger: Ledger commit capability, None for local-only mode.
        :param sample_period: Seconds between sampling ticks (default: 300).
        :param cleanup_period: Seconds between cleanup sweeps (default: 86400).
        :param retention_seconds: History retention window (default: 30 days).
        :param commit_timeout: Seconds before a commit counts as failed
            (default: 60).
        :param on_update: Optional callback invoked with every accepted result.
        :raises ValueError: If a period or timeout is not positive.
        """
        for label, value in (
            ("sample_period", sample_period),
            ("cleanup_period", cleanup_period),
            ("retention_seconds", retention_seconds),
            ("commit_timeout", commit_timeout),
        ):
            if value <= 0:
                raise ValueError(f"{label} must be positive")

        self.aggregator = aggregator
        self.engine = engine
        self.validator = validator
        self.policy = policy
        self.history = history
        self.alerts = alerts
        self.override = override
        self.ledger = ledger
        self.sample_period = sample_period
        self.cleanup_period = cleanup_period
        self.retention_seconds = retention_seconds
        self.commit_timeout = commit_timeout
        self.on_update = on_update

        self.last_accepted: ConsensusResult | None = None
        self.last_committed: ConsensusResult | None = None
        self.last_commit_receipt: CommitReceipt | None = None
        self.stats = OperationalStats()
        self.state = CycleState.IDLE

        self._in_flight = False
        self._accept_lock = asyncio.Lock()
        self._timer_tasks: list[asyncio.Task] = []
        self._cycle_tasks: set[asyncio.Task] = set()
        self._stopped = asyncio.Event()
        self._running = False
        self._shut_down = False

    @property
    def reference_asset(self) -> str:
        return self.engine.reference_asset

    @property
    def in_flight(self) -> bool:
        """Whether a cycle currently holds the single-flight guard."""
        return self._in_flight

    @property
    def is_running(self) -> bool:
        """Whether the timers are active."""
        return self._running

    async def run_cycle(self) -> ConsensusResult | None:
        """Run one full update cycle.

        :returns: The accepted result, or None if the trigger was dropped
            because another cycle is in flight.
        :raises AllFeedsFailedError: If every source failed.
        :raises PlausibilityError: If the consensus value is implausible.
        """
        if self._in_flight:
            self.stats.skipped_cycles += 1
            logger.warning("Price update already in progress, skipping")
            return None

        self._in_flight = True
        started = time.monotonic()
        try:
            self.state = CycleState.SAMPLING
            readings = await self.aggregator.fetch_all()
            result = self.engine.reduce(readings)
            self.validator.validate(result)

            await self._accept(result, track_state=True)

            latency_ms = (time.monotonic() - started) * 1000
            self.stats.record_success(latency_ms)
            logger.info(
                "Prices updated: "
                + ", ".join(f"{a}=${p:.2f}" for a, p in result.asset_prices.items())
                + f" (sources={len(result.sources)}, confidence={result.confidence * 100:.1f}%, "
                f"deviation={result.deviation * 100:.2f}%, {latency_ms:.0f}ms)"
            )
            return result
        except OracleError as e:
            self.stats.record_failure(str(e))
            logger.error(f"Error updating prices: {e}")
            raise
        except Exception as e:
            self.stats.record_failure(f"{type(e).__name__}: {e}")
            raise
        finally:
            self.state = CycleState.IDLE
            self._in_flight = False

    async def force_override(
        self, asset_prices: Mapping[str, float | str], reason: str
    ) -> ConsensusResult:
        """Accept operator-supplied prices, bypassing fetch and consensus.

        The override is validated, always committed when a ledger is
        configured, recorded and evaluated against alert rules.

        :param asset_prices: Asset symbol to price.
        :param reason: Operator supplied reason.
        :returns: The accepted emergency result.
        :raises PlausibilityError: If the override fails validation.
        """
        try:
            result = self.override.build(asset_prices, reason)
        except PlausibilityError as e:
            logger.error(f"Emergency price update rejected: {e}")
            raise

        await self._accept(result, force_commit=True)
        logger.warning(
            "Emergency price update executed: "
            + ", ".join(f"{a}=${p:.2f}" for a, p in result.asset_prices.items())
            + f" (reason: {result.reason})"
        )
        return result

    def cleanup(self, now: float | None = None) -> int:
        """Evict history older than the retention window.

        :param now: Optional reference time.
        :returns: Number of entries removed.
        """
        return self.history.evict_older_than(self.retention_seconds, now=now)

    def start(self) -> None:
        """Start the sampling and cleanup timers on the running loop.

        :raises RuntimeError: If already started or shut down.
        """
        if self._running or self._shut_down:
            raise RuntimeError("ScheduleController cannot be started twice")
        self._running = True
        self._timer_tasks = [
            asyncio.create_task(self._sampling_loop()),
            asyncio.create_task(self._cleanup_loop()),
        ]
        logger.info(
            f"Automatic price updates started (every {self.sample_period:g}s), "
            f"history cleanup every {self.cleanup_period:g}s"
        )

    async def run(self) -> None:
        """Start the timers and block until shutdown() is called."""
        self.start()
        await self._stopped.wait()

    async def shutdown(self) -> None:
        """Stop the timers and wait for in-flight work. Idempotent.

        A cycle already in flight is allowed to finish; it is never
        cancelled mid-commit.
        """
        if self._shut_down:
            return
        self._shut_down = True
        self._running = False

        for task in self._timer_tasks:
            task.cancel()
        await asyncio.gather(*self._timer_tasks, return_exceptions=True)
        self._timer_tasks = []

        if self._cycle_tasks:
            logger.info("Waiting for in-flight price update to finish")
            await asyncio.gather(*self._cycle_tasks, return_exceptions=True)

        await self.alerts.aclose()
        self._stopped.set()
        logger.info("Price oracle stopped")

    def get_status(self) -> OracleStatus:
        """Build a consistent status snapshot."""
        last_accepted = self.last_accepted
        last_committed = self.last_committed
        health = self.aggregator.source_health
        return OracleStatus(
            stats=replace(self.stats),
            state=self.state,
            is_running=self._running,
            local_only=self.ledger is None,
            last_update_timestamp=last_accepted.captured_at if last_accepted else None,
            last_commit_timestamp=last_committed.captured_at if last_committed else None,
            configured_sources=[
                (name, fetcher.weight) for name, fetcher in self.aggregator.fetchers.items()
            ],
            history_length=len(self.history),
            active_alert_count=self.alerts.active_count,
            source_health=health.get_all_status() if health is not None else {},
        )

    async def _accept(
        self,
        result: ConsensusResult,
        *,
        track_state: bool = False,
        force_commit: bool = False,
    ) -> None:
        """Commit, record and alert on an accepted result (steps 4 to 6)."""
        async with self._accept_lock:
            if track_state:
                self.state = CycleState.COMMITTING
            if force_commit or self.policy.should_commit(result, self.last_committed):
                await self._commit(result)

            if track_state:
                self.state = CycleState.RECORDING
            self.history.append(result)
            self.last_accepted = result
            self.alerts.evaluate(result)

            if self.on_update is not None:
                try:
                    self.on_update(result)
                except Exception:
                    logger.exception("Price update callback failed")

    async def _commit(self, result: ConsensusResult) -> CommitReceipt | None:
        """Commit the reference price; failures are logged, never raised."""
        if self.ledger is None:
            logger.debug("Ledger not configured, skipping on-chain update")
            return None

        price = result.price(self.reference_asset)
        if price is None:
            logger.error(f"Cannot commit: no {self.reference_asset} price in result")
            return None

        scaled = scale_price(price)
        try:
            receipt = await asyncio.wait_for(
                self.ledger.commit(scaled), timeout=self.commit_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Ledger commit of {scaled} timed out after {self.commit_timeout:g}s"
            )
            return None
        except CommitError as e:
            logger.error(f"Error updating ledger: {e}")
            return None
        except Exception:
            logger.exception(f"Unexpected error committing {scaled} to ledger")
            return None

        self.last_committed = result
        self.last_commit_receipt = receipt
        logger.info(
            f"Committed {self.reference_asset}=${price:.2f} (scaled={scaled}) "
            f"tx={receipt.tx_hash}"
        )
        return receipt

    async def _sampling_loop(self) -> None:
        while True:
            self._launch_cycle()
            await asyncio.sleep(self.sample_period)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_period)
            self.cleanup()

    def _launch_cycle(self) -> None:
        if self._in_flight:
            self.stats.skipped_cycles += 1
            logger.warning("Price update already in progress, skipping scheduled tick")
            return
        task = asyncio.create_task(self._scheduled_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    async def _scheduled_cycle(self) -> None:
        try:
            await self.run_cycle()
        except OracleError as e:
            logger.debug(f"Scheduled price update aborted: {e}")
        except Exception:
            logger.exception("Scheduled price update failed")
