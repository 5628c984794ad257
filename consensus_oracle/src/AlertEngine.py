"""AlertEngine: Operator-defined price threshold alerts.

Rules hold optional upper/lower bounds per asset. Each evaluation checks the
rule's assets in the order they were configured, upper bound before lower
bound, and the first crossing fires. A rule fires at most once per
evaluation, no matter how many of its conditions match.

Notifications are best-effort webhook POSTs scheduled as background tasks so
a slow or failing endpoint never delays the update cycle. Failed deliveries
are logged and never retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

import httpx

from .ConsensusEngine import ConsensusResult
from .errors import AlertRuleError, DeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetThreshold:
    """Bounds for a single asset. Either bound may be omitted.

    :ivar upper: Fire when price >= upper.
    :ivar lower: Fire when price <= lower.
    """

    upper: float | None = None
    lower: float | None = None


@dataclass
class AlertRule:
    """A threshold alert rule.

    :ivar id: Unique rule identifier.
    :ivar thresholds: Asset symbol to bounds, in precedence order.
    :ivar notify_target: Webhook URL, or None for callback-only rules.
    :ivar active: Inactive rules are never evaluated.
    :ivar created_at: Unix timestamp of creation.
    :ivar triggered_count: Number of times the rule fired.
    :ivar last_triggered_at: Unix timestamp of the last firing.
    """

    id: str
    thresholds: dict[str, AssetThreshold]
    notify_target: str | None = None
    active: bool = True
    created_at: float = field(default_factory=time.time)
    triggered_count: int = 0
    last_triggered_at: float | None = None


@dataclass(frozen=True)
class AlertEvent:
    """A fired alert.

    :ivar alert_id: Rule that fired.
    :ivar reason: Human readable trigger condition.
    :ivar asset_prices: Prices that triggered the alert.
    :ivar timestamp: Unix timestamp of the triggering result.
    """

    alert_id: str
    reason: str
    asset_prices: dict[str, float]
    timestamp: float

    def to_payload(self) -> dict[str, Any]:
        """Webhook JSON payload."""
        return {
            "alertId": self.alert_id,
            "reason": self.reason,
            "prices": dict(self.asset_prices),
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }


ThresholdSpec = AssetThreshold | Mapping[str, float | None]


class AlertEngine:
    """Owns alert rules and evaluates them against accepted results.

    :ivar assets: Asset symbols rules may reference.
    :ivar delivery_timeout: Webhook timeout in seconds.
    """

    def __init__(
        self,
        assets: list[str],
        client: httpx.AsyncClient | None = None,
        delivery_timeout: float = 10.0,
        on_trigger: Callable[[AlertEvent], None] | None = None,
    ) -> None:
        """Initialize the engine.

        :param assets: Asset symbols that rules may reference.
        :param client: Optional HTTP client for deliveries. If omitted, one
            is created lazily and closed by aclose().
        :param delivery_timeout: Timeout per webhook POST (default: 10.0).
        :param on_trigger: Optional callback invoked for every fired alert.
        """
        self.assets = [a.lower() for a in assets]
        self.delivery_timeout = delivery_timeout
        self.on_trigger = on_trigger
        self._client = client
        self._owns_client = client is None
        self._rules: dict[str, AlertRule] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def rules(self) -> list[AlertRule]:
        """All rules, in creation order."""
        return list(self._rules.values())

    @property
    def active_count(self) -> int:
        """Number of active rules."""
        return sum(1 for r in self._rules.values() if r.active)

    def get_rule(self, rule_id: str) -> AlertRule:
        """Get a rule by id.

        :raises AlertRuleError: If the rule does not exist.
        """
        try:
            return self._rules[rule_id]
        except KeyError:
            raise AlertRuleError(f"Unknown alert rule '{rule_id}'") from None

    def create_rule(
        self,
        thresholds: Mapping[str, ThresholdSpec],
        notify_target: str | None = None,
    ) -> AlertRule:
        """Validate and register a new rule.

        :param thresholds: Asset symbol to AssetThreshold or a mapping with
            "upper"/"lower" keys, e.g. ``{"btc": {"upper": 50000}}``.
        :param notify_target: Optional http(s) webhook URL.
        :returns: The created rule.
        :raises AlertRuleError: If the definition is invalid.
        """
        if not thresholds:
            raise AlertRuleError("At least one asset threshold is required")

        parsed: dict[str, AssetThreshold] = {}
        for asset, spec in thresholds.items():
            asset_key = asset.lower()
            if asset_key not in self.assets:
                raise AlertRuleError(
                    f"Unknown asset '{asset}'. Expected one of {self.assets}"
                )
            parsed[asset_key] = self._parse_threshold(asset_key, spec)

        if notify_target is not None:
            self._validate_target(notify_target)

        rule = AlertRule(
            id=uuid.uuid4().hex,
            thresholds=parsed,
            notify_target=notify_target,
        )
        self._rules[rule.id] = rule
        logger.info(f"Price alert created: {rule.id} {parsed}")
        return rule

    def deactivate_rule(self, rule_id: str) -> AlertRule:
        """Deactivate a rule. Deactivated rules are kept for reporting.

        :param rule_id: Rule identifier.
        :returns: The deactivated rule.
        """
        rule = self.get_rule(rule_id)
        rule.active = False
        logger.info(f"Price alert deactivated: {rule_id}")
        return rule

    def evaluate(self, result: ConsensusResult) -> list[AlertEvent]:
        """Evaluate all active rules against a result.

        :param result: Newly accepted consensus value.
        :returns: Events fired by this evaluation (at most one per rule).
        """
        events: list[AlertEvent] = []
        for rule in self._rules.values():
            if not rule.active:
                continue
            reason = self._first_crossing(rule, result)
            if reason is None:
                continue

            rule.triggered_count += 1
            rule.last_triggered_at = time.time()
            event = AlertEvent(
                alert_id=rule.id,
                reason=reason,
                asset_prices=dict(result.asset_prices),
                timestamp=result.captured_at,
            )
            events.append(event)
            logger.info(f"Price alert triggered: {rule.id} ({reason})")

            if self.on_trigger is not None:
                try:
                    self.on_trigger(event)
                except Exception:
                    logger.exception(f"Alert callback failed for {rule.id}")
            if rule.notify_target:
                self._schedule_delivery(event, rule.notify_target)

        return events

    async def deliver(self, event: AlertEvent, target: str) -> None:
        """POST an event to a webhook.

        :param event: Fired alert.
        :param target: Webhook URL.
        :raises DeliveryError: On network error, timeout or non-2xx status.
        """
        client = self._get_client()
        try:
            response = await client.post(
                target, json=event.to_payload(), timeout=self.delivery_timeout
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook {target} failed: {e}") from e
        if not response.is_success:
            raise DeliveryError(f"Webhook {target} returned HTTP {response.status_code}")

    async def wait_for_deliveries(self) -> None:
        """Wait until all scheduled deliveries have completed."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Wait for pending deliveries and close an owned HTTP client."""
        await self.wait_for_deliveries()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self._client

    def _schedule_delivery(self, event: AlertEvent, target: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Webhook alert {event.alert_id} not sent: no running event loop")
            return
        task = loop.create_task(self._deliver_logged(event, target))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_logged(self, event: AlertEvent, target: str) -> None:
        try:
            await self.deliver(event, target)
        except DeliveryError as e:
            logger.warning(f"Webhook alert failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error delivering alert {event.alert_id} to {target}")

    @staticmethod
    def _first_crossing(rule: AlertRule, result: ConsensusResult) -> str | None:
        for asset, threshold in rule.thresholds.items():
            price = result.price(asset)
            if price is None:
                continue
            if threshold.upper is not None and price >= threshold.upper:
                return f"{asset.upper()} price reached upper threshold: ${threshold.upper:g}"
            if threshold.lower is not None and price <= threshold.lower:
                return f"{asset.upper()} price reached lower threshold: ${threshold.lower:g}"
        return None

    @staticmethod
    def _parse_threshold(asset: str, spec: ThresholdSpec) -> AssetThreshold:
        if isinstance(spec, AssetThreshold):
            upper, lower = spec.upper, spec.lower
        elif isinstance(spec, Mapping):
            unknown = set(spec) - {"upper", "lower"}
            if unknown:
                raise AlertRuleError(f"Unknown threshold keys for {asset}: {sorted(unknown)}")
            upper, lower = spec.get("upper"), spec.get("lower")
        else:
            raise AlertRuleError(f"Invalid threshold for {asset}: {spec!r}")

        try:
            upper = float(upper) if upper is not None else None
            lower = float(lower) if lower is not None else None
        except (TypeError, ValueError):
            raise AlertRuleError(f"Thresholds for {asset} must be numeric") from None

        if upper is None and lower is None:
            raise AlertRuleError(f"Threshold for {asset} needs an upper or lower bound")
        for bound in (upper, lower):
            if bound is not None and bound <= 0:
                raise AlertRuleError(f"Thresholds for {asset} must be positive")
        if upper is not None and lower is not None and lower >= upper:
            raise AlertRuleError(
                f"Lower threshold for {asset} must be below upper ({lower} >= {upper})"
            )
        return AssetThreshold(upper=upper, lower=lower)

    @staticmethod
    def _validate_target(target: str) -> None:
        try:
            url = httpx.URL(target)
        except httpx.InvalidURL:
            raise AlertRuleError(f"Invalid notify target URL: {target!r}") from None
        if url.scheme not in ("http", "https") or not url.host:
            raise AlertRuleError(f"Notify target must be an http(s) URL, got {target!r}")
