"""Push delivery with bounded retries, resilience bookkeeping and metrics."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

from nudge_engine.exceptions import PushSendError
from nudge_engine.metrics import DeliveryFailure
from nudge_engine.resilience import ResiliencePolicy, classify_failure
from nudge_engine.schema import Notification, PushSubscription
from nudge_engine.settings import DeliveryConfig
from nudge_engine.store import RuntimeStore
from nudge_engine.telemetry import emit_metric

LOGGER = logging.getLogger("nudge_engine.delivery")

DROP_STATUS_CODES = (404, 410)


class PushChannel(Protocol):
    """External push transport; a failed send raises, ideally PushSendError with a status."""

    name: str

    async def send(self, subscription: PushSubscription, payload: str) -> None:
        ...


class LogChannel:
    """Push channel that only logs payloads; used when no provider is configured."""

    name = "log"

    async def send(self, subscription: PushSubscription, payload: str) -> None:
        LOGGER.info("push -> %s: %s", subscription.endpoint, payload)


@dataclass(frozen=True)
class DeliveryResult:
    endpoint: str
    delivered: bool
    attempts: int
    retries: int
    should_drop_subscription: bool = False
    status_code: Optional[int] = None
    error: Optional[str] = None
    root_cause: Optional[str] = None
    skipped: bool = False


def build_payload(notification: Notification) -> str:
    metadata = notification.metadata or {}
    return json.dumps(
        {
            "notificationId": notification.id,
            "title": notification.title,
            "message": notification.message,
            "priority": notification.priority,
            "source": notification.source,
            "timestamp": notification.timestamp.isoformat(),
            "itemId": metadata.get("itemId"),
            "actions": notification.actions,
            "url": notification.url,
        }
    )


async def send_with_retry(
    channel: PushChannel,
    subscription: PushSubscription,
    payload: str,
    max_retries: int = 2,
    base_delay_seconds: float = 0.25,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DeliveryResult:
    """Send one payload, retrying transient failures with doubling delays."""

    attempt = 0
    while True:
        attempt += 1
        try:
            await channel.send(subscription, payload)
            return DeliveryResult(subscription.endpoint, True, attempts=attempt, retries=attempt - 1)
        except Exception as exc:
            # any transport error is a failed attempt; only PushSendError carries a status
            status_code = exc.status_code if isinstance(exc, PushSendError) else None
            should_drop = status_code in DROP_STATUS_CODES
            if should_drop or attempt > max_retries:
                return DeliveryResult(
                    subscription.endpoint,
                    False,
                    attempts=attempt,
                    retries=attempt - 1,
                    should_drop_subscription=should_drop,
                    status_code=status_code,
                    error=str(exc) or type(exc).__name__,
                    root_cause=classify_failure(status_code, str(exc) or type(exc).__name__),
                )
            await sleep(base_delay_seconds * 2 ** (attempt - 1))


class PushDispatcher:
    """Delivers approved notifications to every registered subscription."""

    def __init__(
        self,
        store: RuntimeStore,
        channel: PushChannel,
        policy: ResiliencePolicy,
        config: Optional[DeliveryConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._channel = channel
        self._policy = policy
        self._config = config or DeliveryConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    @property
    def policy(self) -> ResiliencePolicy:
        return self._policy

    async def deliver(self, notification: Notification) -> list[DeliveryResult]:
        """Push *notification*; failures are returned and recorded, never raised."""
        results: list[DeliveryResult] = []
        metrics = self._store.delivery_metrics
        payload = build_payload(notification)

        for subscription in await self._store.get_subscriptions():
            now = self._clock()
            decision = self._policy.can_attempt(now)
            if not decision.allowed:
                self._policy.record_skip(decision.reason or "circuit_open")
                emit_metric("push.skipped", channel=self._channel.name, reason=decision.reason)
                results.append(
                    DeliveryResult(
                        subscription.endpoint,
                        False,
                        attempts=0,
                        retries=0,
                        error=decision.reason,
                        skipped=True,
                    )
                )
                continue

            result = await send_with_retry(
                self._channel,
                subscription,
                payload,
                max_retries=self._config.max_retries,
                base_delay_seconds=self._config.retry_base_delay_seconds,
                sleep=self._sleep,
            )
            metrics.record_attempt(result.retries)
            if result.delivered:
                metrics.record_delivered()
                self._policy.record_success(self._clock())
                emit_metric("push.delivered", channel=self._channel.name)
            else:
                self._record_failure(notification, result)
                if result.should_drop_subscription:
                    await self._store.remove_subscription(subscription.endpoint)
                    LOGGER.info("Dropped expired subscription %s", subscription.endpoint)
            results.append(result)

        return results

    def _record_failure(self, notification: Notification, result: DeliveryResult) -> None:
        now = self._clock()
        root_cause = result.root_cause or "unknown"
        self._store.delivery_metrics.record_failure(
            DeliveryFailure(
                endpoint=result.endpoint,
                notification_id=notification.id,
                notification_title=notification.title,
                source=notification.source,
                priority=notification.priority,
                error=result.error or "Unknown push delivery error",
                attempts=result.attempts,
                failed_at=now,
                status_code=result.status_code,
                root_cause=root_cause,
            ),
            dropped_subscription=result.should_drop_subscription,
        )
        # an expired subscription says nothing about the channel's health
        if not result.should_drop_subscription:
            self._policy.record_failure(result.error, now, root_cause=root_cause)
        LOGGER.warning(
            "Push delivery of %s to %s failed after %d attempts (%s): %s",
            notification.id,
            result.endpoint,
            result.attempts,
            root_cause,
            result.error,
        )
        emit_metric("push.failed", channel=self._channel.name, root_cause=root_cause)
