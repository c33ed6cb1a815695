"""Push delivery outcome metrics."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional


@dataclass(frozen=True)
class DeliveryFailure:
    endpoint: str
    notification_id: str
    notification_title: str
    source: str
    priority: str
    error: str
    attempts: int
    failed_at: datetime
    status_code: Optional[int] = None
    root_cause: str = "unknown"


@dataclass
class DeliveryMetrics:
    """Attempted/delivered/failed/dropped counters with a bounded failure log."""

    max_recent_failures: int = 50
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    dropped: int = 0
    suppressed: int = 0
    total_retries: int = 0
    recent_failures: Deque[DeliveryFailure] = field(default_factory=deque)

    def record_attempt(self, retries: int = 0) -> None:
        self.attempted += 1
        self.total_retries += retries

    def record_delivered(self) -> None:
        self.delivered += 1

    def record_failure(self, failure: DeliveryFailure, dropped_subscription: bool = False) -> None:
        self.failed += 1
        if dropped_subscription:
            self.dropped += 1
        self.recent_failures.appendleft(failure)
        while len(self.recent_failures) > self.max_recent_failures:
            self.recent_failures.pop()

    def record_suppressed(self) -> None:
        self.suppressed += 1

    def summary(self) -> dict:
        """Counters plus delivery rate, most recent failures first."""

        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "dropped": self.dropped,
            "suppressed": self.suppressed,
            "total_retries": self.total_retries,
            "delivery_rate": self.delivered / self.attempted if self.attempted else 0.0,
            "recent_failures": list(self.recent_failures),
        }
