"""Circuit breaker and exponential backoff policy for external dependencies.

One ``ResiliencePolicy`` exists per dependency name (a push channel, a sync
source). The policy never aborts work; ``can_attempt`` only declines to let a
new attempt start while the circuit is open.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from nudge_engine.settings import ResilienceConfig

LOGGER = logging.getLogger("nudge_engine.resilience")

ROOT_CAUSES = ("auth", "network", "rate_limit", "validation", "provider", "unknown")
SKIP_REASONS = ("backoff", "circuit_open")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_failure(status_code: Optional[int] = None, message: str = "") -> str:
    """Map a failed call to a coarse root cause."""

    lower = message.lower()
    if status_code == 429 or "rate limit" in lower or "429" in lower:
        return "rate_limit"
    if status_code in (401, 403) or "unauthorized" in lower or "forbidden" in lower:
        return "auth"
    if status_code is not None and 400 <= status_code < 500:
        return "validation"
    if status_code is not None and status_code >= 500:
        return "provider"
    if any(token in lower for token in ("network", "timeout", "timed out", "connection", "dns")):
        return "network"
    if "invalid" in lower or "validation" in lower:
        return "validation"
    return "unknown"


@dataclass(frozen=True)
class AttemptDecision:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class ResiliencePolicyState:
    """Snapshot of a dependency's failure bookkeeping."""

    dependency: str
    consecutive_failures: int
    circuit_open_until: Optional[datetime]
    next_attempt_at: Optional[datetime]
    last_error: Optional[str]
    last_root_cause: Optional[str]
    last_backoff_seconds: float
    last_success_at: Optional[datetime]
    last_failure_at: Optional[datetime]
    skip_counts: dict[str, int] = field(default_factory=dict)


class ResiliencePolicy:
    """Consecutive-failure tracker gating attempts against one dependency."""

    def __init__(
        self,
        dependency: str,
        options: Optional[ResilienceConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        opts = options or ResilienceConfig()
        self.dependency = dependency
        self.base_backoff = timedelta(seconds=opts.base_backoff_seconds)
        self.max_backoff = timedelta(seconds=max(opts.max_backoff_seconds, opts.base_backoff_seconds))
        self.failure_threshold = opts.circuit_failure_threshold
        self.circuit_open = timedelta(seconds=opts.circuit_open_seconds)
        self.jitter_ratio = opts.jitter_ratio
        self._rng = rng or random.Random()

        self.consecutive_failures = 0
        self.circuit_open_until: Optional[datetime] = None
        self.next_attempt_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_root_cause: Optional[str] = None
        self.last_backoff = timedelta(0)
        self.last_success_at: Optional[datetime] = None
        self.last_failure_at: Optional[datetime] = None
        self._skips = {reason: 0 for reason in SKIP_REASONS}

    def _with_jitter(self, delay: timedelta) -> timedelta:
        return delay + delay * (self.jitter_ratio * self._rng.random())

    def _prune_expired(self, now: datetime) -> None:
        if self.next_attempt_at is not None and self.next_attempt_at <= now:
            self.next_attempt_at = None
        if self.circuit_open_until is not None and self.circuit_open_until <= now:
            self.circuit_open_until = None
            if self.consecutive_failures >= self.failure_threshold:
                # half-open: allow a fresh attempt but remember part of the streak
                self.consecutive_failures = math.ceil(self.failure_threshold / 2)
                LOGGER.info("Circuit for %s is half-open", self.dependency)

    def can_attempt(self, now: Optional[datetime] = None) -> AttemptDecision:
        now = now or _utcnow()
        self._prune_expired(now)
        if self.circuit_open_until is not None and now < self.circuit_open_until:
            return AttemptDecision(allowed=False, reason="circuit_open")
        return AttemptDecision(allowed=True)

    def record_success(self, now: Optional[datetime] = None) -> None:
        self.consecutive_failures = 0
        self.last_success_at = now or _utcnow()
        self.last_error = None
        self.last_root_cause = None
        self.circuit_open_until = None
        self.next_attempt_at = None
        self.last_backoff = timedelta(0)

    def record_failure(
        self,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
        root_cause: str = "unknown",
    ) -> None:
        now = now or _utcnow()
        self.consecutive_failures += 1
        self.last_failure_at = now
        self.last_error = error or "Unknown failure"
        self.last_root_cause = root_cause if root_cause in ROOT_CAUSES else "unknown"

        delay = min(self.max_backoff, self.base_backoff * (2 ** self.consecutive_failures))
        self.last_backoff = self._with_jitter(delay)
        self.next_attempt_at = now + self.last_backoff

        if self.consecutive_failures >= self.failure_threshold:
            self.circuit_open_until = now + self._with_jitter(self.circuit_open)
            self.next_attempt_at = max(self.next_attempt_at, self.circuit_open_until)
            LOGGER.warning(
                "Circuit opened for %s after %d failures (until %s): %s",
                self.dependency,
                self.consecutive_failures,
                self.circuit_open_until.isoformat(),
                self.last_error,
            )
        else:
            LOGGER.info(
                "Failure %d for %s (%s); next attempt after %s",
                self.consecutive_failures,
                self.dependency,
                self.last_root_cause,
                self.next_attempt_at.isoformat(),
            )

    def record_skip(self, reason: str) -> None:
        key = reason if reason in SKIP_REASONS else "backoff"
        self._skips[key] += 1
        LOGGER.debug("Skipped attempt for %s (%s)", self.dependency, reason)

    def state(self, now: Optional[datetime] = None) -> ResiliencePolicyState:
        self._prune_expired(now or _utcnow())
        return ResiliencePolicyState(
            dependency=self.dependency,
            consecutive_failures=self.consecutive_failures,
            circuit_open_until=self.circuit_open_until,
            next_attempt_at=self.next_attempt_at,
            last_error=self.last_error,
            last_root_cause=self.last_root_cause,
            last_backoff_seconds=self.last_backoff.total_seconds(),
            last_success_at=self.last_success_at,
            last_failure_at=self.last_failure_at,
            skip_counts=dict(self._skips),
        )


class PolicyRegistry:
    """Hands out one shared policy per dependency name."""

    def __init__(self, options: Optional[ResilienceConfig] = None, rng: Optional[random.Random] = None) -> None:
        self._options = options or ResilienceConfig()
        self._rng = rng
        self._policies: dict[str, ResiliencePolicy] = {}

    def get(self, dependency: str) -> ResiliencePolicy:
        policy = self._policies.get(dependency)
        if policy is None:
            policy = ResiliencePolicy(dependency, self._options, rng=self._rng)
            self._policies[dependency] = policy
        return policy

    def states(self, now: Optional[datetime] = None) -> list[ResiliencePolicyState]:
        return [policy.state(now) for _, policy in sorted(self._policies.items())]
