"""Deterministic reminder-loop simulation for demos and offline benchmarks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np

from nudge_engine.orchestrator import Orchestrator
from nudge_engine.schema import PRIORITIES, TrackedItem
from nudge_engine.settings import AppConfig
from nudge_engine.store import RuntimeStore

_COURSES = ("Algorithms", "Databases", "Statistics", "Networks")


class SimulatedClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def _completion_probability(item: TrackedItem, reminded_at: datetime, reminder_count: int) -> float:
    """Daytime reminders on urgent items get answered more often; nagging wears off."""

    p = 0.25 + 0.1 * PRIORITIES.index(item.priority)
    if 9 <= reminded_at.hour <= 17:
        p += 0.2
    p -= 0.05 * max(0, reminder_count - 1)
    return float(np.clip(p, 0.05, 0.95))


async def simulate_reminder_history(
    n_items: int = 40,
    days: int = 10,
    seed: int = 42,
    start: Optional[datetime] = None,
    config: Optional[AppConfig] = None,
) -> RuntimeStore:
    """Run hourly reminder sweeps over synthetic deadlines and simulated replies.

    Each reminder gets a reply drawn from a seeded generator: ``complete``,
    ``working`` or no reply at all. The returned store holds the resulting
    items and reminder states.
    """

    rng = np.random.default_rng(seed)
    clock = SimulatedClock(start or datetime(2025, 1, 6, 8, tzinfo=timezone.utc))
    store = RuntimeStore(clock=clock)
    orchestrator = Orchestrator(store, config or AppConfig(), clock=clock)

    for index in range(n_items):
        due_in = timedelta(hours=int(rng.integers(1, max(2, (days - 1) * 24))))
        await store.add_item(
            TrackedItem(
                id=f"item-{index + 1}",
                title=f"Assignment {index + 1}",
                due_at=clock.now + due_in,
                priority=str(rng.choice(PRIORITIES[:3])),
                course=str(rng.choice(_COURSES)),
            )
        )

    for _ in range(days * 24):
        clock.advance(timedelta(hours=1))
        await orchestrator.run_reminder_sweep()
        for state in await store.get_all_reminder_states():
            if state.last_reminder_at != clock.now:
                continue
            item = await store.get_item(state.item_id, escalate=False)
            if item is None or item.completed:
                continue
            roll = rng.random()
            p_complete = _completion_probability(item, clock.now, state.reminder_count)
            if roll < p_complete:
                await store.confirm_status(item.id, True, clock.now)
            elif roll < p_complete + 0.2:
                await store.confirm_status(item.id, False, clock.now)

    return store
