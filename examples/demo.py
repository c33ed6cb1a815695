"""Demo script for nudge-engine: one agent, a few deadlines, one poll cycle."""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nudge_engine.agents import AgentContext, BaseAgent
from nudge_engine.delivery import LogChannel, PushDispatcher
from nudge_engine.orchestrator import Orchestrator
from nudge_engine.resilience import ResiliencePolicy
from nudge_engine.schema import PushSubscription, TrackedItem
from nudge_engine.simulation import SimulatedClock
from nudge_engine.store import RuntimeStore
from nudge_engine.telemetry import setup_logging


class JournalAgent(BaseAgent):
    name = "notes"
    interval_seconds = 3600

    async def run(self, ctx: AgentContext) -> None:
        ctx.emit(self.event("note.prompt", {"prompt": "What went well today?"}, priority="low"))


async def demo() -> None:
    clock = SimulatedClock(datetime(2025, 3, 3, 13, 30, tzinfo=timezone.utc))
    now = clock.now

    store = RuntimeStore(clock=clock)
    await store.add_subscription(PushSubscription(endpoint="log://demo"))
    await store.add_item(TrackedItem("a1", "Problem set 4", now - timedelta(hours=2), "medium", course="Algorithms"))
    await store.add_item(TrackedItem("d1", "Lab report", now + timedelta(hours=20), "medium", course="Databases"))

    dispatcher = PushDispatcher(store, LogChannel(), ResiliencePolicy("log"), clock=clock)
    orchestrator = Orchestrator(store, agents=[JournalAgent()], dispatcher=dispatcher, clock=clock)

    await orchestrator.run_agent(JournalAgent())
    await orchestrator.drain_events()
    print("Reminders sent:", await orchestrator.run_reminder_sweep())
    print("Escalations sent:", await orchestrator.run_proactive_sweep())
    print("Queued:", [(entry.notification.title, entry.scheduled_for.isoformat()) for entry in await store.get_scheduled()])

    clock.advance(timedelta(hours=24))
    print("Fired:", await orchestrator.process_scheduled_notifications())
    for notification in await store.get_notifications():
        print(f"[{notification.priority}] {notification.title}: {notification.message}")
    print("Metrics:", store.delivery_metrics.summary())


def main() -> None:
    setup_logging("WARNING")
    asyncio.run(demo())


if __name__ == "__main__":
    main()
