"""Scheduling loop driving producers, sweeps and notification routing."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from nudge_engine.agents import AgentContext, BaseAgent
from nudge_engine.delivery import PushDispatcher
from nudge_engine.digest import build_digest_notification, is_digest_candidate, resolve_next_digest_window
from nudge_engine.dispatch import should_dispatch
from nudge_engine.recurrence import next_occurrence
from nudge_engine.schema import (
    CalendarEvent,
    Event,
    Notification,
    NotificationDraft,
    ScheduledNotification,
    make_id,
    priority_value,
)
from nudge_engine.settings import AppConfig
from nudge_engine.store import RuntimeStore
from nudge_engine.timing import OptimalTimeContext, calculate_optimal_notification_time
from nudge_engine.translator import translate

LOGGER = logging.getLogger("nudge_engine.orchestrator")

_STOP = object()


class CalendarSource(Protocol):
    async def get_schedule_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        ...


class PeriodicTask:
    """Cancellable periodic handle that never re-enters its own callback.

    A tick that comes due while the previous tick is still running is skipped.
    Cancelling stops future ticks; a tick already running is left to finish.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._run_immediately = run_immediately
        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self.in_flight = False
        self.skipped_ticks = 0

    def start(self) -> None:
        self._loop_task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval_seconds)
        while True:
            self._tick()
            await asyncio.sleep(self.interval_seconds)

    def _tick(self) -> None:
        if self.in_flight:
            self.skipped_ticks += 1
            LOGGER.debug("Skipping %s tick; previous run still in flight", self.name)
            return
        self.in_flight = True
        self._current = asyncio.create_task(self._run_once())

    async def _run_once(self) -> None:
        try:
            await self._callback()
        except Exception:
            LOGGER.exception("Periodic task %s failed", self.name)
        finally:
            self.in_flight = False

    def cancel(self) -> bool:
        if self._loop_task is None or self._loop_task.done():
            return False
        self._loop_task.cancel()
        return True

    async def wait(self) -> None:
        """Wait for the loop to unwind and any in-flight tick to finish."""
        tasks = [task for task in (self._loop_task, self._current) if task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class Orchestrator:
    """Runs producer agents and internal sweeps on independent timers."""

    def __init__(
        self,
        store: RuntimeStore,
        config: Optional[AppConfig] = None,
        agents: Sequence[BaseAgent] = (),
        *,
        dispatcher: Optional[PushDispatcher] = None,
        calendar: Optional[CalendarSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._config = config or AppConfig()
        self._agents = list(agents)
        self._dispatcher = dispatcher
        self._calendar = calendar
        tz = self._config.tzinfo()
        self._clock = clock or (lambda: datetime.now(tz))
        self._handles: list[PeriodicTask] = []
        self._events_handle: Optional[PeriodicTask] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._escalations_sent: set[tuple[str, str]] = set()

    @property
    def running(self) -> bool:
        return bool(self._handles)

    @property
    def handles(self) -> list[PeriodicTask]:
        return list(self._handles)

    async def start(self) -> int:
        """Boot agents and sweeps; returns the number of periodic handles started."""
        if self._handles:
            raise RuntimeError("Orchestrator already running")

        self._escalations_sent.clear()
        await self._emit_boot_notification()

        for agent in self._agents:
            self._add_handle(f"agent:{agent.name}", agent.interval_seconds, self._agent_runner(agent))

        timings = self._config.orchestrator
        # the consumer blocks on the queue; its timer only restarts it after a crash
        self._events_handle = self._add_handle("events", 1.0, self._drain_forever)
        self._add_handle("reminders", timings.reminder_check_seconds, self.run_reminder_sweep)
        self._add_handle("scheduled", timings.scheduled_poll_seconds, self.process_scheduled_notifications)
        if timings.proactive_check_seconds:
            self._add_handle("proactive", timings.proactive_check_seconds, self.run_proactive_sweep)

        LOGGER.info("Orchestrator started with %d agents and %d timers", len(self._agents), len(self._handles))
        return len(self._handles)

    async def stop(self) -> int:
        """Cancel every handle created by ``start``; returns how many were cancelled.

        Events already queued are still handled; an event being delivered is
        never interrupted.
        """
        handles, self._handles = self._handles, []
        cancelled = sum(1 for handle in handles if handle.cancel())
        consumer, self._events_handle = self._events_handle, None
        if consumer is not None and consumer.in_flight:
            self._queue.put_nowait(_STOP)
        for handle in handles:
            await handle.wait()
        await self.drain_events()
        if handles:
            LOGGER.info("Orchestrator stopped; cancelled %d timers", cancelled)
        return cancelled

    def _add_handle(self, name: str, interval: float, callback: Callable[[], Awaitable[None]]) -> PeriodicTask:
        handle = PeriodicTask(name, interval, callback)
        handle.start()
        self._handles.append(handle)
        return handle

    # producers ---------------------------------------------------------

    def _agent_runner(self, agent: BaseAgent) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            await self.run_agent(agent)

        return _run

    async def run_agent(self, agent: BaseAgent) -> None:
        """Run one producer; a crash marks it ``error`` and raises a notification."""
        self._store.mark_agent_running(agent.name)
        try:
            await agent.run(AgentContext(emit=self.emit, store=self._store))
        except Exception as exc:
            self._store.mark_agent_error(agent.name)
            LOGGER.exception("Agent %s failed", agent.name)
            await self._deliver(
                NotificationDraft(
                    source="orchestrator",
                    title=f"{agent.name} failed",
                    message=str(exc) or "unknown runtime error",
                    priority="high",
                ),
                self._clock(),
            )
            return
        self._store.mark_agent_idle(agent.name)

    def emit(self, event: Event) -> None:
        """Queue *event* for the consumer; safe to call from any producer."""
        self._queue.put_nowait(event)

    async def drain_events(self) -> int:
        """Handle every queued event; returns how many were processed."""
        processed = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is _STOP:
                continue
            await self._handle_queued(event)
            processed += 1
        return processed

    async def _drain_forever(self) -> None:
        queue = self._queue
        while True:
            event = await queue.get()
            if event is _STOP:
                return
            await self._handle_queued(event)

    async def _handle_queued(self, event: Event) -> None:
        try:
            await self.handle_event(event)
        except Exception:
            LOGGER.exception("Failed to handle event %s (%s)", event.id, event.event_type)

    # routing -----------------------------------------------------------

    async def handle_event(self, event: Event, category: Optional[str] = None) -> Optional[Notification]:
        """Translate an event and deliver it now or queue it for a better time.

        *category* is stored on a deferred entry; ``direct`` keeps it out of digests.
        """
        await self._store.record_event(event)
        context = await self._store.get_user_context()
        draft = translate(event, context)
        if draft is None:
            return None

        now = self._clock()
        if priority_value(draft.priority) >= priority_value("high"):
            return await self._deliver(draft, now)

        timing = OptimalTimeContext(
            current_time=now,
            user_context=context,
            schedule_events=await self._busy_periods(now),
            reminder_history=await self._store.get_all_reminder_states(),
        )
        deliver_at = calculate_optimal_notification_time(timing)
        if deliver_at <= now:
            return await self._deliver(draft, now)

        entry = await self._store.schedule_notification(
            draft, deliver_at, event_id=event.id, category=category
        )
        LOGGER.debug("Deferred %s (%s) to %s", event.event_type, entry.id if entry else "-", deliver_at.isoformat())
        return None

    async def queue_for_digest(
        self, draft: NotificationDraft, event_id: Optional[str] = None
    ) -> Optional[ScheduledNotification]:
        """Hold *draft* for the next morning or evening digest."""
        digest = self._config.digest
        window = resolve_next_digest_window(self._clock(), digest.morning_hour, digest.evening_hour)
        return await self._store.schedule_notification(draft, window, event_id=event_id, category="digest")

    async def _busy_periods(self, now: datetime) -> list[CalendarEvent]:
        horizon = now + timedelta(hours=24)
        events: list[CalendarEvent] = []
        if self._calendar is not None:
            events.extend(await self._calendar.get_schedule_events(now, horizon))
        for start, end in await self._store.get_active_mutes(now):
            begins = max(start, now)
            minutes = int((end - begins).total_seconds() // 60)
            events.append(CalendarEvent(start_time=begins, duration_minutes=minutes, title="muted"))
        return events

    async def _deliver(self, draft: NotificationDraft, now: datetime) -> Optional[Notification]:
        preferences = await self._store.get_preferences()
        if not should_dispatch(draft, preferences, now):
            self._store.delivery_metrics.record_suppressed()
            LOGGER.debug("Suppressed %s notification '%s'", draft.priority, draft.title)
            return None

        notification = await self._store.push_notification(draft, now)
        if self._dispatcher is not None:
            await self._dispatcher.deliver(notification)
        return notification

    async def _emit_boot_notification(self) -> None:
        await self._deliver(
            NotificationDraft(
                source="orchestrator",
                title="Nudge engine online",
                message="All agents scheduled and running.",
                priority="medium",
            ),
            self._clock(),
        )

    # sweeps ------------------------------------------------------------

    async def run_reminder_sweep(self) -> int:
        """Emit status checks for overdue items whose cooldown has elapsed."""
        now = self._clock()
        cooldown = self._config.reminders.cooldown_minutes
        sent = 0
        for item in await self._store.get_overdue_items_requiring_reminder(now, cooldown):
            state = await self._store.claim_reminder(item.id, now, cooldown)
            if state is None:
                continue
            await self.handle_event(
                Event(
                    id=make_id("orchestrator"),
                    source="orchestrator",
                    event_type="assignment.overdue",
                    priority=item.priority,
                    timestamp=now,
                    payload={
                        "itemId": item.id,
                        "task": item.title,
                        "course": item.course or "your course",
                        "reminderCount": state.reminder_count,
                    },
                ),
                category="direct",
            )
            sent += 1
        return sent

    async def run_proactive_sweep(self) -> int:
        """Emit one deadline alert per item each time its escalated priority rises."""
        now = self._clock()
        stored = {item.id: item.priority for item in await self._store.list_items(now, escalate=False)}
        sent = 0
        for item in await self._store.list_items(now):
            if item.completed or item.due_at <= now:
                continue
            if priority_value(item.priority) <= priority_value(stored.get(item.id, item.priority)):
                continue
            key = (item.id, item.priority)
            if key in self._escalations_sent:
                continue
            self._escalations_sent.add(key)
            await self.handle_event(
                Event(
                    id=make_id("orchestrator"),
                    source="orchestrator",
                    event_type="assignment.deadline",
                    priority=item.priority,
                    timestamp=now,
                    payload={
                        "itemId": item.id,
                        "task": item.title,
                        "course": item.course or "your course",
                        "dueAt": item.due_at.isoformat(),
                    },
                )
            )
            sent += 1
        return sent

    async def process_scheduled_notifications(self) -> int:
        """Deliver due queue entries, batching digest candidates; returns entries fired."""
        now = self._clock()
        due = await self._store.get_due_notifications(now)
        if not due:
            return 0

        # dequeue before delivering; an entry another poll already removed is skipped
        claimed = []
        for entry in due:
            if await self._store.remove_scheduled(entry.id):
                claimed.append(entry)
                await self._rearm(entry, now)
        due = claimed

        digest_entries = [entry for entry in due if is_digest_candidate(entry)]
        for entry in due:
            if not is_digest_candidate(entry):
                await self._deliver(entry.notification, now)

        digest = build_digest_notification(digest_entries, now)
        if digest is not None:
            await self._deliver(digest, now)

        LOGGER.debug("Fired %d scheduled notifications (%d batched)", len(due), len(digest_entries))
        return len(due)

    async def _rearm(self, entry: ScheduledNotification, now: datetime) -> None:
        if entry.recurrence is None:
            return
        following = next_occurrence(entry.scheduled_for, entry.recurrence, now, anchor_day=entry.anchor_day)
        if following is None:
            LOGGER.info("Recurrence of %s stopped after %s", entry.id, entry.scheduled_for.isoformat())
            return
        await self._store.schedule_notification(
            entry.notification,
            following,
            event_id=entry.event_id,
            recurrence=entry.recurrence,
            category=entry.category,
            anchor_day=entry.anchor_day,
        )
