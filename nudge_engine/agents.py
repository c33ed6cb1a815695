"""Producer agent boundary: periodically run units that emit events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from nudge_engine.schema import Event, make_id
from nudge_engine.store import RuntimeStore


@dataclass(frozen=True)
class AgentContext:
    """Handed to ``BaseAgent.run``; ``emit`` pushes onto the orchestrator channel."""

    emit: Callable[[Event], None]
    store: RuntimeStore


class BaseAgent(ABC):
    name: str = "agent"
    interval_seconds: float = 60.0

    @abstractmethod
    async def run(self, ctx: AgentContext) -> None:
        ...

    def event(
        self,
        event_type: str,
        payload: dict[str, Any],
        priority: str = "medium",
        timestamp: Optional[datetime] = None,
    ) -> Event:
        return Event(
            id=make_id(self.name),
            source=self.name,
            event_type=event_type,
            priority=priority,
            timestamp=timestamp or datetime.now(timezone.utc),
            payload=payload,
        )
