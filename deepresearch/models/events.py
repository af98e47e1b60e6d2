from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    ENVIRONMENT = "environment"
    STATUS = "status"
    PROGRESS = "progress"
    PHASE_STARTED = "phase_started"
    QUERIES_PLANNED = "queries_planned"
    SEARCH_RESULT = "search_result"
    RESULT_EVALUATED = "result_evaluated"
    LEARNING_EXTRACTED = "learning_extracted"
    PHASE_COMPLETED = "phase_completed"
    RESEARCH_COMPLETE = "research_complete"
    SESSION_CLOSED = "session_closed"
    ERROR = "error"


# A run's stream ends with exactly one of these.
TERMINAL_EVENTS = frozenset(
    {EventType.RESEARCH_COMPLETE, EventType.SESSION_CLOSED, EventType.ERROR}
)


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)
    seq: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS

    @property
    def is_heartbeat(self) -> bool:
        return self.event == EventType.PROGRESS

    def payload(self) -> dict[str, Any]:
        return {**self.data, "seq": self.seq, "timestamp": self.timestamp}
