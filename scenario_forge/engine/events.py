"""Structured run events and the sinks that record them."""

import asyncio
import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class EventSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class EventType:
    """Event type names emitted by the orchestrator."""

    RUN_START = "RUN.START"
    RUN_END = "RUN.END"
    RUN_ABORTED = "RUN.ABORTED"
    TURN_END = "TURN.END"
    LLM_USER_ERROR = "LLM.USER_ERROR"
    LLM_RESPONDER_ERROR = "LLM.RESPONDER_ERROR"
    SAFETY_ESCALATED = "SAFETY.ESCALATED"
    PERSIST_ERROR = "PERSIST.ERROR"


class Event(BaseModel):
    """One entry of the append-only run event log."""

    level: EventLevel
    type: str
    run_id: Optional[str] = None
    scenario_id: Optional[str] = None
    profile_id: Optional[str] = None
    turn_index: Optional[int] = None
    severity: Optional[EventSeverity] = None
    meta: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


@runtime_checkable
class EventSink(Protocol):
    """Destination for run events.

    The orchestrator awaits every call before moving past the step that
    produced the event, so sinks see events in persisted-state order.
    """

    async def log_event(self, event: Event) -> None:
        ...


class InMemoryEventSink:
    """Keeps events in a list. Useful for tests and local runs."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def log_event(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[Event]:
        """Get all recorded events of one type."""
        return [e for e in self.events if e.type == event_type]

    def at_level(self, level: EventLevel) -> list[Event]:
        return [e for e in self.events if e.level == level]


_LOGGING_LEVELS = {
    EventLevel.DEBUG: logging.DEBUG,
    EventLevel.INFO: logging.INFO,
    EventLevel.WARN: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}


class LoggingEventSink:
    """Forwards events to stdlib logging."""

    def __init__(self, logger_name: str = "scenario_forge.events"):
        self._logger = logging.getLogger(logger_name)

    async def log_event(self, event: Event) -> None:
        where = f"run={event.run_id}"
        if event.turn_index is not None:
            where += f" turn={event.turn_index}"
        severity = f" [{event.severity.value}]" if event.severity else ""
        self._logger.log(
            _LOGGING_LEVELS[event.level],
            f"{event.type}{severity} {where} {event.meta}",
        )


class JsonlEventSink:
    """Appends events as JSON lines to a file."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def log_event(self, event: Event) -> None:
        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False, default=str)
        async with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
