"""Typed, append-only event channel for session progress.

Every component that reports progress publishes one of the event variants
below to a shared ``EventChannel``. Subscribers (console output, session log
capture, the agent runner waiting for completion) fan out from the channel
instead of receiving callbacks threaded through every call level.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

LogLevel = Literal["info", "warn", "error"]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Phase(Enum):
    """Session phases, in the order a session moves through them."""

    PREPARING = "preparing"
    PERSPECTIVES = "perspectives"
    GENERATING = "generating"
    RUNNING_TESTS = "running-tests"


@dataclass(frozen=True)
class StartedEvent:
    task_id: str
    label: str
    detail: str | None = None
    timestamp_ms: int = field(default_factory=now_ms)

    kind: ClassVar[str] = "started"


@dataclass(frozen=True)
class LogEvent:
    task_id: str
    level: LogLevel
    message: str
    timestamp_ms: int = field(default_factory=now_ms)

    kind: ClassVar[str] = "log"


@dataclass(frozen=True)
class FileWriteEvent:
    task_id: str
    path: str
    lines_created: int | None = None
    bytes_written: int | None = None
    timestamp_ms: int = field(default_factory=now_ms)

    kind: ClassVar[str] = "file_write"


@dataclass(frozen=True)
class PhaseEvent:
    task_id: str
    phase: Phase
    phase_label: str
    timestamp_ms: int = field(default_factory=now_ms)

    kind: ClassVar[str] = "phase"


@dataclass(frozen=True)
class CompletedEvent:
    """Terminal event for a task.

    ``exit_code`` is None when the task was cancelled, timed out, or never
    produced an exit status. None is kept distinct from both 0 and non-zero.
    """

    task_id: str
    exit_code: int | None
    timestamp_ms: int = field(default_factory=now_ms)

    kind: ClassVar[str] = "completed"


TestGenEvent = StartedEvent | LogEvent | FileWriteEvent | PhaseEvent | CompletedEvent


class EventChannel:
    """Append-only event log with synchronous subscriber fan-out.

    Publication happens on the event loop thread, so subscribers observe
    events in publication order. A subscriber that raises is logged and
    skipped; remaining subscribers still receive the event.
    """

    def __init__(self) -> None:
        self._history: list[TestGenEvent] = []
        self._subscribers: list[Callable[[TestGenEvent], None]] = []

    @property
    def history(self) -> tuple[TestGenEvent, ...]:
        return tuple(self._history)

    def publish(self, event: TestGenEvent) -> None:
        self._history.append(event)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception("Event subscriber failed for %s event", event.kind)

    def subscribe(
        self, subscriber: Callable[[TestGenEvent], None]
    ) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def log(self, task_id: str, level: LogLevel, message: str) -> None:
        """Shorthand for publishing a LogEvent."""
        self.publish(LogEvent(task_id=task_id, level=level, message=message))

    def events_for(self, task_id: str) -> list[TestGenEvent]:
        return [e for e in self._history if e.task_id == task_id]
