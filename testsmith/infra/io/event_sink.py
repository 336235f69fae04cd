"""Event channel subscribers.

ConsoleEventSink renders progress for humans. SessionLogCollector captures a
plain-text transcript of selected tasks for embedding in execution reports.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from testsmith.core.events import (
    CompletedEvent,
    FileWriteEvent,
    LogEvent,
    PhaseEvent,
    StartedEvent,
)
from testsmith.infra.io.console import Colors, log, log_agent_text, log_verbose

if TYPE_CHECKING:
    from collections.abc import Callable

    from testsmith.core.events import TestGenEvent


class ConsoleEventSink:
    """Subscriber that prints events with the console helpers.

    Example:
        channel = EventChannel()
        channel.subscribe(ConsoleEventSink())
    """

    def __call__(self, event: TestGenEvent) -> None:
        if isinstance(event, StartedEvent):
            detail = f" ({event.detail})" if event.detail else ""
            log("→", f"{event.label}{detail}", Colors.BLUE, task_id=event.task_id)
        elif isinstance(event, LogEvent):
            self._on_log(event)
        elif isinstance(event, FileWriteEvent):
            stats = _write_stats(event)
            log("✎", f"{event.path}{stats}", Colors.CYAN, task_id=event.task_id)
        elif isinstance(event, PhaseEvent):
            log("◦", event.phase_label, Colors.MAGENTA, task_id=event.task_id)
        elif isinstance(event, CompletedEvent):
            self._on_completed(event)

    @staticmethod
    def _on_log(event: LogEvent) -> None:
        if event.level == "error":
            log("✗", event.message, Colors.RED, task_id=event.task_id)
        elif event.level == "warn":
            log("⚠", event.message, Colors.YELLOW, task_id=event.task_id)
        elif "\n" in event.message:
            log_verbose("◦", event.message, task_id=event.task_id)
        else:
            log_agent_text(event.message, event.task_id)

    @staticmethod
    def _on_completed(event: CompletedEvent) -> None:
        if event.exit_code == 0:
            log("✓", "done (exit=0)", Colors.GREEN, task_id=event.task_id)
        elif event.exit_code is None:
            log("○", "stopped (exit=null)", Colors.YELLOW, task_id=event.task_id)
        else:
            log("✗", f"failed (exit={event.exit_code})", Colors.RED, task_id=event.task_id)


def _write_stats(event: FileWriteEvent) -> str:
    parts = []
    if event.lines_created is not None:
        parts.append(f"lines={event.lines_created}")
    if event.bytes_written is not None:
        parts.append(f"bytes={event.bytes_written}")
    return f" ({', '.join(parts)})" if parts else ""


def format_event_line(event: TestGenEvent) -> str:
    """Plain-text transcript line for one event."""
    iso = (
        datetime.fromtimestamp(event.timestamp_ms / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
    head = f"[{iso}] [{event.task_id}]"
    if isinstance(event, StartedEvent):
        detail = f" ({event.detail})" if event.detail else ""
        return f"{head} START {event.label}{detail}"
    if isinstance(event, LogEvent):
        lines = event.message.splitlines() or [""]
        first = f"{head} {event.level.upper()} {lines[0]}"
        return "\n".join([first, *(f"  {line}" for line in lines[1:])])
    if isinstance(event, FileWriteEvent):
        return f"{head} WRITE {event.path}{_write_stats(event)}"
    if isinstance(event, PhaseEvent):
        return f"{head} PHASE {event.phase.value}: {event.phase_label}"
    exit_text = "null" if event.exit_code is None else str(event.exit_code)
    return f"{head} DONE exit={exit_text}"


class SessionLogCollector:
    """Captures transcript lines for events accepted by ``predicate``."""

    def __init__(self, predicate: Callable[[TestGenEvent], bool]):
        self._predicate = predicate
        self._lines: list[str] = []

    def __call__(self, event: TestGenEvent) -> None:
        if self._predicate(event):
            self._lines.append(format_event_line(event))

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def text(self) -> str:
        return "\n".join(self._lines)

    @classmethod
    def for_task_prefix(cls, prefix: str) -> SessionLogCollector:
        """Collector for ``prefix`` and its sub-tasks (``<prefix>-agent``)."""
        return cls(
            lambda e: e.task_id == prefix or e.task_id.startswith(f"{prefix}-")
        )
