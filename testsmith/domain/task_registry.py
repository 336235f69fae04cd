"""Registry of in-flight test generation sessions.

The registry is an explicitly constructed service owned by the application
context (CLI or test), never a module-level singleton. It exists for
observability and for routing user cancellation to the right handle;
correctness of cancellation comes from the CancellationToken each session
carries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from testsmith.core.events import now_ms

if TYPE_CHECKING:
    from collections.abc import Callable

    from testsmith.core.cancellation import CancellationToken
    from testsmith.core.events import Phase
    from testsmith.core.protocols import RunningTask

logger = logging.getLogger(__name__)


@dataclass
class ManagedTask:
    task_id: str
    label: str
    handle: RunningTask
    token: CancellationToken | None = None
    started_at_ms: int = field(default_factory=now_ms)
    cancelled: bool = False
    phase: Phase | None = None
    phase_label: str | None = None


class TaskRegistry:
    """In-memory map of task id to ManagedTask.

    All mutation happens on the event loop thread, so no locking is needed.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, ManagedTask] = {}
        self._listeners: list[Callable[[], None]] = []

    def register(
        self,
        task_id: str,
        label: str,
        handle: RunningTask,
        token: CancellationToken | None = None,
    ) -> ManagedTask:
        """Register a task. Re-registering the same id replaces the entry."""
        task = ManagedTask(task_id=task_id, label=label, handle=handle, token=token)
        self._tasks[task_id] = task
        self._notify()
        return task

    def unregister(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is not None:
            self._notify()

    def update_running_task(self, task_id: str, handle: RunningTask) -> None:
        """Point the entry at the handle of the currently running agent step."""
        task = self._tasks.get(task_id)
        if task is not None:
            task.handle = handle

    def update_phase(self, task_id: str, phase: Phase, phase_label: str) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        task.phase = phase
        task.phase_label = phase_label
        self._notify()

    def get(self, task_id: str) -> ManagedTask | None:
        return self._tasks.get(task_id)

    def get_current_phase_label(self, task_id: str) -> str | None:
        task = self._tasks.get(task_id)
        return task.phase_label if task else None

    def cancel(self, task_id: str) -> bool:
        """Flag a task cancelled and dispose its running handle.

        The entry stays registered until the owning session unregisters it.

        Returns:
            False if no such task is registered.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.cancelled = True
        if task.token is not None:
            task.token.cancel()
        try:
            task.handle.dispose()
        except Exception as e:
            logger.debug("dispose() failed for %s: %s", task_id, e)
        self._notify()
        return True

    def cancel_all(self) -> int:
        """Cancel every registered task. Returns how many were cancelled."""
        task_ids = list(self._tasks)
        for task_id in task_ids:
            self.cancel(task_id)
        return len(task_ids)

    def is_cancelled(self, task_id: str) -> bool:
        """True if the task was cancelled or is no longer registered."""
        task = self._tasks.get(task_id)
        if task is None:
            return True
        return task.cancelled

    def is_running(self, task_id: str) -> bool:
        return task_id in self._tasks

    def running_task_ids(self) -> list[str]:
        return list(self._tasks)

    @property
    def running_count(self) -> int:
        return len(self._tasks)

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener`` whenever the set of tasks or their phase changes."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.debug("Task registry listener failed: %s", e)
