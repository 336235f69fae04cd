"""Drive one agent run to completion through the event channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from testsmith.core.events import CompletedEvent, LogEvent

if TYPE_CHECKING:
    from collections.abc import Callable

    from testsmith.core.cancellation import CancellationToken
    from testsmith.core.events import EventChannel, TestGenEvent
    from testsmith.core.protocols import AgentProvider, AgentRunOptions, RunningTask

logger = logging.getLogger(__name__)


@dataclass
class AgentRunOutcome:
    """Result of waiting for an agent run.

    Attributes:
        exit_code: The run's exit code; None on timeout, cancellation, or
            when the provider reported none.
        log_lines: Messages of every LogEvent the run published, in order.
        timed_out: True when the wall-clock timeout fired.
        cancelled: True when the cancellation token fired first.
    """

    exit_code: int | None
    log_lines: list[str] = field(default_factory=list)
    timed_out: bool = False
    cancelled: bool = False

    @property
    def raw_log(self) -> str:
        return "\n".join(self.log_lines)


async def run_provider_to_completion(
    provider: AgentProvider,
    options: AgentRunOptions,
    *,
    channel: EventChannel,
    timeout_ms: int | None = None,
    token: CancellationToken | None = None,
    on_running_task: Callable[[RunningTask], None] | None = None,
) -> AgentRunOutcome:
    """Start ``options`` on ``provider`` and wait for its CompletedEvent.

    On timeout an error LogEvent is published, the handle is disposed, and
    the outcome carries ``exit_code=None``. Cancellation through ``token``
    disposes the handle and stops waiting the same way; the backend may keep
    running on its own.
    """
    task_id = options.task_id
    loop = asyncio.get_running_loop()
    done: asyncio.Future[int | None] = loop.create_future()
    log_lines: list[str] = []

    def on_event(event: TestGenEvent) -> None:
        if event.task_id != task_id:
            return
        if isinstance(event, LogEvent):
            log_lines.append(event.message)
        elif isinstance(event, CompletedEvent) and not done.done():
            done.set_result(event.exit_code)

    cancelled = asyncio.Event()
    unsubscribe = channel.subscribe(on_event)
    remove_cancel_callback = (
        token.add_callback(cancelled.set) if token is not None else None
    )
    handle: RunningTask | None = None
    try:
        handle = provider.run(options)
        if on_running_task is not None:
            on_running_task(handle)

        timeout_s = timeout_ms / 1000 if timeout_ms and timeout_ms > 0 else None
        cancel_wait = asyncio.ensure_future(cancelled.wait())
        try:
            finished, _ = await asyncio.wait(
                {done, cancel_wait},
                timeout=timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_wait.cancel()

        if done in finished:
            return AgentRunOutcome(exit_code=done.result(), log_lines=log_lines)

        if cancel_wait in finished or cancelled.is_set():
            logger.info("Agent run %s cancelled", task_id)
            _dispose(handle)
            return AgentRunOutcome(exit_code=None, log_lines=log_lines, cancelled=True)

        channel.log(
            task_id,
            "error",
            f"Agent run timed out after {timeout_ms}ms; stopping it.",
        )
        _dispose(handle)
        return AgentRunOutcome(exit_code=None, log_lines=log_lines, timed_out=True)
    finally:
        if remove_cancel_callback is not None:
            remove_cancel_callback()
        unsubscribe()


def _dispose(handle: RunningTask | None) -> None:
    if handle is None:
        return
    try:
        handle.dispose()
    except Exception as e:
        logger.debug("dispose() failed for %s: %s", handle.task_id, e)
