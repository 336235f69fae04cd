"""Scripted AgentProvider fake.

Each run replays a script on the event channel the same way a real provider
does: StartedEvent, optional file writes, LogEvents, then exactly one
CompletedEvent. Scripts are matched by task id, with a default fallback.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from testsmith.core.events import CompletedEvent, FileWriteEvent, StartedEvent

if TYPE_CHECKING:
    from pathlib import Path

    from testsmith.core.protocols import AgentRunOptions


@dataclass
class AgentScript:
    """What one fake agent run does.

    Attributes:
        log_lines: Messages published as info LogEvents, in order.
        exit_code: Exit code carried by the CompletedEvent.
        files: Files written relative to the run's workspace root.
        hang: Never complete; only dispose() (or test teardown) stops it.
    """

    log_lines: list[str] = field(default_factory=list)
    exit_code: int | None = 0
    files: dict[str, str] = field(default_factory=dict)
    hang: bool = False


class FakeRunningTask:
    def __init__(self, task_id: str, task: asyncio.Task[None]):
        self._task_id = task_id
        self._task = task
        self.dispose_count = 0

    @property
    def task_id(self) -> str:
        return self._task_id

    def dispose(self) -> None:
        self.dispose_count += 1
        if not self._task.done():
            self._task.cancel()


class FakeAgentProvider:
    """AgentProvider that replays AgentScripts.

    Example:
        provider = FakeAgentProvider()
        provider.script("gen-1", log_lines=["done"], files={"tests/test_a.py": "..."})
        provider.default = AgentScript(exit_code=0)

    Set ``fail_run`` to make every ``run()`` call raise it.
    """

    provider_id = "fake"

    def __init__(self, default: AgentScript | None = None):
        self.default = default or AgentScript()
        self.scripts: dict[str, AgentScript] = {}
        self.runs: list[AgentRunOptions] = []
        self.handles: list[FakeRunningTask] = []
        self.fail_run: Exception | None = None

    def script(
        self,
        task_id: str,
        log_lines: list[str] | None = None,
        exit_code: int | None = 0,
        files: dict[str, str] | None = None,
        hang: bool = False,
    ) -> AgentScript:
        script = AgentScript(
            log_lines=list(log_lines or []),
            exit_code=exit_code,
            files=dict(files or {}),
            hang=hang,
        )
        self.scripts[task_id] = script
        return script

    def run(self, options: AgentRunOptions) -> FakeRunningTask:
        self.runs.append(options)
        if self.fail_run is not None:
            raise self.fail_run
        script = self.scripts.get(options.task_id, self.default)
        task = asyncio.get_running_loop().create_task(self._replay(options, script))
        handle = FakeRunningTask(options.task_id, task)
        self.handles.append(handle)
        return handle

    def runs_for(self, task_id: str) -> list[AgentRunOptions]:
        return [r for r in self.runs if r.task_id == task_id]

    @property
    def task_ids(self) -> list[str]:
        return [r.task_id for r in self.runs]

    async def _replay(self, options: AgentRunOptions, script: AgentScript) -> None:
        channel = options.channel
        task_id = options.task_id
        channel.publish(StartedEvent(task_id=task_id, label="agent"))
        await asyncio.sleep(0)
        for rel, content in script.files.items():
            _write(options.workspace_root / rel, content)
            channel.publish(
                FileWriteEvent(
                    task_id=task_id,
                    path=rel,
                    lines_created=len(content.splitlines()),
                    bytes_written=len(content.encode("utf-8")),
                )
            )
        for line in script.log_lines:
            channel.log(task_id, "info", line)
        if script.hang:
            await asyncio.Event().wait()
        channel.publish(CompletedEvent(task_id=task_id, exit_code=script.exit_code))


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
