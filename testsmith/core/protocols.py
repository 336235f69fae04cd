"""Protocol definitions for testsmith collaborators.

The pipeline and orchestration layers depend on these protocols rather than
on concrete infra classes, so tests can inject in-memory fakes
(see tests/fakes) and alternative backends can be plugged in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from testsmith.core.events import EventChannel
    from testsmith.core.models import IsolatedCopy


@runtime_checkable
class RunningTask(Protocol):
    """Handle for an in-flight agent run."""

    @property
    def task_id(self) -> str: ...

    def dispose(self) -> None:
        """Stop the run. Must be safe to call more than once."""
        ...


@dataclass(frozen=True)
class AgentRunOptions:
    """Inputs for a single agent invocation.

    Attributes:
        task_id: Identifier stamped on every event the run publishes.
        workspace_root: Directory the agent works in.
        prompt: Full prompt text.
        channel: Event channel the provider publishes to.
        model: Model override; None uses the backend default.
        allow_write: Whether the agent may edit files and run commands
            without confirmation.
        allowed_tools: Optional allow-list of tool names.
    """

    task_id: str
    workspace_root: Path
    prompt: str
    channel: EventChannel
    model: str | None = None
    allow_write: bool = False
    allowed_tools: tuple[str, ...] | None = None


@runtime_checkable
class AgentProvider(Protocol):
    """Runs a prompt against a coding agent backend.

    ``run`` returns immediately. The provider publishes a ``StartedEvent``,
    any number of log/file-write events, and exactly one ``CompletedEvent``
    for ``options.task_id`` on ``options.channel``.
    """

    @property
    def provider_id(self) -> str: ...

    def run(self, options: AgentRunOptions) -> RunningTask: ...


@runtime_checkable
class IsolationManager(Protocol):
    """Creates and removes disposable working copies of a repository."""

    async def create_isolated_copy(
        self,
        source_root: Path,
        base_dir: Path,
        task_id: str,
        ref: str | None = None,
    ) -> IsolatedCopy:
        """Create an isolated copy. Raises on failure."""
        ...

    async def remove_isolated_copy(self, source_root: Path, isolated_dir: Path) -> None:
        """Remove an isolated copy. Never raises."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Transient user notifications and fire-and-forget choices."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    async def choose(self, message: str, actions: Sequence[str]) -> str | None:
        """Offer ``actions`` to the user. Returns the chosen one or None."""
        ...

    def open_path(self, path: Path) -> None: ...

    def copy_text(self, text: str) -> None: ...


@runtime_checkable
class CommandResultProtocol(Protocol):
    """Protocol for command execution results."""

    command: list[str] | str
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool

    @property
    def ok(self) -> bool: ...


@runtime_checkable
class CommandRunnerPort(Protocol):
    """Protocol for abstracting command execution.

    The canonical implementation is CommandRunner in
    testsmith/infra/tools/command_runner.py.
    """

    async def run_async(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResultProtocol:
        """Run a command asynchronously.

        Args:
            cmd: Command to run. Can be a list of strings or a shell string.
            env: Environment variables to set (merged with os.environ).
            timeout: Timeout for command execution in seconds.
            use_process_group: Whether to use process group for termination.
            shell: If True, run command through shell.
            cwd: Override working directory for this command.

        Returns:
            CommandResultProtocol with execution details.
        """
        ...
