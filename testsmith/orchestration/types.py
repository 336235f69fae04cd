"""Shared types for the session orchestrator and its factory.

Design principles:
- SessionConfig: what to generate and where (scalar inputs)
- SessionDependencies: protocol implementations (DI for testability)
- HostContext: host-provided storage, required for worktree isolation
- SessionOutcome: what a finished session reports back to the caller
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - needed at runtime for dataclass field
from typing import TYPE_CHECKING

from testsmith.core.models import RunLocation

if TYPE_CHECKING:
    from testsmith.core.events import EventChannel
    from testsmith.core.models import (
        SavedArtifact,
        TestExecutionResult,
        WorktreeApplyResult,
    )
    from testsmith.core.protocols import (
        AgentProvider,
        CommandRunnerPort,
        IsolationManager,
        Notifier,
    )
    from testsmith.domain.perspectives import PerspectiveExtraction
    from testsmith.domain.task_registry import TaskRegistry


@dataclass(frozen=True)
class HostContext:
    """Host-owned state that outlives a session.

    Attributes:
        storage_dir: Base directory for worktrees and merge-back artifacts.
    """

    storage_dir: Path


@dataclass
class SessionConfig:
    """Inputs for one TestGenerationSession.

    Attributes:
        task_id: Unique id for the session; also the registry key.
        label: Human readable label for the generation target.
        local_root: The user's workspace root. Reports are saved here.
        target_paths: Files the tests should cover.
        generation_prompt: Base prompt for the test generation agent.
        reference_text: Optional diff/context shown to the perspective agent.
        run_location: Generate in place or in an isolated worktree.
        model: Model override for agent runs.
        agent_timeout_ms: Wall-clock timeout for the generation run.
    """

    task_id: str
    label: str
    local_root: Path
    target_paths: list[str]
    generation_prompt: str
    reference_text: str | None = None
    run_location: RunLocation = RunLocation.LOCAL
    model: str | None = None
    agent_timeout_ms: int | None = None


@dataclass
class SessionDependencies:
    """Protocol implementations for TestGenerationSession.

    When None, the factory creates default implementations.

    Attributes:
        provider: AgentProvider that runs prompts.
        registry: TaskRegistry shared with whoever may cancel the session.
        channel: EventChannel the session publishes to.
        notifier: Notifier for transient user messages.
        isolation_manager: IsolationManager for worktree mode.
        command_runner: CommandRunnerPort for git and the test command.
        host_context: HostContext; worktree mode aborts without it.
    """

    provider: AgentProvider | None = None
    registry: TaskRegistry | None = None
    channel: EventChannel | None = None
    notifier: Notifier | None = None
    isolation_manager: IsolationManager | None = None
    command_runner: CommandRunnerPort | None = None
    host_context: HostContext | None = None


@dataclass
class SessionOutcome:
    """What a finished session reports back.

    Attributes:
        aborted: Setup failed (missing host context, worktree creation).
        cancelled: Cancellation was observed at a phase boundary.
        error: Message of an unexpected exception, if one ended the run.
        generation_exit_code: Exit code of the generation agent run.
        perspective: Perspective extraction, when the table was generated.
        perspective_artifact: Saved perspective table.
        merge_result: Merge-back outcome in worktree mode.
        execution: Final test execution result.
        execution_artifact: Saved execution report.
        phases: Phase values entered, in order.
    """

    aborted: bool = False
    cancelled: bool = False
    error: str | None = None
    generation_exit_code: int | None = None
    perspective: PerspectiveExtraction | None = None
    perspective_artifact: SavedArtifact | None = None
    merge_result: WorktreeApplyResult | None = None
    execution: TestExecutionResult | None = None
    execution_artifact: SavedArtifact | None = None
    phases: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Generation exited 0 and executed tests (if any) passed."""
        if self.aborted or self.cancelled or self.error is not None:
            return False
        if self.generation_exit_code != 0:
            return False
        if self.execution is None or self.execution.skipped:
            return True
        return self.execution.passed
