"""TestGenerationSession: the cancellable test generation pipeline.

Phases run strictly in order:

    preparing -> [perspectives] -> generating -> running-tests

Cancellation is polled before each phase after preparing. A cancelled or
aborted session publishes a terminal CompletedEvent with ``exit_code=None``
and goes straight to cleanup. Cleanup always runs: the worktree (if one was
created) is removed exactly once and the task is unregistered.

``run()`` never raises for ordinary failures; unexpected exceptions are
logged, reported on the channel and through the notifier, and recorded on
the returned SessionOutcome. ``asyncio.CancelledError`` still propagates.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Literal

from testsmith.core.cancellation import CancellationToken
from testsmith.core.events import CompletedEvent, Phase, PhaseEvent, StartedEvent
from testsmith.core.models import RunLocation
from testsmith.infra.io.artifacts import ArtifactWriter, format_timestamp
from testsmith.infra.io.event_sink import SessionLogCollector
from testsmith.orchestration.types import SessionOutcome
from testsmith.pipeline.merge_back import MergeBackEngine
from testsmith.pipeline.perspective_generator import PerspectiveGenerator
from testsmith.pipeline.test_code_generator import TestCodeGenerator
from testsmith.pipeline.test_executor import TEST_TASK_SUFFIX, TestExecutor

if TYPE_CHECKING:
    from pathlib import Path

    from testsmith.core.events import EventChannel
    from testsmith.core.protocols import (
        AgentProvider,
        CommandRunnerPort,
        IsolationManager,
        Notifier,
        RunningTask,
    )
    from testsmith.domain.settings import RunSettings
    from testsmith.domain.task_registry import TaskRegistry
    from testsmith.orchestration.types import HostContext, SessionConfig

logger = logging.getLogger(__name__)

PHASE_LABELS = {
    Phase.PREPARING: "Preparing",
    Phase.PERSPECTIVES: "Generating perspective table",
    Phase.GENERATING: "Generating tests",
    Phase.RUNNING_TESTS: "Running tests",
}


class _IdleTask:
    """Placeholder handle registered before any agent step starts."""

    def __init__(self, task_id: str):
        self._task_id = task_id

    @property
    def task_id(self) -> str:
        return self._task_id

    def dispose(self) -> None:
        pass


class TestGenerationSession:
    """One end-to-end test generation run.

    Construct through testsmith.orchestration.factory.create_session unless
    every collaborator is being injected explicitly (as tests do).
    """

    __test__ = False

    def __init__(
        self,
        config: SessionConfig,
        *,
        settings: RunSettings,
        provider: AgentProvider,
        registry: TaskRegistry,
        channel: EventChannel,
        notifier: Notifier,
        command_runner: CommandRunnerPort,
        isolation_manager: IsolationManager | None = None,
        host_context: HostContext | None = None,
        timestamp: str | None = None,
    ):
        self.config = config
        self.settings = settings
        self.provider = provider
        self.registry = registry
        self.channel = channel
        self.notifier = notifier
        self.command_runner = command_runner
        self.isolation_manager = isolation_manager
        self.host_context = host_context
        self.timestamp = timestamp or format_timestamp(datetime.now())

        self.task_id = config.task_id
        self.local_root = config.local_root
        self.run_root = config.local_root
        self.token = CancellationToken()
        self.artifact_writer = ArtifactWriter(self.local_root, self.timestamp)
        self._worktree_dir: Path | None = None
        self._outcome = SessionOutcome()

    async def run(self) -> SessionOutcome:
        """Run every phase, then clean up. Returns the session outcome."""
        collector = SessionLogCollector.for_task_prefix(f"{self.task_id}{TEST_TASK_SUFFIX}")
        unsubscribe = self.channel.subscribe(collector)
        try:
            self.channel.publish(
                StartedEvent(
                    task_id=self.task_id,
                    label=self.config.label,
                    detail=", ".join(self.config.target_paths),
                )
            )
            self.registry.register(
                self.task_id, self.config.label, _IdleTask(self.task_id), self.token
            )
            await self._run_phases(collector)
        except Exception as e:
            logger.exception("Session %s failed", self.task_id)
            self._outcome.error = str(e)
            self.channel.log(self.task_id, "error", f"Test generation session failed: {e}")
            self._notify("error", f"Test generation failed ({self.config.label}): {e}")
            self.channel.publish(CompletedEvent(task_id=self.task_id, exit_code=None))
        finally:
            unsubscribe()
            await self._cleanup()
        return self._outcome

    async def _run_phases(self, collector: SessionLogCollector) -> None:
        if self._check_cancelled():
            return
        await self._prepare()
        if self._outcome.aborted:
            return

        perspective_table: str | None = None
        if self.settings.include_test_perspective_table:
            if self._check_cancelled():
                return
            perspective_table = await self._generate_perspectives()

        if self._check_cancelled():
            return
        generation_exit = await self._generate_tests(perspective_table)

        if self._check_cancelled():
            return
        await self._run_tests(generation_exit, collector)

    def _check_cancelled(self) -> bool:
        if not (self.token.is_cancelled or self.registry.is_cancelled(self.task_id)):
            return False
        self._outcome.cancelled = True
        self.channel.log(self.task_id, "warn", "Task cancelled")
        self.channel.publish(CompletedEvent(task_id=self.task_id, exit_code=None))
        return True

    def _enter_phase(self, phase: Phase) -> None:
        label = PHASE_LABELS[phase]
        self._outcome.phases.append(phase.value)
        self.channel.publish(PhaseEvent(task_id=self.task_id, phase=phase, phase_label=label))
        self.registry.update_phase(self.task_id, phase, label)

    def _on_running_task(self, handle: RunningTask) -> None:
        self.registry.update_running_task(self.task_id, handle)

    def _notify(self, level: Literal["info", "error"], message: str) -> None:
        notify = self.notifier.info if level == "info" else self.notifier.error
        try:
            notify(message)
        except Exception as e:
            logger.warning("Notifier failed for %s: %s", self.task_id, e)

    def _abort(self, message: str) -> None:
        self._outcome.aborted = True
        self.channel.log(self.task_id, "error", message)
        self._notify("error", message)
        self.channel.publish(CompletedEvent(task_id=self.task_id, exit_code=None))

    async def _prepare(self) -> None:
        self._enter_phase(Phase.PREPARING)
        if self.config.run_location is not RunLocation.WORKTREE:
            return

        if self.host_context is None or self.isolation_manager is None:
            self._abort("Worktree mode needs a host storage directory; aborting.")
            return

        try:
            base_dir = self.host_context.storage_dir
            base_dir.mkdir(parents=True, exist_ok=True)
            self.channel.log(self.task_id, "info", "Creating temporary worktree...")
            copy = await self.isolation_manager.create_isolated_copy(
                self.local_root, base_dir, self.task_id, "HEAD"
            )
        except Exception as e:
            logger.warning("Worktree creation failed for %s: %s", self.task_id, e)
            self._abort(f"Failed to create worktree: {e}")
            return

        self._worktree_dir = copy.isolated_dir
        self.run_root = copy.isolated_dir
        self.channel.log(self.task_id, "info", f"Worktree created: {copy.isolated_dir}")

    async def _generate_perspectives(self) -> str | None:
        self._enter_phase(Phase.PERSPECTIVES)
        generator = PerspectiveGenerator(
            provider=self.provider,
            channel=self.channel,
            artifact_writer=self.artifact_writer,
            settings=self.settings,
            model=self.config.model,
        )
        result = await generator.generate(
            self.task_id,
            self.run_root,
            self.config.label,
            self.config.target_paths,
            reference_text=self.config.reference_text,
            token=self.token,
            on_running_task=self._on_running_task,
        )
        self._outcome.perspective = result.extraction
        self._outcome.perspective_artifact = result.saved
        return result.table_for_prompt

    async def _generate_tests(self, perspective_table: str | None) -> int | None:
        self._enter_phase(Phase.GENERATING)
        generator = TestCodeGenerator(
            provider=self.provider,
            channel=self.channel,
            model=self.config.model,
            timeout_ms=self.config.agent_timeout_ms,
        )
        exit_code = await generator.generate(
            self.task_id,
            self.run_root,
            self.local_root,
            self.config.generation_prompt,
            perspective_table=perspective_table,
            token=self.token,
            on_running_task=self._on_running_task,
        )
        self._outcome.generation_exit_code = exit_code

        if exit_code == 0:
            # Worktree mode reports the merge-back result instead
            if self.config.run_location is RunLocation.LOCAL:
                self._notify("info", f"Test generation completed: {self.config.label}")
        else:
            exit_text = "null" if exit_code is None else str(exit_code)
            self._notify(
                "error", f"Test generation failed: {self.config.label} (exit={exit_text})"
            )
        return exit_code

    async def _run_tests(
        self, generation_exit: int | None, collector: SessionLogCollector
    ) -> None:
        merge_result = None
        if self._worktree_dir is not None and self.host_context is not None:
            engine = MergeBackEngine(
                command_runner=self.command_runner,
                channel=self.channel,
                notifier=self.notifier,
                storage_dir=self.host_context.storage_dir,
                pre_test_check_command=self.settings.pre_test_check_command,
            )
            merge_result = await engine.apply(
                self.task_id, generation_exit, self.local_root, self.run_root
            )
            self._outcome.merge_result = merge_result

        self._enter_phase(Phase.RUNNING_TESTS)
        executor = TestExecutor(
            provider=self.provider,
            channel=self.channel,
            command_runner=self.command_runner,
            settings=self.settings,
            model=self.config.model,
        )
        result = await executor.execute(
            self.task_id,
            self.run_root,
            self.config.run_location,
            merge_result=merge_result,
            token=self.token,
            on_running_task=self._on_running_task,
        )
        result = dataclasses.replace(result, session_log=collector.text())
        self._outcome.execution = result

        saved = self.artifact_writer.save_execution_report(
            self.config.label,
            self.config.target_paths,
            self.config.model,
            self.settings.test_execution_report_dir,
            result,
        )
        self._outcome.execution_artifact = saved
        self.channel.log(
            f"{self.task_id}{TEST_TASK_SUFFIX}",
            "info",
            f"Test execution report saved: {saved.display_path}",
        )
        self.channel.publish(CompletedEvent(task_id=self.task_id, exit_code=result.exit_code))

    async def _cleanup(self) -> None:
        worktree_dir, self._worktree_dir = self._worktree_dir, None
        try:
            if worktree_dir is not None and self.isolation_manager is not None:
                try:
                    await self.isolation_manager.remove_isolated_copy(
                        self.local_root, worktree_dir
                    )
                    self.channel.log(self.task_id, "info", "Worktree removed")
                except Exception as e:
                    logger.warning("Worktree removal failed for %s: %s", worktree_dir, e)
                    self.channel.log(
                        self.task_id, "warn", f"Failed to remove worktree: {e}"
                    )
        finally:
            self.registry.unregister(self.task_id)
