"""Perspective table step: ask the agent for a case table and save it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from testsmith.core.protocols import AgentRunOptions
from testsmith.domain.perspectives import extract_perspectives
from testsmith.domain.prompts import format_perspective_prompt, read_test_strategy
from testsmith.pipeline.agent_runner import run_provider_to_completion

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from testsmith.core.cancellation import CancellationToken
    from testsmith.core.events import EventChannel
    from testsmith.core.models import SavedArtifact
    from testsmith.core.protocols import AgentProvider, RunningTask
    from testsmith.domain.perspectives import PerspectiveExtraction
    from testsmith.domain.settings import RunSettings
    from testsmith.infra.io.artifacts import ArtifactWriter

logger = logging.getLogger(__name__)

PERSPECTIVE_TASK_SUFFIX = "-perspectives"
READ_ONLY_TOOLS = ("Read", "Glob", "Grep")


@dataclass(frozen=True)
class PerspectiveStepResult:
    extraction: PerspectiveExtraction
    saved: SavedArtifact
    exit_code: int | None

    @property
    def table_for_prompt(self) -> str | None:
        """Table Markdown to inject into the generation prompt, if genuine."""
        return self.extraction.markdown if self.extraction.extracted else None


class PerspectiveGenerator:
    """Runs the read-only perspective agent and persists the table.

    The agent runs in the run workspace root (the isolated copy in worktree
    mode) while the table is saved under the local workspace root through
    ``artifact_writer``.
    """

    def __init__(
        self,
        provider: AgentProvider,
        channel: EventChannel,
        artifact_writer: ArtifactWriter,
        settings: RunSettings,
        model: str | None = None,
    ):
        self.provider = provider
        self.channel = channel
        self.artifact_writer = artifact_writer
        self.settings = settings
        self.model = model

    async def generate(
        self,
        base_task_id: str,
        run_root: Path,
        target_label: str,
        target_paths: Sequence[str],
        reference_text: str | None = None,
        token: CancellationToken | None = None,
        on_running_task: Callable[[RunningTask], None] | None = None,
    ) -> PerspectiveStepResult:
        task_id = f"{base_task_id}{PERSPECTIVE_TASK_SUFFIX}"
        strategy_text = read_test_strategy(run_root, self.settings.test_strategy_path)
        prompt = format_perspective_prompt(
            target_label, target_paths, strategy_text, reference_text
        )

        outcome = await run_provider_to_completion(
            self.provider,
            AgentRunOptions(
                task_id=task_id,
                workspace_root=run_root,
                prompt=prompt,
                channel=self.channel,
                model=self.model,
                allow_write=False,
                allowed_tools=READ_ONLY_TOOLS,
            ),
            channel=self.channel,
            timeout_ms=self.settings.perspective_generation_timeout_ms,
            token=token,
            on_running_task=on_running_task,
        )

        extraction = extract_perspectives(outcome.raw_log, exit_code=outcome.exit_code)
        if extraction.extracted:
            self.channel.log(
                task_id, "info", f"Extracted {len(extraction.cases)} perspective case(s)"
            )
        else:
            self.channel.log(
                task_id,
                "warn",
                f"Perspective table extraction failed: {extraction.failure_reason}",
            )

        saved = self.artifact_writer.save_perspective_table(
            target_label,
            target_paths,
            extraction.markdown,
            self.settings.perspective_report_dir,
        )
        self.channel.log(
            task_id, "info", f"Perspective table saved: {saved.display_path}"
        )
        logger.debug("Perspective table for %s saved to %s", base_task_id, saved.absolute_path)
        return PerspectiveStepResult(
            extraction=extraction, saved=saved, exit_code=outcome.exit_code
        )
