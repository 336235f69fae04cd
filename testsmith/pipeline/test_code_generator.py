"""Test generation step and the stray perspective-file guard."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from testsmith.core.protocols import AgentRunOptions
from testsmith.domain.perspectives import (
    PERSPECTIVES_JSON_BEGIN,
    PERSPECTIVES_JSON_END,
    PERSPECTIVES_LEGACY_BEGIN,
    PERSPECTIVES_LEGACY_END,
)
from testsmith.domain.prompts import append_perspective_table
from testsmith.domain.text import contains_marker_pair
from testsmith.pipeline.agent_runner import run_provider_to_completion

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from testsmith.core.cancellation import CancellationToken
    from testsmith.core.events import EventChannel
    from testsmith.core.protocols import AgentProvider, RunningTask

logger = logging.getLogger(__name__)

GENERATION_TASK_SUFFIX = "-gen"
GUARD_TASK_SUFFIX = "-guard"
STRAY_FILE_PATTERNS = ("test_perspectives*.md", "test_perspectives*.json")


@dataclass(frozen=True)
class StrayFileCleanup:
    relative_path: str
    deleted: bool
    error_message: str | None = None


def _has_internal_markers(text: str) -> bool:
    return contains_marker_pair(
        text, PERSPECTIVES_LEGACY_BEGIN, PERSPECTIVES_LEGACY_END
    ) or contains_marker_pair(text, PERSPECTIVES_JSON_BEGIN, PERSPECTIVES_JSON_END)


def cleanup_stray_perspective_files(workspace_root: Path) -> list[StrayFileCleanup]:
    """Delete marker-bearing perspective files the agent left in ``workspace_root``.

    Only the top level is scanned. Files without both markers of one
    perspective marker pair are left alone.
    """
    candidates: dict[Path, None] = {}
    for pattern in STRAY_FILE_PATTERNS:
        for path in sorted(workspace_root.glob(pattern)):
            if path.is_file():
                candidates[path] = None

    results: list[StrayFileCleanup] = []
    for path in candidates:
        relative = path.name
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
            if not _has_internal_markers(text):
                continue
            path.unlink()
            results.append(StrayFileCleanup(relative_path=relative, deleted=True))
        except OSError as e:
            results.append(
                StrayFileCleanup(relative_path=relative, deleted=False, error_message=str(e))
            )
    return results


class TestCodeGenerator:
    """Drives the agent with write access to produce test code."""

    __test__ = False

    def __init__(
        self,
        provider: AgentProvider,
        channel: EventChannel,
        model: str | None = None,
        timeout_ms: int | None = None,
    ):
        self.provider = provider
        self.channel = channel
        self.model = model
        self.timeout_ms = timeout_ms

    async def generate(
        self,
        task_id: str,
        run_root: Path,
        local_root: Path,
        generation_prompt: str,
        perspective_table: str | None = None,
        token: CancellationToken | None = None,
        on_running_task: Callable[[RunningTask], None] | None = None,
    ) -> int | None:
        """Run generation and return the agent's exit code.

        ``perspective_table`` is appended to the prompt only when given; pass
        it only for a genuinely extracted table.
        """
        prompt = generation_prompt
        if perspective_table:
            prompt = append_perspective_table(generation_prompt, perspective_table)

        outcome = await run_provider_to_completion(
            self.provider,
            AgentRunOptions(
                task_id=f"{task_id}{GENERATION_TASK_SUFFIX}",
                workspace_root=run_root,
                prompt=prompt,
                channel=self.channel,
                model=self.model,
                allow_write=True,
            ),
            channel=self.channel,
            timeout_ms=self.timeout_ms,
            token=token,
            on_running_task=on_running_task,
        )

        self._guard_stray_files(task_id, local_root)
        return outcome.exit_code

    def _guard_stray_files(self, task_id: str, local_root: Path) -> None:
        guard_id = f"{task_id}{GUARD_TASK_SUFFIX}"
        try:
            results = cleanup_stray_perspective_files(local_root)
        except Exception as e:
            logger.warning("Stray file scan failed in %s: %s", local_root, e)
            return
        for result in results:
            if result.deleted:
                self.channel.log(
                    guard_id,
                    "warn",
                    f"Deleted stray perspective file written outside the report flow: {result.relative_path}",
                )
            else:
                self.channel.log(
                    guard_id,
                    "warn",
                    f"Failed to delete stray perspective file {result.relative_path}: {result.error_message}",
                )
