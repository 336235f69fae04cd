"""Merge test changes from an isolated worktree back into the local checkout.

The engine diffs only test-like paths inside the worktree, auto-applies the
patch locally when generation succeeded and ``git apply --check`` passes,
and otherwise persists the patch, full snapshots of the generated tests,
and a merge-instruction document under the storage directory.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING

from testsmith.core.models import WorktreeApplyResult
from testsmith.domain.prompts import (
    format_merge_assistance_prompt,
    format_merge_instructions_markdown,
)
from testsmith.domain.test_paths import filter_test_like_paths
from testsmith.infra.git_utils import list_changed_paths, list_untracked_paths, run_git

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from testsmith.core.events import EventChannel
    from testsmith.core.protocols import (
        CommandResultProtocol,
        CommandRunnerPort,
        Notifier,
    )

logger = logging.getLogger(__name__)

ACTION_OPEN_INSTRUCTIONS = "Open instructions"
ACTION_COPY_PROMPT = "Copy prompt"

REASON_NO_TEST_CHANGES = "no-test-changes"
REASON_EMPTY_PATCH = "empty-patch"
REASON_GENERATION_FAILED = "generation-failed"
REASON_APPLY_CHECK_FAILED = "apply-check-failed"
REASON_APPLY_FAILED = "apply-failed"
REASON_ERROR = "error"

# Patches for large generated fixtures can be slow to compute
GIT_DIFF_TIMEOUT = 120.0


@dataclass(frozen=True)
class MergeArtifacts:
    patch_path: Path
    snapshot_dir: Path
    instructions_path: Path


class MergeBackEngine:
    """Reconciles isolated test changes with the local workspace.

    ``apply`` never raises: every failure is logged on the channel under the
    generation task id and reported as ``applied=False``.
    """

    def __init__(
        self,
        command_runner: CommandRunnerPort,
        channel: EventChannel,
        notifier: Notifier,
        storage_dir: Path,
        pre_test_check_command: str = "",
    ):
        self.command_runner = command_runner
        self.channel = channel
        self.notifier = notifier
        self.storage_dir = storage_dir
        self.pre_test_check_command = pre_test_check_command
        # Strong references to fire-and-forget notification tasks
        self._pending_offers: set[asyncio.Task[None]] = set()

    async def apply(
        self,
        task_id: str,
        generation_exit_code: int | None,
        local_root: Path,
        run_root: Path,
    ) -> WorktreeApplyResult:
        try:
            return await self._apply(task_id, generation_exit_code, local_root, run_root)
        except Exception as e:
            logger.exception("Merge-back failed for %s", task_id)
            self.channel.log(
                task_id, "warn", f"Applying worktree test changes raised an error (continuing): {e}"
            )
            return WorktreeApplyResult(applied=False, reason=f"{REASON_ERROR}: {e}")

    async def _apply(
        self,
        task_id: str,
        generation_exit_code: int | None,
        local_root: Path,
        run_root: Path,
    ) -> WorktreeApplyResult:
        changed = await list_changed_paths(self.command_runner, run_root)
        untracked = await list_untracked_paths(self.command_runner, run_root)
        test_paths = filter_test_like_paths(changed)
        if not test_paths:
            self.channel.log(task_id, "info", "No test changes found in the worktree")
            return WorktreeApplyResult(applied=False, reason=REASON_NO_TEST_CHANGES)

        new_tests = [p for p in test_paths if p in untracked]
        if new_tests:
            # Intent-to-add so new files show up in `git diff`
            result = await run_git(
                self.command_runner, run_root, ["add", "-N", "--", *new_tests], check=False
            )
            if not result.ok:
                self.channel.log(
                    task_id,
                    "warn",
                    f"git add -N for new test files failed (continuing): {result.stderr.strip()}",
                )

        diff = await run_git(
            self.command_runner,
            run_root,
            ["diff", "--no-color", "--binary", "--", *test_paths],
            timeout=GIT_DIFF_TIMEOUT,
        )
        patch_text = diff.stdout
        if not patch_text.strip():
            self.channel.log(task_id, "info", "Worktree test diff is empty; nothing to apply")
            return WorktreeApplyResult(
                applied=False, reason=REASON_EMPTY_PATCH, test_paths=tuple(test_paths)
            )
        # git apply rejects a patch that does not end with a newline
        if not patch_text.endswith("\n"):
            patch_text += "\n"

        tmp_dir = self.storage_dir / "tmp"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        tmp_patch = tmp_dir / f"{task_id}.patch"
        tmp_patch.write_text(patch_text, encoding="utf-8")

        if generation_exit_code == 0:
            check = await run_git(
                self.command_runner, local_root, ["apply", "--check", str(tmp_patch)], check=False
            )
            if check.ok:
                applied = await run_git(
                    self.command_runner, local_root, ["apply", str(tmp_patch)], check=False
                )
                if applied.ok:
                    tmp_patch.unlink(missing_ok=True)
                    message = f"Applied worktree test changes locally ({len(test_paths)} file(s))"
                    self.channel.log(task_id, "info", message)
                    self.notifier.info(message)
                    return WorktreeApplyResult(applied=True, test_paths=tuple(test_paths))
                reason, failure_output = REASON_APPLY_FAILED, _output(applied)
            else:
                reason, failure_output = REASON_APPLY_CHECK_FAILED, _output(check)
        else:
            exit_text = "null" if generation_exit_code is None else str(generation_exit_code)
            reason = REASON_GENERATION_FAILED
            failure_output = (
                f"Test generation did not exit 0, so the patch was not applied "
                f"automatically (exit={exit_text})"
            )

        artifacts = self._persist(task_id, tmp_patch, patch_text, test_paths, run_root, failure_output)
        self._offer_manual_merge(task_id, artifacts, failure_output, test_paths)
        return WorktreeApplyResult(
            applied=False,
            reason=reason,
            patch_path=artifacts.patch_path,
            instructions_path=artifacts.instructions_path,
            test_paths=tuple(test_paths),
        )

    def _persist(
        self,
        task_id: str,
        tmp_patch: Path,
        patch_text: str,
        test_paths: Sequence[str],
        run_root: Path,
        failure_output: str,
    ) -> MergeArtifacts:
        patches_dir = self.storage_dir / "patches"
        snapshot_dir = self.storage_dir / "snapshots" / task_id
        instructions_dir = self.storage_dir / "merge-instructions"
        for directory in (patches_dir, snapshot_dir, instructions_dir):
            directory.mkdir(parents=True, exist_ok=True)

        patch_path = patches_dir / f"{task_id}.patch"
        try:
            tmp_patch.replace(patch_path)
        except OSError:
            patch_path.write_text(patch_text, encoding="utf-8")
            tmp_patch.unlink(missing_ok=True)

        for rel in test_paths:
            source = run_root / rel
            if not source.is_file():
                # Deleted in the worktree; the patch carries the deletion
                continue
            target = snapshot_dir / rel
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, target)
            except OSError as e:
                logger.warning("Could not snapshot %s: %s", source, e)

        prompt = self._merge_prompt(task_id, failure_output, patch_path, snapshot_dir, test_paths)
        instructions_path = instructions_dir / f"{task_id}.md"
        instructions_path.write_text(format_merge_instructions_markdown(prompt), encoding="utf-8")

        self.channel.log(
            task_id,
            "info",
            f"Saved merge artifacts: patch={patch_path} snapshot={snapshot_dir} "
            f"instructions={instructions_path}",
        )
        return MergeArtifacts(patch_path, snapshot_dir, instructions_path)

    def _merge_prompt(
        self,
        task_id: str,
        failure_output: str,
        patch_path: Path,
        snapshot_dir: Path,
        test_paths: Sequence[str],
    ) -> str:
        return format_merge_assistance_prompt(
            task_id,
            failure_output,
            patch_path,
            snapshot_dir,
            test_paths,
            self.pre_test_check_command,
        )

    def _offer_manual_merge(
        self,
        task_id: str,
        artifacts: MergeArtifacts,
        failure_output: str,
        test_paths: Sequence[str],
    ) -> None:
        message = "Could not apply the worktree test changes automatically; manual merge required."
        self.channel.log(task_id, "warn", message)
        prompt = self._merge_prompt(
            task_id, failure_output, artifacts.patch_path, artifacts.snapshot_dir, test_paths
        )

        async def offer() -> None:
            try:
                picked = await self.notifier.choose(
                    message, [ACTION_OPEN_INSTRUCTIONS, ACTION_COPY_PROMPT]
                )
                if picked == ACTION_COPY_PROMPT:
                    self.notifier.copy_text(prompt)
                    self.notifier.info("Merge prompt copied")
                elif picked == ACTION_OPEN_INSTRUCTIONS:
                    self.notifier.open_path(artifacts.instructions_path)
            except Exception as e:
                logger.debug("Manual merge offer for %s failed: %s", task_id, e)

        task = asyncio.create_task(offer())
        self._pending_offers.add(task)
        task.add_done_callback(self._pending_offers.discard)


def _output(result: CommandResultProtocol) -> str:
    parts = (result.stderr or "", result.stdout or "")
    return "\n".join(part.strip() for part in parts if part.strip())
