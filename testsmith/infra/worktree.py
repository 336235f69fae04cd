"""Git worktree isolation for test generation runs.

Each isolated run gets a detached worktree at
``{base_dir}/worktrees/{safe_task_id}`` so the agent's file writes never touch
the user's checkout until merge-back.
"""

from __future__ import annotations

import logging
import re
import shutil
from typing import TYPE_CHECKING

from testsmith.core.models import IsolatedCopy
from testsmith.infra.git_utils import run_git

if TYPE_CHECKING:
    from pathlib import Path

    from testsmith.core.protocols import CommandRunnerPort

logger = logging.getLogger(__name__)

MAX_TASK_SEGMENT_LENGTH = 120
BLANK_TASK_PLACEHOLDER = "task"
_UNSAFE_SEGMENT_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


class IsolationError(Exception):
    """Creating an isolated working copy failed."""


def sanitize_task_id(task_id: str) -> str:
    """Make ``task_id`` safe to use as a single path segment."""
    trimmed = task_id.strip()
    if not trimmed:
        return BLANK_TASK_PLACEHOLDER
    safe = _UNSAFE_SEGMENT_CHARS.sub("_", trimmed)
    return safe[:MAX_TASK_SEGMENT_LENGTH]


def worktree_path(base_dir: Path, task_id: str) -> Path:
    return base_dir / "worktrees" / sanitize_task_id(task_id)


class WorktreeIsolationManager:
    """IsolationManager backed by ``git worktree add --detach``."""

    def __init__(self, command_runner: CommandRunnerPort):
        self._runner = command_runner

    async def create_isolated_copy(
        self,
        source_root: Path,
        base_dir: Path,
        task_id: str,
        ref: str | None = None,
    ) -> IsolatedCopy:
        """Create a detached worktree of ``ref`` (default HEAD).

        A leftover directory from an earlier run with the same task id is
        removed first.

        Raises:
            IsolationError: If git refuses to create the worktree.
        """
        target = worktree_path(base_dir, task_id)
        effective_ref = ref.strip() if ref and ref.strip() else "HEAD"

        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
        target.parent.mkdir(parents=True, exist_ok=True)

        result = await run_git(
            self._runner,
            source_root,
            ["worktree", "add", "--detach", str(target), effective_ref],
            check=False,
        )
        if not result.ok:
            detail = (result.stderr or result.stdout).strip()
            raise IsolationError(
                f"git worktree add failed (exit {result.returncode}): {detail}"
            )
        logger.info("Created worktree %s at %s", target, effective_ref)
        return IsolatedCopy(isolated_dir=target)

    async def remove_isolated_copy(self, source_root: Path, isolated_dir: Path) -> None:
        """Best-effort removal: git remove, prune, then delete the directory."""
        for args in (
            ["worktree", "remove", "--force", str(isolated_dir)],
            ["worktree", "prune"],
        ):
            try:
                result = await run_git(self._runner, source_root, args, check=False)
                if not result.ok:
                    logger.debug(
                        "git %s exited %d: %s",
                        " ".join(args[:2]),
                        result.returncode,
                        result.stderr.strip(),
                    )
            except Exception as e:
                logger.debug("git %s failed: %s", " ".join(args[:2]), e)

        try:
            if isolated_dir.exists():
                shutil.rmtree(isolated_dir)
        except OSError as e:
            logger.warning("Failed to delete worktree directory %s: %s", isolated_dir, e)

    async def cleanup_stale(self, source_root: Path, base_dir: Path) -> int:
        """Remove every leftover worktree under ``base_dir``.

        Returns:
            Number of worktree directories removed.
        """
        root = base_dir / "worktrees"
        if not root.is_dir():
            return 0
        removed = 0
        for entry in sorted(root.iterdir()):
            if entry.is_dir():
                await self.remove_isolated_copy(source_root, entry)
                if not entry.exists():
                    removed += 1
        return removed
