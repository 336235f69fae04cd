"""Git helpers for testsmith.

Every git invocation passes ``-c core.quotepath=false`` so non-ASCII paths
come back verbatim instead of octal-escaped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from testsmith.domain.text import dedupe_stable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from testsmith.core.protocols import CommandResultProtocol, CommandRunnerPort

logger = logging.getLogger(__name__)

# Default timeout for git commands (seconds)
DEFAULT_GIT_TIMEOUT = 60.0


class GitError(Exception):
    """A git command exited non-zero."""

    def __init__(self, args: Sequence[str], result: CommandResultProtocol):
        self.git_args = list(args)
        self.result = result
        detail = (result.stderr or result.stdout).strip()
        super().__init__(
            f"git {' '.join(args)} failed (exit {result.returncode}): {detail}"
        )


def git_command(args: Sequence[str]) -> list[str]:
    return ["git", "-c", "core.quotepath=false", *args]


async def run_git(
    runner: CommandRunnerPort,
    cwd: Path,
    args: Sequence[str],
    *,
    check: bool = True,
    timeout: float = DEFAULT_GIT_TIMEOUT,
) -> CommandResultProtocol:
    """Run ``git <args>`` in ``cwd``.

    Raises:
        GitError: If ``check`` is set and git exits non-zero.
    """
    result = await runner.run_async(git_command(args), cwd=cwd, timeout=timeout)
    if check and not result.ok:
        raise GitError(args, result)
    return result


def _split_lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


async def list_changed_paths(runner: CommandRunnerPort, cwd: Path) -> list[str]:
    """Tracked-modified plus untracked-new paths, deduplicated in first-seen order."""
    tracked = await run_git(runner, cwd, ["diff", "--name-only"])
    untracked = await run_git(
        runner, cwd, ["ls-files", "--others", "--exclude-standard"]
    )
    return dedupe_stable(_split_lines(tracked.stdout) + _split_lines(untracked.stdout))


async def list_untracked_paths(runner: CommandRunnerPort, cwd: Path) -> set[str]:
    result = await run_git(runner, cwd, ["ls-files", "--others", "--exclude-standard"])
    return set(_split_lines(result.stdout))


async def list_commit_paths(runner: CommandRunnerPort, cwd: Path, ref: str) -> list[str]:
    result = await run_git(
        runner, cwd, ["show", "--name-only", "--pretty=format:", "--no-color", ref]
    )
    return _split_lines(result.stdout)


async def get_commit_diff(runner: CommandRunnerPort, cwd: Path, ref: str) -> str:
    result = await run_git(runner, cwd, ["show", "--no-color", "--pretty=medium", ref])
    return result.stdout


async def get_working_tree_diff(runner: CommandRunnerPort, cwd: Path) -> str:
    result = await run_git(runner, cwd, ["diff", "--no-color", "HEAD"])
    return result.stdout


async def get_repo_root(runner: CommandRunnerPort, cwd: Path) -> str | None:
    result = await run_git(runner, cwd, ["rev-parse", "--show-toplevel"], check=False)
    if not result.ok:
        return None
    return result.stdout.strip() or None


async def list_range_paths(runner: CommandRunnerPort, cwd: Path, commit_range: str) -> list[str]:
    result = await run_git(runner, cwd, ["diff", "--name-only", commit_range])
    return _split_lines(result.stdout)


async def get_range_diff(runner: CommandRunnerPort, cwd: Path, commit_range: str) -> str:
    result = await run_git(runner, cwd, ["diff", "--no-color", commit_range])
    return result.stdout
