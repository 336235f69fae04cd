"""Checks run before any session starts.

A failed check raises PreflightError with a message meant for the user.
Problems a session can work around (a missing test strategy file) come back
as warnings instead.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from testsmith.infra.git_utils import get_repo_root

if TYPE_CHECKING:
    from testsmith.core.protocols import CommandRunnerPort
    from testsmith.domain.settings import RunSettings
    from testsmith.infra.io.config import TestsmithConfig


class PreflightError(Exception):
    """The environment cannot run a test generation session."""


@dataclass(frozen=True)
class PreflightResult:
    """Outcome of a successful preflight.

    Attributes:
        test_strategy_path: Strategy file to use; empty when falling back to
            the built-in default.
        warnings: Non-fatal problems to show the user.
    """

    test_strategy_path: str
    warnings: list[str] = field(default_factory=list)


def check_claude_cli(config: TestsmithConfig) -> str | None:
    """Return why the configured Claude CLI is unusable, or None if usable.

    Without an explicit path the SDK locates the CLI itself.
    """
    cli_path = config.claude_cli_path
    if cli_path is None:
        return None
    if not cli_path.exists():
        return f"Claude CLI missing at {cli_path} (TESTSMITH_CLAUDE_CLI_PATH)"
    if not cli_path.is_file():
        return f"Claude CLI path is not a file: {cli_path}"
    if not os.access(cli_path, os.X_OK):
        return f"Claude CLI not executable at {cli_path}"
    return None


async def run_preflight(
    runner: CommandRunnerPort,
    repo_path: Path,
    settings: RunSettings,
    config: TestsmithConfig,
) -> PreflightResult:
    """Verify the workspace and agent backend.

    Raises:
        PreflightError: If ``repo_path`` is not the top level of a git work
            tree or the configured Claude CLI cannot be run.
    """
    if not repo_path.is_dir():
        raise PreflightError(f"Repository path is not a directory: {repo_path}")
    repo_root = await get_repo_root(runner, repo_path)
    if repo_root is None:
        raise PreflightError(f"Not inside a git repository: {repo_path}")
    if Path(repo_root).resolve() != repo_path.resolve():
        raise PreflightError(
            f"{repo_path} is inside the git repository at {repo_root}; "
            "pass the repository root instead"
        )

    cli_problem = check_claude_cli(config)
    if cli_problem is not None:
        raise PreflightError(cli_problem)

    warnings: list[str] = []
    strategy_path = settings.test_strategy_path.strip()
    if strategy_path:
        path = Path(strategy_path)
        if not path.is_absolute():
            path = repo_path / path
        if not path.is_file():
            warnings.append(
                f"Test strategy file not found: {strategy_path}; using the built-in default"
            )
            strategy_path = ""

    return PreflightResult(test_strategy_path=strategy_path, warnings=warnings)
