#!/usr/bin/env python3
# ruff: noqa: E402
"""
testsmith CLI: generate, run, and merge tests for a code change.

Usage:
    testsmith run [OPTIONS] [REPO_PATH] (--file PATH ... | --working-tree | --commit REF | --range A..B)
    testsmith clean [REPO_PATH]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from testsmith.infra.tools.env import USER_CONFIG_DIR, load_env, load_user_env

if TYPE_CHECKING:
    from testsmith.core.protocols import CommandRunnerPort
    from testsmith.domain.task_registry import TaskRegistry
    from testsmith.orchestration.session import TestGenerationSession
    from testsmith.orchestration.types import SessionOutcome

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False


def bootstrap() -> None:
    """Initialize environment.

    Must be called before using any CLI commands. Idempotent.

    Side effects:
        - Loads environment variables from ~/.config/testsmith/.env
    """
    global _bootstrapped

    if _bootstrapped:
        return

    load_user_env()
    _bootstrapped = True


import asyncio
import signal
import uuid
from datetime import datetime
from typing import Annotated, Never

import typer

from testsmith.core.models import ExecutionRunner, RunLocation
from testsmith.domain.settings import ConfigError, load_run_settings, parse_runner
from testsmith.infra.io.config import ConfigurationError, TestsmithConfig
from testsmith.infra.io.console import Colors, log, set_verbose

# Exit code for a run stopped with Ctrl-C
INTERRUPTED_EXIT_CODE = 130


@dataclass
class GenerationTarget:
    """What to generate tests for.

    Attributes:
        label: Human readable label for reports and notifications.
        paths: Files the tests should cover.
        reference_text: Diff shown to the agent as context, if any.
    """

    label: str
    paths: list[str]
    reference_text: str | None = None


async def collect_target(
    runner: CommandRunnerPort,
    repo_path: Path,
    files: list[str],
    working_tree: bool,
    commit: str | None,
    commit_range: str | None = None,
) -> GenerationTarget:
    """Resolve the CLI target options into paths and reference text.

    Raises:
        GitError: If a git command fails.
        ValueError: If no target option is set.
    """
    from testsmith.infra.git_utils import (
        get_commit_diff,
        get_range_diff,
        get_working_tree_diff,
        list_changed_paths,
        list_commit_paths,
        list_range_paths,
    )

    if files:
        paths = [_relative_path(repo_path, f) for f in files]
        label = paths[0] if len(paths) == 1 else f"{len(paths)} files"
        return GenerationTarget(label=label, paths=paths)
    if working_tree:
        paths = await list_changed_paths(runner, repo_path)
        diff = await get_working_tree_diff(runner, repo_path)
        return GenerationTarget(label="working tree", paths=paths, reference_text=diff)
    if commit is not None:
        paths = await list_commit_paths(runner, repo_path, commit)
        diff = await get_commit_diff(runner, repo_path, commit)
        return GenerationTarget(label=f"commit {commit}", paths=paths, reference_text=diff)
    if commit_range is not None:
        paths = await list_range_paths(runner, repo_path, commit_range)
        diff = await get_range_diff(runner, repo_path, commit_range)
        return GenerationTarget(
            label=f"commit range {commit_range}", paths=paths, reference_text=diff
        )
    raise ValueError("No generation target selected")


def _relative_path(repo_path: Path, file: str) -> str:
    path = Path(file)
    if path.is_absolute():
        try:
            return path.resolve().relative_to(repo_path).as_posix()
        except ValueError:
            return str(path)
    return path.as_posix()


def new_task_id() -> str:
    return f"gen-{datetime.now():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}"


def _install_sigint_handler(
    loop: asyncio.AbstractEventLoop,
    registry: TaskRegistry,
    run_task: asyncio.Task[SessionOutcome],
) -> Any:  # noqa: ANN401
    """First Ctrl-C cancels registered tasks; a second one cancels the run."""
    presses = 0

    def handle_sigint(sig: int, frame: object) -> None:
        nonlocal presses
        presses += 1
        if presses == 1:
            log("⚠", "Cancelling... (Ctrl-C again to abort)", Colors.YELLOW)
            loop.call_soon_threadsafe(registry.cancel_all)
        else:
            loop.call_soon_threadsafe(run_task.cancel)

    return signal.signal(signal.SIGINT, handle_sigint)


async def _run_session(
    session: TestGenerationSession, registry: TaskRegistry
) -> SessionOutcome:
    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(session.run())
    original_handler = _install_sigint_handler(loop, registry, run_task)
    try:
        return await run_task
    finally:
        signal.signal(signal.SIGINT, original_handler)


app = typer.Typer(
    name="testsmith",
    help="Generate tests for a code change with a coding agent, run them, and merge them back",
    add_completion=False,
)


@app.command()
def run(
    repo_path: Annotated[
        Path,
        typer.Argument(help="Path to the git repository"),
    ] = Path("."),
    files: Annotated[
        list[str] | None,
        typer.Option(
            "--file",
            "-f",
            help="File to generate tests for (repeatable)",
            rich_help_panel="Target",
        ),
    ] = None,
    working_tree: Annotated[
        bool,
        typer.Option(
            "--working-tree",
            help="Generate tests for uncommitted changes",
            rich_help_panel="Target",
        ),
    ] = False,
    commit: Annotated[
        str | None,
        typer.Option(
            "--commit",
            help="Generate tests for the changes in a commit",
            rich_help_panel="Target",
        ),
    ] = None,
    commit_range: Annotated[
        str | None,
        typer.Option(
            "--range",
            help="Generate tests for the changes in a commit range (e.g. main..HEAD)",
            rich_help_panel="Target",
        ),
    ] = None,
    isolated: Annotated[
        bool,
        typer.Option(
            "--isolated",
            help="Generate in a temporary git worktree and merge test changes back",
            rich_help_panel="Execution",
        ),
    ] = False,
    no_perspectives: Annotated[
        bool,
        typer.Option(
            "--no-perspectives",
            help="Skip the perspective table step",
            rich_help_panel="Execution",
        ),
    ] = False,
    test_command: Annotated[
        str | None,
        typer.Option(
            "--test-command",
            help="Shell command that runs the tests (overrides testsmith.yaml)",
            rich_help_panel="Execution",
        ),
    ] = None,
    runner: Annotated[
        str | None,
        typer.Option(
            "--runner",
            help="Test runner: extension (direct) or agent",
            rich_help_panel="Execution",
        ),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option(
            "--model",
            help="Model for agent runs (default: TESTSMITH_MODEL or backend default)",
            rich_help_panel="Agent",
        ),
    ] = None,
    timeout_ms: Annotated[
        int | None,
        typer.Option(
            "--timeout-ms",
            min=1,
            help="Wall-clock timeout for test generation in milliseconds",
            rich_help_panel="Agent",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show full agent output and debug logs",
            rich_help_panel="Debugging",
        ),
    ] = False,
) -> Never:
    """Generate tests for a target, run them, and save reports."""
    from testsmith.domain.prompts import format_test_generation_prompt, read_test_strategy
    from testsmith.domain.task_registry import TaskRegistry
    from testsmith.infra.git_utils import GitError
    from testsmith.infra.tools.command_runner import CommandRunner
    from testsmith.orchestration.factory import (
        SessionConfig,
        SessionDependencies,
        create_session,
    )
    from testsmith.orchestration.preflight import PreflightError, run_preflight

    set_verbose(verbose)
    if verbose:
        logging.basicConfig(level=logging.DEBUG)

    if commit_range is not None:
        commit_range = commit_range.strip()
        if not commit_range:
            log("✗", "--range needs a commit range such as HEAD~1..HEAD", Colors.RED)
            raise typer.Exit(2)
    selected = sum([bool(files), working_tree, commit is not None, commit_range is not None])
    if selected != 1:
        log("✗", "Choose exactly one of --file, --working-tree, --commit, --range", Colors.RED)
        raise typer.Exit(2)

    repo_path = repo_path.resolve()
    load_env(repo_path)
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    try:
        settings = load_run_settings(repo_path)
        runner_override = parse_runner(runner) if runner is not None else None
        testsmith_config = TestsmithConfig.from_env(validate=True)
    except ConfigError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(1) from None
    except ConfigurationError as e:
        log("✗", f"Invalid configuration: {'; '.join(e.errors)}", Colors.RED)
        raise typer.Exit(1) from None

    settings = settings.with_overrides(
        test_command=test_command,
        test_execution_runner=runner_override,
        include_test_perspective_table=False if no_perspectives else None,
    )

    command_runner = CommandRunner(cwd=repo_path)
    try:
        preflight = asyncio.run(
            run_preflight(command_runner, repo_path, settings, testsmith_config)
        )
    except PreflightError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(1) from None
    for warning in preflight.warnings:
        log("⚠", warning, Colors.YELLOW)
    settings = settings.with_overrides(test_strategy_path=preflight.test_strategy_path)

    try:
        target = asyncio.run(
            collect_target(
                command_runner, repo_path, files or [], working_tree, commit, commit_range
            )
        )
    except GitError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(1) from None
    if not target.paths:
        log("○", "No changed files to generate tests for", Colors.GRAY)
        raise typer.Exit(0)

    strategy_text = read_test_strategy(repo_path, settings.test_strategy_path)
    generation_prompt = format_test_generation_prompt(
        target.label,
        target.paths,
        strategy_text,
        settings.pre_test_check_command,
        target.reference_text,
    )

    registry = TaskRegistry()
    session = create_session(
        SessionConfig(
            task_id=new_task_id(),
            label=target.label,
            local_root=repo_path,
            target_paths=target.paths,
            generation_prompt=generation_prompt,
            reference_text=target.reference_text,
            run_location=RunLocation.WORKTREE if isolated else RunLocation.LOCAL,
            model=model,
            agent_timeout_ms=timeout_ms,
        ),
        settings=settings,
        testsmith_config=testsmith_config,
        deps=SessionDependencies(registry=registry, command_runner=command_runner),
    )

    try:
        outcome = asyncio.run(_run_session(session, registry))
    except asyncio.CancelledError:
        log("✗", "Aborted", Colors.RED)
        raise typer.Exit(INTERRUPTED_EXIT_CODE) from None

    if outcome.cancelled:
        raise typer.Exit(INTERRUPTED_EXIT_CODE)
    _print_summary(outcome, settings.test_execution_runner)
    raise typer.Exit(0 if outcome.succeeded else 1)


def _print_summary(outcome: SessionOutcome, configured_runner: ExecutionRunner) -> None:
    if outcome.perspective_artifact is not None:
        log("📄", f"Perspectives: {outcome.perspective_artifact.display_path}", Colors.CYAN)
    if outcome.merge_result is not None and not outcome.merge_result.applied:
        instructions = outcome.merge_result.instructions_path
        detail = f" (see {instructions})" if instructions else ""
        log("⚠", f"Manual merge required: {outcome.merge_result.reason}{detail}", Colors.YELLOW)
    execution = outcome.execution
    if outcome.execution_artifact is not None:
        log("📄", f"Execution report: {outcome.execution_artifact.display_path}", Colors.CYAN)
    if execution is None:
        return
    if execution.skipped:
        log("○", f"Tests skipped: {execution.skip_reason}", Colors.GRAY)
    elif execution.passed:
        log("✓", "Tests passed", Colors.GREEN)
    else:
        fallback = (
            " (direct fallback)"
            if configured_runner is ExecutionRunner.AGENT
            and execution.runner is ExecutionRunner.EXTENSION
            else ""
        )
        exit_text = "null" if execution.exit_code is None else str(execution.exit_code)
        log("✗", f"Tests failed: exit={exit_text}{fallback}", Colors.RED)


@app.command()
def clean(
    repo_path: Annotated[
        Path,
        typer.Argument(help="Path to the git repository"),
    ] = Path("."),
) -> None:
    """Remove leftover temporary worktrees.

    Use this when a previous run was killed before it could clean up.
    """
    from testsmith.infra.tools.command_runner import CommandRunner
    from testsmith.infra.worktree import WorktreeIsolationManager

    try:
        config = TestsmithConfig.from_env(validate=True)
    except ConfigurationError as e:
        log("✗", f"Invalid configuration: {'; '.join(e.errors)}", Colors.RED)
        raise typer.Exit(1) from None

    repo_path = repo_path.resolve()
    manager = WorktreeIsolationManager(CommandRunner(cwd=repo_path))
    removed = asyncio.run(manager.cleanup_stale(repo_path, config.storage_dir))
    if removed:
        log("🧹", f"Removed {removed} worktree(s)", Colors.GREEN)
    else:
        log("○", "No worktrees to clean", Colors.GRAY)
