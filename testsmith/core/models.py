"""Data model shared across the testsmith pipeline.

These types cross layer boundaries (domain parsers produce them, the
pipeline enriches them, the artifact writer renders them), so they live in
core with no dependencies on infra.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ExecutionRunner(Enum):
    """Which strategy produced a TestExecutionResult.

    EXTENSION runs the test command directly as a subprocess. AGENT delegates
    execution to the coding agent. UNKNOWN marks skipped executions.
    """

    EXTENSION = "extension"
    AGENT = "agent"
    UNKNOWN = "unknown"


class RunLocation(Enum):
    """Where generation writes files: the user's checkout or an isolated copy."""

    LOCAL = "local"
    WORKTREE = "worktree"


@dataclass(frozen=True)
class PerspectiveCase:
    """One row of the five-column perspective table."""

    case_id: str
    input_precondition: str
    perspective: str
    expected_result: str
    notes: str


@dataclass(frozen=True)
class FailedTest:
    title: str
    full_title: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class TestResultFile:
    """Structured results written by the test process to the side channel.

    Attributes:
        timestamp_ms: Epoch milliseconds reported by the producer, if any.
        passes: Number of passing tests.
        failures: Number of failing tests.
        pending: Number of skipped/pending tests.
        total: Total test count reported by the producer.
        tests: Optional flat list of test titles.
        failed_tests: Optional details for each failed test.
    """

    __test__ = False

    timestamp_ms: int | None
    passes: int
    failures: int
    pending: int
    total: int
    tests: tuple[str, ...] = ()
    failed_tests: tuple[FailedTest, ...] = ()


@dataclass(frozen=True)
class TestExecutionResult:
    """Outcome of one test execution attempt.

    Instances are never mutated; correlation data is attached with
    ``dataclasses.replace``.

    Attributes:
        command: The test command that was (or would have been) run.
        cwd: Working directory of the run.
        exit_code: Process exit code; None when unknown, killed, or skipped.
        signal: Name of the terminating signal, if any.
        duration_ms: Wall-clock duration; 0 when skipped.
        stdout: Captured standard output.
        stderr: Captured standard error.
        error_message: Spawn or parse failure description.
        skipped: True when execution was intentionally not attempted.
        skip_reason: Human readable reason for the skip.
        runner: Which runner produced this result.
        test_result: Correlated side-channel result, when fresh.
        test_result_path: Path of the correlated side-channel file.
        tool_version: testsmith version that produced the result.
        session_log: Captured event log text for the test phase.
    """

    __test__ = False

    command: str
    cwd: Path
    exit_code: int | None
    signal: str | None
    duration_ms: int
    stdout: str
    stderr: str
    error_message: str | None = None
    skipped: bool = False
    skip_reason: str | None = None
    runner: ExecutionRunner = ExecutionRunner.UNKNOWN
    test_result: TestResultFile | None = None
    test_result_path: Path | None = None
    tool_version: str | None = None
    session_log: str | None = None

    @property
    def passed(self) -> bool:
        return not self.skipped and self.exit_code == 0


@dataclass(frozen=True)
class WorktreeApplyResult:
    applied: bool
    reason: str | None = None
    patch_path: Path | None = None
    instructions_path: Path | None = None
    test_paths: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SavedArtifact:
    absolute_path: Path
    relative_path: str | None = None

    @property
    def display_path(self) -> str:
        return self.relative_path or str(self.absolute_path)


@dataclass(frozen=True)
class IsolatedCopy:
    isolated_dir: Path
