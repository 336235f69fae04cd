"""Parsing agent-reported test execution results and detecting refusals.

When the test command is delegated to the agent, the agent reports the
outcome as JSON (schema v1) between ``EXECUTION_JSON_BEGIN``/``END``, or, for
older prompts, as a text block with ``exitCode:``/``signal:``/``durationMs:``
lines and nested stdout/stderr blocks. Parsing follows the same ordered
strategy shape as perspective extraction.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from testsmith.core.models import ExecutionRunner, TestExecutionResult
from testsmith.domain.text import extract_between_last_markers

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

EXECUTION_JSON_BEGIN = "<!-- BEGIN TEST EXECUTION JSON -->"
EXECUTION_JSON_END = "<!-- END TEST EXECUTION JSON -->"
EXECUTION_LEGACY_BEGIN = "<!-- BEGIN TEST EXECUTION RESULT -->"
EXECUTION_LEGACY_END = "<!-- END TEST EXECUTION RESULT -->"
STDOUT_BEGIN = "<!-- BEGIN STDOUT -->"
STDOUT_END = "<!-- END STDOUT -->"
STDERR_BEGIN = "<!-- BEGIN STDERR -->"
STDERR_END = "<!-- END STDERR -->"

_EXIT_LINE = re.compile(r"^\s*exitCode:\s*(.+?)\s*$", re.MULTILINE)
_SIGNAL_LINE = re.compile(r"^\s*signal:\s*(.+?)\s*$", re.MULTILINE)
_DURATION_LINE = re.compile(r"^\s*durationMs:\s*(\d+)\s*$", re.MULTILINE)


@dataclass(frozen=True)
class AgentExecutionContext:
    """What the caller knows independently of the agent's report.

    Attributes:
        command: The test command the agent was asked to run.
        cwd: Directory the agent ran in.
        agent_exit_code: Exit status of the agent run itself.
        measured_duration_ms: Wall-clock duration of the agent run.
    """

    command: str
    cwd: Path
    agent_exit_code: int | None
    measured_duration_ms: int


@dataclass(frozen=True)
class ParsedExecution:
    result: TestExecutionResult


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ExecutionParseResult = ParsedExecution | ParseFailure


class ExecutionReportStrategy(Protocol):
    name: str

    def parse(self, raw_log: str, ctx: AgentExecutionContext) -> ExecutionParseResult: ...


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return None


class JsonV1ExecutionStrategy:
    name = "json"

    def parse(self, raw_log: str, ctx: AgentExecutionContext) -> ExecutionParseResult:
        block = extract_between_last_markers(
            raw_log, EXECUTION_JSON_BEGIN, EXECUTION_JSON_END
        )
        if block is None:
            return ParseFailure("JSON markers not found")
        try:
            payload = json.loads(block)
        except json.JSONDecodeError as e:
            return ParseFailure(f"invalid-json: {e.msg}")
        if not isinstance(payload, dict):
            return ParseFailure("json-not-object")
        if payload.get("version") != 1 or isinstance(payload.get("version"), bool):
            return ParseFailure("unsupported-version")

        duration = payload.get("durationMs")
        duration_ok = (
            isinstance(duration, (int, float))
            and not isinstance(duration, bool)
            and math.isfinite(duration)
            and duration > 0
        )
        signal = payload.get("signal")
        return ParsedExecution(
            TestExecutionResult(
                command=ctx.command,
                cwd=ctx.cwd,
                exit_code=_optional_int(payload.get("exitCode")),
                signal=signal if isinstance(signal, str) and signal else None,
                duration_ms=int(duration) if duration_ok else ctx.measured_duration_ms,
                stdout=payload.get("stdout") if isinstance(payload.get("stdout"), str) else "",
                stderr=payload.get("stderr") if isinstance(payload.get("stderr"), str) else "",
                runner=ExecutionRunner.AGENT,
            )
        )


class LegacyTextExecutionStrategy:
    name = "legacy-text"

    def parse(self, raw_log: str, ctx: AgentExecutionContext) -> ExecutionParseResult:
        block = extract_between_last_markers(
            raw_log, EXECUTION_LEGACY_BEGIN, EXECUTION_LEGACY_END
        )
        if block is None:
            return ParseFailure("legacy markers not found")

        exit_match = _EXIT_LINE.search(block)
        exit_raw = exit_match.group(1).strip() if exit_match else ""
        if not exit_raw or exit_raw == "null":
            exit_code = None
        else:
            try:
                exit_code = int(exit_raw)
            except ValueError:
                exit_code = ctx.agent_exit_code

        signal_match = _SIGNAL_LINE.search(block)
        signal_raw = signal_match.group(1).strip() if signal_match else ""
        duration_match = _DURATION_LINE.search(block)

        return ParsedExecution(
            TestExecutionResult(
                command=ctx.command,
                cwd=ctx.cwd,
                exit_code=exit_code,
                signal=None if not signal_raw or signal_raw == "null" else signal_raw,
                duration_ms=(
                    int(duration_match.group(1))
                    if duration_match
                    else ctx.measured_duration_ms
                ),
                stdout=extract_between_last_markers(block, STDOUT_BEGIN, STDOUT_END) or "",
                stderr=extract_between_last_markers(block, STDERR_BEGIN, STDERR_END) or "",
                runner=ExecutionRunner.AGENT,
            )
        )


DEFAULT_EXECUTION_STRATEGIES: tuple[ExecutionReportStrategy, ...] = (
    JsonV1ExecutionStrategy(),
    LegacyTextExecutionStrategy(),
)


def parse_agent_execution(
    raw_log: str,
    ctx: AgentExecutionContext,
    strategies: Sequence[ExecutionReportStrategy] = DEFAULT_EXECUTION_STRATEGIES,
) -> TestExecutionResult:
    """Parse the agent's execution report; first successful strategy wins.

    When no strategy succeeds, the whole log becomes stderr and the agent's
    own exit code is reported, with ``error_message`` explaining why.
    """
    failures: list[str] = []
    for strategy in strategies:
        parsed = strategy.parse(raw_log, ctx)
        if isinstance(parsed, ParsedExecution):
            return parsed.result
        failures.append(f"{strategy.name}: {parsed.reason}")

    return TestExecutionResult(
        command=ctx.command,
        cwd=ctx.cwd,
        exit_code=ctx.agent_exit_code,
        signal=None,
        duration_ms=ctx.measured_duration_ms,
        stdout="",
        stderr=raw_log,
        error_message="Could not extract the test execution result: " + "; ".join(failures),
        runner=ExecutionRunner.AGENT,
    )


# -- refusal detection ---------------------------------------------------------

REJECTION_LITERALS = ("Tool execution rejected", "Execution rejected")
REJECTION_CONTEXT_TERMS = ("execution", "tool", "command")
LOCALIZED_REJECTION_PHRASES = (
    "コマンドの実行が拒否されました",
    "コマンドが拒否されました",
    "実行が拒否されました",
    "手動で承認が必要",
)
LOCALIZED_ERROR_TERMS = ("ツール", "拒否")


def _is_suspiciously_empty(result: TestExecutionResult) -> bool:
    return (
        result.exit_code is None
        and result.duration_ms == 0
        and result.signal is None
        and not result.stdout.strip()
        and not result.stderr.strip()
        and not (result.error_message or "").strip()
    )


def is_rejected_execution(result: TestExecutionResult) -> bool:
    """True when the agent declined to run the command rather than running it."""
    stderr = result.stderr
    stderr_lower = stderr.lower()
    error_message = result.error_message or ""

    if "rejected" in stderr_lower and any(t in stderr_lower for t in REJECTION_CONTEXT_TERMS):
        return True
    if any(literal in stderr for literal in REJECTION_LITERALS):
        return True
    if any(phrase in stderr for phrase in LOCALIZED_REJECTION_PHRASES):
        return True
    if any(term in error_message for term in LOCALIZED_ERROR_TERMS):
        return True
    return _is_suspiciously_empty(result)
