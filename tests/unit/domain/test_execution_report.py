"""Unit tests for agent execution report parsing and refusal detection."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from testsmith.core.models import ExecutionRunner, TestExecutionResult
from testsmith.domain.execution_report import (
    EXECUTION_JSON_BEGIN,
    EXECUTION_JSON_END,
    EXECUTION_LEGACY_BEGIN,
    EXECUTION_LEGACY_END,
    STDERR_BEGIN,
    STDERR_END,
    STDOUT_BEGIN,
    STDOUT_END,
    AgentExecutionContext,
    is_rejected_execution,
    parse_agent_execution,
)

CTX = AgentExecutionContext(
    command="npm test",
    cwd=Path("/repo"),
    agent_exit_code=0,
    measured_duration_ms=4321,
)


def _json_report(payload: object) -> str:
    return f"{EXECUTION_JSON_BEGIN}\n{json.dumps(payload)}\n{EXECUTION_JSON_END}"


def _result(**overrides: object) -> TestExecutionResult:
    fields: dict[str, object] = {
        "command": "npm test",
        "cwd": Path("/repo"),
        "exit_code": None,
        "signal": None,
        "duration_ms": 0,
        "stdout": "",
        "stderr": "",
    }
    fields.update(overrides)
    return TestExecutionResult(**fields)  # type: ignore[arg-type]


class TestParseAgentExecution:
    """Tests for parse_agent_execution strategies."""

    def test_json_report(self) -> None:
        raw_log = _json_report(
            {
                "version": 1,
                "exitCode": 1,
                "signal": None,
                "durationMs": 1200,
                "stdout": "1 failing",
                "stderr": "AssertionError",
            }
        )
        result = parse_agent_execution(raw_log, CTX)
        assert result.exit_code == 1
        assert result.signal is None
        assert result.duration_ms == 1200
        assert result.stdout == "1 failing"
        assert result.stderr == "AssertionError"
        assert result.runner is ExecutionRunner.AGENT
        assert result.command == "npm test"

    def test_json_report_with_bad_duration_uses_measured(self) -> None:
        raw_log = _json_report({"version": 1, "exitCode": 0, "durationMs": 0})
        result = parse_agent_execution(raw_log, CTX)
        assert result.exit_code == 0
        assert result.duration_ms == CTX.measured_duration_ms

    def test_json_report_non_integer_exit_is_null(self) -> None:
        raw_log = _json_report({"version": 1, "exitCode": "zero"})
        assert parse_agent_execution(raw_log, CTX).exit_code is None

    def test_legacy_text_report(self) -> None:
        raw_log = "\n".join(
            [
                EXECUTION_LEGACY_BEGIN,
                "exitCode: 2",
                "signal: SIGTERM",
                "durationMs: 99",
                STDOUT_BEGIN,
                "out text",
                STDOUT_END,
                STDERR_BEGIN,
                "err text",
                STDERR_END,
                EXECUTION_LEGACY_END,
            ]
        )
        result = parse_agent_execution(raw_log, CTX)
        assert result.exit_code == 2
        assert result.signal == "SIGTERM"
        assert result.duration_ms == 99
        assert result.stdout == "out text"
        assert result.stderr == "err text"

    def test_legacy_null_values(self) -> None:
        raw_log = "\n".join(
            [EXECUTION_LEGACY_BEGIN, "exitCode: null", "signal: null", EXECUTION_LEGACY_END]
        )
        result = parse_agent_execution(raw_log, CTX)
        assert result.exit_code is None
        assert result.signal is None
        assert result.duration_ms == CTX.measured_duration_ms

    def test_unparseable_log_becomes_stderr(self) -> None:
        result = parse_agent_execution("I ran it and it was fine", CTX)
        assert result.exit_code == CTX.agent_exit_code
        assert result.stderr == "I ran it and it was fine"
        assert result.error_message is not None
        assert result.error_message.startswith("Could not extract the test execution result")
        assert "json: JSON markers not found" in result.error_message


class TestIsRejectedExecution:
    """Tests for refusal detection."""

    @pytest.mark.parametrize(
        "stderr",
        [
            "Tool execution rejected: Bash",
            "The command was rejected by policy",
            "execution was Rejected",
            "コマンドの実行が拒否されました",
        ],
    )
    def test_rejection_in_stderr(self, stderr: str) -> None:
        assert is_rejected_execution(_result(stderr=stderr, exit_code=1, duration_ms=5))

    def test_localized_error_message(self) -> None:
        result = _result(error_message="ツールの使用が拒否", exit_code=1, duration_ms=5)
        assert is_rejected_execution(result)

    def test_suspiciously_empty_result(self) -> None:
        assert is_rejected_execution(_result())

    def test_real_failure_is_not_rejection(self) -> None:
        result = _result(exit_code=1, duration_ms=250, stdout="1 failing", stderr="AssertionError")
        assert not is_rejected_execution(result)

    def test_rejected_without_context_term_is_not_rejection(self) -> None:
        result = _result(exit_code=1, duration_ms=10, stderr="promise rejected")
        assert not is_rejected_execution(result)
