"""Per-repository run settings and the testsmith.yaml loader.

testsmith.yaml is optional. When present it may set any RunSettings field;
unknown fields are rejected so typos surface instead of silently falling
back to defaults.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import yaml

from testsmith.core.models import ExecutionRunner

if TYPE_CHECKING:
    from pathlib import Path

CONFIG_FILE_NAME = "testsmith.yaml"

# Accepted spellings for test_execution_runner
_RUNNER_ALIASES = {
    "extension": ExecutionRunner.EXTENSION,
    "direct": ExecutionRunner.EXTENSION,
    "agent": ExecutionRunner.AGENT,
    "cursorAgent": ExecutionRunner.AGENT,
}


class ConfigError(Exception):
    """Raised for a malformed testsmith.yaml."""


@dataclass(frozen=True)
class RunSettings:
    """Settings snapshot taken at session start.

    Attributes:
        include_test_perspective_table: Generate a perspective table first.
        perspective_report_dir: Where perspective tables are saved
            (relative to the workspace root unless absolute).
        test_execution_report_dir: Where execution reports are saved.
        test_command: Shell command that runs the tests. Blank skips execution.
        test_execution_runner: Run tests directly or via the agent.
        agent_allow_force_for_test_execution: Let the agent run the test
            command without per-command approval.
        perspective_generation_timeout_ms: Wall-clock limit for the
            perspective agent run. 0 disables the limit.
        test_strategy_path: Project test strategy file; blank uses the
            built-in default.
        pre_test_check_command: Typecheck/lint command the generating agent
            may run on its tests.
        result_freshness_window_ms: Tolerance for correlating the side-channel
            result file with the run.
        test_command_timeout_seconds: Timeout for the direct runner.
    """

    include_test_perspective_table: bool = True
    perspective_report_dir: str = "docs/test-perspectives"
    test_execution_report_dir: str = "docs/test-execution-reports"
    test_command: str = ""
    test_execution_runner: ExecutionRunner = ExecutionRunner.EXTENSION
    agent_allow_force_for_test_execution: bool = False
    perspective_generation_timeout_ms: int = 600_000
    test_strategy_path: str = ""
    pre_test_check_command: str = ""
    result_freshness_window_ms: int = 1000
    test_command_timeout_seconds: float | None = None

    def with_overrides(self, **overrides: Any) -> RunSettings:
        """Copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)


_FIELD_TYPES: dict[str, type | tuple[type, ...]] = {
    "include_test_perspective_table": bool,
    "perspective_report_dir": str,
    "test_execution_report_dir": str,
    "test_command": str,
    "test_execution_runner": str,
    "agent_allow_force_for_test_execution": bool,
    "perspective_generation_timeout_ms": int,
    "test_strategy_path": str,
    "pre_test_check_command": str,
    "result_freshness_window_ms": int,
    "test_command_timeout_seconds": (int, float),
}


def parse_runner(value: str) -> ExecutionRunner:
    """Map a configured runner name to ExecutionRunner.

    Raises:
        ConfigError: For an unknown runner name.
    """
    runner = _RUNNER_ALIASES.get(value.strip())
    if runner is None:
        allowed = ", ".join(sorted(_RUNNER_ALIASES))
        raise ConfigError(
            f"test_execution_runner must be one of {allowed}, got '{value}'"
        )
    return runner


def load_run_settings(repo_path: Path) -> RunSettings:
    """Load testsmith.yaml from ``repo_path``; defaults when absent.

    Raises:
        ConfigError: If the file is unreadable, not a mapping, contains
            unknown fields, or has values of the wrong type.
    """
    config_file = repo_path / CONFIG_FILE_NAME
    if not config_file.exists():
        return RunSettings()

    try:
        content = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read {config_file}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"Failed to decode {config_file}: {e}") from e

    return build_run_settings(_parse_yaml(content))


def _parse_yaml(content: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {CONFIG_FILE_NAME}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"{CONFIG_FILE_NAME} must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def build_run_settings(data: dict[str, Any]) -> RunSettings:
    unknown = sorted(str(k) for k in set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigError(f"Unknown field '{unknown[0]}' in {CONFIG_FILE_NAME}")

    values: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        expected = _FIELD_TYPES[key]
        # bool is an int subclass; reject it for numeric fields
        if not isinstance(value, expected) or (
            isinstance(value, bool) and expected is not bool
        ):
            raise ConfigError(
                f"{key} in {CONFIG_FILE_NAME} has wrong type {type(value).__name__}"
            )
        values[key] = value

    if "test_execution_runner" in values:
        values["test_execution_runner"] = parse_runner(values["test_execution_runner"])
    if values.get("perspective_generation_timeout_ms", 0) < 0:
        raise ConfigError("perspective_generation_timeout_ms must be >= 0")
    if values.get("result_freshness_window_ms", 0) < 0:
        raise ConfigError("result_freshness_window_ms must be >= 0")
    return RunSettings(**values)
