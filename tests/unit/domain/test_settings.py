"""Unit tests for RunSettings and the testsmith.yaml loader."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from testsmith.core.models import ExecutionRunner
from testsmith.domain.settings import (
    CONFIG_FILE_NAME,
    ConfigError,
    RunSettings,
    build_run_settings,
    load_run_settings,
    parse_runner,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestLoadRunSettings:
    """Tests for load_run_settings."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        settings = load_run_settings(tmp_path)
        assert settings == RunSettings()
        assert settings.include_test_perspective_table is True
        assert settings.test_command == ""
        assert settings.test_execution_runner is ExecutionRunner.EXTENSION
        assert settings.result_freshness_window_ms == 1000

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("")
        assert load_run_settings(tmp_path) == RunSettings()

    def test_values_are_loaded(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text(
            "test_command: pytest -q\n"
            "test_execution_runner: agent\n"
            "include_test_perspective_table: false\n"
            "perspective_generation_timeout_ms: 5000\n"
            "test_command_timeout_seconds: 30\n"
        )
        settings = load_run_settings(tmp_path)
        assert settings.test_command == "pytest -q"
        assert settings.test_execution_runner is ExecutionRunner.AGENT
        assert settings.include_test_perspective_table is False
        assert settings.perspective_generation_timeout_ms == 5000
        assert settings.test_command_timeout_seconds == 30

    def test_invalid_yaml_raises(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("test_command: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_run_settings(tmp_path)

    def test_non_mapping_raises(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_run_settings(tmp_path)


class TestBuildRunSettings:
    """Tests for field validation."""

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ConfigError, match="Unknown field 'test_cmd'"):
            build_run_settings({"test_cmd": "pytest"})

    def test_wrong_type_rejected(self) -> None:
        with pytest.raises(ConfigError, match="wrong type"):
            build_run_settings({"test_command": 3})

    def test_bool_not_accepted_for_numbers(self) -> None:
        with pytest.raises(ConfigError, match="wrong type"):
            build_run_settings({"perspective_generation_timeout_ms": True})

    def test_negative_timeout_rejected(self) -> None:
        with pytest.raises(ConfigError, match=">= 0"):
            build_run_settings({"perspective_generation_timeout_ms": -1})

    def test_null_values_keep_defaults(self) -> None:
        assert build_run_settings({"test_command": None}) == RunSettings()


class TestParseRunner:
    """Tests for runner name aliases."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("extension", ExecutionRunner.EXTENSION),
            ("direct", ExecutionRunner.EXTENSION),
            ("agent", ExecutionRunner.AGENT),
            ("cursorAgent", ExecutionRunner.AGENT),
        ],
    )
    def test_known_names(self, value: str, expected: ExecutionRunner) -> None:
        assert parse_runner(value) is expected

    def test_unknown_name(self) -> None:
        with pytest.raises(ConfigError, match="test_execution_runner"):
            parse_runner("docker")


class TestWithOverrides:
    def test_none_overrides_are_ignored(self) -> None:
        settings = RunSettings(test_command="npm test")
        updated = settings.with_overrides(test_command=None, include_test_perspective_table=False)
        assert updated.test_command == "npm test"
        assert updated.include_test_perspective_table is False
        assert settings.include_test_perspective_table is True
