"""Unit tests for prompt formatting."""

from __future__ import annotations

from pathlib import Path

from testsmith.domain.execution_report import EXECUTION_JSON_BEGIN, EXECUTION_JSON_END
from testsmith.domain.perspectives import PERSPECTIVES_JSON_BEGIN, PERSPECTIVES_JSON_END
from testsmith.domain.prompts import (
    append_perspective_table,
    format_merge_assistance_prompt,
    format_merge_instructions_markdown,
    format_perspective_prompt,
    format_test_execution_prompt,
    format_test_generation_prompt,
    get_default_test_strategy,
    read_test_strategy,
)


class TestReadTestStrategy:
    def test_blank_path_uses_default(self, tmp_path: Path) -> None:
        assert read_test_strategy(tmp_path, "") == get_default_test_strategy()

    def test_relative_path_is_read(self, tmp_path: Path) -> None:
        (tmp_path / "strategy.md").write_text("Use pytest fixtures.")
        assert read_test_strategy(tmp_path, "strategy.md") == "Use pytest fixtures."

    def test_missing_file_uses_default(self, tmp_path: Path) -> None:
        assert read_test_strategy(tmp_path, "nope.md") == get_default_test_strategy()

    def test_blank_file_uses_default(self, tmp_path: Path) -> None:
        (tmp_path / "strategy.md").write_text("  \n")
        assert read_test_strategy(tmp_path, "strategy.md") == get_default_test_strategy()


class TestFormatPrompts:
    def test_perspective_prompt(self) -> None:
        prompt = format_perspective_prompt(
            "commit abc", ["src/a.py", "src/b.py"], "STRATEGY", "diff --git a b"
        )
        assert "- Run type: commit abc" in prompt
        assert "- src/a.py\n- src/b.py" in prompt
        assert PERSPECTIVES_JSON_BEGIN in prompt
        assert PERSPECTIVES_JSON_END in prompt
        assert '{ "version": 1, "cases": PerspectiveCase[] }' in prompt
        assert "diff --git a b" in prompt

    def test_generation_prompt_without_check(self) -> None:
        prompt = format_test_generation_prompt("src/a.py", ["src/a.py"], "STRATEGY")
        assert "Do NOT use shell/command execution tools" in prompt
        assert "STRATEGY" in prompt
        assert "Reference (diff" not in prompt

    def test_generation_prompt_with_check(self) -> None:
        prompt = format_test_generation_prompt(
            "src/a.py", ["src/a.py"], "STRATEGY", pre_test_check_command="mypy tests"
        )
        assert "**You may only run this command**: `mypy tests`" in prompt
        assert "Do NOT use shell/command execution tools" not in prompt

    def test_append_perspective_table(self) -> None:
        prompt = append_perspective_table("BASE\n\n", "| table |\n")
        assert prompt.startswith("BASE\n")
        assert "| table |" in prompt
        assert "Do NOT save this table to a file." in prompt

    def test_execution_prompt(self) -> None:
        prompt = format_test_execution_prompt("npm test -- --grep foo")
        assert "npm test -- --grep foo" in prompt
        assert EXECUTION_JSON_BEGIN in prompt
        assert EXECUTION_JSON_END in prompt
        assert '"version": 1,' in prompt

    def test_merge_prompts(self) -> None:
        prompt = format_merge_assistance_prompt(
            "gen-1",
            "",
            Path("/store/patches/gen-1.patch"),
            Path("/store/snapshots/gen-1"),
            ["tests/test_a.py"],
            "ruff check tests",
        )
        assert "- taskId: gen-1" in prompt
        assert "(none)" in prompt
        assert "/store/patches/gen-1.patch" in prompt
        assert "- tests/test_a.py" in prompt
        assert "(up to 3 times): ruff check tests" in prompt

        markdown = format_merge_instructions_markdown(prompt)
        assert markdown.startswith("# Manual merge assistance")
        assert "```text\n" in markdown
        assert prompt.rstrip() in markdown
