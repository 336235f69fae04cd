"""Prompt templates and formatting for agent runs.

Templates live as Markdown files in testsmith/prompts/ and are formatted
with ``str.format``; literal braces in templates are doubled.
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from testsmith.domain.execution_report import EXECUTION_JSON_BEGIN, EXECUTION_JSON_END
from testsmith.domain.perspectives import PERSPECTIVES_JSON_BEGIN, PERSPECTIVES_JSON_END

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

# Prompt directory - points to testsmith/prompts/ where prompt files live
_PROMPT_DIR = Path(__file__).parent.parent / "prompts"

PERSPECTIVE_PROMPT_FILE = _PROMPT_DIR / "perspective.md"
TEST_GENERATION_PROMPT_FILE = _PROMPT_DIR / "test_generation.md"
PERSPECTIVE_APPENDIX_FILE = _PROMPT_DIR / "perspective_appendix.md"
TEST_EXECUTION_PROMPT_FILE = _PROMPT_DIR / "test_execution.md"
MERGE_ASSISTANCE_PROMPT_FILE = _PROMPT_DIR / "merge_assistance.md"
DEFAULT_TEST_STRATEGY_FILE = _PROMPT_DIR / "default_test_strategy.md"


@functools.cache
def _load(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def get_default_test_strategy() -> str:
    return _load(DEFAULT_TEST_STRATEGY_FILE)


def read_test_strategy(workspace_root: Path, strategy_path: str) -> str:
    """Project strategy file contents, or the built-in default.

    A blank ``strategy_path`` or an unreadable file falls back to the
    default strategy.
    """
    if strategy_path.strip():
        path = Path(strategy_path)
        if not path.is_absolute():
            path = workspace_root / path
        try:
            text = path.read_text(encoding="utf-8")
            if text.strip():
                return text
        except OSError as e:
            logger.warning("Cannot read test strategy %s: %s", path, e)
    return get_default_test_strategy()


def _bullet_list(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- (none)"


def _reference_section(reference_text: str | None) -> str:
    if not reference_text or not reference_text.strip():
        return ""
    return (
        "\n## Reference (diff / additional context)\n"
        "Use this only if needed.\n\n"
        f"{reference_text.strip()}\n"
    )


def format_perspective_prompt(
    target_label: str,
    target_paths: Sequence[str],
    strategy_text: str,
    reference_text: str | None = None,
) -> str:
    return _load(PERSPECTIVE_PROMPT_FILE).format(
        target_label=target_label,
        target_list=_bullet_list(target_paths),
        strategy_text=strategy_text.strip(),
        reference_section=_reference_section(reference_text),
        json_begin=PERSPECTIVES_JSON_BEGIN,
        json_end=PERSPECTIVES_JSON_END,
    )


def format_test_generation_prompt(
    target_label: str,
    target_paths: Sequence[str],
    strategy_text: str,
    pre_test_check_command: str = "",
    reference_text: str | None = None,
) -> str:
    """Format the prompt that asks the agent to write tests.

    With a pre-test check command the agent may run exactly that command to
    fix typecheck/lint errors in its tests; otherwise it may run nothing.
    """
    check = pre_test_check_command.strip()
    if check:
        flow = "\n".join(
            [
                "Generate tests, then typecheck/lint them. testsmith runs the tests afterwards.",
                "1. Add or update test code",
                "2. Run this command to check for typecheck/lint errors:",
                f"   `{check}`",
                "3. If there are errors, fix **the test code** and re-run the check (up to 3 times)",
                "4. Stop when errors are resolved or retries are exhausted",
                "- **Do NOT run tests**; testsmith runs them later",
                "- **Do NOT start debugging, watch mode, or any interactive session**",
            ]
        )
        tooling = "\n".join(
            [
                f"- **You may only run this command**: `{check}`",
                "- **Do NOT run test commands** (e.g. `pytest`, `npm test`)",
                "- Do NOT launch GUI apps (avoid spawning external processes)",
            ]
        )
    else:
        flow = "\n".join(
            [
                "Generate tests only. testsmith runs the tests afterwards.",
                "- **Do NOT run tests yourself**",
                "- **Do NOT start debugging, watch mode, or any interactive session**",
            ]
        )
        tooling = "\n".join(
            [
                "- Do NOT use shell/command execution tools",
                "- Do NOT launch GUI apps (avoid spawning external processes)",
                "- Use only file reads and the provided diffs/paths to make decisions",
            ]
        )
    return _load(TEST_GENERATION_PROMPT_FILE).format(
        target_label=target_label,
        target_list=_bullet_list(target_paths),
        flow_section=flow,
        tooling_section=tooling,
        strategy_text=strategy_text.strip(),
        reference_section=_reference_section(reference_text),
    )


def append_perspective_table(generation_prompt: str, perspective_table: str) -> str:
    appendix = _load(PERSPECTIVE_APPENDIX_FILE).format(
        perspective_table=perspective_table.strip()
    )
    return generation_prompt.rstrip() + "\n" + appendix


def format_test_execution_prompt(test_command: str) -> str:
    return _load(TEST_EXECUTION_PROMPT_FILE).format(
        test_command=test_command,
        json_begin=EXECUTION_JSON_BEGIN,
        json_end=EXECUTION_JSON_END,
    )


def format_merge_assistance_prompt(
    task_id: str,
    apply_check_output: str,
    patch_path: Path,
    snapshot_dir: Path,
    test_paths: Sequence[str],
    pre_test_check_command: str = "",
) -> str:
    check = pre_test_check_command.strip()
    return _load(MERGE_ASSISTANCE_PROMPT_FILE).format(
        task_id=task_id,
        apply_log=apply_check_output.strip() or "(none)",
        patch_path=patch_path,
        snapshot_dir=snapshot_dir,
        target_list=_bullet_list(test_paths),
        pre_check_suffix=f": {check}" if check else "",
    ).rstrip() + "\n"


def format_merge_instructions_markdown(prompt: str) -> str:
    return "\n".join(
        [
            "# Manual merge assistance (prompt for an AI assistant)",
            "",
            "Automatic application failed. Paste the prompt below into an AI "
            "assistant to have it integrate the generated tests.",
            "",
            "```text",
            prompt.rstrip(),
            "```",
            "",
        ]
    )
