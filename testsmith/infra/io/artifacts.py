"""Markdown report artifacts: perspective tables and execution reports.

Filenames are keyed by a session-scoped timestamp (``YYYYMMDD_HHMMSS``) so
concurrent sessions never overwrite each other's reports. Long text blocks
are ANSI-stripped and truncated to a fixed character budget.
"""

from __future__ import annotations

import logging
import platform
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from testsmith import __version__
from testsmith.core.models import SavedArtifact
from testsmith.domain.text import strip_ansi, truncate_text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from testsmith.core.models import TestExecutionResult, TestResultFile

logger = logging.getLogger(__name__)

PERSPECTIVE_FILE_PREFIX = "test-perspectives_"
EXECUTION_FILE_PREFIX = "test-execution_"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y%m%d_%H%M%S")


def resolve_dir(workspace_root: Path, report_dir: str) -> Path:
    """Absolute report directory; blank means the workspace root itself."""
    trimmed = report_dir.strip()
    if not trimmed:
        return workspace_root
    path = Path(trimmed).expanduser()
    return path if path.is_absolute() else workspace_root / path


def _relative_to(root: Path, path: Path) -> str | None:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return None


def _code_block(lang: str, content: str) -> str:
    return f"```{lang}\n{content}\n```"


def _text_block(text: str, empty: str = "(empty)") -> str:
    cleaned = truncate_text(strip_ansi(text))
    return _code_block("text", cleaned if cleaned.strip() else empty)


def _target_lines(target_paths: Sequence[str]) -> list[str]:
    return [f"- {p}" for p in target_paths] or ["- (none)"]


def build_perspective_markdown(
    generated_at: datetime,
    target_label: str,
    target_paths: Sequence[str],
    perspective_markdown: str,
) -> str:
    table = perspective_markdown.strip()
    return "\n".join(
        [
            "# Test perspective table (generated)",
            "",
            f"- Generated at: {generated_at.isoformat(timespec='seconds')}",
            f"- Target: {target_label}",
            "- Target files:",
            *_target_lines(target_paths),
            "",
            "---",
            "",
            table or "(the perspective table was empty)",
            "",
        ]
    )


def _result_summary_lines(test_result: TestResultFile) -> list[str]:
    lines = [
        "## Test results (side channel)",
        "| passes | failures | pending | total |",
        "|---|---|---|---|",
        f"| {test_result.passes} | {test_result.failures} "
        f"| {test_result.pending} | {test_result.total} |",
    ]
    if test_result.failed_tests:
        lines.append("")
        lines.append("### Failed tests")
        for failed in test_result.failed_tests:
            title = failed.full_title or failed.title
            error = f": {failed.error.splitlines()[0]}" if failed.error else ""
            lines.append(f"- {title}{error}")
    lines.append("")
    return lines


def build_execution_markdown(
    generated_at: datetime,
    generation_label: str,
    target_paths: Sequence[str],
    model: str | None,
    result: TestExecutionResult,
) -> str:
    """Render an execution report.

    Sections, in order: metadata, environment, command, result, optional
    side-channel summary, stdout, stderr, session log.
    """
    result_lines = [
        f"- status: {'skipped' if result.skipped else 'executed'}",
        f"- runner: {result.runner.value}",
    ]
    if result.skipped and result.skip_reason and result.skip_reason.strip():
        result_lines.append(f"- skipReason: {result.skip_reason.strip()}")
    result_lines += [
        f"- exitCode: {'null' if result.exit_code is None else result.exit_code}",
        f"- signal: {result.signal or 'null'}",
        f"- durationMs: {result.duration_ms}",
    ]
    if result.error_message:
        result_lines.append(f"- error: {result.error_message}")
    if result.test_result_path is not None:
        result_lines.append(f"- testResultPath: {result.test_result_path}")

    lines = [
        "# Test execution report (generated)",
        "",
        f"- Generated at: {generated_at.isoformat(timespec='seconds')}",
        f"- Target: {generation_label}",
        f"- model: {model.strip() if model and model.strip() else '(default)'}",
        "- Target files:",
        *_target_lines(target_paths),
        "",
        "## Environment",
        f"- OS: {platform.system()} ({platform.machine()})",
        f"- Python: {sys.version.split()[0]}",
        f"- testsmith: {result.tool_version or __version__}",
        "",
        "## Command",
        _code_block("bash", result.command),
        "",
        "## Result",
        *result_lines,
        "",
    ]
    if result.test_result is not None:
        lines += _result_summary_lines(result.test_result)
    lines += [
        "## stdout",
        _text_block(result.stdout),
        "",
        "## stderr",
        _text_block(result.stderr),
        "",
        "## Session log",
        _text_block(result.session_log or "", empty="(no log)"),
        "",
    ]
    return "\n".join(lines)


class ArtifactWriter:
    """Writes reports for one session under its workspace root."""

    def __init__(self, workspace_root: Path, timestamp: str):
        self.workspace_root = workspace_root
        self.timestamp = timestamp

    def _write(self, report_dir: str, filename: str, content: str) -> SavedArtifact:
        directory = resolve_dir(self.workspace_root, report_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        path.write_text(content, encoding="utf-8")
        logger.debug("Wrote artifact %s", path)
        return SavedArtifact(
            absolute_path=path,
            relative_path=_relative_to(self.workspace_root, path),
        )

    def save_perspective_table(
        self,
        target_label: str,
        target_paths: Sequence[str],
        perspective_markdown: str,
        report_dir: str,
    ) -> SavedArtifact:
        content = build_perspective_markdown(
            datetime.now().astimezone(), target_label, target_paths, perspective_markdown
        )
        return self._write(
            report_dir, f"{PERSPECTIVE_FILE_PREFIX}{self.timestamp}.md", content
        )

    def save_execution_report(
        self,
        generation_label: str,
        target_paths: Sequence[str],
        model: str | None,
        report_dir: str,
        result: TestExecutionResult,
    ) -> SavedArtifact:
        content = build_execution_markdown(
            datetime.now().astimezone(), generation_label, target_paths, model, result
        )
        return self._write(
            report_dir, f"{EXECUTION_FILE_PREFIX}{self.timestamp}.md", content
        )
