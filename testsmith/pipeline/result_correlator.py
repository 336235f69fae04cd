"""Correlate the side-channel test result file with an execution.

A test run may write structured results to ``RESULT_FILE_RELATIVE`` under
the run workspace root; the path is passed to it through ``RESULT_FILE_ENV``.
The file outlives the run that wrote it, so it is only trusted when it is
fresh: its mtime or its embedded timestamp must not predate the execution
start by more than the freshness window.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from testsmith.core.models import FailedTest, TestResultFile

logger = logging.getLogger(__name__)

RESULT_FILE_RELATIVE = Path(".vscode-test") / "test-result.json"
RESULT_FILE_ENV = "TESTSMITH_TEST_RESULT_FILE"
DEFAULT_FRESHNESS_WINDOW_MS = 1000


def result_file_path(run_root: Path) -> Path:
    return run_root / RESULT_FILE_RELATIVE


def is_fresh(
    started_at_ms: int,
    mtime_ms: float | None,
    embedded_timestamp_ms: int | None,
    window_ms: int = DEFAULT_FRESHNESS_WINDOW_MS,
) -> bool:
    """True when either timestamp is at or after ``started_at_ms - window_ms``."""
    threshold = started_at_ms - window_ms
    if mtime_ms is not None and mtime_ms >= threshold:
        return True
    return embedded_timestamp_ms is not None and embedded_timestamp_ms >= threshold


def _count(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_failed_tests(data: dict[str, Any]) -> tuple[FailedTest, ...]:
    entries = data.get("failedTests")
    if not isinstance(entries, list):
        # Producers that only emit `tests` mark failures with state=failed
        tests = data.get("tests")
        entries = [
            t for t in tests if isinstance(t, dict) and t.get("state") == "failed"
        ] if isinstance(tests, list) else []

    failed: list[FailedTest] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        title = _optional_str(entry.get("title")) or "(no title)"
        failed.append(
            FailedTest(
                title=title,
                full_title=_optional_str(entry.get("fullTitle")),
                error=_optional_str(entry.get("error")),
            )
        )
    return tuple(failed)


def _parse_test_titles(data: dict[str, Any]) -> tuple[str, ...]:
    tests = data.get("tests")
    if not isinstance(tests, list):
        return ()
    titles: list[str] = []
    for entry in tests:
        if isinstance(entry, str):
            titles.append(entry)
        elif isinstance(entry, dict):
            title = _optional_str(entry.get("fullTitle")) or _optional_str(
                entry.get("title")
            )
            if title:
                titles.append(title)
    return tuple(titles)


def parse_test_result_file(raw: str) -> TestResultFile | None:
    """Parse the JSON side-channel payload; None if it is not an object."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        return None
    timestamp = data.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        timestamp = None
    return TestResultFile(
        timestamp_ms=int(timestamp) if timestamp is not None else None,
        passes=_count(data, "passes"),
        failures=_count(data, "failures"),
        pending=_count(data, "pending"),
        total=_count(data, "total"),
        tests=_parse_test_titles(data),
        failed_tests=_parse_failed_tests(data),
    )


def read_correlated_result(
    run_root: Path,
    started_at_ms: int,
    window_ms: int = DEFAULT_FRESHNESS_WINDOW_MS,
) -> tuple[TestResultFile, Path] | None:
    """Read the side-channel file under ``run_root`` if it belongs to this run.

    Returns the parsed result and its path, or None when the file is
    missing, stale, or unreadable.
    """
    path = result_file_path(run_root)
    try:
        if not path.is_file():
            return None
        mtime_ms = path.stat().st_mtime * 1000
        parsed = parse_test_result_file(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValueError) as e:
        logger.debug("Ignoring unreadable test result file %s: %s", path, e)
        return None

    if parsed is None:
        logger.debug("Ignoring test result file %s: not a JSON object", path)
        return None
    if not is_fresh(started_at_ms, mtime_ms, parsed.timestamp_ms, window_ms):
        logger.debug("Ignoring stale test result file %s", path)
        return None
    return parsed, path
