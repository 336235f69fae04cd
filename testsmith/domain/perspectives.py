"""Perspective table protocol: rendering, parsing, and extraction.

The agent is asked to emit a JSON payload (schema v1) between
``PERSPECTIVES_JSON_BEGIN``/``PERSPECTIVES_JSON_END``. Older agents emitted a
five-column Markdown table between the legacy markers instead. Extraction
runs an ordered list of strategies and stops at the first success; when all
fail, a one-row diagnostic table is synthesized so a well-formed artifact is
always produced.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from testsmith.core.models import PerspectiveCase
from testsmith.domain.log_sanitizer import sanitize_agent_log
from testsmith.domain.text import extract_between_last_markers, truncate_text

if TYPE_CHECKING:
    from collections.abc import Sequence

PERSPECTIVES_JSON_BEGIN = "<!-- BEGIN TEST PERSPECTIVES JSON -->"
PERSPECTIVES_JSON_END = "<!-- END TEST PERSPECTIVES JSON -->"
PERSPECTIVES_LEGACY_BEGIN = "<!-- BEGIN TEST PERSPECTIVES -->"
PERSPECTIVES_LEGACY_END = "<!-- END TEST PERSPECTIVES -->"

PERSPECTIVE_TABLE_HEADER = (
    "| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) "
    "| Expected Result | Notes |"
)
PERSPECTIVE_TABLE_SEPARATOR = "|---|---|---|---|---|"
PERSPECTIVE_TABLE_COLUMNS = 5

HEADER_KEYWORDS_EN = ("Case ID", "Input", "Expected", "Notes")
HEADER_KEYWORDS_JA = ("ケース", "入力", "前提", "期待", "備考")

EXTRACTION_FAILURE_CASE_ID = "TC-E-EXTRACT-01"

SUPPORTED_JSON_VERSION = 1

_UNESCAPED_PIPE = re.compile(r"(?<!\\)\|")
_SEPARATOR_ROW = re.compile(r"^\|(?:\s*-+\s*\|)+$")
_NEWLINES = re.compile(r"[\r\n]+")
_CODE_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


# -- rendering ---------------------------------------------------------------


def _normalize_cell(value: str) -> str:
    return _NEWLINES.sub(" ", value).replace("|", "\\|")


def render_perspective_table(cases: Sequence[PerspectiveCase]) -> str:
    """Render cases as the fixed five-column Markdown table (trailing newline)."""
    lines = [PERSPECTIVE_TABLE_HEADER, PERSPECTIVE_TABLE_SEPARATOR]
    for case in cases:
        cells = [
            case.case_id,
            case.input_precondition,
            case.perspective,
            case.expected_result,
            case.notes,
        ]
        lines.append("| " + " | ".join(_normalize_cell(c) for c in cells) + " |")
    return "\n".join(lines) + "\n"


# -- Markdown table parsing ---------------------------------------------------


def _pipe_count(line: str) -> int:
    return len(_UNESCAPED_PIPE.findall(line))


def split_table_row(line: str) -> list[str] | None:
    """Split a ``| a | b |`` row into unescaped, trimmed cells.

    ``\\|`` is an escaped pipe inside a cell, not a delimiter. Returns None for
    lines that are not bounded by pipes.
    """
    trimmed = line.strip()
    if not trimmed.startswith("|") or not trimmed.endswith("|") or trimmed.endswith("\\|"):
        return None
    inner = trimmed[1:-1]
    return [cell.strip().replace("\\|", "|") for cell in _UNESCAPED_PIPE.split(inner)]


def _is_header(line: str) -> bool:
    trimmed = line.strip()
    if trimmed == PERSPECTIVE_TABLE_HEADER:
        return True
    if _pipe_count(trimmed) != PERSPECTIVE_TABLE_COLUMNS + 1:
        return False
    return any(k in trimmed for k in HEADER_KEYWORDS_EN + HEADER_KEYWORDS_JA)


def _is_separator(line: str) -> bool:
    trimmed = line.strip()
    return bool(_SEPARATOR_ROW.match(trimmed)) and (
        trimmed.count("|") == PERSPECTIVE_TABLE_COLUMNS + 1
    )


@dataclass(frozen=True)
class TableParseError:
    reason: str


def parse_perspective_table(markdown: str) -> list[PerspectiveCase] | TableParseError:
    """Parse a five-column perspective table back into cases.

    The header may be the fixed English header or any six-pipe row containing
    a known header keyword; a dash-only separator must follow immediately.
    Body rows run until the first line not starting with ``|``. Any row with
    a cell count other than five invalidates the whole table.
    """
    lines = markdown.replace("\r\n", "\n").split("\n")
    header_index = next((i for i, line in enumerate(lines) if _is_header(line)), None)
    if header_index is None:
        return TableParseError("table header not found")
    if header_index + 1 >= len(lines) or not _is_separator(lines[header_index + 1]):
        return TableParseError("separator row missing after table header")

    cases: list[PerspectiveCase] = []
    for row_number, line in enumerate(lines[header_index + 2 :], start=1):
        if not line.strip().startswith("|"):
            break
        cells = split_table_row(line)
        if cells is None or len(cells) != PERSPECTIVE_TABLE_COLUMNS:
            found = "?" if cells is None else str(len(cells))
            return TableParseError(
                f"row {row_number} has {found} columns, expected {PERSPECTIVE_TABLE_COLUMNS}"
            )
        cases.append(PerspectiveCase(*cells))
    return cases


# -- JSON v1 -------------------------------------------------------------------


def _string_or_empty(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    return ""


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.match(text.strip())
    return match.group(1) if match else text


def parse_perspective_json_v1(raw: str) -> list[PerspectiveCase] | TableParseError:
    """Parse a v1 perspective payload.

    Code fences and prose around the outermost JSON object are tolerated.
    Non-object entries in ``cases`` are skipped; missing fields become "".
    Failure reasons are short codes: ``empty``, ``no-json-object``,
    ``invalid-json: ...``, ``json-not-object``, ``unsupported-version``,
    ``cases-not-array``.
    """
    text = _strip_code_fence(raw).strip()
    if not text:
        return TableParseError("empty")
    if not text.startswith("["):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return TableParseError("no-json-object")
        text = text[start : end + 1]
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        return TableParseError(f"invalid-json: {e.msg}")
    if not isinstance(payload, dict):
        return TableParseError("json-not-object")
    if payload.get("version") != SUPPORTED_JSON_VERSION or isinstance(
        payload.get("version"), bool
    ):
        return TableParseError("unsupported-version")
    raw_cases = payload.get("cases")
    if not isinstance(raw_cases, list):
        return TableParseError("cases-not-array")
    return [
        PerspectiveCase(
            case_id=_string_or_empty(item.get("caseId")),
            input_precondition=_string_or_empty(item.get("inputPrecondition")),
            perspective=_string_or_empty(item.get("perspective")),
            expected_result=_string_or_empty(item.get("expectedResult")),
            notes=_string_or_empty(item.get("notes")),
        )
        for item in raw_cases
        if isinstance(item, dict)
    ]


# -- extraction strategies -----------------------------------------------------


@dataclass(frozen=True)
class ExtractionSuccess:
    cases: tuple[PerspectiveCase, ...]
    markdown: str
    source: str


@dataclass(frozen=True)
class ExtractionFailure:
    reason: str


ExtractionResult = ExtractionSuccess | ExtractionFailure


class PerspectiveStrategy(Protocol):
    name: str

    def extract(self, raw_log: str) -> ExtractionResult: ...


class JsonV1Strategy:
    name = "json"

    def extract(self, raw_log: str) -> ExtractionResult:
        block = extract_between_last_markers(
            raw_log, PERSPECTIVES_JSON_BEGIN, PERSPECTIVES_JSON_END
        )
        if block is None:
            return ExtractionFailure("JSON markers not found")
        parsed = parse_perspective_json_v1(block)
        if isinstance(parsed, TableParseError):
            return ExtractionFailure(parsed.reason)
        if not parsed:
            return ExtractionFailure("cases is empty")
        return ExtractionSuccess(
            cases=tuple(parsed),
            markdown=render_perspective_table(parsed),
            source=self.name,
        )


class LegacyMarkdownStrategy:
    name = "legacy-markdown"

    def extract(self, raw_log: str) -> ExtractionResult:
        block = extract_between_last_markers(
            raw_log, PERSPECTIVES_LEGACY_BEGIN, PERSPECTIVES_LEGACY_END
        )
        if block is None:
            return ExtractionFailure("legacy markers not found")
        parsed = parse_perspective_table(block)
        if isinstance(parsed, TableParseError):
            return ExtractionFailure(parsed.reason)
        return ExtractionSuccess(
            cases=tuple(parsed),
            markdown=render_perspective_table(parsed),
            source=self.name,
        )


DEFAULT_STRATEGIES: tuple[PerspectiveStrategy, ...] = (
    JsonV1Strategy(),
    LegacyMarkdownStrategy(),
)


@dataclass(frozen=True)
class PerspectiveExtraction:
    """Outcome of perspective extraction.

    Attributes:
        markdown: Table Markdown to save. Always well formed.
        extracted: True only for a genuine table from the agent; False for
            the synthesized diagnostic table.
        cases: Parsed cases (empty when not extracted).
        failure_reason: Why extraction failed, when it did.
    """

    markdown: str
    extracted: bool
    cases: tuple[PerspectiveCase, ...] = ()
    failure_reason: str | None = None


def build_extraction_failure_markdown(reason: str, raw_log: str) -> str:
    diagnostic = PerspectiveCase(
        case_id=EXTRACTION_FAILURE_CASE_ID,
        input_precondition="Extract the perspective table from the agent output",
        perspective="Error - extraction failed",
        expected_result="A perspective table is emitted between the markers",
        notes=reason,
    )
    log_text = truncate_text(sanitize_agent_log(raw_log)) or "(no agent output)"
    return "\n".join(
        [
            render_perspective_table([diagnostic]).rstrip("\n"),
            "",
            "<details>",
            "<summary>Agent output (raw)</summary>",
            "",
            "```text",
            log_text,
            "```",
            "",
            "</details>",
            "",
        ]
    )


def extract_perspectives(
    raw_log: str,
    *,
    exit_code: int | None = None,
    strategies: Sequence[PerspectiveStrategy] = DEFAULT_STRATEGIES,
) -> PerspectiveExtraction:
    """Run ``strategies`` in order; the first success wins."""
    failures: list[str] = []
    for strategy in strategies:
        result = strategy.extract(raw_log)
        if isinstance(result, ExtractionSuccess):
            return PerspectiveExtraction(
                markdown=result.markdown, extracted=True, cases=result.cases
            )
        failures.append(f"{strategy.name}: {result.reason}")

    exit_text = "null" if exit_code is None else str(exit_code)
    reason = f"{'; '.join(failures)} (agent exit={exit_text})"
    return PerspectiveExtraction(
        markdown=build_extraction_failure_markdown(reason, raw_log),
        extracted=False,
        failure_reason=reason,
    )
