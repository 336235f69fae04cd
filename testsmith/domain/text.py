"""Small text helpers shared by parsers and report builders."""

from __future__ import annotations

import re

# Fixed character budget for long text embedded in Markdown artifacts
MAX_ARTIFACT_TEXT_CHARS = 200_000

_ANSI_PATTERN = re.compile(
    r"[\u001B\u009B][\[\]()#;?]*(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-ORZcf-nqry=><])"
)


def truncate_text(text: str, max_chars: int = MAX_ARTIFACT_TEXT_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n\n... (truncated: {len(text)} chars -> {max_chars} chars)"


def strip_ansi(text: str) -> str:
    return _ANSI_PATTERN.sub("", text)


def extract_between_last_markers(text: str, begin: str, end: str) -> str | None:
    """Text between the last complete ``begin``/``end`` pair, stripped.

    Earlier pairs (for example, the agent echoing the prompt's own example)
    and a trailing unterminated ``begin`` are ignored.
    """
    stop = text.rfind(end)
    if stop == -1:
        return None
    start = text.rfind(begin, 0, stop)
    if start == -1:
        return None
    return text[start + len(begin) : stop].strip()


def contains_marker_pair(text: str, begin: str, end: str) -> bool:
    return begin in text and end in text


def dedupe_stable(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))
