"""Strip agent bookkeeping noise from log text before it lands in reports."""

from __future__ import annotations

import re

_SYSTEM_REMINDER_BLOCK = re.compile(r"<system_reminder>.*?</system_reminder>", re.DOTALL)
_NOISE_LINES = frozenset({"event:tool_call", "system:init"})


def sanitize_agent_log(message: str) -> str:
    text = _SYSTEM_REMINDER_BLOCK.sub("", message.replace("\r\n", "\n"))

    lines: list[str] = []
    prev_blank = False
    for line in text.split("\n"):
        line = line.rstrip()
        if line.strip() in _NOISE_LINES:
            continue
        if not line.strip():
            if prev_blank:
                continue
            prev_blank = True
            lines.append("")
            continue
        prev_blank = False
        lines.append(line)

    return "\n".join(lines).strip()
