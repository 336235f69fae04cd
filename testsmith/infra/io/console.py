"""Console logging helpers for testsmith.

Colored, timestamped lines with a per-task color so concurrent sessions can
be told apart.
"""

from datetime import datetime

# Global verbose setting (can be modified at runtime)
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    """Enable or disable verbose output globally."""
    global _verbose_enabled
    _verbose_enabled = enabled


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length, adding ellipsis if truncated.

    Returns the text unchanged when verbose output is enabled.
    """
    if _verbose_enabled:
        return text
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class Colors:
    """ANSI color codes for terminal output (bright variants)."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    WHITE = "\033[97m"
    MUTED = "\033[90m"


# Palette for distinguishing concurrent tasks
TASK_COLORS = [
    "\033[96m",
    "\033[93m",
    "\033[95m",
    "\033[92m",
    "\033[94m",
    "\033[97m",
]

# Sub-task id suffixes appended to a session task id
TASK_SUFFIXES = ("-perspectives", "-test-agent", "-test", "-guard", "-gen")

_task_color_map: dict[str, str] = {}


def get_task_color(task_id: str) -> str:
    """Stable color per task; sub-tasks (``<id>-test``) share their parent's."""
    root = task_id
    for suffix in TASK_SUFFIXES:
        if root.endswith(suffix):
            root = root[: -len(suffix)]
            break
    if root not in _task_color_map:
        _task_color_map[root] = TASK_COLORS[len(_task_color_map) % len(TASK_COLORS)]
    return _task_color_map[root]


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
    task_id: str | None = None,
) -> None:
    style = Colors.MUTED if dim else ""
    timestamp = datetime.now().strftime("%H:%M:%S")
    if task_id:
        prefix = f"{get_task_color(task_id)}[{task_id}]{Colors.RESET} "
    else:
        prefix = ""
    print(
        f"{Colors.GRAY}{timestamp}{Colors.RESET} {prefix}{style}{color}{icon} {message}{Colors.RESET}"
    )


def log_verbose(
    icon: str, message: str, color: str = Colors.MUTED, task_id: str | None = None
) -> None:
    """Log only when verbose output is enabled."""
    if _verbose_enabled:
        log(icon, message, color, task_id=task_id)


def log_agent_text(text: str, task_id: str) -> None:
    """Indented, muted agent output, truncated unless verbose."""
    truncated = truncate_text(text, 100)
    print(
        f"  {get_task_color(task_id)}[{task_id}]{Colors.RESET} {Colors.MUTED}{truncated}{Colors.RESET}"
    )
