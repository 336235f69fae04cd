"""Console implementation of the Notifier protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import typer

from testsmith.infra.io.console import Colors, log

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)


class ConsoleNotifier:
    """Prints notifications; choices are shown but never block the run.

    A non-interactive console cannot answer a prompt mid-run, so ``choose``
    lists the options and returns None.
    """

    def info(self, message: str) -> None:
        log("ℹ", message, Colors.BLUE)

    def warning(self, message: str) -> None:
        log("⚠", message, Colors.YELLOW)

    def error(self, message: str) -> None:
        log("✗", message, Colors.RED)

    async def choose(self, message: str, actions: Sequence[str]) -> str | None:
        log("?", f"{message} [{' / '.join(actions)}]", Colors.MAGENTA)
        return None

    def open_path(self, path: Path) -> None:
        if typer.launch(str(path)) != 0:
            logger.warning("Could not open %s", path)

    def copy_text(self, text: str) -> None:
        # No clipboard access from a plain terminal; print for manual copy
        typer.echo(text)
