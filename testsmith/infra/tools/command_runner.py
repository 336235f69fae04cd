"""Standardized async subprocess execution for testsmith.

All subprocesses (git, the test command) go through CommandRunner so that
timeouts, process-group termination, and output decoding behave the same
everywhere.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)

# Exit status reported for commands killed by our timeout (matches coreutils)
TIMEOUT_EXIT_CODE = 124

DEFAULT_KILL_GRACE_SECONDS = 2.0


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was run.
        returncode: Exit status. Negative values mean the process was killed
            by that signal number; 124 means our timeout fired.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
        duration_seconds: Wall-clock duration.
        timed_out: True when the timeout fired and the process was killed.
    """

    command: list[str] | str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


class CommandRunner:
    """Runs commands with a default cwd and timeout.

    Example:
        runner = CommandRunner(cwd=repo_path, timeout_seconds=30)
        result = await runner.run_async(["git", "status"])
    """

    def __init__(
        self,
        cwd: Path,
        timeout_seconds: float | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ):
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds

    async def run_async(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResult:
        """Run a command asynchronously.

        Raises:
            OSError: If the process could not be spawned (missing cwd or
                executable).
            TypeError: If ``shell`` is set and ``cmd`` is not a string.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        if use_process_group is None:
            use_process_group = sys.platform != "win32"
        merged_env = {**os.environ, **env} if env else None
        run_cwd = cwd or self.cwd

        start = time.monotonic()
        if shell:
            if not isinstance(cmd, str):
                raise TypeError("shell=True requires a command string")
            proc = await asyncio.create_subprocess_shell(
                cmd,
                cwd=run_cwd,
                env=merged_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=use_process_group,
            )
        else:
            argv = [cmd] if isinstance(cmd, str) else list(cmd)
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=run_cwd,
                env=merged_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=use_process_group,
            )

        try:
            async with asyncio.timeout(effective_timeout):
                stdout, stderr = await proc.communicate()
        except TimeoutError:
            await self._terminate(proc, use_process_group)
            stdout, stderr = await proc.communicate()
            logger.warning(
                "Command timed out after %.1fs: %s", effective_timeout, cmd
            )
            return CommandResult(
                command=cmd,
                returncode=TIMEOUT_EXIT_CODE,
                stdout=_decode(stdout),
                stderr=_decode(stderr),
                duration_seconds=time.monotonic() - start,
                timed_out=True,
            )

        return CommandResult(
            command=cmd,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            duration_seconds=time.monotonic() - start,
        )

    async def _terminate(
        self, proc: asyncio.subprocess.Process, use_process_group: bool
    ) -> None:
        """SIGTERM, wait for the grace period, then SIGKILL."""
        self._send_signal(proc, signal.SIGTERM, use_process_group)
        try:
            async with asyncio.timeout(self.kill_grace_seconds):
                await proc.wait()
            return
        except TimeoutError:
            pass
        self._send_signal(proc, signal.SIGKILL, use_process_group)
        await proc.wait()

    @staticmethod
    def _send_signal(
        proc: asyncio.subprocess.Process, sig: signal.Signals, use_process_group: bool
    ) -> None:
        try:
            if use_process_group:
                os.killpg(proc.pid, sig)
            else:
                proc.send_signal(sig)
        except ProcessLookupError:
            pass

