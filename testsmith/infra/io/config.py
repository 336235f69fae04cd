"""Runtime configuration for testsmith.

Environment Variables:
    TESTSMITH_STORAGE_DIR: Directory for worktrees and merge-back artifacts
        (default: ~/.config/testsmith/storage)
    TESTSMITH_MODEL: Model passed to the agent (default: backend default)
    TESTSMITH_AGENT_TIMEOUT_SECONDS: Wall-clock timeout for test generation
        (default: no timeout)
    TESTSMITH_CLAUDE_CLI_PATH: Claude Code CLI used by the agent SDK
        (default: the SDK locates it)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from testsmith.infra.tools.env import get_storage_dir


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        super().__init__(message)


@dataclass(frozen=True)
class TestsmithConfig:
    """Process-wide configuration.

    Attributes:
        storage_dir: Where isolated worktrees and merge-back artifacts live.
            Env: TESTSMITH_STORAGE_DIR
        model: Model override for every agent run. None uses the default.
            Env: TESTSMITH_MODEL
        agent_timeout_seconds: Wall-clock timeout for the generation run.
            Env: TESTSMITH_AGENT_TIMEOUT_SECONDS
        claude_cli_path: Explicit Claude Code CLI for agent runs.
            Env: TESTSMITH_CLAUDE_CLI_PATH
    """

    __test__ = False

    storage_dir: Path
    model: str | None = None
    agent_timeout_seconds: float | None = None
    claude_cli_path: Path | None = None

    @classmethod
    def from_env(cls, *, validate: bool = True) -> TestsmithConfig:
        """Create TestsmithConfig from environment variables.

        Raises:
            ConfigurationError: If validate=True and configuration is invalid.
        """
        parse_errors: list[str] = []
        timeout: float | None = None
        timeout_raw = os.environ.get("TESTSMITH_AGENT_TIMEOUT_SECONDS")
        if timeout_raw:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                parse_errors.append(
                    f"TESTSMITH_AGENT_TIMEOUT_SECONDS must be a number, got: {timeout_raw}"
                )

        config = cls(
            storage_dir=get_storage_dir().expanduser(),
            model=os.environ.get("TESTSMITH_MODEL") or None,
            agent_timeout_seconds=timeout,
            claude_cli_path=_optional_path(os.environ.get("TESTSMITH_CLAUDE_CLI_PATH")),
        )
        if validate:
            errors = parse_errors + config.validate()
            if errors:
                raise ConfigurationError(errors)
        return config

    def validate(self) -> list[str]:
        """Return a list of configuration errors (empty when valid)."""
        errors: list[str] = []
        if not self.storage_dir.is_absolute():
            errors.append(
                f"storage_dir should be an absolute path, got: {self.storage_dir}"
            )
        if self.agent_timeout_seconds is not None and self.agent_timeout_seconds <= 0:
            errors.append(
                f"agent_timeout_seconds must be positive, got: {self.agent_timeout_seconds}"
            )
        return errors


def _optional_path(raw: str | None) -> Path | None:
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip()).expanduser()
