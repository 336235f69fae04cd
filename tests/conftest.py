"""Pytest configuration for testsmith tests."""

import os
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Sets up environment variables to:
    - Redirect worktrees and merge-back artifacts to /tmp to avoid polluting
      ~/.config/testsmith/storage
    - Clear model/timeout/CLI overrides from the developer's shell
    - Redirect Claude SDK logs to /tmp to avoid polluting ~/.claude/projects/
    """
    os.environ["TESTSMITH_STORAGE_DIR"] = "/tmp/testsmith-test-storage"

    os.environ.pop("TESTSMITH_MODEL", None)
    os.environ.pop("TESTSMITH_AGENT_TIMEOUT_SECONDS", None)
    os.environ.pop("TESTSMITH_CLAUDE_CLI_PATH", None)

    test_claude_dir = Path("/tmp/testsmith-test-claude")
    test_claude_dir.mkdir(parents=True, exist_ok=True)
    os.environ["CLAUDE_CONFIG_DIR"] = str(test_claude_dir)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration")):
            continue
        item.add_marker(pytest.mark.unit)
