#!/usr/bin/env python3
"""
testsmith: generate tests for a code change with a coding agent.

This module is a thin shim that exposes the CLI app from testsmith.cli.
The actual implementation lives in testsmith/cli/cli.py.

Usage:
    testsmith run [OPTIONS] [REPO_PATH]
    testsmith clean [REPO_PATH]
"""

from .cli.cli import bootstrap

# Load ~/.config/testsmith/.env before the CLI module reads any settings
bootstrap()

from .cli.cli import app  # noqa: E402

if __name__ == "__main__":
    app()
