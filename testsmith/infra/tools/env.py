"""Environment configuration and loading for testsmith.

Centralizes config paths and dotenv loading.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env, storage, etc.)
USER_CONFIG_DIR = Path.home() / ".config" / "testsmith"


def get_storage_dir() -> Path:
    """Get the storage directory, respecting TESTSMITH_STORAGE_DIR env var.

    Evaluated at call time so values loaded from .env via load_user_env()
    are respected. Worktrees, patches, snapshots, and merge instructions
    live here.
    """
    return Path(
        os.environ.get("TESTSMITH_STORAGE_DIR", str(USER_CONFIG_DIR / "storage"))
    )


def load_user_env() -> None:
    """Load ${USER_CONFIG_DIR}/.env (typically ~/.config/testsmith/.env)."""
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")


def load_env(repo_path: Path | None = None) -> None:
    """Load environment from user config and optionally repo.

    NOTE: The repo_path parameter is for TESTING ONLY. Production code should
    only use load_user_env().
    """
    load_user_env()
    if repo_path is not None:
        load_dotenv(dotenv_path=repo_path / ".env", override=True)
