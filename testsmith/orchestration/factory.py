"""Factory function for TestGenerationSession initialization.

Usage:
    # Simple usage with defaults
    config = SessionConfig(task_id="gen-1", label="src/app.py", ...)
    session = create_session(config)
    outcome = await session.run()

    # With custom dependencies for testing
    deps = SessionDependencies(provider=fake_provider, registry=registry)
    session = create_session(config, settings=RunSettings(), deps=deps)
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from .types import HostContext, SessionConfig, SessionDependencies, SessionOutcome

__all__ = [
    "HostContext",
    "SessionConfig",
    "SessionDependencies",
    "SessionOutcome",
    "create_session",
]

if TYPE_CHECKING:
    from testsmith.domain.settings import RunSettings
    from testsmith.infra.io.config import TestsmithConfig

    from .session import TestGenerationSession


def create_session(
    config: SessionConfig,
    *,
    settings: RunSettings | None = None,
    testsmith_config: TestsmithConfig | None = None,
    deps: SessionDependencies | None = None,
) -> TestGenerationSession:
    """Create a TestGenerationSession with defaults for missing pieces.

    Config precedence: explicit arguments > testsmith.yaml / environment >
    defaults. A fresh EventChannel gets a ConsoleEventSink subscribed; an
    injected channel is used as is.

    Args:
        config: SessionConfig describing the run.
        settings: RunSettings; loaded from testsmith.yaml in
            ``config.local_root`` when None.
        testsmith_config: TestsmithConfig; loaded from the environment when
            None. Supplies the storage directory, model and agent timeout.
        deps: Optional SessionDependencies for custom implementations.

    Returns:
        Configured TestGenerationSession ready for run().

    Raises:
        ConfigError: If testsmith.yaml is invalid.
        ConfigurationError: If the environment configuration is invalid.
    """
    from testsmith.core.events import EventChannel
    from testsmith.domain.settings import load_run_settings
    from testsmith.domain.task_registry import TaskRegistry
    from testsmith.infra.io.config import TestsmithConfig
    from testsmith.infra.io.event_sink import ConsoleEventSink
    from testsmith.infra.io.notifier import ConsoleNotifier
    from testsmith.infra.tools.command_runner import CommandRunner
    from testsmith.infra.worktree import WorktreeIsolationManager

    from .session import TestGenerationSession

    deps = deps or SessionDependencies()
    if settings is None:
        settings = load_run_settings(config.local_root)
    if testsmith_config is None:
        testsmith_config = TestsmithConfig.from_env(validate=True)

    agent_timeout_ms = config.agent_timeout_ms
    if agent_timeout_ms is None and testsmith_config.agent_timeout_seconds:
        agent_timeout_ms = int(testsmith_config.agent_timeout_seconds * 1000)
    config = dataclasses.replace(
        config,
        model=config.model if config.model is not None else testsmith_config.model,
        agent_timeout_ms=agent_timeout_ms,
    )

    channel = deps.channel
    if channel is None:
        channel = EventChannel()
        channel.subscribe(ConsoleEventSink())

    provider = deps.provider
    if provider is None:
        from testsmith.infra.clients.claude_agent_provider import ClaudeAgentProvider

        provider = ClaudeAgentProvider(cli_path=testsmith_config.claude_cli_path)

    command_runner = deps.command_runner or CommandRunner(cwd=config.local_root)
    isolation_manager = deps.isolation_manager or WorktreeIsolationManager(command_runner)
    host_context = deps.host_context or HostContext(storage_dir=testsmith_config.storage_dir)

    return TestGenerationSession(
        config,
        settings=settings,
        provider=provider,
        registry=deps.registry or TaskRegistry(),
        channel=channel,
        notifier=deps.notifier or ConsoleNotifier(),
        command_runner=command_runner,
        isolation_manager=isolation_manager,
        host_context=host_context,
    )
