"""In-memory fake implementations for testing.

This module provides fake implementations of testsmith protocols for use in
unit and integration tests. Fakes are preferred over mocks because they:

1. Implement real protocol contracts, catching interface mismatches at test time
2. Provide deterministic, predictable behavior without call-order dependencies
3. Enable behavior-based testing (assert outputs/state) over interaction testing

Available fakes:
- FakeAgentProvider: Scripted agent runs that publish events like a real provider
- FakeCommandRunner: Deterministic command execution with fail-closed semantics
- FakeIsolationManager: Directory-backed isolated copies that count removals
- FakeNotifier: Notification capture with a preset choice

Usage:
    from tests.fakes import FakeAgentProvider, FakeCommandRunner

    async def test_something():
        provider = FakeAgentProvider()
        provider.script("gen-1", log_lines=["wrote tests"])
        # test code that uses provider
"""

from tests.fakes.agent_provider import AgentScript, FakeAgentProvider, FakeRunningTask
from tests.fakes.command_runner import FakeCommandRunner, UnregisteredCommandError
from tests.fakes.isolation import FakeIsolationManager
from tests.fakes.notifier import FakeNotifier

__all__ = [
    "AgentScript",
    "FakeAgentProvider",
    "FakeCommandRunner",
    "FakeIsolationManager",
    "FakeNotifier",
    "FakeRunningTask",
    "UnregisteredCommandError",
]
