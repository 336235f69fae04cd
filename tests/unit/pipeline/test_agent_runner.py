"""Unit tests for run_provider_to_completion."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from testsmith.core.cancellation import CancellationToken
from testsmith.core.events import EventChannel, LogEvent
from testsmith.core.protocols import AgentRunOptions
from testsmith.pipeline.agent_runner import run_provider_to_completion
from tests.fakes import FakeAgentProvider


def _options(channel: EventChannel, task_id: str = "gen-1") -> AgentRunOptions:
    return AgentRunOptions(
        task_id=task_id,
        workspace_root=Path("/repo"),
        prompt="prompt",
        channel=channel,
    )


class TestRunProviderToCompletion:
    @pytest.mark.asyncio
    async def test_collects_log_lines_and_exit_code(self) -> None:
        channel = EventChannel()
        provider = FakeAgentProvider()
        provider.script("gen-1", log_lines=["one", "two"], exit_code=3)
        provider.script("other", log_lines=["noise"])

        outcome = await run_provider_to_completion(
            provider, _options(channel), channel=channel
        )

        assert outcome.exit_code == 3
        assert outcome.log_lines == ["one", "two"]
        assert outcome.raw_log == "one\ntwo"
        assert not outcome.timed_out
        assert not outcome.cancelled

    @pytest.mark.asyncio
    async def test_timeout_logs_error_and_disposes(self) -> None:
        channel = EventChannel()
        provider = FakeAgentProvider()
        provider.script("gen-1", log_lines=["started"], hang=True)

        outcome = await run_provider_to_completion(
            provider, _options(channel), channel=channel, timeout_ms=30
        )

        assert outcome.timed_out
        assert outcome.exit_code is None
        assert outcome.log_lines == ["started"]
        assert provider.handles[0].dispose_count == 1
        errors = [
            e for e in channel.events_for("gen-1") if isinstance(e, LogEvent) and e.level == "error"
        ]
        assert errors[0].message == "Agent run timed out after 30ms; stopping it."

    @pytest.mark.asyncio
    async def test_cancellation_stops_waiting(self) -> None:
        channel = EventChannel()
        provider = FakeAgentProvider()
        provider.script("gen-1", hang=True)
        token = CancellationToken()
        handles = []

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        outcome = await run_provider_to_completion(
            provider,
            _options(channel),
            channel=channel,
            token=token,
            on_running_task=handles.append,
        )
        await canceller

        assert outcome.cancelled
        assert outcome.exit_code is None
        assert handles == provider.handles
        assert provider.handles[0].dispose_count == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_token_returns_immediately(self) -> None:
        channel = EventChannel()
        provider = FakeAgentProvider()
        provider.script("gen-1", hang=True)
        token = CancellationToken()
        token.cancel()

        outcome = await run_provider_to_completion(
            provider, _options(channel), channel=channel, token=token
        )

        assert outcome.cancelled
