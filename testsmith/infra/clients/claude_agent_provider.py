"""AgentProvider implementation backed by the Claude Agent SDK.

Each ``run`` starts an asyncio task that streams SDK messages and translates
them into channel events: assistant text becomes info logs, file-editing
tool calls become FileWriteEvents, denied tool calls become
"Tool execution rejected" warnings, and the ResultMessage becomes the
terminal CompletedEvent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol, Self, runtime_checkable

from testsmith.core.events import CompletedEvent, FileWriteEvent, StartedEvent

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from testsmith.core.events import EventChannel
    from testsmith.core.protocols import AgentRunOptions

logger = logging.getLogger(__name__)

# Tools whose input carries the path of a file they modify
FILE_WRITE_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})

_PERMISSION_DENIAL_HINTS = ("permission", "denied", "not allowed", "haven't granted")


@runtime_checkable
class SDKClientProtocol(Protocol):
    """Subset of ClaudeSDKClient used by ClaudeAgentProvider."""

    async def __aenter__(self) -> Self: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None: ...

    async def query(self, prompt: str, session_id: str | None = None) -> None: ...

    def receive_response(self) -> AsyncIterator[object]: ...


@runtime_checkable
class SDKClientFactory(Protocol):
    """Creates SDK clients; lets tests inject fakes."""

    def create(self, options: object) -> SDKClientProtocol: ...


class ClaudeRunningTask:
    """RunningTask handle wrapping the asyncio task of one agent run."""

    def __init__(self, task_id: str, task: asyncio.Task[None]):
        self._task_id = task_id
        self._task = task

    @property
    def task_id(self) -> str:
        return self._task_id

    def dispose(self) -> None:
        if not self._task.done():
            self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return ""


class ClaudeAgentProvider:
    """Runs prompts through ``ClaudeSDKClient``.

    ``allow_write`` maps to ``bypassPermissions``; otherwise the agent runs in
    ``default`` permission mode and only ``allowed_tools`` are pre-approved,
    so any other tool call is denied.
    """

    provider_id = "claude-agent-sdk"

    def __init__(
        self,
        sdk_client_factory: SDKClientFactory | None = None,
        setting_sources: tuple[str, ...] = ("project", "user"),
        cli_path: Path | None = None,
    ):
        self.sdk_client_factory = sdk_client_factory
        self.setting_sources = setting_sources
        self.cli_path = cli_path
        self._tasks: set[asyncio.Task[None]] = set()

    def run(self, options: AgentRunOptions) -> ClaudeRunningTask:
        task = asyncio.get_running_loop().create_task(
            self._run(options), name=f"agent:{options.task_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return ClaudeRunningTask(options.task_id, task)

    def _build_options(self, options: AgentRunOptions) -> object:
        from claude_agent_sdk import ClaudeAgentOptions

        return ClaudeAgentOptions(
            cwd=str(options.workspace_root),
            permission_mode="bypassPermissions" if options.allow_write else "default",
            model=options.model,
            allowed_tools=list(options.allowed_tools or ()),
            system_prompt={"type": "preset", "preset": "claude_code"},
            setting_sources=list(self.setting_sources),
            cli_path=self.cli_path,
        )

    async def _run(self, options: AgentRunOptions) -> None:
        channel = options.channel
        task_id = options.task_id
        channel.publish(
            StartedEvent(
                task_id=task_id,
                label="agent",
                detail=f"model={options.model or 'default'} write={options.allow_write}",
            )
        )
        exit_code: int | None = None
        try:
            exit_code = await self._stream(options)
        except asyncio.CancelledError:
            channel.log(task_id, "warn", "Agent run cancelled")
            raise
        except Exception as e:
            logger.exception("Agent run %s failed", task_id)
            channel.log(task_id, "error", f"Agent run failed: {e}")
            exit_code = 1
        finally:
            channel.publish(CompletedEvent(task_id=task_id, exit_code=exit_code))

    async def _stream(self, options: AgentRunOptions) -> int | None:
        from claude_agent_sdk import (
            AssistantMessage,
            ClaudeSDKClient,
            ResultMessage,
            TextBlock,
            ToolResultBlock,
            ToolUseBlock,
            UserMessage,
        )

        sdk_options = self._build_options(options)
        if self.sdk_client_factory is not None:
            client = self.sdk_client_factory.create(sdk_options)
        else:
            client = ClaudeSDKClient(options=sdk_options)  # type: ignore[arg-type]

        channel = options.channel
        task_id = options.task_id
        exit_code: int | None = None
        async with client:
            await client.query(options.prompt)
            async for message in client.receive_response():
                if isinstance(message, (AssistantMessage, UserMessage)):
                    content = message.content
                    if isinstance(content, str):
                        continue
                    for block in content:
                        if isinstance(block, TextBlock):
                            channel.log(task_id, "info", block.text)
                        elif isinstance(block, ToolUseBlock):
                            self._on_tool_use(channel, task_id, block.name, block.input)
                        elif isinstance(block, ToolResultBlock) and block.is_error:
                            self._on_tool_error(channel, task_id, block.content)
                elif isinstance(message, ResultMessage):
                    if message.result:
                        channel.log(task_id, "info", message.result)
                    exit_code = 1 if message.is_error else 0
        return exit_code

    @staticmethod
    def _on_tool_use(
        channel: EventChannel, task_id: str, name: str, tool_input: dict[str, Any]
    ) -> None:
        if name in FILE_WRITE_TOOLS:
            path = tool_input.get("file_path") or tool_input.get("notebook_path")
            if path:
                content = tool_input.get("content")
                channel.publish(
                    FileWriteEvent(
                        task_id=task_id,
                        path=str(path),
                        lines_created=(
                            len(content.splitlines()) if isinstance(content, str) else None
                        ),
                        bytes_written=(
                            len(content.encode("utf-8"))
                            if isinstance(content, str)
                            else None
                        ),
                    )
                )
                return
        if name == "Bash":
            command = tool_input.get("command", "")
            channel.log(task_id, "info", f"$ {command}")

    @staticmethod
    def _on_tool_error(channel: EventChannel, task_id: str, content: Any) -> None:
        text = _tool_result_text(content)
        if any(hint in text.lower() for hint in _PERMISSION_DENIAL_HINTS):
            channel.log(task_id, "warn", f"Tool execution rejected: {text.strip()}")
        else:
            channel.log(task_id, "warn", f"Tool error: {text.strip()}")
