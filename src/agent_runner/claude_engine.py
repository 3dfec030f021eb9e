from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    HookMatcher,
    ResultMessage,
    SystemMessage,
    query,
)

from .hooks import TranscriptArchiver, sanitize_bash_hook
from .memory import FileMemory, list_extra_dirs
from .models import (
    AssistantEvent,
    EngineEvent,
    InitEvent,
    OtherEvent,
    ResultEvent,
    SessionHandle,
    TaskNotificationEvent,
)

logger = logging.getLogger("agent_runner.claude_engine")

ALLOWED_TOOLS = [
    "Bash",
    "Read", "Write", "Edit", "Glob", "Grep",
    "WebSearch", "WebFetch",
    "Task", "TaskOutput", "TaskStop",
    "TeamCreate", "TeamDelete", "SendMessage",
    "TodoWrite", "ToolSearch", "Skill",
    "NotebookEdit",
    "mcp__nanoclaw__*",
    "mcp__gmail__*",
]


def to_engine_event(message: Any) -> EngineEvent:
    """Reduce an SDK message to the closed set of events the orchestrator handles."""
    if isinstance(message, SystemMessage):
        data = message.data or {}
        if message.subtype == "init":
            return InitEvent(session_id=str(data.get("session_id") or ""))
        if message.subtype == "task_notification":
            return TaskNotificationEvent(
                task_id=str(data.get("task_id") or ""),
                status=str(data.get("status") or ""),
                summary=str(data.get("summary") or ""),
            )
        return OtherEvent(kind=f"system/{message.subtype}")
    if isinstance(message, AssistantMessage):
        return AssistantEvent(uuid=getattr(message, "uuid", None))
    if isinstance(message, ResultMessage):
        return ResultEvent(subtype=message.subtype, text=message.result)
    return OtherEvent(kind=type(message).__name__)


async def _sdk_user_messages(prompts: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    async for text in prompts:
        yield {
            "type": "user",
            "message": {"role": "user", "content": text},
            "parent_tool_use_id": None,
            "session_id": "",
        }


class ClaudeAgentEngine:
    """Primary engine backed by the Claude Agent SDK in streaming-input mode.

    The prompt feed stays open for the whole invocation so sub-agents and
    multi-step work can finish; the invocation ends when the SDK's message
    sequence ends.
    """

    def __init__(
        self,
        group_dir: Path,
        global_dir: Path,
        extra_dir: Path,
        is_main: bool,
        chat_jid: str,
        group_folder: str,
        env: dict[str, str] | None = None,
        ipc_mcp_server_cmd: list[str] | None = None,
        gmail_mcp_server_cmd: list[str] | None = None,
        archiver: TranscriptArchiver | None = None,
    ):
        """Initialize the engine adapter.

        Args:
            group_dir: Working directory of the session (group workspace)
            global_dir: Shared workspace whose memory is added for non-main groups
            extra_dir: Parent of additional mounted directories
            is_main: Whether this session belongs to the main group
            chat_jid: Chat identity forwarded to the IPC MCP server
            group_folder: Group identity forwarded to the IPC MCP server
            env: Environment for the engine process (includes payload secrets)
            ipc_mcp_server_cmd: Command launching the IPC MCP server (empty = disabled)
            gmail_mcp_server_cmd: Command launching the Gmail MCP server (empty = disabled)
            archiver: PreCompact transcript archiver (default: <group>/conversations)
        """
        self.group_dir = Path(group_dir)
        self.extra_dir = Path(extra_dir)
        self.is_main = is_main
        self.chat_jid = chat_jid
        self.group_folder = group_folder
        self.env = dict(env or {})
        self.ipc_mcp_server_cmd = list(ipc_mcp_server_cmd or [])
        self.gmail_mcp_server_cmd = list(gmail_mcp_server_cmd or [])
        self.memory = FileMemory(self.group_dir, Path(global_dir), is_main)
        self.archiver = archiver or TranscriptArchiver(self.group_dir / "conversations")

    def _build_mcp_servers(self) -> dict[str, Any]:
        servers: dict[str, Any] = {}
        if self.ipc_mcp_server_cmd:
            servers["nanoclaw"] = {
                "command": self.ipc_mcp_server_cmd[0],
                "args": self.ipc_mcp_server_cmd[1:],
                "env": {
                    "NANOCLAW_CHAT_JID": self.chat_jid,
                    "NANOCLAW_GROUP_FOLDER": self.group_folder,
                    "NANOCLAW_IS_MAIN": "1" if self.is_main else "0",
                },
            }
        if self.gmail_mcp_server_cmd:
            servers["gmail"] = {
                "command": self.gmail_mcp_server_cmd[0],
                "args": self.gmail_mcp_server_cmd[1:],
            }
        return servers

    def build_options(self, handle: SessionHandle) -> ClaudeAgentOptions:
        """Assemble SDK options for one invocation of ``handle``'s session."""
        memory = self.memory.merged()
        extra_dirs = list_extra_dirs(self.extra_dir)
        if extra_dirs:
            logger.info("Additional directories: %s", ", ".join(extra_dirs))

        extra_args: dict[str, str | None] = {}
        if handle.session_id and handle.resume_cursor:
            extra_args["resume-session-at"] = handle.resume_cursor

        return ClaudeAgentOptions(
            cwd=str(self.group_dir),
            add_dirs=extra_dirs,
            resume=handle.session_id,
            extra_args=extra_args,
            system_prompt=(
                {"type": "preset", "preset": "claude_code", "append": memory} if memory else None
            ),
            allowed_tools=list(ALLOWED_TOOLS),
            env=self.env,
            permission_mode="bypassPermissions",
            setting_sources=["project", "user"],
            mcp_servers=self._build_mcp_servers(),
            hooks={
                "PreCompact": [HookMatcher(hooks=[self.archiver])],
                "PreToolUse": [HookMatcher(matcher="Bash", hooks=[sanitize_bash_hook])],
            },
        )

    async def invoke(
        self, prompts: AsyncIterable[str], handle: SessionHandle
    ) -> AsyncIterator[EngineEvent]:
        options = self.build_options(handle)
        async for message in query(prompt=_sdk_user_messages(prompts), options=options):
            yield to_engine_event(message)
