"""Engine lifecycle hooks.

- ``PreCompact``: archive the full transcript as markdown before old history
  is compacted away. Best-effort; never fails the session.
- ``PreToolUse`` (Bash): unset secret variables in front of every shell command
  so tool subprocesses never see them.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("agent_runner.hooks")

# Needed by the engine itself for API auth, never by the commands it runs.
SECRET_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "CLAUDE_CODE_OAUTH_TOKEN",
    "OPENROUTER_API_KEY",
)

MAX_ARCHIVED_MESSAGE_CHARS = 2000
MAX_SLUG_CHARS = 50

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class TranscriptMessage:
    role: str
    content: str


def slugify(summary: str) -> str:
    return _NON_ALNUM_RE.sub("-", summary.lower()).strip("-")[:MAX_SLUG_CHARS]


def fallback_name(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"conversation-{now:%H%M}"


def parse_transcript(content: str) -> list[TranscriptMessage]:
    """Extract user/assistant text turns from a JSONL transcript."""
    messages: list[TranscriptMessage] = []
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if not isinstance(entry, dict):
            continue
        body = entry.get("message") or {}
        raw = body.get("content") if isinstance(body, dict) else None
        if not raw:
            continue

        if entry.get("type") == "user":
            if isinstance(raw, str):
                text = raw
            else:
                text = "".join(
                    str(part.get("text") or "") for part in raw if isinstance(part, dict)
                )
            if text:
                messages.append(TranscriptMessage("user", text))
        elif entry.get("type") == "assistant" and isinstance(raw, list):
            text = "".join(
                str(part.get("text") or "")
                for part in raw
                if isinstance(part, dict) and part.get("type") == "text"
            )
            if text:
                messages.append(TranscriptMessage("assistant", text))
    return messages


def get_session_summary(session_id: str, transcript_path: Path) -> str | None:
    """Look up the engine's stored summary for a session in ``sessions-index.json``."""
    index_path = Path(transcript_path).parent / "sessions-index.json"
    if not index_path.exists():
        logger.info("Sessions index not found at %s", index_path)
        return None
    try:
        index = json.loads(index_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read sessions index: %s", exc)
        return None
    entries = index.get("entries") if isinstance(index, dict) else None
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("sessionId") == session_id and entry.get("summary"):
            return str(entry["summary"])
    return None


def _format_archived_at(now: datetime) -> str:
    hour = now.hour % 12 or 12
    suffix = "AM" if now.hour < 12 else "PM"
    return f"{now:%b} {now.day}, {hour}:{now:%M} {suffix}"


def format_transcript_markdown(
    messages: list[TranscriptMessage],
    title: str | None = None,
    assistant_name: str = "Andy",
    now: datetime | None = None,
) -> str:
    now = now or datetime.now()
    lines = [f"# {title or 'Conversation'}", "", f"Archived: {_format_archived_at(now)}", "", "---", ""]
    for msg in messages:
        sender = "User" if msg.role == "user" else assistant_name
        content = msg.content
        if len(content) > MAX_ARCHIVED_MESSAGE_CHARS:
            content = content[:MAX_ARCHIVED_MESSAGE_CHARS] + "..."
        lines.append(f"**{sender}**: {content}")
        lines.append("")
    return "\n".join(lines)


class TranscriptArchiver:
    """PreCompact hook: write the transcript to ``archive_dir`` as markdown."""

    def __init__(self, archive_dir: Path, assistant_name: str = "Andy"):
        self.archive_dir = Path(archive_dir)
        self.assistant_name = assistant_name

    def archive(self, transcript_path: Path, session_id: str) -> Path | None:
        content = Path(transcript_path).read_text(encoding="utf-8")
        messages = parse_transcript(content)
        if not messages:
            logger.info("No messages to archive")
            return None

        summary = get_session_summary(session_id, transcript_path)
        name = slugify(summary) if summary else fallback_name()

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        target = self.archive_dir / f"{datetime.now():%Y-%m-%d}-{name}.md"
        target.write_text(
            format_transcript_markdown(messages, summary, self.assistant_name),
            encoding="utf-8",
        )
        logger.info("Archived conversation to %s", target)
        return target

    async def __call__(
        self, input_data: dict[str, Any], tool_use_id: str | None, context: Any
    ) -> dict[str, Any]:
        transcript_path = input_data.get("transcript_path")
        if not transcript_path or not Path(transcript_path).exists():
            logger.info("No transcript found for archiving")
            return {}
        try:
            self.archive(Path(transcript_path), str(input_data.get("session_id") or ""))
        except Exception as exc:
            logger.warning("Failed to archive transcript: %s", exc)
        return {}


def unset_secrets_prefix(names: tuple[str, ...] = SECRET_ENV_VARS) -> str:
    return f"unset {' '.join(names)} 2>/dev/null; "


async def sanitize_bash_hook(
    input_data: dict[str, Any], tool_use_id: str | None, context: Any
) -> dict[str, Any]:
    """PreToolUse hook: strip secret variables from the shell tool's environment."""
    tool_name = input_data.get("tool_name")
    if tool_name and tool_name != "Bash":
        return {}
    tool_input = input_data.get("tool_input") or {}
    command = tool_input.get("command") if isinstance(tool_input, dict) else None
    if not command:
        return {}
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "updatedInput": {**tool_input, "command": unset_secrets_prefix() + command},
        }
    }
