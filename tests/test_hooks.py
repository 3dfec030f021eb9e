"""Tests for engine lifecycle hooks (transcript archiving, secret scrubbing)."""

from __future__ import annotations

import json
from datetime import datetime
from unittest.mock import patch

import pytest

from agent_runner.hooks import (
    TranscriptArchiver,
    TranscriptMessage,
    fallback_name,
    format_transcript_markdown,
    get_session_summary,
    parse_transcript,
    sanitize_bash_hook,
    slugify,
)


def _jsonl(*entries) -> str:
    return "\n".join(json.dumps(entry) for entry in entries) + "\n"


TRANSCRIPT = _jsonl(
    {"type": "user", "message": {"role": "user", "content": "What's on my calendar?"}},
    {
        "type": "assistant",
        "message": {
            "content": [
                {"type": "text", "text": "You have "},
                {"type": "tool_use", "name": "Bash", "input": {}},
                {"type": "text", "text": "two meetings."},
            ]
        },
    },
    {"type": "user", "message": {"content": [{"type": "text", "text": "Thanks"}]}},
    {"type": "system", "message": {"content": "ignored"}},
)


@pytest.fixture
def transcript_file(tmp_path):
    path = tmp_path / "sessions" / "sess-1.jsonl"
    path.parent.mkdir()
    path.write_text(TRANSCRIPT, encoding="utf-8")
    return path


class TestSanitizeBashHook:
    @pytest.mark.asyncio
    async def test_prefixes_unset_of_every_secret(self):
        result = await sanitize_bash_hook(
            {"tool_name": "Bash", "tool_input": {"command": "ls -la", "timeout": 5}}, "tu-1", None
        )

        updated = result["hookSpecificOutput"]["updatedInput"]
        assert result["hookSpecificOutput"]["hookEventName"] == "PreToolUse"
        assert updated["command"] == (
            "unset ANTHROPIC_API_KEY CLAUDE_CODE_OAUTH_TOKEN OPENROUTER_API_KEY 2>/dev/null; ls -la"
        )
        assert updated["timeout"] == 5

    @pytest.mark.asyncio
    async def test_missing_command_is_left_alone(self):
        assert await sanitize_bash_hook({"tool_name": "Bash", "tool_input": {}}, None, None) == {}

    @pytest.mark.asyncio
    async def test_other_tools_are_left_alone(self):
        result = await sanitize_bash_hook(
            {"tool_name": "Read", "tool_input": {"command": "cat x"}}, None, None
        )
        assert result == {}


class TestTranscriptParsing:
    def test_extracts_user_and_assistant_text(self):
        messages = parse_transcript(TRANSCRIPT)

        assert messages == [
            TranscriptMessage("user", "What's on my calendar?"),
            TranscriptMessage("assistant", "You have two meetings."),
            TranscriptMessage("user", "Thanks"),
        ]

    def test_skips_garbage_lines(self):
        content = "not json\n\n[1, 2]\n" + _jsonl({"type": "user", "message": {"content": "hi"}})
        assert parse_transcript(content) == [TranscriptMessage("user", "hi")]


class TestNaming:
    def test_slugify_summary(self):
        assert slugify("Planning: Q3 Offsite!! (Rome)") == "planning-q3-offsite-rome"

    def test_slugify_truncates(self):
        assert len(slugify("word " * 40)) <= 50

    def test_fallback_name_uses_clock(self):
        assert fallback_name(datetime(2026, 3, 4, 9, 7)) == "conversation-0907"


class TestFormatting:
    def test_markdown_layout(self):
        text = format_transcript_markdown(
            [TranscriptMessage("user", "hi"), TranscriptMessage("assistant", "hello")],
            title="Greeting",
            assistant_name="Stella",
            now=datetime(2026, 3, 4, 15, 5),
        )

        assert text.startswith("# Greeting\n\nArchived: Mar 4, 3:05 PM\n\n---\n")
        assert "**User**: hi" in text
        assert "**Stella**: hello" in text

    def test_long_messages_are_truncated(self):
        text = format_transcript_markdown([TranscriptMessage("user", "x" * 2500)])
        assert "x" * 2000 + "..." in text
        assert "x" * 2001 not in text

    def test_default_title(self):
        assert format_transcript_markdown([]).startswith("# Conversation\n")


class TestArchiver:
    def test_uses_session_summary_for_filename(self, tmp_path, transcript_file):
        (transcript_file.parent / "sessions-index.json").write_text(
            json.dumps({"entries": [{"sessionId": "sess-1", "summary": "Calendar Check"}]}),
            encoding="utf-8",
        )
        archive_dir = tmp_path / "conversations"

        target = TranscriptArchiver(archive_dir, "Andy").archive(transcript_file, "sess-1")

        assert target is not None
        assert target.parent == archive_dir
        assert target.name.endswith("-calendar-check.md")
        body = target.read_text(encoding="utf-8")
        assert body.startswith("# Calendar Check")
        assert "**Andy**: You have two meetings." in body

    def test_falls_back_to_time_based_name(self, tmp_path, transcript_file):
        target = TranscriptArchiver(tmp_path / "conversations").archive(transcript_file, "sess-1")

        assert target is not None
        assert "-conversation-" in target.name
        assert target.read_text(encoding="utf-8").startswith("# Conversation")

    def test_empty_transcript_writes_nothing(self, tmp_path):
        path = tmp_path / "empty.jsonl"
        path.write_text("", encoding="utf-8")
        archive_dir = tmp_path / "conversations"

        assert TranscriptArchiver(archive_dir).archive(path, "s") is None
        assert not archive_dir.exists()

    def test_summary_lookup_tolerates_bad_index(self, transcript_file):
        (transcript_file.parent / "sessions-index.json").write_text("[]", encoding="utf-8")
        assert get_session_summary("sess-1", transcript_file) is None

    @pytest.mark.asyncio
    async def test_hook_archives_and_returns_empty_output(self, tmp_path, transcript_file):
        archiver = TranscriptArchiver(tmp_path / "conversations")

        result = await archiver(
            {"transcript_path": str(transcript_file), "session_id": "sess-1"}, None, None
        )

        assert result == {}
        assert len(list((tmp_path / "conversations").glob("*.md"))) == 1

    @pytest.mark.asyncio
    async def test_hook_without_transcript_is_a_noop(self, tmp_path):
        archiver = TranscriptArchiver(tmp_path / "conversations")
        assert await archiver({"transcript_path": str(tmp_path / "missing.jsonl")}, None, None) == {}
        assert await archiver({}, None, None) == {}

    @pytest.mark.asyncio
    async def test_hook_swallows_archive_failures(self, tmp_path, transcript_file):
        archiver = TranscriptArchiver(tmp_path / "conversations")

        with patch.object(TranscriptArchiver, "archive", side_effect=PermissionError("read-only")):
            result = await archiver({"transcript_path": str(transcript_file)}, None, None)

        assert result == {}
