"""Shared test fixtures for Agent Runner tests."""

from __future__ import annotations

import asyncio
import io
import json
import sys
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from agent_runner.config import RunnerSettings  # noqa: E402
from agent_runner.mailbox import InputMailbox  # noqa: E402
from agent_runner.models import (  # noqa: E402
    AssistantEvent,
    ChatMessage,
    CreateEvent,
    EngineEvent,
    InitEvent,
    ResultEvent,
    SessionHandle,
)
from agent_runner.output import ResultEmitter, parse_output  # noqa: E402


@dataclass
class FakeEngine:
    """Fake primary engine for testing orchestrator logic.

    Echoes every prompt it reads as one result. With ``end_after_results`` set,
    the invocation ends on its own after that many results; otherwise it stays
    open until its prompt stream is closed.
    """

    session_id: str = "sess-1"
    end_after_results: int | None = None
    fail_with: Exception | None = None
    handles: list[tuple[str | None, str | None]] = field(default_factory=list)
    prompts: list[list[str]] = field(default_factory=list)

    @property
    def invocations(self) -> int:
        return len(self.handles)

    async def invoke(self, prompts: AsyncIterable[str], handle: SessionHandle) -> AsyncIterator[EngineEvent]:
        self.handles.append((handle.session_id, handle.resume_cursor))
        received: list[str] = []
        self.prompts.append(received)
        number = len(self.handles)

        yield InitEvent(session_id=self.session_id)
        count = 0
        async for text in prompts:
            received.append(text)
            if self.fail_with is not None:
                raise self.fail_with
            count += 1
            yield AssistantEvent(uuid=f"asst-{number}-{count}")
            yield ResultEvent(subtype="success", text=f"echo: {text}")
            if self.end_after_results is not None and count >= self.end_after_results:
                return


@dataclass
class FakeCompletion:
    """Fake fallback engine recording every history it was asked to complete."""

    reply: str = "assistant-response"
    calls: list[list[ChatMessage]] = field(default_factory=list)

    async def complete(self, messages: list[ChatMessage]) -> str:
        self.calls.append(list(messages))
        return self.reply


@dataclass
class FakeGoogleClient:
    """Fake Gmail/Calendar client for direct action routing tests."""

    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)

    async def gmail_unread(self, limit: int = 5) -> str:
        self.calls.append(("gmail_unread", (limit,)))
        return "No unread Gmail messages."

    async def gmail_send(self, to: str, subject: str, body: str) -> str:
        self.calls.append(("gmail_send", (to, subject, body)))
        return f"Email sent successfully.\n- To: {to}\n- Subject: {subject}\n- Gmail Message ID: m1"

    async def gmail_sent_search(self, recipient: str, limit: int = 5) -> str:
        self.calls.append(("gmail_sent_search", (recipient, limit)))
        return f"No sent messages found for {recipient}."

    async def calendar_events(self, window_days: int, per_calendar_limit: int = 25) -> str:
        self.calls.append(("calendar_events", (window_days, per_calendar_limit)))
        return f"No calendar events found in the next {window_days} day(s)."

    async def calendar_create(self, intent: CreateEvent) -> str:
        self.calls.append(("calendar_create", (intent,)))
        return "Calendar event created successfully."

    async def calendar_health(self) -> str:
        self.calls.append(("calendar_health", ()))
        return "Google Calendar is connected and working."


class CapturedOutput:
    """Real ResultEmitter writing into memory, with parsed envelopes."""

    def __init__(self) -> None:
        self.buffer = io.StringIO()
        self.emitter = ResultEmitter(stream=self.buffer)

    @property
    def raw(self) -> str:
        return self.buffer.getvalue()

    @property
    def envelopes(self) -> list[dict[str, Any]]:
        return parse_output(self.raw)


def drop_message(mailbox_dir: Path, name: str, text: str) -> Path:
    """Write a message file atomically, the way the host does."""
    path = mailbox_dir / name
    temp = mailbox_dir / f"{name}.tmp"
    temp.write_text(json.dumps({"type": "message", "text": text}), encoding="utf-8")
    temp.replace(path)
    return path


def drop_sentinel(mailbox_dir: Path) -> Path:
    path = mailbox_dir / "_close"
    path.write_text("", encoding="utf-8")
    return path


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def mailbox_dir(tmp_path: Path) -> Path:
    path = tmp_path / "ipc" / "input"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def mailbox(mailbox_dir: Path) -> InputMailbox:
    """Mailbox polling fast enough for tests."""
    return InputMailbox(mailbox_dir, poll_interval=0.02)


@pytest.fixture
def captured() -> CapturedOutput:
    return CapturedOutput()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def fake_google() -> FakeGoogleClient:
    return FakeGoogleClient()


@pytest.fixture
def settings(tmp_path: Path, mailbox_dir: Path, monkeypatch: pytest.MonkeyPatch) -> RunnerSettings:
    """Runner settings rooted in a temp workspace, with no fallback key in the environment."""
    for name in ("OPENROUTER_API_KEY", "OPENROUTER_MODEL", "OPENROUTER_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    group = tmp_path / "group"
    group.mkdir()
    return RunnerSettings(
        ipc_input_dir=mailbox_dir,
        poll_interval_seconds=0.02,
        group_dir=group,
        global_dir=tmp_path / "global",
        extra_dir=tmp_path / "extra",
        input_file=tmp_path / "input.json",
        gmail_credentials_path=tmp_path / "gmail.json",
        calendar_credentials_path=tmp_path / "gcal.json",
        timezone="Europe/Rome",
    )
