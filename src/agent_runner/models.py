from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class EnvelopeStatus(str, Enum):
    """Status values for emitted result envelopes."""

    SUCCESS = "success"
    ERROR = "error"


class ContainerInput(BaseModel):
    """Control payload read once from stdin before any other work."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prompt: str
    session_id: str | None = Field(default=None, alias="sessionId")
    group_folder: str = Field(alias="groupFolder")
    chat_jid: str = Field(alias="chatJid")
    is_main: bool = Field(alias="isMain")
    is_scheduled_task: bool = Field(default=False, alias="isScheduledTask")
    secrets: dict[str, str] = Field(default_factory=dict)


@dataclass(slots=True)
class SessionHandle:
    session_id: str | None = None
    resume_cursor: str | None = None


@dataclass(frozen=True, slots=True)
class ResultEnvelope:
    status: EnvelopeStatus
    result: str | None
    new_session_id: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value, "result": self.result}
        if self.new_session_id is not None:
            payload["newSessionId"] = self.new_session_id
        if self.error is not None:
            payload["error"] = self.error
        return payload


# ---------------------------------------------------------------------------
# Engine events: the SDK message stream reduced to what the orchestrator uses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InitEvent:
    session_id: str


@dataclass(frozen=True, slots=True)
class AssistantEvent:
    uuid: str | None


@dataclass(frozen=True, slots=True)
class ResultEvent:
    subtype: str
    text: str | None


@dataclass(frozen=True, slots=True)
class TaskNotificationEvent:
    task_id: str
    status: str
    summary: str


@dataclass(frozen=True, slots=True)
class OtherEvent:
    kind: str


EngineEvent = Union[InitEvent, AssistantEvent, ResultEvent, TaskNotificationEvent, OtherEvent]


# ---------------------------------------------------------------------------
# Direct-action intents (fallback provider only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReadUnread:
    pass


@dataclass(frozen=True, slots=True)
class SendEmail:
    to: str
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class SearchSent:
    recipient: str


@dataclass(frozen=True, slots=True)
class ListEvents:
    window_days: int


@dataclass(frozen=True, slots=True)
class CreateEvent:
    summary: str
    start_iso: str
    end_iso: str
    timezone: str


@dataclass(frozen=True, slots=True)
class CheckCalendarHealth:
    pass


@dataclass(frozen=True, slots=True)
class NeedsClarification:
    """An intent matched but a required parameter is missing."""

    message: str


ParsedIntent = Union[ReadUnread, SendEmail, SearchSent, ListEvents, CreateEvent, CheckCalendarHealth]


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class InvocationOutcome:
    closed_during_invocation: bool = False
    result_count: int = 0
    message_count: int = 0
    forwarded: list[str] = field(default_factory=list)
    unconsumed: list[str] = field(default_factory=list)
