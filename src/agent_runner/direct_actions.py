"""Keyword routing of mail/calendar requests for the fallback provider.

The fallback engine cannot call tools, so requests it could never fulfil are
recognised here and executed with direct API calls instead. Several patterns can
match the same text, so checks run in a fixed order and the first match wins:
calendar listing/connectivity before generic calendar create/list, and mail
send/search before generic unread mail.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from zoneinfo import ZoneInfo

from .google_api import GoogleWorkspaceClient
from .models import (
    CheckCalendarHealth,
    CreateEvent,
    ListEvents,
    NeedsClarification,
    ParsedIntent,
    ReadUnread,
    SearchSent,
    SendEmail,
)

logger = logging.getLogger("agent_runner.direct_actions")

DEFAULT_SUBJECT = "Test email from Stella"
DEFAULT_BODY = "Hi John, this is a test email from Stella."
DEFAULT_EVENT_SUMMARY = "New event"

MIN_WINDOW_DAYS = 1
MAX_WINDOW_DAYS = 60
DEFAULT_WINDOW_DAYS = 3

SEND_NEEDS_RECIPIENT = (
    "I need a recipient email address to send. Example: send a test email to name@example.com"
)
SEARCH_NEEDS_RECIPIENT = (
    "I need a recipient email address to search sent mail. "
    "Example: check sent mail to name@example.com"
)
CREATE_NEEDS_TIMES = (
    "I need explicit start/end timestamps to create the event.\n"
    'Example: create calendar event title: "Parent Meeting" '
    "start: 2026-02-23T09:00 end: 2026-02-23T10:00"
)

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)

_LIST_CALENDARS_RE = re.compile(
    r"\b(?:shared calendars|which calendars|what calendars|list calendars|available calendars)\b"
)
_CALENDAR_WORD_RE = re.compile(r"\b(?:google calendar|calendars?)\b")
_HEALTH_RE = re.compile(r"\b(?:work|working|access|connected|setup|set up|status|fix)\b")
_CREATE_NOUN_RE = re.compile(r"\b(?:calendar|event)\b")
_CREATE_VERB_RE = re.compile(r"\b(?:create|add|schedule|book)\b")
_LIST_NOUN_RE = re.compile(r"\b(?:calendar|events?)\b")
_LIST_VERB_RE = re.compile(r"\b(?:show|list|upcoming|today|tomorrow|next|for)\b")
_MAIL_RE = re.compile(r"\b(?:gmail|email|mail)\b")
_SEND_RE = re.compile(r"\b(?:send|deliver)\b")
_SENT_RE = re.compile(r"\b(?:sent|draft)\b")
_SEARCH_RE = re.compile(r"\b(?:check|search|find|show|look)\b")
_INBOX_RE = re.compile(r"\b(?:gmail|email|inbox)\b")
_READ_RE = re.compile(r"\b(?:check|read|list|show|unread|latest|new)\b")

_QUOTED_SUBJECT_RE = re.compile(r"subject\s*[:=]\s*[\"“](.+?)[\"”]", re.IGNORECASE)
_UNQUOTED_SUBJECT_RE = re.compile(
    r"subject\s*[:=]\s*(.+?)(?=\s+body\s*[:=]|[\n.]|$)", re.IGNORECASE
)
_QUOTED_BODY_RE = re.compile(r"body\s*[:=]\s*[\"“](.+?)[\"”]", re.IGNORECASE | re.DOTALL)
_UNQUOTED_BODY_RE = re.compile(r"body\s*[:=]\s*([^\n]+)", re.IGNORECASE)
_QUOTED_SUMMARY_RE = re.compile(r"(?:title|summary|event)\s*[:=]\s*[\"“](.+?)[\"”]", re.IGNORECASE)
_UNQUOTED_SUMMARY_RE = re.compile(
    r"(?:title|summary|event)\s*[:=]\s*(.+?)(?=\s+(?:start|end)\s*[:=]|\n|$)", re.IGNORECASE
)

_TIMESTAMP = r"([0-9]{4}-[0-9]{2}-[0-9]{2}[T ][0-9]{2}:[0-9]{2}(?::[0-9]{2})?(?:Z|[+-][0-9]{2}:[0-9]{2})?)"
_START_RE = re.compile(r"start\s*[:=]\s*" + _TIMESTAMP, re.IGNORECASE)
_END_RE = re.compile(r"end\s*[:=]\s*" + _TIMESTAMP, re.IGNORECASE)

_NEXT_N_DAYS_RE = re.compile(r"\bnext\s+(\d+)\s+days?\b")
_FOR_N_DAYS_RE = re.compile(r"\bfor\s+(\d+)\s+days?\b")
_N_DAYS_RE = re.compile(r"\b(\d+)\s+days?\b")


def extract_email(text: str) -> str | None:
    match = _EMAIL_RE.search(text)
    return match.group(0) if match else None


def _first_group(text: str, *patterns: re.Pattern[str]) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def parse_send_email(text: str) -> SendEmail | None:
    to = extract_email(text)
    if not to:
        return None
    subject = _first_group(text, _QUOTED_SUBJECT_RE, _UNQUOTED_SUBJECT_RE) or DEFAULT_SUBJECT
    body = _first_group(text, _QUOTED_BODY_RE, _UNQUOTED_BODY_RE) or DEFAULT_BODY
    return SendEmail(to=to, subject=subject, body=body)


def normalize_timestamp(value: str, timezone: str) -> str:
    """Return ``YYYY-MM-DDTHH:MM:SS±HH:MM``; naive values get ``timezone``'s offset."""
    parsed = datetime.fromisoformat(value.strip().replace(" ", "T", 1).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(timezone))
    return parsed.isoformat(timespec="seconds")


def parse_create_event(text: str, timezone: str) -> CreateEvent | None:
    start = _START_RE.search(text)
    end = _END_RE.search(text)
    if not start or not end:
        return None
    summary = _first_group(text, _QUOTED_SUMMARY_RE, _UNQUOTED_SUMMARY_RE) or DEFAULT_EVENT_SUMMARY
    return CreateEvent(
        summary=summary,
        start_iso=normalize_timestamp(start.group(1), timezone),
        end_iso=normalize_timestamp(end.group(1), timezone),
        timezone=timezone,
    )


def parse_window_days(text: str) -> int:
    lowered = text.lower()
    if re.search(r"\btoday\b", lowered):
        return 1
    if re.search(r"\btomorrow\b", lowered):
        return 2
    for pattern in (_NEXT_N_DAYS_RE, _FOR_N_DAYS_RE, _N_DAYS_RE):
        match = pattern.search(lowered)
        if match:
            days = int(match.group(1))
            if MIN_WINDOW_DAYS <= days <= MAX_WINDOW_DAYS:
                return days
    if re.search(r"\bnext\s+week\b", lowered) or re.search(r"\bnext\b", lowered):
        return 7
    return DEFAULT_WINDOW_DAYS


def classify(text: str, timezone: str = "Europe/Rome") -> ParsedIntent | NeedsClarification | None:
    """Map free text to a direct action, a clarification request, or None (plain chat)."""
    p = text.lower()

    if _CALENDAR_WORD_RE.search(p) and _LIST_CALENDARS_RE.search(p):
        return CheckCalendarHealth()
    if _CALENDAR_WORD_RE.search(p) and _HEALTH_RE.search(p):
        return CheckCalendarHealth()
    if _CREATE_NOUN_RE.search(p) and _CREATE_VERB_RE.search(p):
        return parse_create_event(text, timezone) or NeedsClarification(CREATE_NEEDS_TIMES)
    if _LIST_NOUN_RE.search(p) and (_LIST_VERB_RE.search(p) or "my calendar" in p):
        return ListEvents(window_days=parse_window_days(p))
    if _MAIL_RE.search(p) and _SEND_RE.search(p):
        return parse_send_email(text) or NeedsClarification(SEND_NEEDS_RECIPIENT)
    if _MAIL_RE.search(p) and _SENT_RE.search(p) and _SEARCH_RE.search(p):
        recipient = extract_email(text)
        return SearchSent(recipient=recipient) if recipient else NeedsClarification(SEARCH_NEEDS_RECIPIENT)
    if _INBOX_RE.search(p) and _READ_RE.search(p):
        return ReadUnread()
    return None


class DirectActionRouter:
    def __init__(
        self,
        client: GoogleWorkspaceClient,
        timezone: str = "Europe/Rome",
        gmail_limit: int = 5,
        calendar_limit: int = 25,
    ):
        self.client = client
        self.timezone = timezone
        self.gmail_limit = gmail_limit
        self.calendar_limit = calendar_limit

    async def try_handle(self, text: str) -> str | None:
        """Execute ``text`` directly when it matches an action; None means plain chat."""
        intent = classify(text, self.timezone)
        if intent is None:
            return None
        logger.info("Direct action: %s", type(intent).__name__)
        return await self.execute(intent)

    async def execute(self, intent: ParsedIntent | NeedsClarification) -> str:
        if isinstance(intent, NeedsClarification):
            return intent.message
        if isinstance(intent, ReadUnread):
            return await self.client.gmail_unread(self.gmail_limit)
        if isinstance(intent, SendEmail):
            return await self.client.gmail_send(intent.to, intent.subject, intent.body)
        if isinstance(intent, SearchSent):
            return await self.client.gmail_sent_search(intent.recipient, self.gmail_limit)
        if isinstance(intent, ListEvents):
            return await self.client.calendar_events(intent.window_days, self.calendar_limit)
        if isinstance(intent, CreateEvent):
            return await self.client.calendar_create(intent)
        if isinstance(intent, CheckCalendarHealth):
            return await self.client.calendar_health()
        raise TypeError(f"Unhandled intent: {intent!r}")
