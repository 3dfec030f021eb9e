"""Direct Gmail / Google Calendar REST calls used by the fallback provider.

Each call refreshes an OAuth access token from stored credentials first, then
talks to the REST endpoint with httpx. Failures raise ``GoogleApiError``.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel, ValidationError

from .models import CreateEvent

logger = logging.getLogger("agent_runner.google_api")

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class GoogleApiError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OAuthCredentials(BaseModel):
    refresh_token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    token_uri: str | None = None

    @classmethod
    def load(cls, path: Path, label: str) -> OAuthCredentials:
        path = Path(path)
        if not path.exists():
            raise GoogleApiError(f"{label} credentials not found at {path}")
        try:
            return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as exc:
            raise GoogleApiError(f"Invalid {label} credentials at {path}: {exc}") from exc


def _failure(label: str, response: httpx.Response, limit: int = 300) -> GoogleApiError:
    return GoogleApiError(
        f"{label} failed ({response.status_code}): {response.text[:limit]}",
        status_code=response.status_code,
    )


def _header(headers: list[dict[str, str]] | None, name: str) -> str:
    for item in headers or []:
        if str(item.get("name", "")).lower() == name.lower():
            return str(item.get("value") or "")
    return ""


def to_base64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


async def refresh_access_token(client: httpx.AsyncClient, creds: OAuthCredentials) -> str:
    """Exchange a refresh token for an access token (fails fast on incomplete credentials)."""
    if not (creds.refresh_token and creds.client_id and creds.client_secret):
        raise GoogleApiError("Missing refresh_token/client_id/client_secret in OAuth credentials")

    response = await client.post(
        creds.token_uri or DEFAULT_TOKEN_URI,
        data={
            "grant_type": "refresh_token",
            "refresh_token": creds.refresh_token,
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
        },
    )
    if response.status_code >= 400:
        raise _failure("OAuth refresh", response)
    token = response.json().get("access_token")
    if not token:
        raise GoogleApiError("OAuth refresh did not return access_token")
    return str(token)


@dataclass(slots=True)
class _EventRow:
    sort_start: datetime
    date: str
    start: str
    end: str
    title: str


class GoogleWorkspaceClient:
    """Gmail + Calendar operations backing the direct action router."""

    def __init__(
        self,
        gmail_credentials_path: Path,
        calendar_credentials_path: Path,
        timezone: str = "Europe/Rome",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.gmail_credentials_path = Path(gmail_credentials_path)
        self.calendar_credentials_path = Path(calendar_credentials_path)
        self.timezone = timezone
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _authorized(self, client: httpx.AsyncClient, creds_path: Path, label: str) -> dict[str, str]:
        creds = OAuthCredentials.load(creds_path, label)
        token = await refresh_access_token(client, creds)
        return {"Authorization": f"Bearer {token}"}

    # ------------------------------------------------------------------
    # Gmail
    # ------------------------------------------------------------------

    async def _list_message_lines(
        self,
        client: httpx.AsyncClient,
        auth: dict[str, str],
        query: str,
        limit: int,
        party_header: str,
        label: str,
    ) -> list[str] | None:
        response = await client.get(
            f"{GMAIL_API}/messages",
            params={"q": query, "maxResults": limit},
            headers=auth,
        )
        if response.status_code >= 400:
            raise _failure(label, response)
        messages = response.json().get("messages") or []
        if not messages:
            return None

        lines: list[str] = []
        for msg in messages:
            msg_id = msg.get("id", "")
            meta = await client.get(
                f"{GMAIL_API}/messages/{msg_id}",
                params=[
                    ("format", "metadata"),
                    ("metadataHeaders", party_header),
                    ("metadataHeaders", "Subject"),
                    ("metadataHeaders", "Date"),
                ],
                headers=auth,
            )
            if meta.status_code >= 400:
                lines.append(f"- {msg_id}: [metadata fetch failed {meta.status_code}]")
                continue
            headers = (meta.json().get("payload") or {}).get("headers")
            party_default = "(unknown sender)" if party_header == "From" else "(unknown recipient)"
            party = _header(headers, party_header) or party_default
            subject = _header(headers, "Subject") or "(no subject)"
            date = _header(headers, "Date") or "(no date)"
            lines.append(f"- {msg_id} | {party_header}: {party} | Subject: {subject} | Date: {date}")
        return lines

    async def gmail_unread(self, limit: int = 5) -> str:
        async with self._client() as client:
            auth = await self._authorized(client, self.gmail_credentials_path, "Gmail")
            lines = await self._list_message_lines(
                client, auth, "is:unread", limit, "From", "Gmail list"
            )
        if not lines:
            return "No unread Gmail messages."
        return "\n".join([f"Unread Gmail messages ({len(lines)}):", *lines])

    async def gmail_sent_search(self, recipient: str, limit: int = 5) -> str:
        async with self._client() as client:
            auth = await self._authorized(client, self.gmail_credentials_path, "Gmail")
            lines = await self._list_message_lines(
                client, auth, f"in:sent to:{recipient}", limit, "To", "Gmail sent-search"
            )
        if not lines:
            return f"No sent messages found for {recipient}."
        return "\n".join([f"Sent messages to {recipient} ({len(lines)}):", *lines])

    async def gmail_send(self, to: str, subject: str, body: str) -> str:
        mime = "\r\n".join(
            [
                f"To: {to}",
                f"Subject: {subject}",
                'Content-Type: text/plain; charset="UTF-8"',
                "",
                body,
            ]
        )
        async with self._client() as client:
            auth = await self._authorized(client, self.gmail_credentials_path, "Gmail")
            response = await client.post(
                f"{GMAIL_API}/messages/send",
                json={"raw": to_base64url(mime)},
                headers=auth,
            )
        if response.status_code >= 400:
            raise _failure("Gmail send", response)
        message_id = response.json().get("id") or "unknown"
        return f"Email sent successfully.\n- To: {to}\n- Subject: {subject}\n- Gmail Message ID: {message_id}"

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    async def _calendar_list(self, client: httpx.AsyncClient, auth: dict[str, str], label: str) -> list[dict[str, Any]]:
        response = await client.get(f"{CALENDAR_API}/users/me/calendarList", headers=auth)
        if response.status_code >= 400:
            raise _failure(label, response)
        return list(response.json().get("items") or [])

    def _event_row(self, event: dict[str, Any], tz: ZoneInfo) -> _EventRow | None:
        start = event.get("start") or {}
        end = event.get("end") or {}
        title = event.get("summary") or "(no title)"
        if not (start.get("dateTime") or start.get("date")) or not (end.get("dateTime") or end.get("date")):
            return None

        if start.get("dateTime") and end.get("dateTime"):
            s = datetime.fromisoformat(start["dateTime"]).astimezone(tz)
            e = datetime.fromisoformat(end["dateTime"]).astimezone(tz)
            return _EventRow(s, f"{s:%Y-%m-%d}", f"{s:%H:%M}", f"{e:%H:%M}", title)

        day = datetime.fromisoformat(f"{start.get('date') or end.get('date')}T00:00:00").replace(tzinfo=tz)
        return _EventRow(day, f"{day:%Y-%m-%d}", "All day", "All day", title)

    async def calendar_events(self, window_days: int, per_calendar_limit: int = 25) -> str:
        tz = ZoneInfo(self.timezone)
        now = datetime.now(UTC)
        time_min = now.isoformat().replace("+00:00", "Z")
        time_max = (now + timedelta(days=window_days)).isoformat().replace("+00:00", "Z")

        rows: dict[str, _EventRow] = {}
        async with self._client() as client:
            auth = await self._authorized(client, self.calendar_credentials_path, "Google Calendar")
            calendars = await self._calendar_list(client, auth, "Calendar list")
            for calendar in calendars:
                cal_id = calendar.get("id")
                if not cal_id:
                    continue
                response = await client.get(
                    f"{CALENDAR_API}/calendars/{quote(cal_id, safe='')}/events",
                    params={
                        "timeMin": time_min,
                        "timeMax": time_max,
                        "singleEvents": "true",
                        "orderBy": "startTime",
                        "maxResults": per_calendar_limit,
                    },
                    headers=auth,
                )
                if response.status_code >= 400:
                    logger.warning("Skipping calendar %s (%s)", cal_id, response.status_code)
                    continue
                for event in response.json().get("items") or []:
                    row = self._event_row(event, tz)
                    if row is None:
                        continue
                    key = f"{row.date}|{row.start}|{row.end}|{row.title}".lower()
                    rows[key] = row

        if not rows:
            return f"No calendar events found in the next {window_days} day(s)."
        ordered = sorted(rows.values(), key=lambda r: r.sort_start)
        return "\n".join(f"{r.date}, {r.start} - {r.end}, {r.title}" for r in ordered)

    async def calendar_create(self, intent: CreateEvent) -> str:
        payload = {
            "summary": intent.summary,
            "start": {"dateTime": intent.start_iso, "timeZone": intent.timezone},
            "end": {"dateTime": intent.end_iso, "timeZone": intent.timezone},
        }
        async with self._client() as client:
            auth = await self._authorized(client, self.calendar_credentials_path, "Google Calendar")
            response = await client.post(
                f"{CALENDAR_API}/calendars/primary/events", json=payload, headers=auth
            )
        if response.status_code >= 400:
            raise _failure("Calendar create", response)
        data = response.json()
        lines = [
            "Calendar event created successfully.",
            f"- ID: {data.get('id') or 'unknown'}",
            f"- Title: {intent.summary}",
            f"- Start: {intent.start_iso}",
            f"- End: {intent.end_iso}",
        ]
        if data.get("htmlLink"):
            lines.append(f"- Link: {data['htmlLink']}")
        return "\n".join(lines)

    async def calendar_health(self) -> str:
        async with self._client() as client:
            auth = await self._authorized(client, self.calendar_credentials_path, "Google Calendar")
            items = await self._calendar_list(client, auth, "Calendar health-check")
        lines = [
            "Google Calendar is connected and working.",
            f"Accessible calendars: {len(items)}",
        ]
        lines.extend(
            f"- {c.get('id') or 'unknown'} | {c.get('summary') or '(no title)'}" for c in items[:5]
        )
        return "\n".join(lines)
