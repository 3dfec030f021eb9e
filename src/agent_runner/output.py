"""Marker-delimited result channel on stdout.

Every envelope is written as three lines: the start marker, the JSON payload,
and the end marker. The host treats each marker pair as one discrete result and
a ``result: null`` envelope as a session-continuity heartbeat.
"""

from __future__ import annotations

import json
import sys
from typing import TextIO

from .models import EnvelopeStatus, ResultEnvelope

OUTPUT_START_MARKER = "---NANOCLAW_OUTPUT_START---"
OUTPUT_END_MARKER = "---NANOCLAW_OUTPUT_END---"


class ResultEmitter:
    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self.emitted: int = 0

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def emit(self, envelope: ResultEnvelope) -> None:
        block = "\n".join(
            [OUTPUT_START_MARKER, json.dumps(envelope.to_payload()), OUTPUT_END_MARKER]
        )
        self.stream.write(block + "\n")
        self.stream.flush()
        self.emitted += 1

    def success(self, result: str | None, session_id: str | None) -> None:
        self.emit(ResultEnvelope(EnvelopeStatus.SUCCESS, result or None, new_session_id=session_id))

    def session_update(self, session_id: str | None) -> None:
        self.emit(ResultEnvelope(EnvelopeStatus.SUCCESS, None, new_session_id=session_id))

    def error(self, message: str, session_id: str | None = None) -> None:
        self.emit(
            ResultEnvelope(EnvelopeStatus.ERROR, None, new_session_id=session_id, error=message)
        )


def parse_output(text: str) -> list[dict]:
    """Split raw output back into envelope payloads (used by tooling and tests)."""
    payloads: list[dict] = []
    inside = False
    buffer: list[str] = []
    for line in text.splitlines():
        if line == OUTPUT_START_MARKER:
            inside, buffer = True, []
        elif line == OUTPUT_END_MARKER and inside:
            payloads.append(json.loads("\n".join(buffer)))
            inside = False
        elif inside:
            buffer.append(line)
    return payloads
