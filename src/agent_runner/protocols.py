"""Protocol interfaces for Agent Runner components.

These protocols define the seams between the orchestration loops and the
engines they drive, enabling proper type checking and easier testing.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Protocol, runtime_checkable

from .models import ChatMessage, EngineEvent, SessionHandle


@runtime_checkable
class EngineProtocol(Protocol):
    """Protocol for the primary (tool-capable, resumable) reasoning engine."""

    def invoke(self, prompts: AsyncIterable[str], handle: SessionHandle) -> AsyncIterator[EngineEvent]:
        """Open one invocation fed by ``prompts``; yield events until it ends."""
        ...


@runtime_checkable
class CompletionProtocol(Protocol):
    """Protocol for the fallback (stateless, completion-only) engine."""

    async def complete(self, messages: list[ChatMessage]) -> str:
        """Return the assistant reply for the given message history."""
        ...


@runtime_checkable
class EmitterProtocol(Protocol):
    """Protocol for the result channel."""

    def success(self, result: str | None, session_id: str | None) -> None:
        """Emit one success envelope."""
        ...

    def session_update(self, session_id: str | None) -> None:
        """Emit a null-result session-continuity envelope."""
        ...

    def error(self, message: str, session_id: str | None = None) -> None:
        """Emit one error envelope."""
        ...
