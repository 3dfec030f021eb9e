"""Session orchestrator for the primary engine.

One logical session spans many engine invocations:

    Idle -> Invoking -> (Draining | Closing) -> Idle | Terminated

While an invocation is active a mailbox pump forwards follow-up prompts into
its push stream and watches for the close sentinel. If the sentinel is consumed
mid-invocation the loop exits without a session-update envelope, since that
envelope resets the host's idle timer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum

from .mailbox import InputMailbox
from .models import (
    AssistantEvent,
    InitEvent,
    InvocationOutcome,
    OtherEvent,
    ResultEvent,
    SessionHandle,
    TaskNotificationEvent,
)
from .protocols import EmitterProtocol, EngineProtocol
from .push_stream import PushStream

logger = logging.getLogger("agent_runner.orchestrator")


class SessionState(str, Enum):
    IDLE = "idle"
    INVOKING = "invoking"
    DRAINING = "draining"
    CLOSING = "closing"
    TERMINATED = "terminated"


class SessionOrchestrator:
    def __init__(
        self,
        engine: EngineProtocol,
        mailbox: InputMailbox,
        emitter: EmitterProtocol,
        handle: SessionHandle | None = None,
    ):
        self.engine = engine
        self.mailbox = mailbox
        self.emitter = emitter
        self.handle = handle or SessionHandle()
        self.state = SessionState.IDLE
        self.invocations = 0

    async def run(self, prompt: str) -> None:
        """Drive invocations until the close sentinel ends the session."""
        next_prompt: str | None = prompt
        while next_prompt is not None:
            self.state = SessionState.INVOKING
            logger.info(
                "Starting query (session: %s, resumeAt: %s)",
                self.handle.session_id or "new",
                self.handle.resume_cursor or "latest",
            )
            outcome = await self.run_invocation(next_prompt)

            if outcome.closed_during_invocation:
                self.state = SessionState.CLOSING
                logger.info("Close sentinel consumed during query, exiting")
                break

            self.state = SessionState.DRAINING
            self.emitter.session_update(self.handle.session_id)

            if outcome.unconsumed:
                next_prompt = "\n".join(outcome.unconsumed)
                logger.info("Carrying %d unconsumed message(s) into next query", len(outcome.unconsumed))
                self.state = SessionState.IDLE
                continue

            logger.info("Query ended, waiting for next mailbox message...")
            next_prompt = await self.mailbox.wait_for_next()
            if next_prompt is None:
                logger.info("Close sentinel received, exiting")
            else:
                logger.info("Got new message (%d chars), starting new query", len(next_prompt))
                self.state = SessionState.IDLE

        self.state = SessionState.TERMINATED

    async def run_invocation(self, prompt: str) -> InvocationOutcome:
        stream = PushStream()
        stream.push(prompt)
        outcome = InvocationOutcome()
        self.invocations += 1
        seen_init = False

        pump = asyncio.create_task(self._pump_mailbox(stream, outcome))
        try:
            async for event in self.engine.invoke(stream, self.handle):
                outcome.message_count += 1
                if isinstance(event, InitEvent):
                    if not seen_init and event.session_id:
                        self.handle.session_id = event.session_id
                        seen_init = True
                        logger.info("Session initialized: %s", event.session_id)
                elif isinstance(event, AssistantEvent):
                    if event.uuid:
                        self.handle.resume_cursor = event.uuid
                elif isinstance(event, ResultEvent):
                    outcome.result_count += 1
                    logger.info(
                        "Result #%d: subtype=%s%s",
                        outcome.result_count,
                        event.subtype,
                        f" text={event.text[:200]}" if event.text else "",
                    )
                    self.emitter.success(event.text, self.handle.session_id)
                elif isinstance(event, TaskNotificationEvent):
                    logger.info(
                        "Task notification: task=%s status=%s summary=%s",
                        event.task_id,
                        event.status,
                        event.summary,
                    )
                elif isinstance(event, OtherEvent):
                    logger.debug("[msg #%d] type=%s", outcome.message_count, event.kind)
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        outcome.unconsumed = stream.take_pending()

        logger.info(
            "Query done. Messages: %d, results: %d, lastAssistantUuid: %s, closedDuringQuery: %s",
            outcome.message_count,
            outcome.result_count,
            self.handle.resume_cursor or "none",
            outcome.closed_during_invocation,
        )
        return outcome

    async def _pump_mailbox(self, stream: PushStream, outcome: InvocationOutcome) -> None:
        """Forward mailbox arrivals into ``stream`` until the sentinel closes it."""
        while True:
            await asyncio.sleep(self.mailbox.poll_interval)
            closing = self.mailbox.should_close()
            for text in self.mailbox.drain():
                logger.info("Piping mailbox message into active query (%d chars)", len(text))
                stream.push(text)
                outcome.forwarded.append(text)
            if closing:
                logger.info("Close sentinel detected during query, ending stream")
                outcome.closed_during_invocation = True
                stream.close()
                return
