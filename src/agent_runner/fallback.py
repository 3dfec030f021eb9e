"""Simplified session loop for the fallback (completion-only) provider.

No resumable remote session, no push stream and no hooks: every turn is either
a direct action or one chat-completion call over the accumulated history.
"""

from __future__ import annotations

import logging

from .direct_actions import DirectActionRouter
from .mailbox import InputMailbox
from .models import ChatMessage
from .protocols import CompletionProtocol, EmitterProtocol

logger = logging.getLogger("agent_runner.fallback")


class FallbackLoop:
    def __init__(
        self,
        completion: CompletionProtocol,
        router: DirectActionRouter,
        mailbox: InputMailbox,
        emitter: EmitterProtocol,
        session_id: str,
        system_prompt: str = "",
    ):
        self.completion = completion
        self.router = router
        self.mailbox = mailbox
        self.emitter = emitter
        self.session_id = session_id
        self.history: list[ChatMessage] = []
        if system_prompt:
            self.history.append(ChatMessage("system", system_prompt))
        self.turns = 0

    async def run_turn(self, prompt: str) -> str:
        result = await self.router.try_handle(prompt)
        if result is not None:
            return result
        self.history.append(ChatMessage("user", prompt))
        reply = await self.completion.complete(self.history)
        self.history.append(ChatMessage("assistant", reply))
        return reply

    async def run(self, prompt: str) -> None:
        next_prompt: str | None = prompt
        while next_prompt is not None:
            result = await self.run_turn(next_prompt)
            self.turns += 1
            self.emitter.success(result, self.session_id)
            self.emitter.session_update(self.session_id)

            next_prompt = await self.mailbox.wait_for_next()
        logger.info("Close sentinel received, exiting fallback loop")
