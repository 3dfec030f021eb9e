"""Process-level dispatcher.

Reads the control payload, prepares the initial prompt, picks the provider once
for the process lifetime, and turns any unrecoverable failure into exactly one
error envelope plus a non-zero exit code.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Mapping

from pydantic import ValidationError

from .claude_engine import ClaudeAgentEngine
from .config import ProviderSettings, RunnerSettings
from .direct_actions import DirectActionRouter
from .fallback import FallbackLoop
from .google_api import GoogleWorkspaceClient
from .hooks import TranscriptArchiver
from .mailbox import InputMailbox
from .memory import FileMemory
from .models import ContainerInput, SessionHandle
from .openrouter_connector import OpenRouterConnector
from .orchestrator import SessionOrchestrator
from .output import ResultEmitter
from .protocols import CompletionProtocol, EngineProtocol

logger = logging.getLogger("agent_runner.runner")

SCHEDULED_TASK_PREFIX = (
    "[SCHEDULED TASK - The following message was sent automatically "
    "and is not coming directly from the user or group.]\n\n"
)


def build_engine_env(secrets: Mapping[str, str], base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Process environment plus payload secrets, for the engine only.

    ``os.environ`` itself is left untouched so tool subprocesses cannot read the
    secrets from the inherited environment.
    """
    env = dict(os.environ if base is None else base)
    env.update(secrets)
    return env


class AgentRunner:
    def __init__(
        self,
        settings: RunnerSettings,
        emitter: ResultEmitter | None = None,
        engine: EngineProtocol | None = None,
        completion: CompletionProtocol | None = None,
        google_client: GoogleWorkspaceClient | None = None,
    ):
        self.settings = settings
        self.emitter = emitter or ResultEmitter()
        self.mailbox = InputMailbox(settings.ipc_input_dir, settings.poll_interval_seconds)
        self._engine = engine
        self._completion = completion
        self._google_client = google_client
        self.session_id: str | None = None

    def parse_input(self, raw: str) -> ContainerInput:
        payload = ContainerInput.model_validate_json(raw)
        try:
            self.settings.input_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not delete %s: %s", self.settings.input_file, exc)
        logger.info("Received input for group: %s", payload.group_folder)
        return payload

    def build_prompt(self, payload: ContainerInput) -> str:
        prompt = payload.prompt
        if payload.is_scheduled_task:
            prompt = SCHEDULED_TASK_PREFIX + prompt
        pending = self.mailbox.drain()
        if pending:
            logger.info("Draining %d pending mailbox messages into initial prompt", len(pending))
            prompt += "\n" + "\n".join(pending)
        return prompt

    def _primary_engine(self, payload: ContainerInput, env: dict[str, str]) -> EngineProtocol:
        if self._engine is not None:
            return self._engine
        return ClaudeAgentEngine(
            group_dir=self.settings.group_dir,
            global_dir=self.settings.global_dir,
            extra_dir=self.settings.extra_dir,
            is_main=payload.is_main,
            chat_jid=payload.chat_jid,
            group_folder=payload.group_folder,
            env=env,
            ipc_mcp_server_cmd=self.settings.ipc_mcp_server_cmd,
            gmail_mcp_server_cmd=self.settings.gmail_mcp_server_cmd,
            archiver=TranscriptArchiver(self.settings.conversations_dir, self.settings.assistant_name),
        )

    def _fallback_loop(self, payload: ContainerInput, provider: ProviderSettings) -> FallbackLoop:
        completion = self._completion or OpenRouterConnector(provider)
        google = self._google_client or GoogleWorkspaceClient(
            gmail_credentials_path=self.settings.gmail_credentials_path,
            calendar_credentials_path=self.settings.calendar_credentials_path,
            timezone=self.settings.timezone,
            timeout=self.settings.http_timeout_seconds,
        )
        router = DirectActionRouter(
            google,
            timezone=self.settings.timezone,
            gmail_limit=self.settings.gmail_result_limit,
            calendar_limit=self.settings.calendar_per_calendar_limit,
        )
        memory = FileMemory(self.settings.group_dir, self.settings.global_dir, payload.is_main)
        return FallbackLoop(
            completion=completion,
            router=router,
            mailbox=self.mailbox,
            emitter=self.emitter,
            session_id=self.session_id or f"session-{int(time.time() * 1000)}",
            system_prompt=memory.merged(),
        )

    async def run(self, raw_input: str) -> int:
        try:
            payload = self.parse_input(raw_input)
        except (ValidationError, ValueError) as exc:
            logger.error("Failed to parse input: %s", exc)
            self.emitter.error(f"Failed to parse input: {exc}")
            return 1

        self.session_id = payload.session_id
        env = build_engine_env(payload.secrets)

        try:
            self.mailbox.ensure_dir()
            self.mailbox.clear_stale_sentinel()
            prompt = self.build_prompt(payload)

            provider = ProviderSettings.from_env(env)
            if provider.enabled:
                logger.info("Using OpenRouter provider with model: %s", provider.model)
                loop = self._fallback_loop(payload, provider)
                self.session_id = loop.session_id
                await loop.run(prompt)
            else:
                orchestrator = SessionOrchestrator(
                    engine=self._primary_engine(payload, env),
                    mailbox=self.mailbox,
                    emitter=self.emitter,
                    handle=SessionHandle(session_id=payload.session_id),
                )
                try:
                    await orchestrator.run(prompt)
                finally:
                    self.session_id = orchestrator.handle.session_id
        except Exception as exc:
            logger.exception("Agent error: %s", exc)
            self.emitter.error(str(exc), self.session_id)
            return 1
        return 0


async def run(raw_input: str, settings: RunnerSettings | None = None) -> int:
    emitter = ResultEmitter()
    if settings is None:
        try:
            settings = RunnerSettings()
        except ValidationError as exc:
            logger.error("Invalid runner configuration: %s", exc)
            emitter.error(f"Invalid runner configuration: {exc}")
            return 1
    return await AgentRunner(settings, emitter=emitter).run(raw_input)
