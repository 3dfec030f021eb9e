from __future__ import annotations

import logging

import httpx

from .config import ProviderSettings
from .models import ChatMessage

logger = logging.getLogger("agent_runner.openrouter_connector")


class CompletionError(RuntimeError):
    pass


class OpenRouterConnector:
    """Stateless chat-completions connector for the fallback provider.

    Sends the full message history on every turn; the caller owns the history.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        if self.settings.http_referer:
            headers["HTTP-Referer"] = self.settings.http_referer
        if self.settings.title:
            headers["X-Title"] = self.settings.title
        return headers

    async def complete(self, messages: list[ChatMessage]) -> str:
        logger.info(
            "Executing OpenRouter turn: model=%s messages=%d", self.settings.model, len(messages)
        )
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.settings.base_url}/chat/completions",
                headers=self._headers(),
                json={
                    "model": self.settings.model,
                    "messages": [m.to_dict() for m in messages],
                },
            )

        if response.status_code >= 400:
            raise CompletionError(f"OpenRouter error {response.status_code}: {response.text[:400]}")

        payload = response.json()
        choices = payload.get("choices") or []
        text = ((choices[0] if choices else {}).get("message") or {}).get("content")
        if not text:
            raise CompletionError("OpenRouter returned no assistant content")

        logger.info("OpenRouter turn completed: response_chars=%d", len(text))
        return text
