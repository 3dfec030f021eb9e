from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OPENROUTER_MODEL = "x-ai/grok-4.1-fast"


class RunnerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="agent_runner_",
        extra="ignore",
        env_file=".env",
        enable_decoding=False,
        populate_by_name=True,
    )

    # Mailbox (follow-up prompts + _close sentinel)
    ipc_input_dir: Path = Path("/workspace/ipc/input")
    poll_interval_seconds: float = 0.5

    # Workspace layout inside the sandbox
    group_dir: Path = Path("/workspace/group")
    global_dir: Path = Path("/workspace/global")
    extra_dir: Path = Path("/workspace/extra")
    conversations_dir_name: str = "conversations"
    assistant_name: str = "Andy"

    # Temp file the entrypoint writes the control payload to (contains secrets)
    input_file: Path = Path("/tmp/input.json")

    # MCP servers handed to the primary engine
    ipc_mcp_server_cmd: list[str] = Field(
        default_factory=lambda: ["node", "/app/dist/ipc-mcp-stdio.js"]
    )
    gmail_mcp_server_cmd: list[str] = Field(
        default_factory=lambda: ["npx", "-y", "@gongrzhe/server-gmail-autoauth-mcp"]
    )

    # Direct actions (fallback provider only)
    gmail_credentials_path: Path = Path.home() / ".gmail-mcp" / "credentials.json"
    calendar_credentials_path: Path = Path.home() / ".gcalendar-mcp" / "credentials.json"
    timezone: str = Field(
        default="Europe/Rome",
        validation_alias=AliasChoices("agent_runner_timezone", "tz"),
    )
    http_timeout_seconds: float = 30.0
    gmail_result_limit: int = 5
    calendar_per_calendar_limit: int = 25

    @field_validator("ipc_mcp_server_cmd", "gmail_mcp_server_cmd", mode="before")
    @classmethod
    def _parse_command(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value
        if value is None:
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith("["):
                return json.loads(stripped)
            return [part.strip() for part in stripped.split(" ") if part.strip()]
        return value

    @field_validator("timezone", mode="after")
    @classmethod
    def _default_empty_timezone(cls, value: str) -> str:
        return value.strip() or "Europe/Rome"

    @property
    def conversations_dir(self) -> Path:
        return self.group_dir / self.conversations_dir_name

    @property
    def close_sentinel(self) -> Path:
        return self.ipc_input_dir / "_close"


class ProviderSettings(BaseSettings):
    """Fallback (OpenRouter) provider configuration.

    Selected for the whole process when an API key is present. Values come
    from the process environment, with the control payload's secrets taking
    precedence (they are never written back into ``os.environ``).
    """

    model_config = SettingsConfigDict(
        env_prefix="openrouter_",
        extra="ignore",
        env_file=".env",
    )

    api_key: str = ""
    base_url: str = DEFAULT_OPENROUTER_BASE_URL
    model: str = DEFAULT_OPENROUTER_MODEL
    http_referer: str = ""
    title: str = ""

    @field_validator("base_url", mode="after")
    @classmethod
    def _strip_trailing_slashes(cls, value: str) -> str:
        return (value.strip() or DEFAULT_OPENROUTER_BASE_URL).rstrip("/")

    @field_validator("model", mode="after")
    @classmethod
    def _default_empty_model(cls, value: str) -> str:
        return value.strip() or DEFAULT_OPENROUTER_MODEL

    @classmethod
    def from_env(cls, env: Mapping[str, str | None]) -> ProviderSettings:
        """Build settings from an engine environment mapping.

        Keys present in ``env`` override whatever the process environment holds.
        """
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            value = env.get(f"OPENROUTER_{name.upper()}")
            if value:
                overrides[name] = value
        return cls(**overrides)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key.strip())
