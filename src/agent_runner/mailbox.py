"""File-based input mailbox.

The host drops follow-up prompts as ``*.json`` files (``{"type": "message",
"text": "..."}``) into the mailbox directory and ends the session by creating
a ``_close`` sentinel next to them. Files are deleted as soon as they are
read, so each message and the sentinel are consumed at most once.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

logger = logging.getLogger("agent_runner.mailbox")

CLOSE_SENTINEL_NAME = "_close"


class InputMailbox:
    def __init__(self, input_dir: Path, poll_interval: float = 0.5):
        self.input_dir = Path(input_dir)
        self.close_sentinel = self.input_dir / CLOSE_SENTINEL_NAME
        self.poll_interval = poll_interval

    def ensure_dir(self) -> None:
        self.input_dir.mkdir(parents=True, exist_ok=True)

    def clear_stale_sentinel(self) -> None:
        """Remove a sentinel left behind by a previous run."""
        try:
            self.close_sentinel.unlink()
            logger.info("Removed stale close sentinel at %s", self.close_sentinel)
        except FileNotFoundError:
            pass

    def should_close(self) -> bool:
        if not self.close_sentinel.exists():
            return False
        try:
            self.close_sentinel.unlink()
        except FileNotFoundError:
            pass
        return True

    def drain(self) -> list[str]:
        """Consume every pending message file in filename order."""
        try:
            self.ensure_dir()
            files = sorted(p for p in self.input_dir.glob("*.json") if p.is_file())
        except OSError as exc:
            logger.warning("Mailbox drain error: %s", exc)
            return []

        messages: list[str] = []
        for path in files:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                path.unlink()
            except (OSError, ValueError) as exc:
                logger.warning("Failed to process input file %s: %s", path.name, exc)
                try:
                    path.unlink(missing_ok=True)
                except OSError:
                    logger.error("Could not delete poison input file %s", path.name)
                continue
            if (
                isinstance(data, dict)
                and (data.get("type") or data.get("kind")) == "message"
                and data.get("text")
            ):
                messages.append(str(data["text"]))
            else:
                logger.warning("Discarding malformed input file %s", path.name)
        return messages

    async def wait_for_next(self) -> str | None:
        """Block until new messages arrive (joined by newlines) or the sentinel shows up.

        Returns None when the session should terminate.
        """
        while True:
            messages = self.drain()
            if messages:
                return "\n".join(messages)
            if self.should_close():
                return None
            await asyncio.sleep(self.poll_interval)
