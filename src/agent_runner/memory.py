"""File-based memory injected into the engine's system prompt.

Memory lives in the mounted workspace folders:
- ``<group>/MEMORY.md``: per-group memory (``CLAUDE.md`` accepted as legacy name)
- ``<global>/MEMORY.md``: shared memory, added for non-main groups only
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger("agent_runner.memory")

MEMORY_FILE_NAMES = ("MEMORY.md", "CLAUDE.md")


def read_memory_markdown(directory: Path) -> str:
    """Read the preferred memory file from ``directory``; empty string when absent."""
    for name in MEMORY_FILE_NAMES:
        path = Path(directory) / name
        if not path.exists():
            continue
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to read %s: %s", path, exc)
            return ""
    return ""


class FileMemory:
    """Merged group + global memory for one session."""

    def __init__(self, group_dir: Path, global_dir: Path, is_main: bool):
        self.group_dir = Path(group_dir)
        self.global_dir = Path(global_dir)
        self.is_main = is_main

    def merged(self) -> str:
        parts: list[str] = []
        group_memory = read_memory_markdown(self.group_dir)
        if group_memory.strip():
            parts.append(group_memory)
        if not self.is_main:
            global_memory = read_memory_markdown(self.global_dir)
            if global_memory.strip():
                parts.append(global_memory)
        return "\n\n".join(parts)


def list_extra_dirs(extra_dir: Path) -> list[str]:
    """Additional directories mounted under ``extra_dir``, sorted by name."""
    base = Path(extra_dir)
    if not base.exists():
        return []
    return [str(p) for p in sorted(base.iterdir()) if p.is_dir()]
