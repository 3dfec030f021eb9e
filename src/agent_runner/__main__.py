from __future__ import annotations

import argparse
import asyncio
import importlib.metadata
import logging
import sys

from .runner import run as run_session


def _get_version() -> str:
    """Get the version from package metadata."""
    try:
        return importlib.metadata.version("agent-runner")
    except importlib.metadata.PackageNotFoundError:
        return "0.1.0 (dev)"


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Agent Runner: one agent session inside a sandbox (control payload on stdin)"
    )
    parser.add_argument("mode", choices=["run", "version"], nargs="?", default="run")
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    args = parser.parse_args()

    if args.version or args.mode == "version":
        print(f"agent-runner {_get_version()}")
        return

    # stdout carries result envelopes only; logs go to stderr.
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s", stream=sys.stderr
    )
    raw_input = sys.stdin.read()
    raise SystemExit(asyncio.run(run_session(raw_input)))


if __name__ == "__main__":
    main()
