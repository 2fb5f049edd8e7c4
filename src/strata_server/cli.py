#!/usr/bin/env python3
"""
CLI entry points for Strata.

The strata-suggest command is called by a prompt-submit hook to suggest
specialists for the user's message and print formatted context.
"""

import asyncio
import json
import sys

from strata_server.config import build_engine, get_discovery_config, load_config
from strata_server.discovery import SpecialistDiscoveryEngine
from strata_server.formatter import format_suggestions


async def _suggest(message: str) -> str:
    config = load_config()
    engine = build_engine(config)
    discovery_config = get_discovery_config(config)
    discovery = SpecialistDiscoveryEngine(
        engine,
        max_results=discovery_config["max_results"],
        default_specialists=discovery_config["default_specialists"],
    )
    try:
        result = await discovery.suggest(
            message, include_alternatives=discovery_config["include_alternatives"]
        )
        return format_suggestions(result.to_dict(), message=message)
    finally:
        await engine.dispose()


def suggest_cli() -> None:
    """
    CLI entry point for hook-based specialist suggestion.

    Reads the user message from stdin JSON (hook format) or from command
    line args and prints formatted suggestions to stdout.

    Hook sends JSON:
        {"prompt": "user message", "session_id": "...", "cwd": "..."}

    Usage:
        # Via hook (JSON on stdin)
        echo '{"prompt": "message"}' | strata-suggest

        # Direct CLI usage (args)
        strata-suggest "user message here"

    Exit codes:
        0: Success (output printed to stdout, possibly empty)
        1: Error during suggestion
    """
    if len(sys.argv) > 1:
        message = " ".join(sys.argv[1:])
    else:
        stdin_data = sys.stdin.read().strip()
        if not stdin_data:
            sys.exit(0)

        try:
            input_data = json.loads(stdin_data)
            message = input_data.get("prompt", "") if isinstance(input_data, dict) else ""
        except json.JSONDecodeError:
            # Plain text on stdin
            message = stdin_data

    if not message:
        sys.exit(0)

    try:
        formatted = asyncio.run(_suggest(message))
        if formatted:
            print(formatted)

    except Exception as e:
        # Log error to stderr, don't pollute stdout
        print(f"Strata suggestion error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    suggest_cli()
