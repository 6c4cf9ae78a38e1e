"""CLI entry point for the MTG collection agent.

A terminal chat loop for development. The CLI keeps the history returned by
each turn and sends it back with the next message, exactly like an HTTP
client of ``mtg_agent.server`` would.

Usage:
    python -m mtg_agent.main            # normal mode (quiet)
    python -m mtg_agent.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import logging
from typing import Any

from dotenv import load_dotenv

from mtg_agent.agent import create_collection_agent, run_turn

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("mtg_agent").setLevel(logging.DEBUG if debug else logging.INFO)


def format_candidates(cards: list[dict[str, Any]]) -> str:
    """Render candidate printings as a fixed-width table."""
    rows = [("SET", "NUMBER", "NAME", "SET NAME")]
    for card in cards:
        rows.append((
            str(card.get("set", "")),
            str(card.get("collector_number", "")),
            str(card.get("name", "")),
            str(card.get("set_name") or ""),
        ))
    widths = [max(len(row[i]) for row in rows) for i in range(4)]
    return "\n".join(
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
        for row in rows
    )


def format_reply(history: list[dict[str, Any]]) -> str:
    """The text to show for the final assistant entry of *history*."""
    last = history[-1] if history else {}
    if last.get("role") != "assistant":
        return "I'm sorry, I wasn't able to generate a response. Please try again."
    content = last.get("content")
    if isinstance(content, list):
        return f"Several printings match:\n{format_candidates(content)}\nWhich one is it?"
    return content or ""


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="MTG Collection Agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  MTG Collection Agent - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    agent = create_collection_agent()
    history: list[dict[str, Any]] = []

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        if user_input.lower() == "new":
            history = []
            print("\n>> New conversation started.\n")
            continue

        try:
            history = run_turn(agent, user_input, history)
            print(f"\nAgent: {format_reply(history)}\n")

        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nAgent: I'm sorry, something went wrong: {e}")
            print("       Please try again or type 'new' to start over.\n")


if __name__ == "__main__":
    main()
