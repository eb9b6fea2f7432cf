"""CLI entry point for the Coda assistant.

A terminal chat against the same engine the API uses, with a locally
created session.  For production, use the FastAPI server (coda/server.py).

Usage:
    python -m coda.main            # normal mode (quiet)
    python -m coda.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid

from dotenv import load_dotenv

from coda.engine.provider import ProviderError
from coda.engine.quota import QuotaExceeded
from coda.engine.service import ChatRejected, ChatService

logger = logging.getLogger(__name__)

LOCAL_ORIGIN = "127.0.0.1"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("coda").setLevel(logging.DEBUG if debug else logging.INFO)


def _new_session(service: ChatService) -> str | None:
    session = service.ledger.create_session(LOCAL_ORIGIN)
    if isinstance(session, QuotaExceeded):
        print(f"\nCoda: {session.message}\n")
        return None
    return session.token


async def _chat_loop(service: ChatService) -> None:
    token = _new_session(service)
    conversation_id = str(uuid.uuid4())
    logger.info("Started new conversation: %s", conversation_id)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            return

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye! Happy practising!")
            return

        if user_input.lower() == "new":
            token = _new_session(service) or token
            conversation_id = str(uuid.uuid4())
            print(f"\n>> New conversation started: {conversation_id[:8]}...\n")
            continue

        try:
            outcome = await service.chat(token, user_input, conversation_id)
        except ChatRejected as exc:
            print(f"\nCoda: {exc.message}\n")
            continue
        except ProviderError:
            logger.exception("Error processing message")
            print("\nCoda: I'm sorry, something went wrong. Please try again or type 'new'.\n")
            continue

        print(f"\nCoda: {outcome.text}")
        for attachment in outcome.attachments:
            print(f"      [{attachment['resource']['kind']}]")
        print(f"      ({outcome.messages_remaining} messages left)\n")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Coda assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    from coda.agent import create_chat_service  # noqa: PLC0415 — config reads env on import

    print("\n" + "=" * 60)
    print("  Coda - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    asyncio.run(_chat_loop(create_chat_service()))


if __name__ == "__main__":
    main()
