"""CLI entry point for chatstream.

Headless access to model discovery and streamed chat for terminal use and
scripting. Provider profiles come from the environment (.env supported).

Entry point:
    chatstream models <provider> [--json]
    chatstream chat <provider> <model> <prompt> [--system TEXT] [--no-stream] [--db PATH]
    chatstream history <conversation-id> [--db PATH]
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from chatstream.catalog import ModelCatalog
from chatstream.config import get_database_path
from chatstream.errors import ChatStreamError
from chatstream.events import Chunk, Completed, Failed, Started
from chatstream.orchestrator import ConversationOrchestrator
from chatstream.storage import MemoryProfileStore, ProfileStore, SQLiteConversationStore

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatstream",
        description="Streaming chat completions across LLM providers.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    # models
    models_p = sub.add_parser("models", help="List models a provider exposes")
    models_p.add_argument("provider", help="Provider key (openai, ollama, gemini, ...)")
    models_p.add_argument(
        "--json", action="store_true", dest="json_output",
        help="JSON output (models, from_fallback, error)",
    )

    # chat
    chat_p = sub.add_parser("chat", help="Send one message and stream the reply")
    chat_p.add_argument("provider", help="Provider key")
    chat_p.add_argument("model", help="Model ID")
    chat_p.add_argument("prompt", help="User message")
    chat_p.add_argument("--system", default=None, help="System prompt")
    chat_p.add_argument(
        "--no-stream", action="store_false", dest="stream",
        help="Request a buffered (non-streaming) response",
    )
    chat_p.add_argument("--db", default=None, help="SQLite database path (default: $CHATSTREAM_DB)")

    # history
    history_p = sub.add_parser("history", help="Print the turns of a stored conversation")
    history_p.add_argument("conversation_id", help="Conversation ID")
    history_p.add_argument("--db", default=None, help="SQLite database path (default: $CHATSTREAM_DB)")

    return parser


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


async def _cmd_models(
    provider: str,
    json_output: bool = False,
    profiles: Optional[ProfileStore] = None,
    catalog: Optional[ModelCatalog] = None,
) -> int:
    """List models for a provider. Returns exit code."""
    profiles = profiles or MemoryProfileStore.from_env()
    catalog = catalog or ModelCatalog()
    profile = profiles.get_profile(provider)

    listing = await catalog.list_models_with_fallback(profile)

    if json_output:
        json.dump({"provider": provider, **listing.model_dump()}, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for model_id in listing.models:
            print(model_id)
        if listing.error:
            print(f"Model discovery failed: {listing.error}", file=sys.stderr)
            if listing.models:
                print("(showing cached/default models)", file=sys.stderr)
        elif listing.is_empty:
            print("No models found", file=sys.stderr)

    if listing.error and listing.is_empty:
        return 1
    return 0


async def _cmd_chat(
    provider: str,
    model: str,
    prompt: str,
    system: Optional[str] = None,
    stream: bool = True,
    db: Optional[str] = None,
    profiles: Optional[ProfileStore] = None,
) -> int:
    """Create a conversation, send one message, stream the reply. Returns exit code."""
    store = SQLiteConversationStore(db or get_database_path())
    orchestrator = ConversationOrchestrator(store, profiles or MemoryProfileStore.from_env())
    loop = asyncio.get_running_loop()
    code = 0

    try:
        await orchestrator.recover_interrupted()
        conversation = await orchestrator.create_conversation(
            provider, model, name=prompt[:40], system_prompt=system, streaming=stream,
        )
        print(f"Conversation: {conversation.id}", file=sys.stderr)

        try:
            generation = await orchestrator.send(conversation.id, prompt)
        except ChatStreamError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

        # Ctrl-C cancels the generation; the partial answer stays stored
        try:
            loop.add_signal_handler(signal.SIGINT, generation.cancel)
        except (NotImplementedError, RuntimeError):
            pass

        try:
            async for event in generation:
                if isinstance(event, Started):
                    logger.debug(f"Generating turn {event.turn_id}")
                elif isinstance(event, Chunk):
                    sys.stdout.write(event.text)
                    sys.stdout.flush()
                elif isinstance(event, Completed):
                    sys.stdout.write("\n")
                    if event.usage and event.usage.total_tokens is not None:
                        print(
                            f"[{event.finish_reason or 'done'}, {event.usage.total_tokens} tokens]",
                            file=sys.stderr,
                        )
                elif isinstance(event, Failed):
                    sys.stdout.write("\n")
                    if event.cancelled:
                        print("[cancelled]", file=sys.stderr)
                        code = 130
                    else:
                        print(f"Error: {event.message}", file=sys.stderr)
                        code = 1
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
    finally:
        await orchestrator.close()
        store.close()

    return code


async def _cmd_history(conversation_id: str, db: Optional[str] = None) -> int:
    """Print stored turns of a conversation. Returns exit code."""
    store = SQLiteConversationStore(db or get_database_path())
    try:
        conversation = store.get_conversation(conversation_id)
        if conversation is None:
            print(f"Error: conversation not found: {conversation_id}", file=sys.stderr)
            return 1

        print(f"# {conversation.name} ({conversation.provider}/{conversation.model})")
        for turn in store.list_turns(conversation_id):
            print(f"[{turn.role.value}] {turn.content}")
            if turn.generating:
                print("  (generating)")
            if turn.error:
                code = f" {turn.error_code}" if turn.error_code else ""
                print(f"  (error{code}: {turn.error})")
            if turn.usage and turn.usage.total_tokens is not None:
                print(f"  ({turn.usage.total_tokens} tokens, {turn.finish_reason or 'n/a'})")
    finally:
        store.close()
    return 0


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main():
    parser = _build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    from dotenv import load_dotenv
    load_dotenv()

    # Dispatch
    if args.command == "models":
        code = asyncio.run(_cmd_models(args.provider, json_output=args.json_output))
    elif args.command == "chat":
        code = asyncio.run(_cmd_chat(
            provider=args.provider,
            model=args.model,
            prompt=args.prompt,
            system=args.system,
            stream=args.stream,
            db=args.db,
        ))
    elif args.command == "history":
        code = asyncio.run(_cmd_history(args.conversation_id, db=args.db))
    else:
        parser.print_help()
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
