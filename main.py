# -*- coding: utf-8 -*-
"""
Command Assistant - Main Entry Point

Coordinates all services:
- Configuration and environment
- Conversation history (MongoDB or in-memory)
- Module registry and command dispatcher
- Interactive command loop and update streams

Usage:
    python main.py                      # interactive loop
    python main.py --once "read my emails"
    python main.py --module calendar    # prefer a module for every command
    python main.py --watch              # print module updates as they arrive
                                        # (or set ASSISTANT_WATCH=true)
"""

import argparse
import asyncio
import sys
import time
from typing import Dict, List, Optional

from core import (
    CommandDispatcher,
    CommandHistoryStore,
    ConversationContextService,
    DispatchError,
    DispatchSettings,
    InMemoryCommandHistory,
    ModuleResponse,
    ModuleUpdate,
    UpdateStream,
    UserContext,
    init_database,
    load_config,
)
from core.env_loader import get_env, get_env_bool, get_env_list, validate_required_vars
from core.history import entry_from_response
from modules.loader import register_enabled_modules
from utils.helpers import parse_time
from utils.logger import get_logger

EXIT_COMMANDS = {"exit", "quit", "bye"}

logger = get_logger("main")


def validate_environment(config: Dict):
    """Validate that the variables enabled modules need are present."""
    required_vars = []
    general_config = config.get("modules", {}).get("general", {})
    if general_config.get("enabled", False) and not general_config.get("api_key"):
        required_vars.append("OPENAI_API_KEY")

    all_present, missing = validate_required_vars(required_vars)
    if not all_present:
        print(f"ERROR: Missing required environment variables: {', '.join(missing)}")
        print("   Please add them to your .env file and restart.")
        sys.exit(1)


def build_user_context() -> UserContext:
    """
    Build the caller's context from the environment.

    Stands in for the identity provider: a deployment behind an API layer
    builds UserContext from the authenticated session instead.
    """
    return UserContext(
        user_id=get_env("ASSISTANT_USER_ID", "local-user"),
        email=get_env("ASSISTANT_USER_EMAIL", ""),
        name=get_env("ASSISTANT_USER_NAME", ""),
        provider=get_env("ASSISTANT_PROVIDER", ""),
        access_token=get_env("ASSISTANT_ACCESS_TOKEN", ""),
        refresh_token=get_env("ASSISTANT_REFRESH_TOKEN", ""),
        token_expiry=parse_time(get_env("ASSISTANT_TOKEN_EXPIRY", "")),
        scopes=tuple(get_env_list("ASSISTANT_SCOPES")),
    )


def build_history_store():
    """MongoDB history when MONGODB_URL is set, in-memory otherwise."""
    mongodb_url = get_env("MONGODB_URL")
    if not mongodb_url:
        logger.warning("MONGODB_URL not set, command history is kept in memory only")
        return InMemoryCommandHistory()
    db = init_database(mongodb_url)
    return CommandHistoryStore(db)


def print_response(response: ModuleResponse):
    source = response.metadata.get("moduleName", "assistant")
    print(f"[{source}] {response.message}")
    for action in response.suggested_actions:
        print(f"   → {action.label}: \"{action.command}\"")


def print_update(update: ModuleUpdate):
    print(f"\n🔔 {update.title}: {update.message}")


async def handle_command(dispatcher: CommandDispatcher, history, text: str,
                         context: UserContext, preferred_module: Optional[str]) -> ModuleResponse:
    """Dispatch one command, translate fatal failures and record it in history."""
    started = time.monotonic()
    try:
        response = await dispatcher.process_command(text, context, preferred_module)
    except DispatchError as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        response = e.to_response()
    duration_ms = (time.monotonic() - started) * 1000

    try:
        history.record(entry_from_response(context.user_id, text, response, duration_ms))
    except Exception as e:
        logger.error(f"Failed to record command history: {e}", exc_info=True)

    return response


async def run(args) -> None:
    # 1. Load configuration
    logger.info("Loading configuration...")
    config = load_config(args.config)
    logger.info("✓ Configuration loaded")

    # 2. Validate environment
    validate_environment(config)

    # 3. History
    history = build_history_store()
    conversation = ConversationContextService(history)

    # 4. Dispatcher and modules
    timezone = get_env("TIMEZONE", "America/Los_Angeles")
    dispatcher = CommandDispatcher(settings=DispatchSettings.from_config(config))
    modules = await register_enabled_modules(
        dispatcher, config, timezone=timezone, conversation=conversation
    )

    logger.info("Active Modules:")
    for descriptor in dispatcher.list_modules():
        logger.info(f"  • {descriptor.name} ({descriptor.id}, priority {descriptor.priority})")

    context = build_user_context()

    if args.once:
        print_response(await handle_command(dispatcher, history, args.once, context, args.module))
        return

    # 5. Update streams
    streams: List[UpdateStream] = []
    if args.watch or get_env_bool("ASSISTANT_WATCH"):
        for module in modules:
            stream = UpdateStream(module, context, print_update)
            stream.start()
            streams.append(stream)

    print("=" * 60)
    print("  Assistant is live! Type 'modules' to list modules, 'exit' to quit.")
    print("=" * 60)

    try:
        while True:
            try:
                text = (await asyncio.to_thread(input, "> ")).strip()
            except EOFError:
                break
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            if text.lower() == "modules":
                for descriptor in dispatcher.list_modules():
                    print(f"  • {descriptor.id}: {descriptor.description}")
                continue
            print_response(await handle_command(dispatcher, history, text, context, args.module))
    finally:
        for stream in streams:
            await stream.stop()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Natural-language command assistant")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--module", default=None, help="Preferred module id for every command")
    parser.add_argument("--once", default=None, metavar="TEXT", help="Run a single command and exit")
    parser.add_argument("--watch", action="store_true", help="Print module updates while running")
    return parser.parse_args(argv)


def main():
    """Main application entry point."""
    args = parse_args()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.critical(f"FATAL ERROR: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
