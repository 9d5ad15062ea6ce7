#!/usr/bin/env python3
"""Command Router Terminal Entry Point

Type commands as you would in chat; every line goes through the full
routing pipeline (resolution, decomposition, classification, actions).

Usage:
    python main.py                  # pattern classification only
    python main.py --ai             # enable the AI fallback (config/models/<mode>.yaml)
    python main.py --user me --conversation chat-1
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stderr)
    ]
)


async def repl(router, user_id: str, conversation_id: str):
    while True:
        try:
            text = await asyncio.to_thread(input, "> ")
        except EOFError:
            return
        if text.strip().lower() in ("exit", "quit"):
            return
        if not text.strip():
            continue

        result = await router.handle_message(user_id, conversation_id, text)
        if result["resolved"] != result["original"]:
            print(f"(understood as: {result['resolved']})")
        print(result["message"])
        print()


def main():
    parser = argparse.ArgumentParser(description="Natural-language command router")
    parser.add_argument("--ai", action="store_true", help="enable AI fallback classification")
    parser.add_argument("--user", default="local-user")
    parser.add_argument("--conversation", default="terminal")
    parser.add_argument("--persist-corrections", action="store_true",
                        help="keep learned corrections in ~/.command_router/corrections.json")
    args = parser.parse_args()

    from core.command_router import CommandRouter
    from memory.corrections import JsonCorrectionStore

    store = JsonCorrectionStore() if args.persist_corrections else None
    router = CommandRouter.build(ai_enabled=args.ai, correction_store=store)
    router.start()
    try:
        asyncio.run(repl(router, args.user, args.conversation))
        return 0
    except KeyboardInterrupt:
        print("\nStopped")
        return 0
    finally:
        router.close()


if __name__ == "__main__":
    sys.exit(main())
