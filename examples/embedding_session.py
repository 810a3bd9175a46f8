#!/usr/bin/env python3
"""
Example: Embedding a Dev Session
Shows how to drive DevSession from your own asyncio program.

This example demonstrates:
- Loading and validating devloop.toml
- A custom notifier collecting user-facing messages
- One-shot protocol regeneration before the watch loop
- Running the session for a bounded time and stopping it cleanly
"""

import asyncio
import sys

try:
    from devloop import DevSession
    from devloop_core import load_dev_config, validate_dev_config
except ImportError:
    print("Error: Install devloop first: pip install devloop")
    sys.exit(1)


class CollectingNotifier:
    """Print messages and keep them for a summary at the end."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def _record(self, level: str, message: str) -> None:
        self.messages.append((level, message))
        print(f"[{level}] {message.rstrip()}")

    def info(self, message: str) -> None:
        self._record("info", message)

    def success(self, message: str) -> None:
        self._record("ok", message)

    def warning(self, message: str) -> None:
        self._record("warn", message)

    def error(self, message: str) -> None:
        self._record("error", message)


async def run_for(config_path: str, seconds: float) -> None:
    """Regenerate protocols once, then watch for `seconds` before shutting down."""
    config = load_dev_config(config_path)

    validation = validate_dev_config(config)
    if validation.errors:
        print(f"❌ Config errors: {validation.errors}")
        return
    print(f"✓ {validation.proto_items} protocol dir(s), {validation.sync_items} sync entr(y/ies)")

    notifier = CollectingNotifier()
    session = DevSession(config, notifier=notifier)

    if not await session.proto_once():
        print("⚠️ Protocol regeneration failed, starting anyway...")

    task = asyncio.create_task(session.run())
    try:
        await asyncio.sleep(seconds)
    finally:
        session.stop()
        await task

    errors = [message for level, message in notifier.messages if level == "error"]
    print(f"\n📊 {len(notifier.messages)} message(s), {len(errors)} error(s)")


async def main():
    config_path = sys.argv[1] if len(sys.argv) > 1 else "devloop.toml"
    try:
        await run_for(config_path, seconds=30)
    except KeyboardInterrupt:
        print("\n\n⚠️ Interrupted by user")
    except Exception as e:
        print(f"\n\n❌ Error: {e}")


if __name__ == "__main__":
    asyncio.run(main())
