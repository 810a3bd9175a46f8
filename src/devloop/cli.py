"""CLI entry point for devloop: auto-generates a default config and runs a dev session."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from devloop_core.config import load_dev_config
from devloop_core.notifier import ConsoleNotifier

from devloop import __version__
from devloop.session import DevSession

COMMANDS = ("dev", "sync", "proto")

# Default config template for a project with shared protocols
DEFAULT_CONFIG_TEMPLATE = """\
# Auto-generated devloop.toml

verbose = false

[dev]
auto_proto = true
auto_sync = true
auto_api = true
command = "python src/main.py"
watch = "src"
delay = 1000

[[proto]]
ptl_dir = "src/shared/protocols"
output = "src/shared/protocols/service_proto.json"
api_dir = "src/api"

# [[sync]]
# type = "copy"      # or "symlink"
# from = "src/shared"
# to = "../client/src/shared"
"""


def create_default_config(config_path: Path) -> bool:
    """
    Create a default devloop.toml if it doesn't exist.

    Args:
        config_path: Path where config should be created

    Returns:
        True if config was created, False if it already exists

    Raises:
        PermissionError: If unable to write to the directory
        OSError: If other file system errors occur
    """
    if config_path.exists():
        return False

    # Ensure parent directory exists
    config_path.parent.mkdir(parents=True, exist_ok=True)

    # Write template to config file
    config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
    return True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="devloop",
        description="Watch protocol sources, sync shared code and restart the app under development.",
        epilog="Examples:\n"
        "  devloop                          # Auto-create devloop.toml and start a dev session\n"
        "  devloop -c my-project.toml dev   # Use custom config\n"
        "  devloop sync                     # Link and copy shared directories once\n"
        "  devloop proto                    # Regenerate protocol snapshots once",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="dev",
        choices=COMMANDS,
        help="What to run (default: dev)",
    )

    parser.add_argument(
        "-c",
        "--config",
        default="devloop.toml",
        help="Path to config file (default: devloop.toml)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug output",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    """Route devloop loggers to stderr; debug output only when verbose."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for name in ("devloop", "devloop_core"):
        logging.getLogger(name).setLevel(level)


async def run_command(command: str, session: DevSession) -> int:
    """Run one CLI command against a session and return the exit code."""
    if command == "sync":
        await session.sync_once()
        return 0
    if command == "proto":
        return 0 if await session.proto_once() else 1
    await session.run()
    return 0


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the devloop CLI.

    Handles:
    - Argument parsing
    - Auto-creation of devloop.toml
    - Running the selected command
    - Error handling and exit codes
    """
    args = parse_args(argv)

    # Resolve config path to absolute path
    config_path = Path(args.config).resolve()

    try:
        # Try to create default config if missing
        if create_default_config(config_path):
            print(f"Created default config at: {config_path}")

        config = load_dev_config(config_path)
        configure_logging(args.verbose or config.verbose)

        session = DevSession(config, notifier=ConsoleNotifier())
        exit_code = asyncio.run(run_command(args.command, session))

    except KeyboardInterrupt:
        # Gracefully handle Ctrl+C
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
