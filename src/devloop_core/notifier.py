"""Pluggable notification protocol for devloop_core.

Keeps the engine decoupled from how messages reach the developer.
The CLI prints to the terminal; embedded hosts can log or stay silent.
"""

import logging
from typing import Protocol

from rich.console import Console


class DevNotifier(Protocol):
    """Protocol for user-facing notifications."""

    def info(self, message: str) -> None:
        """Informational message."""
        ...

    def success(self, message: str) -> None:
        """Something finished successfully."""
        ...

    def warning(self, message: str) -> None:
        """Warning message."""
        ...

    def error(self, message: str) -> None:
        """Error message."""
        ...


class NoOpNotifier:
    """Silent no-op notifier - default for embedded mode."""

    def info(self, msg: str) -> None:
        """Do nothing."""
        pass

    def success(self, msg: str) -> None:
        """Do nothing."""
        pass

    def warning(self, msg: str) -> None:
        """Do nothing."""
        pass

    def error(self, msg: str) -> None:
        """Do nothing."""
        pass


class LoggingNotifier:
    """Implementation using stdlib logging - for debugging/development."""

    def info(self, msg: str) -> None:
        logging.info(msg)

    def success(self, msg: str) -> None:
        logging.info(msg)

    def warning(self, msg: str) -> None:
        logging.warning(msg)

    def error(self, msg: str) -> None:
        logging.error(msg)


class ConsoleNotifier:
    """Terminal output for the devloop CLI, rendered with rich."""

    def __init__(self, color: bool | None = None):
        """Initialize notifier.

        Args:
            color: Force styled output on or off; detected from the terminal when None
        """
        options = {"force_terminal": color, "markup": False, "emoji": False, "highlight": False, "soft_wrap": True}
        self.console = Console(**options)
        self.err_console = Console(stderr=True, **options)

    def info(self, msg: str) -> None:
        self.console.print(msg)

    def success(self, msg: str) -> None:
        self.console.print(f"✔ {msg}", style="green")

    def warning(self, msg: str) -> None:
        self.console.print(msg, style="yellow")

    def error(self, msg: str) -> None:
        self.err_console.print(msg, style="bold red")
