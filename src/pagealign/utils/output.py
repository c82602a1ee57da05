"""Rich console helpers for terminal output and logging."""

import logging
from typing import Any

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.status import Status


class Console:
    """Wrapper around rich.Console with convenience methods."""

    def __init__(self) -> None:
        self._console = RichConsole()
        self._stderr = RichConsole(stderr=True)
        self._json_mode = False

    def set_json_mode(self, enabled: bool) -> None:
        """Enable or disable JSON mode (suppresses rich output)."""
        self._json_mode = enabled

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print to console (suppressed in JSON mode)."""
        if not self._json_mode:
            self._console.print(*args, **kwargs)

    def print_success(self, message: str) -> None:
        """Print a success message in green."""
        if not self._json_mode:
            self._console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message in red (always shown, on stderr)."""
        self._stderr.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        if not self._json_mode:
            self._console.print(f"[yellow]⚠[/yellow] {message}")

    def status(self, message: str) -> Status:
        """Create a status spinner context manager."""
        return self._console.status(message)

    def log_handler(self) -> RichHandler:
        """Build a logging handler that writes through the stderr console."""
        return RichHandler(console=self._stderr, show_path=False, markup=False)


def configure_logging(verbose: bool = False) -> None:
    """Route pagealign loggers through rich."""
    logger = logging.getLogger("pagealign")
    logger.handlers.clear()
    logger.addHandler(console.log_handler())
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


# Global console instance
console = Console()
