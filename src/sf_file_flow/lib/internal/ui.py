"""Console helpers: rich panels and the progress sinks used by the engine."""

from typing import Optional, Protocol

from rich.console import Console
from rich.panel import Panel
from rich.status import Status

from ...logging_config import log


class MigrationLogger(Protocol):
    """Progress/logging sink consumed by the transfer engine."""

    def log(self, msg: str) -> None: ...

    def warn(self, msg: str) -> None: ...

    def start(self, msg: str) -> None: ...

    def update(self, msg: str) -> None: ...

    def stop(self, msg: str) -> None: ...

    def fail(self, msg: str) -> None: ...


class LoggingMigrationLogger:
    """Routes every notification to the package logger.

    Used when the engine runs headless or from library code.
    """

    def log(self, msg: str) -> None:
        log.info(msg)

    def warn(self, msg: str) -> None:
        log.warning(msg)

    def start(self, msg: str) -> None:
        log.info(msg)

    def update(self, msg: str) -> None:
        log.debug(msg)

    def stop(self, msg: str) -> None:
        log.info(msg)

    def fail(self, msg: str) -> None:
        log.error(msg)


class ConsoleMigrationLogger:
    """Renders engine progress as a rich spinner on the terminal."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()
        self._status: Optional[Status] = None

    def log(self, msg: str) -> None:
        self.console.print(msg)

    def warn(self, msg: str) -> None:
        log.warning(msg)

    def start(self, msg: str) -> None:
        self._end_status()
        self._status = self.console.status(f"[bold blue]{msg}")
        self._status.start()

    def update(self, msg: str) -> None:
        if self._status is None:
            self.start(msg)
            return
        self._status.update(f"[bold blue]{msg}")

    def stop(self, msg: str) -> None:
        self._end_status()
        self.console.print(f"[green]✓[/green] {msg}")

    def fail(self, msg: str) -> None:
        self._end_status()
        self.console.print(f"[bold red]✗[/bold red] {msg}")

    def _end_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


def _show_error_panel(title: str, message: str) -> None:
    """Displays a formatted error panel to the console."""
    console = Console(stderr=True, style="bold red")
    console.print(Panel(message, title=title, border_style="red"))


def _show_warning_panel(title: str, message: str) -> None:
    """Displays a formatted warning panel to the console."""
    console = Console(stderr=True, style="bold yellow")
    console.print(Panel(message, title=title, border_style="yellow"))
