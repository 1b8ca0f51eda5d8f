"""Cooperative cancellation.

The transfer engine never gets interrupted preemptively. Instead a
:class:`CancellationToken` is threaded through the call chain and polled
between units of work. :func:`graceful_interrupt` wires Ctrl+C to the token:
the first signal requests a pause, the second one force-quits.
"""

import os
import signal
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any, Optional

from rich.console import Console

from ...logging_config import log


class CancellationToken:
    """A one-way flag that can be set once and polled many times."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __call__(self) -> bool:
        """Allows the token to be passed directly as a ``should_abort`` predicate."""
        return self._cancelled


@contextmanager
def graceful_interrupt(
    token: CancellationToken, console: Optional[Console] = None
) -> Generator[CancellationToken, None, None]:
    """Installs a SIGINT handler that cancels ``token`` for the duration.

    The previous handler is restored on exit, even if the body raises.

    Args:
        token: The token to cancel on the first Ctrl+C.
        console: The rich console used to print the notices.
    """
    console = console or Console(stderr=True)

    def _handler(signum: int, frame: Any) -> None:
        if token.cancelled:
            console.print("\n[bold red]Force quit.[/bold red]")
            log.warning("Second interrupt received, terminating immediately.")
            os._exit(1)
        token.cancel()
        console.print(
            "\n[bold yellow]Ctrl+C detected - finishing current file and "
            "saving progress...[/bold yellow]"
        )

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)
