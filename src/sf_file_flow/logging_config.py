"""Centralized logging configuration for the sf-file-flow application."""

import logging
import sys

# Get the root logger for the application package
log = logging.getLogger("sf_file_flow")


def setup_logging(verbose: bool = False) -> None:
    """Configures the root logger for the application.

    This function sets up a handler that prints logs to the console
    with a consistent format.

    Args:
        verbose (bool): If True, the logging level is set to DEBUG.
                        Otherwise, it's set to INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    log.setLevel(level)

    # Clear any existing handlers to avoid duplicate logs if this is called multiple times
    if log.hasHandlers():
        log.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)

    log.addHandler(handler)
