"""Internal sf-file-flow Tools.

This module provides low-level utility functions for iteration and
formatting, primarily used by the query helper and the transfer engine.
"""

from collections.abc import Iterable
from itertools import islice
from pathlib import PurePath
from typing import Any

# Bounds for scratch file names, well below the usual 255 byte limit.
MAX_FILENAME_BYTES = 100
MAX_SUFFIX_BYTES = 16


def batch(iterable: Iterable[Any], size: int) -> Iterable[list[Any]]:
    """Splits an iterable into batches of a specified size.

    Args:
        iterable: The iterable to process.
        size: The desired size of each batch.

    Yields:
        A list containing the next batch of items.
    """
    if size < 1:
        raise ValueError("Batch size must be a positive integer.")

    source_iterator = iter(iterable)
    while True:
        batch_iterator = islice(source_iterator, size)
        # Get the first item to check if the iterator is exhausted
        try:
            first_item = next(batch_iterator)
        except StopIteration:
            return

        yield [first_item, *list(batch_iterator)]


# --- Data Formatting Tools ---


def escape_soql(value: Any) -> str:
    """Escapes a value for use inside a single-quoted SOQL literal."""
    return str(value).replace("\\", "\\\\").replace("'", "\\'")


def soql_in(values: Iterable[Any]) -> str:
    """Builds the body of a SOQL ``IN (...)`` clause from raw values."""
    return ",".join(f"'{escape_soql(value)}'" for value in values)


def format_bytes(size: int) -> str:
    """Renders a byte count as B, KB or MB with one decimal."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def safe_filename(name: str, max_bytes: int = MAX_FILENAME_BYTES) -> str:
    """Replaces unsafe characters in a file name and bounds its length.

    Names longer than ``max_bytes`` once UTF-8 encoded are cut, keeping a
    short extension.
    """
    if not isinstance(name, str):
        name = str(name)

    replacements = {"/": "_", "\\": "_", "\x00": "_", ":": "_"}
    for old, new in replacements.items():
        name = name.replace(old, new)
    name = name.strip() or "file"

    encoded = name.encode("utf-8")
    if len(encoded) <= max_bytes:
        return name
    suffix = PurePath(name).suffix
    if len(suffix.encode("utf-8")) > MAX_SUFFIX_BYTES:
        suffix = ""
    budget = max_bytes - len(suffix.encode("utf-8"))
    return encoded[:budget].decode("utf-8", errors="ignore") + suffix
