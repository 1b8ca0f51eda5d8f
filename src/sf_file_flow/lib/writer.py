"""Writes the per-item errors of a run to a fail file."""

from pathlib import Path
from typing import Union

import polars as pl

from ..logging_config import log
from .models import TransferError

ERROR_COLUMNS = ["stage", "file", "error"]


def errors_to_dataframe(errors: list[TransferError]) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "stage": [e.stage.value for e in errors],
            "file": [e.file for e in errors],
            "error": [e.error for e in errors],
        },
        schema={column: pl.String for column in ERROR_COLUMNS},
    )


def write_error_report(
    errors: list[TransferError], path: Union[str, Path], separator: str = ";"
) -> Path:
    """Writes the errors as a CSV file, header included even when empty."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    errors_to_dataframe(errors).write_csv(path, separator=separator)
    log.info(f"Wrote {len(errors)} error(s) to {path}")
    return path
