"""Scratch directories for downloaded files.

Each job gets a directory keyed by its state id, so that a resumed run
finds the files an interrupted run left behind.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..logging_config import log
from .internal.tools import safe_filename
from .models import FileMetadata

APP_DIR_NAME = "sf-file-flow"
HOME_ENV_VAR = "SF_FILE_FLOW_HOME"


def app_home() -> Path:
    """Returns the base directory for scratch files and saved states."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override)
    return Path(tempfile.gettempdir()) / APP_DIR_NAME


def scratch_dir_for(state_id: str, base: Optional[Union[str, Path]] = None) -> Path:
    """Returns the deterministic scratch directory of a job."""
    return Path(base) if base else app_home() / state_id


def prepare_scratch_dir(path: Union[str, Path]) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def cleanup_scratch_dir(path: Union[str, Path]) -> None:
    path = Path(path)
    if path.exists():
        log.debug(f"Removing scratch directory {path}")
        shutil.rmtree(path, ignore_errors=True)


def local_path_for(scratch_dir: Union[str, Path], file: FileMetadata) -> Path:
    """The path a file version is downloaded to inside the scratch directory."""
    return Path(scratch_dir) / f"{file.id}_{safe_filename(file.path)}"
