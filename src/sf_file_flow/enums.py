"""Enumerations shared across the transfer engine and the state store."""

from enum import Enum


class MigrationStatus(str, Enum):
    """Lifecycle of a migration run.

    ``IN_PROGRESS``, ``PAUSED`` and ``COMPLETED`` are persisted in state
    files. ``DRY_RUN`` only ever appears on a result summary.
    """

    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    DRY_RUN = "dry_run"


class TransferStage(str, Enum):
    """The pipeline stage an error was recorded in."""

    DOWNLOAD = "download"
    UPLOAD = "upload"
    RESOLVE = "resolve"
    LINK = "link"
    LINK_BATCH = "link_batch"
