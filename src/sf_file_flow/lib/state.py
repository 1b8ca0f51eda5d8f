"""Checkpoint state store.

A migration job is identified by a hash of its configuration, so a rerun
with the same settings against the same stores finds the checkpoint of an
earlier, interrupted run. The store is the only writer of state files and
every write is atomic: the JSON is written to a sibling temporary file and
renamed into place.
"""

import hashlib
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from ..enums import MigrationStatus
from ..logging_config import log
from .internal.exceptions import StateError, StateMismatchError
from .models import DocumentMapping, MigrationConfig, MigrationStateConfig
from .scratch import app_home, scratch_dir_for

STATE_VERSION = 1
STATE_DIR_NAME = ".state"

_ALLOWED_TRANSITIONS = {
    MigrationStatus.IN_PROGRESS: {
        MigrationStatus.IN_PROGRESS,
        MigrationStatus.PAUSED,
        MigrationStatus.COMPLETED,
    },
    # A paused job becomes in progress again when it is resumed.
    MigrationStatus.PAUSED: {MigrationStatus.IN_PROGRESS, MigrationStatus.PAUSED},
    MigrationStatus.COMPLETED: set(),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_stats() -> dict[str, int]:
    return {
        "files_found": 0,
        "files_uploaded": 0,
        "files_failed": 0,
        "files_skipped": 0,
        "links_created": 0,
    }


@dataclass
class MigrationState:
    """The persisted progress of one migration job."""

    state_id: str
    config: MigrationStateConfig
    temp_dir: str
    status: MigrationStatus = MigrationStatus.IN_PROGRESS
    completed: DocumentMapping = field(default_factory=dict)
    stats: dict[str, int] = field(default_factory=_empty_stats)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    version: int = STATE_VERSION

    def mark_status(self, status: MigrationStatus) -> None:
        """Moves the state to ``status``, rejecting illegal transitions."""
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise StateError(
                f"Illegal state transition {self.status.value} -> {status.value}"
            )
        self.status = status

    def merge_progress(
        self, completed: DocumentMapping, stats: dict[str, int]
    ) -> None:
        """Merges a checkpoint delta; the completed map only ever grows."""
        self.completed.update(completed)
        self.stats.update(stats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "state_id": self.state_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "config": self.config.to_dict(),
            "temp_dir": self.temp_dir,
            "status": self.status.value,
            "completed": self.completed,
            "stats": self.stats,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationState":
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(f"Unsupported state file version: {version}")
        try:
            return cls(
                state_id=data["state_id"],
                config=MigrationStateConfig.from_dict(data["config"]),
                temp_dir=data["temp_dir"],
                status=MigrationStatus(data["status"]),
                completed=dict(data.get("completed", {})),
                stats={**_empty_stats(), **data.get("stats", {})},
                created_at=data.get("created_at", _now()),
                updated_at=data.get("updated_at", _now()),
                version=version,
            )
        except (KeyError, ValueError) as e:
            raise StateError(f"Malformed state data: {e}") from e


@dataclass(frozen=True)
class MigrationStateSummary:
    """What an operator needs to pick a job to resume."""

    state_id: str
    config: MigrationStateConfig
    status: MigrationStatus
    completed_count: int
    stats: dict[str, int]
    created_at: str
    updated_at: str


def generate_state_id(config: MigrationStateConfig) -> str:
    """Generate a deterministic state ID from a job configuration.

    Identical configurations always produce the same id; a difference in
    any of the six fields, including the filter, produces another one.
    """
    key = "|".join(
        [
            config.object_name,
            config.source_match_field,
            config.target_match_field,
            config.where_clause or "",
            config.source_instance_url,
            config.target_instance_url,
        ]
    )
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:8]
    return f"{config.object_name}_{config.source_match_field}_{digest}"


def create_state(
    state_id: str,
    config: MigrationStateConfig,
    scratch_base: Optional[Union[str, Path]] = None,
) -> MigrationState:
    """Create a fresh, in-progress migration state."""
    temp_dir = (
        Path(scratch_base) / state_id if scratch_base else scratch_dir_for(state_id)
    )
    return MigrationState(state_id=state_id, config=config, temp_dir=str(temp_dir))


def verify_state_identity(state: MigrationState, config: MigrationConfig) -> None:
    """Checks that a loaded state belongs to the connected store pair.

    Raises:
        StateMismatchError: If either store identity differs.
    """
    recorded = state.config
    if recorded.source_instance_url != config.source.identity:
        raise StateMismatchError(
            f"Saved state '{state.state_id}' was recorded against source "
            f"'{recorded.source_instance_url}', but the connected source is "
            f"'{config.source.identity}'."
        )
    if recorded.target_instance_url != config.target.identity:
        raise StateMismatchError(
            f"Saved state '{state.state_id}' was recorded against target "
            f"'{recorded.target_instance_url}', but the connected target is "
            f"'{config.target.identity}'."
        )


class StateStore:
    """Reads and atomically writes migration states as JSON files.

    Args:
        state_dir: Directory holding the state files. Defaults to
            ``<app home>/.state``.
    """

    def __init__(self, state_dir: Optional[Union[str, Path]] = None) -> None:
        self.state_dir = Path(state_dir) if state_dir else app_home() / STATE_DIR_NAME

    def path_for(self, state_id: str) -> Path:
        return self.state_dir / f"{state_id}.json"

    def load(self, state_id: str) -> Optional[MigrationState]:
        """Loads a saved state, or returns None if there is none."""
        path = self.path_for(state_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Could not read state file '{path}': {e}") from e
        return MigrationState.from_dict(data)

    def save(self, state_id: str, state: MigrationState) -> None:
        """Saves a state atomically.

        The previous file stays intact until the new content is fully on
        disk, so a process killed mid-write never corrupts it.
        """
        path = self.path_for(state_id)
        tmp_path = path.with_name(f"{path.name}.tmp")
        state.updated_at = _now()
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            raise StateError(f"Could not write state file '{path}': {e}") from e
        log.debug(
            f"Checkpoint saved for '{state_id}' "
            f"({len(state.completed)} completed files)."
        )

    def delete(self, state_id: str) -> None:
        """Deletes a saved state and any leftover temporary file."""
        path = self.path_for(state_id)
        for candidate in (path, path.with_name(f"{path.name}.tmp")):
            try:
                candidate.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StateError(f"Could not delete state file '{candidate}': {e}") from e

    def list(self) -> list[MigrationStateSummary]:
        """Lists all saved states, newest first, skipping unreadable files."""
        if not self.state_dir.exists():
            return []

        summaries = []
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                state = self.load(path.stem)
            except StateError as e:
                log.debug(f"Skipping unreadable state file {path}: {e}")
                continue
            if state is None:
                continue
            summaries.append(
                MigrationStateSummary(
                    state_id=state.state_id,
                    config=state.config,
                    status=state.status,
                    completed_count=len(state.completed),
                    stats=dict(state.stats),
                    created_at=state.created_at,
                    updated_at=state.updated_at,
                )
            )
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries
