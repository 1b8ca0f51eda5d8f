"""Typed projections of store rows and the result types of a migration run.

Rows coming back from a store are loosely typed dictionaries. They are
converted into the dataclasses below right at the query boundary so the
rest of the engine never handles raw rows.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..enums import MigrationStatus, TransferStage

if TYPE_CHECKING:
    from .connection import StoreConnection

# Cap on the number of error entries kept on a result summary.
MAX_RECORDED_ERRORS = 1000

# Source entity id -> target entity id
RecordMapping = Mapping[str, str]
# Source document id -> target document id
DocumentMapping = dict[str, str]


@dataclass(frozen=True)
class MigrationStateConfig:
    """The six fields that identify a migration job."""

    object_name: str
    source_match_field: str
    target_match_field: str
    where_clause: Optional[str]
    source_instance_url: str
    target_instance_url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MigrationStateConfig":
        return cls(
            object_name=data["object_name"],
            source_match_field=data["source_match_field"],
            target_match_field=data["target_match_field"],
            where_clause=data.get("where_clause"),
            source_instance_url=data["source_instance_url"],
            target_instance_url=data["target_instance_url"],
        )


@dataclass(frozen=True)
class MigrationConfig:
    """Immutable intent of one migration run.

    Args:
        object_name: API name of the business object (e.g. ``Account``).
        source_match_field: Field on the source object used for matching.
        source: Handle of the store files are read from.
        target: Handle of the store files are written to.
        target_match_field: Field on the target object; defaults to
            ``source_match_field``.
        where_clause: Optional filter applied to the source records.
        dry_run: Report what would be migrated without touching the target.
    """

    object_name: str
    source_match_field: str
    source: "StoreConnection"
    target: "StoreConnection"
    target_match_field: Optional[str] = None
    where_clause: Optional[str] = None
    dry_run: bool = False

    def __post_init__(self) -> None:
        if not self.target_match_field:
            object.__setattr__(self, "target_match_field", self.source_match_field)
        if not self.where_clause:
            object.__setattr__(self, "where_clause", None)

    def state_config(self) -> MigrationStateConfig:
        return MigrationStateConfig(
            object_name=self.object_name,
            source_match_field=self.source_match_field,
            target_match_field=str(self.target_match_field),
            where_clause=self.where_clause,
            source_instance_url=self.source.identity,
            target_instance_url=self.target.identity,
        )


@dataclass(frozen=True)
class SourceRecord:
    """A business record of the source store with its match value."""

    id: str
    match_value: Optional[str]

    @classmethod
    def from_row(cls, row: Mapping[str, Any], match_field: str) -> "SourceRecord":
        value = row.get(match_field)
        if value is None or value == "":
            return cls(id=row["Id"], match_value=None)
        return cls(id=row["Id"], match_value=str(value))


@dataclass(frozen=True)
class FileMetadata:
    """One retrievable binary version of a document."""

    id: str
    document_id: str
    title: str
    path: str
    extension: Optional[str]
    size_bytes: int
    description: Optional[str]
    version_number: Optional[str]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FileMetadata":
        return cls(
            id=row["Id"],
            document_id=row["ContentDocumentId"],
            title=row.get("Title") or "",
            path=row.get("PathOnClient") or row.get("Title") or row["Id"],
            extension=row.get("FileExtension"),
            size_bytes=int(row.get("ContentSize") or 0),
            description=row.get("Description"),
            version_number=row.get("VersionNumber"),
        )


@dataclass(frozen=True)
class LinkRecord:
    """An association between a document and a business record."""

    document_id: str
    linked_entity_id: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LinkRecord":
        return cls(
            document_id=row["ContentDocumentId"],
            linked_entity_id=row["LinkedEntityId"],
        )


@dataclass
class TransferError:
    """A per-item or per-batch failure recorded during a run."""

    stage: TransferStage
    error: str
    file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "stage": self.stage.value, "error": self.error}


@dataclass
class ProgressUpdate:
    """A checkpoint delta handed to the batch-progress callback."""

    completed: DocumentMapping
    stats: dict[str, int]


@dataclass
class MigrationResults:
    """Summary of a migration run, reported even on partial failure."""

    files_found: int = 0
    files_uploaded: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    links_created: int = 0
    errors: list[TransferError] = field(default_factory=list)
    errors_dropped: int = 0
    status: MigrationStatus = MigrationStatus.IN_PROGRESS

    def record_error(
        self, stage: TransferStage, error: Any, file: Optional[str] = None
    ) -> None:
        """Appends an error entry, counting instead of storing past the cap."""
        if len(self.errors) >= MAX_RECORDED_ERRORS:
            self.errors_dropped += 1
            return
        self.errors.append(TransferError(stage=stage, error=str(error), file=file))

    def stats(self) -> dict[str, int]:
        """Returns the counters in the shape persisted in a state file."""
        return {
            "files_found": self.files_found,
            "files_uploaded": self.files_uploaded,
            "files_failed": self.files_failed,
            "files_skipped": self.files_skipped,
            "links_created": self.links_created,
        }
