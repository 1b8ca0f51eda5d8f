"""File transfer engine.

This module contains the batch pipeline that moves file versions from the
source store to the target store: download, upload, resolve the new
document ids, checkpoint, and clean up, one batch at a time. Once every
pending file has a target document id, the link reconciler creates the
associations.

The engine never writes the state file itself. It starts from the
``completed`` map of a resumed state and hands a delta to ``on_progress``
after each batch; persisting it is the caller's job.
"""

import os
from collections import defaultdict
from contextlib import suppress
from pathlib import Path
from typing import Any, Callable, Optional

from .enums import MigrationStatus, TransferStage
from .lib.connection import StoreConnection
from .lib.internal.tools import format_bytes, soql_in
from .lib.internal.ui import LoggingMigrationLogger, MigrationLogger
from .lib.links import reconcile_links
from .lib.models import (
    DocumentMapping,
    FileMetadata,
    LinkRecord,
    MigrationConfig,
    MigrationResults,
    ProgressUpdate,
)
from .lib.query import CHUNK_SIZE, query_all_chunked
from .lib.resolver import resolve_records
from .lib.scratch import (
    cleanup_scratch_dir,
    local_path_for,
    prepare_scratch_dir,
    scratch_dir_for,
)
from .lib.state import MigrationState, generate_state_id
from .logging_config import log

# Files above this size cannot be uploaded through the REST endpoint.
MAX_FILE_SIZE = 10 * 1024 * 1024

ProgressCallback = Callable[[ProgressUpdate], None]
AbortPredicate = Callable[[], bool]


# --- Working set ---


def fetch_link_table(
    source: StoreConnection, entity_ids: list[str]
) -> dict[str, list[str]]:
    """Builds source document id -> linked source entity ids."""
    rows = query_all_chunked(
        source,
        entity_ids,
        lambda chunk: (
            "SELECT ContentDocumentId, LinkedEntityId FROM ContentDocumentLink "
            f"WHERE LinkedEntityId IN ({soql_in(chunk)})"
        ),
    )
    doc_to_entities: dict[str, list[str]] = defaultdict(list)
    for link in (LinkRecord.from_row(row) for row in rows):
        if link.linked_entity_id not in doc_to_entities[link.document_id]:
            doc_to_entities[link.document_id].append(link.linked_entity_id)
    return dict(doc_to_entities)


def fetch_latest_versions(
    source: StoreConnection, document_ids: list[str]
) -> list[FileMetadata]:
    """Fetches the metadata of the latest version of every document."""
    rows = query_all_chunked(
        source,
        document_ids,
        lambda chunk: (
            "SELECT Id, ContentDocumentId, Title, PathOnClient, FileExtension, "
            "ContentSize, Description, VersionNumber FROM ContentVersion "
            f"WHERE ContentDocumentId IN ({soql_in(chunk)}) AND IsLatest = true"
        ),
    )
    return [FileMetadata.from_row(row) for row in rows]


def partition_by_size(
    versions: list[FileMetadata], max_size: int = MAX_FILE_SIZE
) -> tuple[list[FileMetadata], list[FileMetadata]]:
    """Splits versions into (migrateable, oversized); the limit is inclusive."""
    migrateable = [v for v in versions if v.size_bytes <= max_size]
    oversized = [v for v in versions if v.size_bytes > max_size]
    return migrateable, oversized


# --- Batch phases ---


def _download_batch(
    source: StoreConnection,
    files: list[FileMetadata],
    scratch_dir: Path,
    results: MigrationResults,
    logger: MigrationLogger,
    should_abort: AbortPredicate,
    progress_label: str,
) -> tuple[list[tuple[FileMetadata, Path]], bool]:
    """Downloads a batch, reusing local copies left by an interrupted run.

    Returns:
        The downloaded files with their local paths, and whether the
        download was stopped by a cancellation request.
    """
    downloaded: list[tuple[FileMetadata, Path]] = []
    for index, file in enumerate(files):
        if should_abort():
            return downloaded, True
        logger.update(
            f"Downloading {progress_label} ({index + 1}/{len(files)}) {file.title}"
        )
        local_path = local_path_for(scratch_dir, file)
        part_path = local_path.with_name(f"{local_path.name}.part")
        try:
            if _is_complete_copy(local_path, file):
                log.debug(f"Reusing local copy of {file.title} at {local_path}")
                downloaded.append((file, local_path))
                continue
            part_path.write_bytes(source.download_version(file.id))
            os.replace(part_path, local_path)
            downloaded.append((file, local_path))
        except Exception as e:
            for leftover in (part_path, local_path):
                with suppress(OSError):
                    leftover.unlink(missing_ok=True)
            results.files_failed += 1
            results.record_error(TransferStage.DOWNLOAD, e, file=file.title)
            logger.warn(f"Failed to download: {file.title} - {e}")
    return downloaded, should_abort()


def _is_complete_copy(local_path: Path, file: FileMetadata) -> bool:
    """Whether a file left in the scratch directory can be uploaded as is.

    Downloads are written to a ``.part`` sibling and renamed when complete.
    A copy whose size differs from the version metadata is removed.
    """
    if not local_path.exists():
        return False
    if local_path.stat().st_size == file.size_bytes:
        return True
    log.debug(f"Discarding incomplete local copy {local_path}")
    local_path.unlink()
    return False


def _upload_failed(
    results: MigrationResults,
    logger: MigrationLogger,
    file: FileMetadata,
    error: Any,
) -> None:
    results.files_failed += 1
    results.record_error(TransferStage.UPLOAD, error, file=file.title)
    logger.warn(f"Failed to upload: {file.title} - {error}")


def _upload_batch(
    target: StoreConnection,
    downloaded: list[tuple[FileMetadata, Path]],
    results: MigrationResults,
    logger: MigrationLogger,
    progress_label: str,
) -> dict[str, FileMetadata]:
    """Uploads downloaded files as new versions.

    Returns:
        New target version id -> the source file it was created from.
    """
    uploaded: dict[str, FileMetadata] = {}
    for index, (file, local_path) in enumerate(downloaded):
        logger.update(
            f"Uploading {progress_label} ({index + 1}/{len(downloaded)}) {file.title}"
        )
        try:
            save_result = target.upload_version(
                title=file.title,
                path=file.path,
                data=local_path.read_bytes(),
                description=file.description,
            )
        except Exception as e:
            _upload_failed(results, logger, file, e)
            continue
        if not save_result.success or not save_result.id:
            _upload_failed(results, logger, file, save_result.error_message)
            continue
        results.files_uploaded += 1
        uploaded[save_result.id] = file
    return uploaded


def _resolve_batch(
    target: StoreConnection,
    uploaded: dict[str, FileMetadata],
    results: MigrationResults,
    logger: MigrationLogger,
) -> DocumentMapping:
    """Maps source document ids to the target documents created by upload.

    The correlation goes through the version id each upload returned, never
    through titles or paths.
    """
    if not uploaded:
        return {}

    rows = query_all_chunked(
        target,
        list(uploaded),
        lambda chunk: (
            "SELECT Id, ContentDocumentId FROM ContentVersion "
            f"WHERE Id IN ({soql_in(chunk)})"
        ),
    )
    resolved: DocumentMapping = {}
    for row in rows:
        source_file = uploaded.get(row["Id"])
        if source_file and row.get("ContentDocumentId"):
            resolved[source_file.document_id] = row["ContentDocumentId"]

    if not resolved:
        logger.warn(
            f"{len(uploaded)} file(s) were uploaded but no document ids could "
            "be resolved. The target may have hit a storage or API limit."
        )
    for version_id, file in uploaded.items():
        if file.document_id not in resolved:
            results.record_error(
                TransferStage.RESOLVE,
                f"No target document found for uploaded version {version_id}",
                file=file.title,
            )
    return resolved


def _discard_local_files(downloaded: list[tuple[FileMetadata, Path]]) -> None:
    for _, local_path in downloaded:
        local_path.unlink(missing_ok=True)


# --- Entry point ---


def transfer_files(  # noqa: C901
    config: MigrationConfig,
    state: Optional[MigrationState] = None,
    logger: Optional[MigrationLogger] = None,
    on_progress: Optional[ProgressCallback] = None,
    should_abort: Optional[AbortPredicate] = None,
) -> MigrationResults:
    """Runs the file transfer for one job.

    Steps one and two (working set and size partition) always run again,
    also on resume; files already listed in ``state.completed`` are never
    uploaded a second time.

    Args:
        config: The migration configuration, including the store handles.
        state: The state of an earlier run to resume from, if any.
        logger: Progress sink; defaults to the package logger.
        on_progress: Called with the checkpoint delta after each batch.
        should_abort: Cancellation predicate, polled between files while
            downloading and between batches.

    Returns:
        MigrationResults: Counts and per-item errors, with a status of
        ``completed``, ``paused`` or ``dry_run``. Query and connection
        failures are raised, not recorded.
    """
    logger = logger or LoggingMigrationLogger()
    should_abort = should_abort or (lambda: False)
    results = MigrationResults()
    document_mapping: DocumentMapping = dict(state.completed) if state else {}
    if state:
        results.files_uploaded = state.stats.get("files_uploaded", 0)

    # --- Step 1: working set ---
    logger.start("Querying and matching source records...")
    match = resolve_records(config)
    if not match.source_records:
        logger.fail("No records found in source matching your criteria.")
        results.status = MigrationStatus.COMPLETED
        return results
    mapped_msg = f"Mapped {len(match.mapping)} of {len(match.source_records)} records."
    if match.unmatched_count:
        mapped_msg += f" {match.unmatched_count} unmatched."
    logger.stop(mapped_msg)

    logger.start("Finding associated files...")
    doc_to_entities = fetch_link_table(config.source, match.source_ids)
    if not doc_to_entities:
        logger.fail("No files found for these records.")
        results.status = MigrationStatus.COMPLETED
        return results
    versions = fetch_latest_versions(config.source, sorted(doc_to_entities))
    results.files_found = len(versions)
    logger.stop(
        f"Found {len(versions)} file versions across {len(doc_to_entities)} documents."
    )

    # --- Step 2: size partition ---
    migrateable, oversized = partition_by_size(versions)
    results.files_skipped = len(oversized)
    if oversized:
        logger.warn(
            f"{len(oversized)} file(s) exceed {format_bytes(MAX_FILE_SIZE)} "
            "and will be skipped."
        )
        for file in oversized:
            logger.warn(f"  - {file.title} ({format_bytes(file.size_bytes)})")

    # --- Step 3: dry run ---
    if config.dry_run:
        logger.log("")
        logger.log("  -- Dry Run Summary --")
        logger.log(f"  Records matched:    {len(match.mapping)}")
        logger.log(f"  Files to migrate:   {len(migrateable)}")
        logger.log(f"  Files oversized:    {len(oversized)}")
        logger.log(f"  Records unmatched:  {match.unmatched_count}")
        logger.log("")
        results.status = MigrationStatus.DRY_RUN
        return results

    # --- Step 4: pending set ---
    pending = [f for f in migrateable if f.document_id not in document_mapping]
    if document_mapping:
        logger.log(
            f"Resuming: {len(migrateable) - len(pending)} file(s) already "
            f"migrated, {len(pending)} remaining."
        )
    scratch_dir = prepare_scratch_dir(
        state.temp_dir
        if state
        else scratch_dir_for(generate_state_id(config.state_config()))
    )

    # --- Step 5: batches ---
    batches = [pending[i : i + CHUNK_SIZE] for i in range(0, len(pending), CHUNK_SIZE)]
    aborted = False
    for number, files in enumerate(batches, start=1):
        if should_abort():
            aborted = True
            break
        label = f"batch {number}/{len(batches)}"
        logger.start(f"Processing {label}...")
        downloaded: list[tuple[FileMetadata, Path]] = []
        try:
            downloaded, aborted = _download_batch(
                config.source, files, scratch_dir, results, logger, should_abort, label
            )
            if aborted:
                logger.fail(f"Stopped before uploading {label}.")
                break

            uploaded = _upload_batch(config.target, downloaded, results, logger, label)
            resolved = _resolve_batch(config.target, uploaded, results, logger)
            document_mapping.update(resolved)

            if on_progress:
                on_progress(ProgressUpdate(completed=resolved, stats=results.stats()))
            logger.stop(
                f"Finished {label}: {len(uploaded)} uploaded, "
                f"{len(resolved)} resolved."
            )
        finally:
            _discard_local_files(downloaded)

    # --- Step 6: pause ---
    if aborted or should_abort():
        results.status = MigrationStatus.PAUSED
        log.info("Transfer paused; scratch directory kept for resume.")
        return results

    # --- Step 7: links ---
    link_result = reconcile_links(
        config.target, doc_to_entities, document_mapping, match.mapping, logger
    )
    results.links_created = link_result.created
    for error in link_result.errors:
        results.record_error(error.stage, error.error, file=error.file)

    cleanup_scratch_dir(scratch_dir)
    results.status = MigrationStatus.COMPLETED
    return results
