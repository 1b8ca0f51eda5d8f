"""Link reconciliation.

Creates the target-side associations between uploaded documents and their
matched business records. Associations that already exist in the target
(typically from an earlier, paused run) are never inserted twice.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional

from ..enums import TransferStage
from ..logging_config import log
from .connection import StoreConnection
from .internal.tools import batch, soql_in
from .internal.ui import LoggingMigrationLogger, MigrationLogger
from .models import DocumentMapping, RecordMapping, TransferError
from .query import CHUNK_SIZE, query_all_chunked

SHARE_TYPE = "V"
VISIBILITY = "AllUsers"

LinkPair = tuple[str, str]


@dataclass
class LinkResult:
    """Outcome of one reconciliation pass."""

    created: int = 0
    failed: int = 0
    already_linked: int = 0
    candidates: int = 0
    errors: list[TransferError] = field(default_factory=list)


def build_link_candidates(
    doc_to_entities: Mapping[str, list[str]],
    document_mapping: Mapping[str, str],
    record_mapping: RecordMapping,
) -> list[LinkPair]:
    """Translates source links into distinct target (document, entity) pairs.

    Pairs whose document or entity has no target counterpart are dropped.
    """
    candidates: dict[LinkPair, None] = {}
    for source_doc_id, source_entity_ids in doc_to_entities.items():
        target_doc_id = document_mapping.get(source_doc_id)
        if not target_doc_id:
            continue
        for source_entity_id in source_entity_ids:
            target_entity_id = record_mapping.get(source_entity_id)
            if target_entity_id:
                candidates[(target_doc_id, target_entity_id)] = None
    return list(candidates)


def fetch_existing_links(
    target: StoreConnection, document_ids: list[str]
) -> set[LinkPair]:
    """Returns the associations the target already has for these documents."""
    rows = query_all_chunked(
        target,
        document_ids,
        lambda chunk: (
            "SELECT ContentDocumentId, LinkedEntityId FROM ContentDocumentLink "
            f"WHERE ContentDocumentId IN ({soql_in(chunk)})"
        ),
    )
    return {(row["ContentDocumentId"], row["LinkedEntityId"]) for row in rows}


def _insert_links(
    target: StoreConnection,
    pairs: list[LinkPair],
    result: LinkResult,
    logger: MigrationLogger,
) -> None:
    total = len(pairs)
    for number, chunk in enumerate(batch(pairs, CHUNK_SIZE)):
        done = min((number + 1) * CHUNK_SIZE, total)
        logger.update(f"Creating links in target... ({done}/{total})")
        records = [
            {
                "ContentDocumentId": doc_id,
                "LinkedEntityId": entity_id,
                "ShareType": SHARE_TYPE,
                "Visibility": VISIBILITY,
            }
            for doc_id, entity_id in chunk
        ]
        try:
            save_results = target.create("ContentDocumentLink", records)
        except Exception as e:
            log.debug(f"Link batch {number} failed", exc_info=True)
            result.errors.append(
                TransferError(stage=TransferStage.LINK_BATCH, error=str(e))
            )
            logger.warn(f"Link batch error: {e}")
            continue

        for (doc_id, entity_id), save_result in zip(chunk, save_results):
            if save_result.success:
                result.created += 1
            else:
                result.failed += 1
                result.errors.append(
                    TransferError(
                        stage=TransferStage.LINK,
                        error=f"{doc_id} -> {entity_id}: {save_result.error_message}",
                    )
                )


def reconcile_links(
    target: StoreConnection,
    doc_to_entities: Mapping[str, list[str]],
    document_mapping: Mapping[str, str],
    record_mapping: RecordMapping,
    logger: Optional[MigrationLogger] = None,
) -> LinkResult:
    """Creates the missing target associations for the migrated documents.

    Args:
        target: The target store handle.
        doc_to_entities: Source document id -> linked source entity ids.
        document_mapping: Source document id -> target document id.
        record_mapping: Source entity id -> target entity id.
        logger: Progress sink.

    Returns:
        LinkResult: Per-item counts and errors. Insert failures never raise;
        a failure to query the existing links does.
    """
    logger = logger or LoggingMigrationLogger()
    result = LinkResult()

    logger.start("Creating links in target...")
    candidates = build_link_candidates(
        doc_to_entities, document_mapping, record_mapping
    )
    result.candidates = len(candidates)

    if candidates:
        target_doc_ids = sorted({doc_id for doc_id, _ in candidates})
        existing = fetch_existing_links(target, target_doc_ids)
        to_create = [pair for pair in candidates if pair not in existing]
        result.already_linked = len(candidates) - len(to_create)
        if result.already_linked:
            log.info(f"{result.already_linked} link(s) already exist in the target.")
        _insert_links(target, to_create, result, logger)

    logger.stop(f"Created {result.created} links.")

    if result.created == 0 and result.already_linked == 0 and document_mapping:
        logger.warn(
            "No links were created although files were migrated. "
            f"Document mappings: {len(document_mapping)}, "
            f"record mappings: {len(record_mapping)}, "
            f"source documents with links: {len(doc_to_entities)}, "
            f"link candidates: {result.candidates}. "
            "Check that the matched records are the ones the files are linked to."
        )
    return result
