"""Record matching.

Builds the source entity id -> target entity id mapping by joining the
configured match field of both stores. Records without a counterpart are
expected in partial migrations and are only counted.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

import polars as pl

from ..logging_config import log
from .internal.tools import soql_in
from .models import MigrationConfig, RecordMapping, SourceRecord
from .query import query_all, query_all_chunked


@dataclass(frozen=True)
class RecordMatch:
    """Output of the resolver; read-only for the rest of the run."""

    source_records: tuple[SourceRecord, ...]
    mapping: RecordMapping
    unmatched_count: int
    ambiguous_values: tuple[str, ...] = field(default_factory=tuple)

    @property
    def source_ids(self) -> list[str]:
        return [record.id for record in self.source_records]


def build_source_query(
    object_name: str, match_field: str, where_clause: Optional[str] = None
) -> str:
    """Builds the query selecting the filtered source records."""
    select = "Id" if match_field == "Id" else f"Id, {match_field}"
    where = f" WHERE {where_clause}" if where_clause else ""
    return f"SELECT {select} FROM {object_name}{where}"


def fetch_source_records(config: MigrationConfig) -> list[SourceRecord]:
    """Fetches the source records matching the configured filter."""
    rows = query_all(
        config.source,
        build_source_query(
            config.object_name, config.source_match_field, config.where_clause
        ),
    )
    return [SourceRecord.from_row(row, config.source_match_field) for row in rows]


def _target_lookup(
    config: MigrationConfig, match_values: list[str]
) -> tuple[pl.DataFrame, tuple[str, ...]]:
    """Queries the target for the match values and builds value -> target id.

    Duplicate values on the target side resolve to the lowest target id so
    the outcome does not depend on row order.
    """
    field_name = str(config.target_match_field)
    select = "Id" if field_name == "Id" else f"Id, {field_name}"
    rows = query_all_chunked(
        config.target,
        match_values,
        lambda chunk: (
            f"SELECT {select} FROM {config.object_name} "
            f"WHERE {field_name} IN ({soql_in(chunk)})"
        ),
    )
    target_df = pl.DataFrame(
        {
            "match_value": [str(row.get(field_name)) for row in rows],
            "target_id": [row["Id"] for row in rows],
        },
        schema={"match_value": pl.String, "target_id": pl.String},
    )
    duplicates = (
        target_df.group_by("match_value").len().filter(pl.col("len") > 1)
    )
    ambiguous = tuple(sorted(duplicates.get_column("match_value").to_list()))
    lookup = target_df.group_by("match_value").agg(pl.col("target_id").min())
    return lookup, ambiguous


def resolve_records(config: MigrationConfig) -> RecordMatch:
    """Produces the record mapping and the unmatched count for a job.

    Args:
        config: The migration configuration.

    Returns:
        RecordMatch: The source records, the read-only mapping, the number of
        unmatched source records and any ambiguous target match values.
    """
    source_records = fetch_source_records(config)
    match_values = sorted(
        {r.match_value for r in source_records if r.match_value is not None}
    )
    log.debug(
        f"{len(source_records)} source records share {len(match_values)} "
        f"distinct values of '{config.source_match_field}'."
    )

    lookup, ambiguous = _target_lookup(config, match_values)
    if ambiguous:
        sample = ", ".join(ambiguous[:5])
        log.warning(
            f"{len(ambiguous)} value(s) of '{config.target_match_field}' match "
            f"several target records; the lowest id is used. Sample: {sample}"
        )

    source_df = pl.DataFrame(
        {
            "source_id": [r.id for r in source_records],
            "match_value": [r.match_value for r in source_records],
        },
        schema={"source_id": pl.String, "match_value": pl.String},
    )
    matched = source_df.join(lookup, on="match_value", how="inner")
    mapping = dict(
        zip(
            matched.get_column("source_id").to_list(),
            matched.get_column("target_id").to_list(),
        )
    )
    unmatched_count = len(source_records) - len(mapping)
    if unmatched_count:
        log.info(
            f"{unmatched_count} source record(s) have no counterpart in the "
            "target and will be skipped."
        )

    return RecordMatch(
        source_records=tuple(source_records),
        mapping=MappingProxyType(mapping),
        unmatched_count=unmatched_count,
        ambiguous_values=ambiguous,
    )
