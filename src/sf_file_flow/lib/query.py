"""Chunked and paginated queries.

Stores cap both the number of values in a single ``IN (...)`` clause and
the number of rows returned per response. :func:`query_all` drains one
query through its continuation pages; :func:`query_all_chunked` splits an
unbounded value set into clause-sized chunks and drains each of them.
"""

from collections.abc import Sequence
from typing import Any, Callable, Protocol

from ..logging_config import log
from .connection import QueryPage
from .internal.tools import batch

# Maximum number of values per IN clause, and the batch size used for
# uploads and link inserts.
CHUNK_SIZE = 200

Row = dict[str, Any]


class Queryable(Protocol):
    """The query capability of a store handle."""

    def query(self, soql: str) -> QueryPage: ...

    def query_more(self, next_records_url: str) -> QueryPage: ...


def query_all(conn: Queryable, soql: str) -> list[Row]:
    """Runs a query and follows continuation pages until it is done.

    Request failures propagate to the caller; nothing is retried here.
    """
    page = conn.query(soql)
    rows = list(page.rows)
    pages = 1
    while not page.done:
        if not page.next_records_url:
            log.warning("Query page is not done but has no continuation reference.")
            break
        page = conn.query_more(page.next_records_url)
        rows.extend(page.rows)
        pages += 1
    log.debug(f"Query returned {len(rows)} rows in {pages} page(s).")
    return rows


def query_all_chunked(
    conn: Queryable,
    values: Sequence[Any],
    build_query: Callable[[list[Any]], str],
    chunk_size: int = CHUNK_SIZE,
) -> list[Row]:
    """Runs one query per chunk of ``values`` and concatenates the rows.

    Args:
        conn: The store handle to query.
        values: The filter values; an empty sequence issues no query.
        build_query: Builds the query text for one chunk of values.
        chunk_size: Maximum number of values per query.

    Returns:
        All rows of all chunks, in no particular cross-chunk order.
    """
    rows: list[Row] = []
    for chunk in batch(values, chunk_size):
        rows.extend(query_all(conn, build_query(chunk)))
    return rows
