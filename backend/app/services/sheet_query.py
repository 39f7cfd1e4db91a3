"""Paged, filtered reads of sheet rows annotated with concurrency metadata."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from .. import schemas
from .predicate_builder import build_predicate
from .row_hash import compute_row_hash
from .sheet_schema import SheetSchema
from .sheet_store import SheetStore

# purpose: compose predicate plans into count and page reads and attach row hashes
# status: active
# depends_on: backend.app.services.predicate_builder, backend.app.services.row_hash

logger = logging.getLogger(__name__)

ROW_HASH_FIELD = "_row_hash"
ROW_VERSION_FIELD = "_row_version"


def _version_stamp() -> int:
    return time.time_ns() // 1_000_000


def query_sheet(
    store: SheetStore,
    schema: SheetSchema,
    payload: schemas.SheetQueryRequest,
    *,
    actor: str,
) -> schemas.SheetQueryResponse:
    """Return one page of rows plus the total count matching the filters.

    The count and the page are two separate reads; rows committed by other
    writers in between can make ``total`` disagree with the page contents.
    Storage errors propagate to the caller unchanged.
    """

    started = time.perf_counter()
    plan = build_predicate(
        schema,
        payload.filters,
        payload.sorts,
        page=payload.page,
        page_size=payload.page_size,
    )

    total = store.count(schema, plan.where)
    rows = store.fetch_page(schema, plan)

    version = _version_stamp()
    for row in rows:
        row[ROW_HASH_FIELD] = compute_row_hash(row)
        row[ROW_VERSION_FIELD] = version

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "Queried sheet %s for %s: page %s, %s of %s rows in %sms",
        schema.id,
        actor,
        payload.page,
        len(rows),
        total,
        elapsed_ms,
    )
    return schemas.SheetQueryResponse(
        rows=rows,
        total=total,
        page=payload.page,
        page_size=payload.page_size,
        metadata=schemas.QueryMetadata(
            query_time=datetime.now(timezone.utc),
            execution_time_ms=elapsed_ms,
            sql=store.render(store.page_statement(schema, plan)),
            parameters=plan.parameters,
        ),
    )
