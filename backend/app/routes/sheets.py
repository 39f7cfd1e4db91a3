import logging
import os
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..audit import SheetAuditSink
from ..auth import get_current_actor
from ..database import get_db
from .. import schemas
from ..services.sheet_lookup import lookup_values, sheet_stats, validate_rows
from ..services.sheet_query import query_sheet
from ..services.sheet_save import save_sheet
from ..services.sheet_schema import (
    SheetNotFoundError,
    SheetRegistry,
    SheetRequestError,
    SheetSchema,
    get_registry,
)
from ..services.sheet_store import SheetStore

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = int(os.getenv("SHEET_MAX_PAGE_SIZE", "10000"))
MAX_SAVE_OPERATIONS = int(os.getenv("SHEET_MAX_SAVE_OPERATIONS", "10000"))
MAX_LOOKUP_LIMIT = 1000
MAX_VALIDATE_ROWS = 1000

router = APIRouter(prefix="/api/sheet", tags=["sheets"])


def get_sheet_registry() -> SheetRegistry:
    return get_registry()


def require_sheet(registry: SheetRegistry, sheet_id: str) -> SheetSchema:
    try:
        return registry.require(sheet_id)
    except SheetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


def _bad_request(sheet_id: str, exc: Exception) -> HTTPException:
    logger.warning("Rejected request for sheet %s: %s", sheet_id, exc)
    return HTTPException(status_code=400, detail=str(exc))


@router.post("/{sheet_id}/query", response_model=schemas.SheetQueryResponse)
async def query_rows(
    sheet_id: str,
    payload: schemas.SheetQueryRequest,
    db: Session = Depends(get_db),
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    schema = require_sheet(registry, sheet_id)
    if payload.page < 1:
        raise _bad_request(sheet_id, ValueError("page must be at least 1"))
    if payload.page_size < 1 or payload.page_size > MAX_PAGE_SIZE:
        raise _bad_request(
            sheet_id, ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        )
    try:
        return query_sheet(SheetStore(db), schema, payload, actor=actor)
    except SheetRequestError as exc:
        raise _bad_request(sheet_id, exc)
    except SQLAlchemyError:
        logger.exception("Query for sheet %s failed", sheet_id)
        raise HTTPException(status_code=500, detail="Failed to query sheet data")


@router.post("/{sheet_id}/save", response_model=schemas.SheetSaveResponse)
async def save_rows(
    sheet_id: str,
    payload: schemas.SheetSaveRequest,
    db: Session = Depends(get_db),
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    schema = require_sheet(registry, sheet_id)
    total = payload.operation_count
    if total == 0:
        raise _bad_request(sheet_id, ValueError("No operations specified"))
    if total > MAX_SAVE_OPERATIONS:
        raise _bad_request(
            sheet_id, ValueError(f"Too many operations (max {MAX_SAVE_OPERATIONS})")
        )
    try:
        return save_sheet(
            SheetStore(db),
            schema,
            payload,
            actor=actor,
            audit_sink=SheetAuditSink(db),
        )
    except SheetRequestError as exc:
        raise _bad_request(sheet_id, exc)


@router.get("/{sheet_id}/lookup/{column}", response_model=list[schemas.LookupValue])
async def lookup_column(
    sheet_id: str,
    column: str,
    search: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    schema = require_sheet(registry, sheet_id)
    if limit < 1 or limit > MAX_LOOKUP_LIMIT:
        raise _bad_request(
            sheet_id, ValueError(f"limit must be between 1 and {MAX_LOOKUP_LIMIT}")
        )
    try:
        return lookup_values(db, schema, column, search=search, limit=limit)
    except SheetRequestError as exc:
        raise _bad_request(sheet_id, exc)


@router.post("/{sheet_id}/validate", response_model=schemas.ValidationResult)
async def validate(
    sheet_id: str,
    rows: list[dict[str, Any]] = Body(...),
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    schema = require_sheet(registry, sheet_id)
    if not rows:
        raise _bad_request(sheet_id, ValueError("No rows to validate"))
    if len(rows) > MAX_VALIDATE_ROWS:
        raise _bad_request(
            sheet_id, ValueError(f"Too many rows (max {MAX_VALIDATE_ROWS})")
        )
    return validate_rows(schema, rows)


@router.get("/{sheet_id}/stats", response_model=schemas.SheetStats)
async def stats(
    sheet_id: str,
    db: Session = Depends(get_db),
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    schema = require_sheet(registry, sheet_id)
    return sheet_stats(db, schema)
