"""Batch save orchestration with hash-based optimistic concurrency."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .. import schemas
from .row_hash import compute_row_hash
from .sheet_schema import (
    MODIFIED_AT_COLUMN,
    MODIFIED_BY_COLUMN,
    SheetRequestError,
    SheetSchema,
    SheetValidationError,
)
from .sheet_store import SheetStore

# purpose: apply delete, update and insert batches atomically with per-row outcomes
# inputs: sheet schema, save request, authenticated actor, storage executor, audit sink
# outputs: SheetSaveResponse enumerating one result per submitted operation
# status: active
# depends_on: backend.app.services.row_hash, backend.app.services.sheet_store

logger = logging.getLogger(__name__)

STATUS_MERGED = "merged"
STATUS_CONFLICT = "conflict"
STATUS_MISSING = "missing"
STATUS_DELETED = "deleted"
STATUS_ERROR = "error"

REASON_MISSING = "row not found"
REASON_CONFLICT = "row was modified by another user"
REASON_NOT_AFFECTED = "row was not affected"

AUDIT_INSERT = "INSERT"
AUDIT_UPDATE = "UPDATE"
AUDIT_DELETE = "DELETE"


class SaveRequestError(SheetRequestError):
    """Raised when a save batch is malformed; nothing is applied."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class AuditSink(Protocol):
    def record(
        self,
        *,
        sheet_id: str,
        session_id: str,
        category: str,
        count: int,
        actor: str,
        timestamp: datetime,
    ) -> Any: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class _PreparedOperation:
    """One structurally valid operation with column names resolved to the schema."""

    raw_key: dict[str, Any]
    key: dict[str, Any] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
    before_hash: str = ""
    client_id: str | None = None


def _resolve_names(
    schema: SheetSchema,
    mapping: Mapping[str, Any],
    label: str,
    errors: list[str],
) -> dict[str, Any]:
    resolved: dict[str, Any] = {}
    for name, value in mapping.items():
        spec = schema.column(name)
        if spec is None:
            errors.append(f"{label}: column '{name}' does not exist in sheet '{schema.display_name}'")
            continue
        if spec.name in resolved:
            errors.append(f"{label}: column '{spec.name}' given twice")
            continue
        resolved[spec.name] = value
    return resolved


def _resolve_key(
    schema: SheetSchema,
    key: Mapping[str, Any],
    label: str,
    errors: list[str],
) -> dict[str, Any]:
    resolved = _resolve_names(schema, key, label, errors)
    if set(resolved) != set(schema.key_columns):
        errors.append(
            f"{label}: key must name exactly the key columns {list(schema.key_columns)}"
        )
    return resolved


def _check_writable(
    schema: SheetSchema,
    values: Mapping[str, Any],
    label: str,
    errors: list[str],
    *,
    allow_keys: bool,
) -> None:
    for name in values:
        spec = schema.column(name)
        if spec.computed or not spec.writable:
            errors.append(f"{label}: column '{name}' is not editable")
        elif spec.is_key and not allow_keys:
            errors.append(f"{label}: key column '{name}' cannot be updated")


def prepare_operations(
    schema: SheetSchema,
    payload: schemas.SheetSaveRequest,
) -> tuple[list[_PreparedOperation], list[_PreparedOperation], list[_PreparedOperation]]:
    """Check the structure of every operation; any violation rejects the whole batch."""

    errors: list[str] = []
    deletes: list[_PreparedOperation] = []
    updates: list[_PreparedOperation] = []
    inserts: list[_PreparedOperation] = []

    for index, op in enumerate(payload.deletes):
        label = f"deletes[{index}]"
        deletes.append(
            _PreparedOperation(
                raw_key=dict(op.key),
                key=_resolve_key(schema, op.key, label, errors),
                before_hash=op.before_hash,
                client_id=op.client_id,
            )
        )

    for index, op in enumerate(payload.updates):
        label = f"updates[{index}]"
        key = _resolve_key(schema, op.key, label, errors)
        values = _resolve_names(schema, op.after, label, errors)
        if not op.after:
            errors.append(f"{label}: update has no column changes")
        _check_writable(schema, values, label, errors, allow_keys=False)
        updates.append(
            _PreparedOperation(
                raw_key=dict(op.key),
                key=key,
                values=values,
                before_hash=op.before_hash,
                client_id=op.client_id,
            )
        )

    for index, op in enumerate(payload.inserts):
        label = f"inserts[{index}]"
        values = _resolve_names(schema, op.data, label, errors)
        missing = [name for name in schema.key_columns if name not in values]
        if missing:
            errors.append(f"{label}: missing key columns {missing}")
        _check_writable(schema, values, label, errors, allow_keys=True)
        inserts.append(
            _PreparedOperation(
                raw_key={
                    name: value
                    for name, value in op.data.items()
                    if (spec := schema.column(name)) is not None and spec.is_key
                },
                values=values,
                client_id=op.client_id,
            )
        )

    if errors:
        raise SaveRequestError(errors)
    return deletes, updates, inserts


def _coerce_values(
    schema: SheetSchema,
    values: Mapping[str, Any],
    *,
    require_all: bool,
) -> dict[str, Any]:
    """Coerce and rule-check values; raises SheetValidationError on the first violation."""

    coerced: dict[str, Any] = {}
    for name, raw in values.items():
        spec = schema.column(name)
        value = spec.coerce(raw)
        problem = spec.check(value)
        if problem:
            raise SheetValidationError(problem)
        coerced[name] = value
    if require_all:
        for spec in schema.writable_columns:
            if spec.name not in coerced and spec.required:
                raise SheetValidationError(f"{spec.label} is required")
    return coerced


def _coerce_key(schema: SheetSchema, key: Mapping[str, Any]) -> dict[str, Any]:
    coerced = {name: schema.column(name).coerce(value) for name, value in key.items()}
    for name, value in coerced.items():
        if value is None:
            raise SheetValidationError(f"Key column '{name}' cannot be null")
    return coerced


def _attribution(actor: str, timestamp: datetime) -> dict[str, Any]:
    return {MODIFIED_BY_COLUMN: actor, MODIFIED_AT_COLUMN: timestamp}


def _result(op: _PreparedOperation, status: str, reason: str | None = None, **extra: Any) -> schemas.OperationResult:
    return schemas.OperationResult(
        key=op.raw_key,
        status=status,
        reason=reason,
        client_id=op.client_id,
        **extra,
    )


def _check_current(
    store: SheetStore,
    schema: SheetSchema,
    op: _PreparedOperation,
    key: Mapping[str, Any],
) -> schemas.OperationResult | None:
    """Return a missing/conflict result, or None when the client's hash is current."""

    current = store.fetch_row(schema, key, lock=True)
    if current is None:
        return _result(op, STATUS_MISSING, REASON_MISSING)
    current_hash = compute_row_hash(current)
    if current_hash != op.before_hash:
        return _result(
            op,
            STATUS_CONFLICT,
            REASON_CONFLICT,
            current_data=current,
            current_hash=current_hash,
        )
    return None


def _apply_delete(
    store: SheetStore,
    schema: SheetSchema,
    op: _PreparedOperation,
    stamp: dict[str, Any],
) -> schemas.OperationResult:
    try:
        key = _coerce_key(schema, op.key)
    except SheetValidationError as exc:
        return _result(op, STATUS_ERROR, str(exc))
    rejected = _check_current(store, schema, op, key)
    if rejected is not None:
        return rejected
    store.update_row(schema, key, stamp)
    affected = store.delete_row(schema, key)
    if affected:
        return _result(op, STATUS_DELETED)
    return _result(op, STATUS_ERROR, REASON_NOT_AFFECTED)


def _apply_update(
    store: SheetStore,
    schema: SheetSchema,
    op: _PreparedOperation,
    stamp: dict[str, Any],
) -> schemas.OperationResult:
    try:
        key = _coerce_key(schema, op.key)
        values = _coerce_values(schema, op.values, require_all=False)
    except SheetValidationError as exc:
        return _result(op, STATUS_ERROR, str(exc))
    rejected = _check_current(store, schema, op, key)
    if rejected is not None:
        return rejected
    affected = store.update_row(schema, key, {**values, **stamp})
    if affected:
        return _result(op, STATUS_MERGED)
    return _result(op, STATUS_ERROR, REASON_NOT_AFFECTED)


def _apply_inserts(
    store: SheetStore,
    schema: SheetSchema,
    ops: Sequence[_PreparedOperation],
    stamp: dict[str, Any],
) -> list[schemas.OperationResult]:
    """Bulk insert every valid row; all of them are reported merged once the bulk write succeeds."""

    outcomes: list[schemas.OperationResult | None] = []
    staged: list[dict[str, Any]] = []
    for op in ops:
        try:
            key = _coerce_key(schema, {name: op.values[name] for name in schema.key_columns})
            values = _coerce_values(schema, op.values, require_all=True)
        except SheetValidationError as exc:
            outcomes.append(_result(op, STATUS_ERROR, str(exc)))
            continue
        staged.append({**values, **key, **stamp})
        outcomes.append(None)

    store.bulk_merge(schema, staged)
    return [
        outcome if outcome is not None else _result(op, STATUS_MERGED)
        for op, outcome in zip(ops, outcomes)
    ]


def _emit_audit(
    audit_sink: AuditSink | None,
    schema: SheetSchema,
    payload: schemas.SheetSaveRequest,
    actor: str,
    timestamp: datetime,
) -> None:
    """Record one audit entry per non-empty category; failures never affect the save."""

    if audit_sink is None:
        return
    for category, count in (
        (AUDIT_INSERT, len(payload.inserts)),
        (AUDIT_UPDATE, len(payload.updates)),
        (AUDIT_DELETE, len(payload.deletes)),
    ):
        if not count:
            continue
        try:
            audit_sink.record(
                sheet_id=schema.id,
                session_id=payload.client_session_id,
                category=category,
                count=count,
                actor=actor,
                timestamp=timestamp,
            )
        except Exception:
            logger.warning(
                "Audit record for sheet %s (%s x%s) failed",
                schema.id,
                category,
                count,
                exc_info=True,
            )


def save_sheet(
    store: SheetStore,
    schema: SheetSchema,
    payload: schemas.SheetSaveRequest,
    *,
    actor: str,
    audit_sink: AuditSink | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> schemas.SheetSaveResponse:
    """Apply deletes, then updates, then inserts inside one transaction.

    Conflicts, missing rows and per-row validation errors are reported per
    operation and the batch still commits. A storage error rolls back the whole
    batch and is reported as ``ok=False`` without per-row results. Malformed
    batches raise ``SaveRequestError`` before any storage access.
    """

    deletes, updates, inserts = prepare_operations(schema, payload)
    timestamp = clock()
    stamp = _attribution(actor, timestamp)

    try:
        store.begin()
        delete_results = [_apply_delete(store, schema, op, stamp) for op in deletes]
        update_results = [_apply_update(store, schema, op, stamp) for op in updates]
        insert_results = _apply_inserts(store, schema, inserts, stamp)
        store.commit()
    except SQLAlchemyError as exc:
        store.rollback()
        logger.exception("Save batch for sheet %s rolled back", schema.id)
        return schemas.SheetSaveResponse(
            ok=False,
            error_message=str(getattr(exc, "orig", None) or exc),
            processed_at=timestamp,
        )
    except Exception:
        store.rollback()
        raise

    results = schemas.SaveResults(
        inserts=insert_results,
        updates=update_results,
        deletes=delete_results,
    )
    _emit_audit(audit_sink, schema, payload, actor, timestamp)

    tally = Counter(result.status for result in results.all())
    logger.info(
        "Saved sheet %s for %s (session %s): %s",
        schema.id,
        actor,
        payload.client_session_id or "-",
        dict(tally),
    )
    return schemas.SheetSaveResponse(ok=True, results=results, processed_at=timestamp)
