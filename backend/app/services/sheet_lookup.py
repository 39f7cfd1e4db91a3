from __future__ import annotations

from typing import Any, Mapping, Sequence

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import schemas
from .predicate_builder import LIKE_ESCAPE, escape_like
from .row_hash import is_metadata_column
from .sheet_schema import (
    MODIFIED_AT_COLUMN,
    MODIFIED_BY_COLUMN,
    DataType,
    SheetRequestError,
    SheetSchema,
    SheetValidationError,
    build_table,
)

# purpose: read-side helpers for editing clients (dropdown values, dry-run validation, sheet stats)
# inputs: request-scoped session and sheet schema
# outputs: LookupValue lists, ValidationResult, SheetStats payloads
# status: active
# depends_on: backend.app.services.sheet_schema

NUMERIC_TYPES = frozenset({DataType.INTEGER, DataType.DECIMAL})


def lookup_values(
    db: Session,
    schema: SheetSchema,
    column: str,
    *,
    search: str | None = None,
    limit: int = 100,
) -> list[schemas.LookupValue]:
    """Return candidate values for ``column``.

    Columns with a declared lookup read distinct value/display pairs from the
    lookup table; other columns return their own distinct non-null values.
    """

    spec = schema.column(column)
    if spec is None:
        raise SheetRequestError(
            f"Column '{column}' does not exist in sheet '{schema.display_name}'"
        )
    pattern = f"%{escape_like(search.strip())}%" if search and search.strip() else None

    if spec.lookup is not None:
        lookup = spec.lookup
        names = {lookup.value_column, lookup.display_column}
        if lookup.filter_column:
            names.add(lookup.filter_column)
        source = sa.table(lookup.table, *[sa.column(name) for name in sorted(names)])
        value_col = source.c[lookup.value_column]
        display_col = source.c[lookup.display_column]
        statement = sa.select(value_col, display_col).distinct()
        if lookup.filter_column:
            statement = statement.where(source.c[lookup.filter_column] == lookup.filter_value)
        if pattern:
            statement = statement.where(display_col.like(pattern, escape=LIKE_ESCAPE))
        statement = statement.order_by(display_col).limit(limit)
        return [
            schemas.LookupValue(value=str(value), display=str(display if display is not None else value))
            for value, display in db.execute(statement).all()
        ]

    table = build_table(schema)
    target = table.c[spec.name]
    statement = sa.select(target).distinct().where(target.is_not(None))
    if pattern:
        statement = statement.where(sa.cast(target, sa.String).like(pattern, escape=LIKE_ESCAPE))
    statement = statement.order_by(target).limit(limit)
    return [
        schemas.LookupValue(value=str(value), display=str(value))
        for value in db.execute(statement).scalars()
    ]


def validate_rows(
    schema: SheetSchema,
    rows: Sequence[Mapping[str, Any]],
) -> schemas.ValidationResult:
    """Dry-run the column rules a save would apply, reporting every violation."""

    errors: list[schemas.RowValidationError] = []

    def report(index: int, column: str, message: str, value: Any = None) -> None:
        errors.append(
            schemas.RowValidationError(
                row_index=index,
                column_name=column,
                message=message,
                value=None if value is None else str(value),
            )
        )

    for index, row in enumerate(rows):
        seen: set[str] = set()
        for name, raw in row.items():
            if is_metadata_column(name):
                continue
            spec = schema.column(name)
            if spec is None:
                report(index, name, f"Column '{name}' does not exist", raw)
                continue
            seen.add(spec.name)
            if spec.computed:
                continue
            try:
                value = spec.coerce(raw)
            except SheetValidationError as exc:
                report(index, spec.name, str(exc), raw)
                continue
            problem = spec.check(value)
            if problem:
                report(index, spec.name, problem, raw)
        for spec in schema.writable_columns:
            if spec.required and spec.name not in seen:
                report(index, spec.name, f"{spec.label} is required")

    return schemas.ValidationResult(errors=errors)


def sheet_stats(db: Session, schema: SheetSchema) -> schemas.SheetStats:
    table = build_table(schema)
    row_count = int(db.execute(sa.select(sa.func.count()).select_from(table)).scalar_one())

    latest = db.execute(
        sa.select(table.c[MODIFIED_AT_COLUMN], table.c[MODIFIED_BY_COLUMN])
        .where(table.c[MODIFIED_AT_COLUMN].is_not(None))
        .order_by(table.c[MODIFIED_AT_COLUMN].desc())
        .limit(1)
    ).first()

    column_stats: dict[str, Any] = {}
    for spec in schema.columns:
        column = table.c[spec.name]
        if spec.data_type in NUMERIC_TYPES:
            low, high, average = db.execute(
                sa.select(sa.func.min(column), sa.func.max(column), sa.func.avg(column))
            ).one()
            column_stats[spec.name] = {"min": low, "max": high, "avg": average}
        elif spec.validation is not None and spec.validation.allowed_values:
            counts = db.execute(
                sa.select(column, sa.func.count()).where(column.is_not(None)).group_by(column)
            ).all()
            column_stats[spec.name] = {"counts": {str(value): total for value, total in counts}}

    return schemas.SheetStats(
        row_count=row_count,
        last_modified=latest[0] if latest else None,
        last_modified_by=latest[1] if latest else None,
        column_stats=column_stats,
    )
