"""SQLAlchemy-backed storage executor for sheet tables."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import sqlalchemy as sa
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from .predicate_builder import PredicatePlan
from .sheet_schema import SheetSchema, build_table

# purpose: execute count, page, fetch-one, mutation and bulk merge statements for sheets
# inputs: request-scoped SQLAlchemy session owned by the caller
# outputs: plain dict rows keyed by column name, affected-row counts
# status: active
# depends_on: backend.app.services.predicate_builder


class SheetStore:
    """Run sheet statements on one session; transaction scope stays with the caller."""

    def __init__(self, db: Session):
        self.db = db

    # transaction primitives

    def begin(self) -> None:
        if not self.db.in_transaction():
            self.db.begin()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # reads

    def render(self, statement: sa.Executable) -> str:
        """Return the statement text as the bound dialect would send it."""

        return str(statement.compile(dialect=self.db.get_bind().dialect))

    def count_statement(self, schema: SheetSchema, where: ColumnElement | None) -> sa.Select:
        table = build_table(schema)
        statement = sa.select(sa.func.count()).select_from(table)
        if where is not None:
            statement = statement.where(where)
        return statement

    def page_statement(self, schema: SheetSchema, plan: PredicatePlan) -> sa.Select:
        table = build_table(schema)
        statement = sa.select(*[table.c[name] for name in schema.column_names])
        if plan.where is not None:
            statement = statement.where(plan.where)
        return (
            statement.order_by(*plan.order_by_clauses(table))
            .offset(plan.offset)
            .limit(plan.limit)
        )

    def count(self, schema: SheetSchema, where: ColumnElement | None) -> int:
        return int(self.db.execute(self.count_statement(schema, where)).scalar_one())

    def fetch_page(self, schema: SheetSchema, plan: PredicatePlan) -> list[dict[str, Any]]:
        result = self.db.execute(self.page_statement(schema, plan))
        return [dict(row) for row in result.mappings()]

    def fetch_row(
        self,
        schema: SheetSchema,
        key: Mapping[str, Any],
        *,
        lock: bool = False,
    ) -> dict[str, Any] | None:
        """Load the persisted row for ``key``; ``lock`` holds it until the transaction ends."""

        table = build_table(schema)
        statement = sa.select(*[table.c[name] for name in schema.column_names]).where(
            _key_clause(table, schema, key)
        )
        if lock:
            statement = statement.with_for_update()
        row = self.db.execute(statement).mappings().first()
        return dict(row) if row is not None else None

    # writes

    def update_row(
        self,
        schema: SheetSchema,
        key: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> int:
        table = build_table(schema)
        statement = (
            sa.update(table).where(_key_clause(table, schema, key)).values(dict(values))
        )
        return self.db.execute(statement).rowcount

    def delete_row(self, schema: SheetSchema, key: Mapping[str, Any]) -> int:
        table = build_table(schema)
        statement = sa.delete(table).where(_key_clause(table, schema, key))
        return self.db.execute(statement).rowcount

    def bulk_merge(self, schema: SheetSchema, rows: Sequence[Mapping[str, Any]]) -> None:
        """Insert ``rows`` as one executemany statement; key collisions raise IntegrityError."""

        if not rows:
            return
        table = build_table(schema)
        columns = sorted({name for row in rows for name in row})
        payload = [{name: row.get(name) for name in columns} for row in rows]
        self.db.execute(sa.insert(table), payload)


def _key_clause(table: sa.Table, schema: SheetSchema, key: Mapping[str, Any]) -> ColumnElement:
    return sa.and_(*[table.c[name] == key[name] for name in schema.key_columns])
