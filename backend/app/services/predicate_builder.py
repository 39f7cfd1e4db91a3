"""Translate sheet filter, sort, and paging criteria into SQLAlchemy expressions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from operator import eq, ge, gt, le, lt, ne
from typing import Any, Sequence

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement

from .. import schemas
from .sheet_schema import (
    DataType,
    SheetRequestError,
    SheetSchema,
    SheetValidationError,
    build_table,
)

# purpose: build parameterized predicate trees so user values never reach query text
# inputs: sheet schema, filter and sort criteria, 1-based page and page size
# outputs: PredicatePlan with ordered bindings, where tree, ordering, offset and limit
# status: active

ASCENDING = "asc"
DESCENDING = "desc"
_DESCENDING_TOKENS = frozenset({DESCENDING, "descending"})
LIKE_ESCAPE = "\\"


class PredicateError(SheetRequestError):
    """Raised when filter or sort criteria cannot be applied to a sheet."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "startswith"
    ENDS_WITH = "endswith"
    IN = "in"
    NOT_IN = "notin"
    IS_NULL = "isnull"
    IS_NOT_NULL = "isnotnull"


_OPERATOR_ALIASES = {
    "=": FilterOperator.EQ,
    "==": FilterOperator.EQ,
    "equals": FilterOperator.EQ,
    "!=": FilterOperator.NE,
    "<>": FilterOperator.NE,
    "not-equals": FilterOperator.NE,
    ">": FilterOperator.GT,
    "greater-than": FilterOperator.GT,
    "<": FilterOperator.LT,
    "less-than": FilterOperator.LT,
    ">=": FilterOperator.GTE,
    "greater-or-equal": FilterOperator.GTE,
    "<=": FilterOperator.LTE,
    "less-or-equal": FilterOperator.LTE,
    "starts-with": FilterOperator.STARTS_WITH,
    "ends-with": FilterOperator.ENDS_WITH,
    "in-set": FilterOperator.IN,
    "not-in": FilterOperator.NOT_IN,
    "not-in-set": FilterOperator.NOT_IN,
    "is-null": FilterOperator.IS_NULL,
    "is-not-null": FilterOperator.IS_NOT_NULL,
}

SET_OPERATORS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN})
NULL_OPERATORS = frozenset({FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL})
PATTERN_OPERATORS = frozenset(
    {FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH}
)
_COMPARATORS = {
    FilterOperator.EQ: eq,
    FilterOperator.NE: ne,
    FilterOperator.GT: gt,
    FilterOperator.LT: lt,
    FilterOperator.GTE: ge,
    FilterOperator.LTE: le,
}


def parse_operator(raw: str) -> FilterOperator | None:
    token = (raw or "").strip().lower()
    if token in _OPERATOR_ALIASES:
        return _OPERATOR_ALIASES[token]
    try:
        return FilterOperator(token)
    except ValueError:
        return None


def normalize_direction(raw: str | None) -> str:
    """Map a client sort direction to asc/desc; unrecognized tokens sort ascending."""

    return DESCENDING if (raw or "").strip().lower() in _DESCENDING_TOKENS else ASCENDING


@dataclass(frozen=True)
class PredicatePlan:
    bindings: tuple[tuple[str, Any], ...]
    where: ColumnElement | None
    order_by: tuple[tuple[str, str], ...]
    offset: int
    limit: int

    @property
    def parameters(self) -> dict[str, Any]:
        return dict(self.bindings)

    def order_by_clauses(self, table: sa.Table) -> list[ColumnElement]:
        return [
            table.c[name].desc() if direction == DESCENDING else table.c[name].asc()
            for name, direction in self.order_by
        ]


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _pattern(operator: FilterOperator, value: Any) -> str:
    escaped = escape_like(str(value))
    if operator is FilterOperator.CONTAINS:
        return f"%{escaped}%"
    if operator is FilterOperator.STARTS_WITH:
        return f"{escaped}%"
    return f"%{escaped}"


def _validate_filter(
    schema: SheetSchema,
    criterion: schemas.FilterCriterion,
) -> tuple[str | None, FilterOperator | None, list[Any]]:
    """Return (error, operator, coerced values) for one filter."""

    spec = schema.column(criterion.column)
    if spec is None:
        return (
            f"Column '{criterion.column}' does not exist in sheet '{schema.display_name}'",
            None,
            [],
        )
    operator = parse_operator(criterion.operator)
    if operator is None:
        return f"Unsupported filter operator '{criterion.operator}'", None, []

    if operator in NULL_OPERATORS:
        if criterion.value is not None or criterion.values:
            return f"Operator '{operator.value}' on '{spec.name}' takes no value", None, []
        return None, operator, []

    if operator in SET_OPERATORS:
        if not criterion.values:
            return f"Operator '{operator.value}' on '{spec.name}' requires a non-empty value set", None, []
        if criterion.value is not None:
            return f"Operator '{operator.value}' on '{spec.name}' takes 'values', not 'value'", None, []
        raw_values = list(criterion.values)
    else:
        if criterion.values is not None:
            return f"Operator '{operator.value}' on '{spec.name}' does not accept a value set", None, []
        if criterion.value is None:
            return f"Operator '{operator.value}' on '{spec.name}' requires a value", None, []
        raw_values = [criterion.value]

    if operator in PATTERN_OPERATORS:
        if spec.data_type is not DataType.TEXT:
            return f"Operator '{operator.value}' requires a text column, '{spec.name}' is {spec.data_type.value}", None, []
        return None, operator, [_pattern(operator, raw_values[0])]

    try:
        return None, operator, [spec.coerce(raw) for raw in raw_values]
    except SheetValidationError as exc:
        return str(exc), None, []


def build_predicate(
    schema: SheetSchema,
    filters: Sequence[schemas.FilterCriterion],
    sorts: Sequence[schemas.SortCriterion],
    *,
    page: int,
    page_size: int,
) -> PredicatePlan:
    """Validate every criterion, then build the plan; any invalid criterion rejects all."""

    errors: list[str] = []
    validated: list[tuple[str, FilterOperator, list[Any]]] = []
    for criterion in filters:
        error, operator, values = _validate_filter(schema, criterion)
        if error:
            errors.append(error)
        else:
            validated.append((schema.column(criterion.column).name, operator, values))

    order_by: list[tuple[str, str]] = []
    for sort in sorts:
        spec = schema.column(sort.column)
        if spec is None:
            errors.append(f"Column '{sort.column}' does not exist in sheet '{schema.display_name}'")
            continue
        order_by.append((spec.name, normalize_direction(sort.direction)))

    if errors:
        raise PredicateError(errors)

    if not order_by:
        order_by = [(key, ASCENDING) for key in schema.key_columns]

    table = build_table(schema)
    bindings: list[tuple[str, Any]] = []
    conditions: list[ColumnElement] = []

    def bind(value: Any, type_: Any) -> sa.BindParameter:
        name = f"filter_{len(bindings)}"
        bindings.append((name, value))
        return sa.bindparam(name, value, type_=type_)

    for name, operator, values in validated:
        column = table.c[name]
        if operator is FilterOperator.IS_NULL:
            conditions.append(column.is_(None))
        elif operator is FilterOperator.IS_NOT_NULL:
            conditions.append(column.is_not(None))
        elif operator in PATTERN_OPERATORS:
            conditions.append(column.like(bind(values[0], sa.String()), escape=LIKE_ESCAPE))
        elif operator is FilterOperator.IN:
            conditions.append(column.in_([bind(value, column.type) for value in values]))
        elif operator is FilterOperator.NOT_IN:
            conditions.append(column.not_in([bind(value, column.type) for value in values]))
        else:
            conditions.append(_COMPARATORS[operator](column, bind(values[0], column.type)))

    return PredicatePlan(
        bindings=tuple(bindings),
        where=sa.and_(*conditions) if conditions else None,
        order_by=tuple(order_by),
        offset=(page - 1) * page_size,
        limit=page_size,
    )
