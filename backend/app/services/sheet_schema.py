"""Declarative sheet definitions and the registry that serves them."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import Any, Iterable, Mapping

import sqlalchemy as sa

# purpose: describe sheets (table identity, typed columns, composite keys) as immutable data
# status: active
# depends_on: sqlalchemy (backing table construction)

MODIFIED_BY_COLUMN = "modified_by"
MODIFIED_AT_COLUMN = "modified_at"
ATTRIBUTION_COLUMNS = frozenset({MODIFIED_BY_COLUMN, MODIFIED_AT_COLUMN})
METADATA_PREFIX = "_"

SHEET_MANIFEST_PATH = os.getenv("SHEET_MANIFEST_PATH", "").strip()


class SheetServiceError(RuntimeError):
    """Base error for sheet data services."""


class SheetNotFoundError(SheetServiceError):
    """Raised when a sheet identifier is not registered."""


class SheetSchemaError(SheetServiceError):
    """Raised when a sheet definition violates its structural invariants."""


class SheetRequestError(SheetServiceError):
    """Raised when a client request is rejected before any storage access."""


class SheetValidationError(SheetServiceError):
    """Raised when a single value cannot be accepted for a column."""


class DataType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"


_DATA_TYPE_ALIASES = {
    "string": DataType.TEXT,
    "str": DataType.TEXT,
    "int": DataType.INTEGER,
    "bool": DataType.BOOLEAN,
    "datetime": DataType.TIMESTAMP,
    "date": DataType.TIMESTAMP,
    "number": DataType.DECIMAL,
    "numeric": DataType.DECIMAL,
}

_TRUE_TOKENS = {"true", "1", "yes", "y"}
_FALSE_TOKENS = {"false", "0", "no", "n"}


def parse_data_type(raw: str) -> DataType:
    token = (raw or "").strip().lower()
    if token in _DATA_TYPE_ALIASES:
        return _DATA_TYPE_ALIASES[token]
    try:
        return DataType(token)
    except ValueError as exc:
        raise SheetSchemaError(f"Unsupported column type '{raw}'") from exc


@dataclass(frozen=True)
class ColumnValidation:
    regex: str | None = None
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    allowed_values: tuple[str, ...] | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class LookupSpec:
    table: str
    value_column: str
    display_column: str
    filter_column: str | None = None
    filter_value: Any = None


@dataclass(frozen=True)
class ColumnSpec:
    """One typed column of a sheet."""

    name: str
    data_type: DataType
    display_name: str = ""
    editable: bool = True
    is_key: bool = False
    computed: bool = False
    required: bool = False
    validation: ColumnValidation | None = None
    lookup: LookupSpec | None = None
    help_text: str = ""
    format: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def writable(self) -> bool:
        return (self.editable or self.is_key) and not self.computed

    def coerce(self, value: Any) -> Any:
        """Convert a JSON-decoded value into the column's Python type."""

        if value is None:
            return None
        try:
            return _COERCERS[self.data_type](value)
        except (ValueError, TypeError, OverflowError, InvalidOperation) as exc:
            raise SheetValidationError(
                f"Value {value!r} is not a valid {self.data_type.value} for column '{self.name}'"
            ) from exc

    def check(self, value: Any) -> str | None:
        """Return a violation message for ``value`` (already coerced), or None."""

        # purpose: apply declarative column rules shared by save and validate surfaces
        # inputs: coerced column value
        # outputs: human readable violation or None when the value is acceptable
        # status: active
        if value is None or (isinstance(value, str) and not value.strip()):
            return f"{self.label} is required" if self.required else None
        rules = self.validation
        if rules is None:
            return None
        if rules.max_length is not None and isinstance(value, str) and len(value) > rules.max_length:
            return f"{self.label} must be at most {rules.max_length} characters"
        if rules.regex and isinstance(value, str) and not re.search(rules.regex, value):
            return f"{self.label} does not match the expected format"
        if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            if rules.min_value is not None and value < rules.min_value:
                return f"{self.label} must be at least {rules.min_value}"
            if rules.max_value is not None and value > rules.max_value:
                return f"{self.label} must be at most {rules.max_value}"
        if rules.allowed_values is not None and str(value) not in rules.allowed_values:
            return f"{self.label} must be one of: {', '.join(rules.allowed_values)}"
        return None


def _coerce_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise TypeError("structured values are not text")
    return value if isinstance(value, str) else str(value)


def _coerce_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("booleans are not integers")
    if isinstance(value, int):
        return value
    number = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(str(value))
    if not number.is_finite():
        raise ValueError("non-finite integer")
    if number != number.to_integral_value():
        raise ValueError("not an integral number")
    return int(number)


def _coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("booleans are not decimals")
    number = Decimal(value.strip()) if isinstance(value, str) else Decimal(str(value))
    if not number.is_finite():
        raise ValueError("non-finite decimal")
    return number


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise ValueError("not a boolean token")


def _coerce_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise TypeError("not a timestamp")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


_COERCERS = {
    DataType.TEXT: _coerce_text,
    DataType.INTEGER: _coerce_integer,
    DataType.DECIMAL: _coerce_decimal,
    DataType.BOOLEAN: _coerce_boolean,
    DataType.TIMESTAMP: _coerce_timestamp,
}


@dataclass(frozen=True)
class SheetSchema:
    """Immutable description of one sheet and its backing table."""

    id: str
    table_name: str
    key_columns: tuple[str, ...]
    columns: tuple[ColumnSpec, ...]
    name: str = ""
    color: str = "#FFFFFF"
    is_visible: bool = True
    rls_scope: str = ""
    _by_name: dict[str, ColumnSpec] = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not self.key_columns:
            raise SheetSchemaError(f"Sheet '{self.id}' declares no key columns")
        if len(set(self.key_columns)) != len(self.key_columns):
            raise SheetSchemaError(f"Sheet '{self.id}' repeats a key column")
        by_name: dict[str, ColumnSpec] = {}
        for column in self.columns:
            if column.name.lower() in by_name:
                raise SheetSchemaError(f"Sheet '{self.id}' declares column '{column.name}' twice")
            by_name[column.name.lower()] = column
        for key in self.key_columns:
            spec = by_name.get(key.lower())
            if spec is None or spec.name != key or not spec.is_key:
                raise SheetSchemaError(
                    f"Key column '{key}' of sheet '{self.id}' must be declared with is_key"
                )
        object.__setattr__(self, "_by_name", by_name)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def writable_columns(self) -> list[ColumnSpec]:
        return [column for column in self.columns if column.writable]

    def column(self, name: str) -> ColumnSpec | None:
        """Resolve a column by name, ignoring case."""

        return self._by_name.get((name or "").lower())


class SheetRegistry:
    """Read-only lookup of sheet definitions by identifier."""

    def __init__(self, schemas: Iterable[SheetSchema]):
        self._schemas: dict[str, SheetSchema] = {}
        for schema in schemas:
            if schema.id in self._schemas:
                raise SheetSchemaError(f"Sheet '{schema.id}' registered twice")
            self._schemas[schema.id] = schema

    def get(self, sheet_id: str) -> SheetSchema | None:
        return self._schemas.get(sheet_id)

    def require(self, sheet_id: str) -> SheetSchema:
        schema = self.get(sheet_id)
        if schema is None:
            raise SheetNotFoundError(f"Sheet '{sheet_id}' not found")
        return schema

    def list(self) -> list[SheetSchema]:
        return list(self._schemas.values())


def _optional_decimal(raw: Any) -> Decimal | None:
    return None if raw is None else Decimal(str(raw))


def column_from_manifest(entry: Mapping[str, Any]) -> ColumnSpec:
    validation = entry.get("validation")
    lookup = entry.get("lookup")
    allowed = (validation or {}).get("allowed_values")
    return ColumnSpec(
        name=entry["name"],
        data_type=parse_data_type(entry.get("type", "text")),
        display_name=entry.get("display_name", ""),
        editable=bool(entry.get("editable", True)),
        is_key=bool(entry.get("is_key", False)),
        computed=bool(entry.get("computed", False)),
        required=bool(entry.get("required", False)),
        validation=ColumnValidation(
            regex=validation.get("regex"),
            min_value=_optional_decimal(validation.get("min_value")),
            max_value=_optional_decimal(validation.get("max_value")),
            allowed_values=tuple(allowed) if allowed is not None else None,
            max_length=validation.get("max_length"),
        )
        if validation
        else None,
        lookup=LookupSpec(
            table=lookup["table"],
            value_column=lookup["value_column"],
            display_column=lookup["display_column"],
            filter_column=lookup.get("filter_column"),
            filter_value=lookup.get("filter_value"),
        )
        if lookup
        else None,
        help_text=entry.get("help_text", ""),
        format=entry.get("format", ""),
    )


def schema_from_manifest(entry: Mapping[str, Any]) -> SheetSchema:
    """Build a validated ``SheetSchema`` from one manifest sheet entry."""

    try:
        return SheetSchema(
            id=entry["id"],
            name=entry.get("name", ""),
            table_name=entry["table"],
            key_columns=tuple(entry["key"]),
            columns=tuple(column_from_manifest(column) for column in entry["columns"]),
            color=entry.get("color", "#FFFFFF"),
            is_visible=bool(entry.get("is_visible", True)),
            rls_scope=entry.get("rls_scope", ""),
        )
    except KeyError as exc:
        raise SheetSchemaError(f"Manifest entry is missing field {exc}") from exc


def _attribution_columns() -> list[dict[str, Any]]:
    return [
        {
            "name": MODIFIED_BY_COLUMN,
            "display_name": "Modified By",
            "type": "text",
            "editable": False,
            "computed": True,
            "help_text": "User who last modified this record",
        },
        {
            "name": MODIFIED_AT_COLUMN,
            "display_name": "Modified At",
            "type": "timestamp",
            "editable": False,
            "computed": True,
            "format": "datetime",
            "help_text": "Timestamp of last modification",
        },
    ]


_COST_CENTER_LOOKUP = {"table": "cost_centers", "value_column": "code", "display_column": "name"}

BUILTIN_MANIFEST: list[dict[str, Any]] = [
    {
        "id": "financial-data",
        "name": "Financial Data",
        "table": "financial_data",
        "key": ["internal_order", "item_id"],
        "rls_scope": "cost_object",
        "color": "#E3F2FD",
        "columns": [
            {
                "name": "internal_order",
                "display_name": "Internal Order",
                "type": "text",
                "is_key": True,
                "required": True,
                "help_text": "Internal order number for tracking",
            },
            {
                "name": "item_id",
                "display_name": "Item ID",
                "type": "integer",
                "is_key": True,
                "required": True,
                "help_text": "Unique item identifier",
            },
            {
                "name": "amount",
                "display_name": "Amount",
                "type": "decimal",
                "required": True,
                "format": "currency",
                "help_text": "Financial amount in USD",
                "validation": {"min_value": 0, "max_value": 999999999},
            },
            {
                "name": "cost_center",
                "display_name": "Cost Center",
                "type": "text",
                "help_text": "Cost center code",
                "validation": {"regex": r"^[A-Z]{2}\d{4}$", "max_length": 6},
                "lookup": _COST_CENTER_LOOKUP,
            },
            {
                "name": "description",
                "display_name": "Description",
                "type": "text",
                "help_text": "Item description",
                "validation": {"max_length": 500},
            },
            {
                "name": "category",
                "display_name": "Category",
                "type": "text",
                "help_text": "Item category",
                "validation": {"allowed_values": ["OPEX", "CAPEX", "Revenue", "Other"]},
            },
            *_attribution_columns(),
        ],
    },
    {
        "id": "budget-data",
        "name": "Budget Data",
        "table": "budget_data",
        "key": ["budget_year", "cost_center"],
        "rls_scope": "cost_object",
        "color": "#F3E5F5",
        "columns": [
            {
                "name": "budget_year",
                "display_name": "Budget Year",
                "type": "integer",
                "is_key": True,
                "required": True,
                "help_text": "Budget fiscal year",
                "validation": {"min_value": 2020, "max_value": 2030},
            },
            {
                "name": "cost_center",
                "display_name": "Cost Center",
                "type": "text",
                "is_key": True,
                "required": True,
                "help_text": "Cost center code",
                "lookup": _COST_CENTER_LOOKUP,
            },
            *[
                {
                    "name": f"q{quarter}_budget",
                    "display_name": f"Q{quarter} Budget",
                    "type": "decimal",
                    "format": "currency",
                    "help_text": f"Quarter {quarter} budget amount",
                }
                for quarter in range(1, 5)
            ],
            {
                "name": "total_budget",
                "display_name": "Total Budget",
                "type": "decimal",
                "editable": False,
                "computed": True,
                "format": "currency",
                "help_text": "Computed total of all quarters",
            },
            *_attribution_columns(),
        ],
    },
]


def load_manifest(path: str) -> list[dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    sheets = payload.get("sheets") if isinstance(payload, dict) else payload
    if not isinstance(sheets, list):
        raise SheetSchemaError(f"Manifest {path} must contain a list of sheets")
    return sheets


@lru_cache(maxsize=1)
def get_registry() -> SheetRegistry:
    """Return the process-wide registry, loaded once from the configured manifest."""

    manifest = load_manifest(SHEET_MANIFEST_PATH) if SHEET_MANIFEST_PATH else BUILTIN_MANIFEST
    return SheetRegistry(schema_from_manifest(entry) for entry in manifest)


_SA_TYPES = {
    DataType.TEXT: sa.String,
    DataType.INTEGER: sa.Integer,
    DataType.DECIMAL: lambda: sa.Numeric(18, 4),
    DataType.BOOLEAN: sa.Boolean,
    DataType.TIMESTAMP: sa.DateTime,
}


@lru_cache(maxsize=None)
def build_table(schema: SheetSchema) -> sa.Table:
    """Return the SQLAlchemy table backing ``schema``.

    Attribution columns are always present on the backing table even when the
    sheet does not expose them.
    """

    columns = [
        sa.Column(
            spec.name,
            _SA_TYPES[spec.data_type](),
            primary_key=spec.is_key,
            nullable=not spec.is_key,
            autoincrement=False,
        )
        for spec in schema.columns
        if spec.name not in ATTRIBUTION_COLUMNS
    ]
    columns.append(sa.Column(MODIFIED_BY_COLUMN, sa.String(256), nullable=True))
    columns.append(sa.Column(MODIFIED_AT_COLUMN, sa.DateTime, nullable=True))
    return sa.Table(schema.table_name, sa.MetaData(), *columns)
