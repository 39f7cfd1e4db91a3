import json
from datetime import datetime
from decimal import Decimal

import pytest

from app.services.sheet_schema import (
    ColumnSpec,
    ColumnValidation,
    DataType,
    SheetNotFoundError,
    SheetRegistry,
    SheetSchema,
    SheetSchemaError,
    SheetValidationError,
    build_table,
    load_manifest,
    parse_data_type,
    schema_from_manifest,
)


def key_column(name="id"):
    return ColumnSpec(name=name, data_type=DataType.INTEGER, is_key=True)


def test_schema_requires_declared_key_columns():
    with pytest.raises(SheetSchemaError):
        SheetSchema(id="s", table_name="t", key_columns=(), columns=(key_column(),))
    with pytest.raises(SheetSchemaError):
        SheetSchema(id="s", table_name="t", key_columns=("id", "id"), columns=(key_column(),))
    with pytest.raises(SheetSchemaError):
        SheetSchema(
            id="s",
            table_name="t",
            key_columns=("id",),
            columns=(ColumnSpec(name="id", data_type=DataType.INTEGER),),
        )
    with pytest.raises(SheetSchemaError):
        SheetSchema(
            id="s",
            table_name="t",
            key_columns=("id",),
            columns=(key_column(), ColumnSpec(name="ID", data_type=DataType.TEXT)),
        )


def test_columns_resolve_case_insensitively(financial):
    assert financial.column("AMOUNT").name == "amount"
    assert financial.column("missing") is None
    assert financial.key_columns == ("internal_order", "item_id")
    writable = {c.name for c in financial.writable_columns}
    assert "internal_order" in writable
    assert "modified_by" not in writable


@pytest.mark.parametrize(
    "data_type,raw,expected",
    [
        (DataType.INTEGER, "42", 42),
        (DataType.INTEGER, 7.0, 7),
        (DataType.DECIMAL, "10.50", Decimal("10.50")),
        (DataType.BOOLEAN, "yes", True),
        (DataType.TEXT, 12, "12"),
        (DataType.TIMESTAMP, "2024-03-01T14:00:00+02:00", datetime(2024, 3, 1, 12, 0)),
    ],
)
def test_coerce(data_type, raw, expected):
    assert ColumnSpec(name="c", data_type=data_type).coerce(raw) == expected


@pytest.mark.parametrize(
    "data_type,raw",
    [
        (DataType.INTEGER, "4.5"),
        (DataType.INTEGER, True),
        (DataType.INTEGER, "Infinity"),
        (DataType.INTEGER, float("inf")),
        (DataType.DECIMAL, "abc"),
        (DataType.DECIMAL, "NaN"),
        (DataType.BOOLEAN, "maybe"),
        (DataType.TIMESTAMP, "yesterday"),
    ],
)
def test_coerce_rejects(data_type, raw):
    with pytest.raises(SheetValidationError):
        ColumnSpec(name="c", data_type=data_type).coerce(raw)


def test_column_rules():
    column = ColumnSpec(
        name="code",
        data_type=DataType.TEXT,
        display_name="Code",
        required=True,
        validation=ColumnValidation(regex=r"^[A-Z]{2}\d{4}$", max_length=6),
    )
    assert column.check("AB1234") is None
    assert column.check("") == "Code is required"
    assert "at most 6" in column.check("ABC12345")
    assert "expected format" in column.check("ab1234")

    amount = ColumnSpec(
        name="amount",
        data_type=DataType.DECIMAL,
        validation=ColumnValidation(min_value=Decimal("0"), max_value=Decimal("100")),
    )
    assert amount.check(None) is None
    assert "at least 0" in amount.check(Decimal("-1"))
    assert "at most 100" in amount.check(Decimal("101"))


def test_registry_lookup(registry):
    assert registry.get("budget-data").table_name == "budget_data"
    assert registry.get("nope") is None
    with pytest.raises(SheetNotFoundError):
        registry.require("nope")
    with pytest.raises(SheetSchemaError):
        SheetRegistry([registry.require("budget-data"), registry.require("budget-data")])


def test_manifest_file_round_trip(tmp_path):
    path = tmp_path / "sheets.json"
    path.write_text(
        json.dumps(
            {
                "sheets": [
                    {
                        "id": "projects",
                        "table": "projects",
                        "key": ["code"],
                        "columns": [
                            {"name": "code", "type": "string", "is_key": True},
                            {"name": "budget", "type": "number", "validation": {"min_value": 0}},
                        ],
                    }
                ]
            }
        )
    )
    [entry] = load_manifest(str(path))
    schema = schema_from_manifest(entry)
    assert schema.column("budget").data_type is DataType.DECIMAL
    assert schema.column("budget").validation.min_value == Decimal("0")
    assert schema.display_name == "projects"

    with pytest.raises(SheetSchemaError):
        schema_from_manifest({"id": "broken", "columns": []})
    with pytest.raises(SheetSchemaError):
        parse_data_type("blob")


def test_backing_table_always_carries_attribution(registry):
    table = build_table(registry.require("budget-data"))
    assert {c.name for c in table.primary_key.columns} == {"budget_year", "cost_center"}
    assert "modified_by" in table.c and "modified_at" in table.c
    assert build_table(registry.require("budget-data")) is table
