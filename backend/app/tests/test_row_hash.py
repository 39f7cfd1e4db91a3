import hashlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.services.row_hash import canonical_value, compute_row_hash, is_metadata_column


def test_attribution_columns_do_not_change_hash():
    base = {"internal_order": "IO-1", "item_id": 7, "amount": Decimal("10")}
    first = {**base, "modified_by": "alice", "modified_at": datetime(2024, 1, 1)}
    second = {**base, "modified_by": "bob", "modified_at": datetime(2025, 6, 1, 12, 30)}
    assert compute_row_hash(first) == compute_row_hash(second) == compute_row_hash(base)


def test_underscore_fields_are_ignored():
    row = {"item_id": 1, "amount": 5}
    annotated = {**row, "_row_hash": "0xABC", "_row_version": 123}
    assert compute_row_hash(annotated) == compute_row_hash(row)
    assert is_metadata_column("_row_hash")
    assert is_metadata_column("modified_at")
    assert not is_metadata_column("amount")


def test_hash_ignores_mapping_order():
    forward = {"a": 1, "b": "x", "c": None}
    backward = {"c": None, "b": "x", "a": 1}
    assert compute_row_hash(forward) == compute_row_hash(backward)
    assert compute_row_hash(forward) == compute_row_hash(dict(forward))


def test_hash_format_and_payload():
    row = {"id": 1, "amount": Decimal("10.0000")}
    expected = hashlib.sha256(b"amount|10|id|1").hexdigest().upper()
    digest = compute_row_hash(row)
    assert digest == "0x" + expected
    assert len(digest) == 66


def test_numeric_representations_normalize():
    assert compute_row_hash({"amount": 10}) == compute_row_hash({"amount": Decimal("10.0000")})
    assert compute_row_hash({"amount": 2.5}) == compute_row_hash({"amount": Decimal("2.50")})
    assert compute_row_hash({"amount": 10}) != compute_row_hash({"amount": 11})


def test_key_columns_contribute_to_hash():
    assert compute_row_hash({"id": 1, "amount": 10}) != compute_row_hash({"id": 2, "amount": 10})


def test_canonical_values():
    assert canonical_value(None) == ""
    assert canonical_value(True) == "true"
    assert canonical_value(Decimal("0.000")) == "0"
    assert canonical_value(Decimal("1E+3")) == "1000"
    aware = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert canonical_value(aware) == "2024-03-01T12:00:00.000000"
    assert canonical_value(datetime(2024, 3, 1, 12, 0)) == "2024-03-01T12:00:00.000000"
