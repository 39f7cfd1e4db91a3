"""Content fingerprints used as optimistic concurrency tokens for sheet rows."""

from __future__ import annotations

import hashlib
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from .sheet_schema import ATTRIBUTION_COLUMNS, METADATA_PREFIX

# purpose: fingerprint the data columns of a row so clients can detect concurrent edits
# inputs: mapping of column name to scalar value
# outputs: "0x"-prefixed uppercase SHA-256 hex digest
# status: active

HASH_PREFIX = "0x"
_FIELD_SEPARATOR = "|"


def is_metadata_column(name: str) -> bool:
    return name.startswith(METADATA_PREFIX) or name in ATTRIBUTION_COLUMNS


def canonical_value(value: Any) -> str:
    """Render a value so that equal logical values always produce the same text."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return _canonical_number(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def _canonical_number(value: int | float | Decimal) -> str:
    number = value if isinstance(value, Decimal) else Decimal(str(value))
    if not number.is_finite():
        return str(number)
    if number == 0:
        return "0"
    text = format(number.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def compute_row_hash(row: Mapping[str, Any]) -> str:
    """Hash the non-metadata columns of ``row``.

    Columns are sorted by name, so neither mapping order nor schema column
    order affects the result. Attribution columns and names carrying the
    metadata prefix never contribute.
    """

    parts = [
        f"{name}{_FIELD_SEPARATOR}{canonical_value(value)}"
        for name, value in sorted(row.items())
        if not is_metadata_column(name)
    ]
    payload = _FIELD_SEPARATOR.join(parts).encode("utf-8")
    return HASH_PREFIX + hashlib.sha256(payload).hexdigest().upper()
