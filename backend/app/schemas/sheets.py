"""Schemas for sheet query, save, and workbook manifest endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..services.sheet_schema import DataType

OperationStatus = Literal["merged", "conflict", "missing", "deleted", "error"]


class FilterCriterion(BaseModel):
    column: str = Field(min_length=1)
    operator: str = Field(min_length=1)
    value: Any = None
    values: list[Any] | None = None


class SortCriterion(BaseModel):
    column: str = Field(min_length=1)
    direction: str = "asc"


class SheetQueryRequest(BaseModel):
    page: int = 1
    page_size: int = 500
    filters: list[FilterCriterion] = Field(default_factory=list)
    sorts: list[SortCriterion] = Field(default_factory=list)


class QueryMetadata(BaseModel):
    query_time: datetime
    execution_time_ms: int
    sql: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class SheetQueryResponse(BaseModel):
    rows: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
    metadata: QueryMetadata | None = None


class RowInsert(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    client_id: str | None = None


class RowUpdate(BaseModel):
    key: dict[str, Any] = Field(default_factory=dict)
    before_hash: str = ""
    after: dict[str, Any] = Field(default_factory=dict)
    client_id: str | None = None


class RowDelete(BaseModel):
    key: dict[str, Any] = Field(default_factory=dict)
    before_hash: str = ""
    client_id: str | None = None


class SheetSaveRequest(BaseModel):
    client_session_id: str = ""
    inserts: list[RowInsert] = Field(default_factory=list)
    updates: list[RowUpdate] = Field(default_factory=list)
    deletes: list[RowDelete] = Field(default_factory=list)

    @property
    def operation_count(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.deletes)


class OperationResult(BaseModel):
    key: dict[str, Any]
    status: OperationStatus
    reason: str | None = None
    client_id: str | None = None
    current_data: dict[str, Any] | None = None
    current_hash: str | None = None

    model_config = ConfigDict(frozen=True)


class SaveResults(BaseModel):
    inserts: list[OperationResult] = Field(default_factory=list)
    updates: list[OperationResult] = Field(default_factory=list)
    deletes: list[OperationResult] = Field(default_factory=list)

    def all(self) -> list[OperationResult]:
        return [*self.deletes, *self.updates, *self.inserts]


class SheetSaveResponse(BaseModel):
    ok: bool
    results: SaveResults = Field(default_factory=SaveResults)
    error_message: str | None = None
    processed_at: datetime


class ColumnValidationOut(BaseModel):
    regex: str | None = None
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    allowed_values: list[str] | None = None
    max_length: int | None = None

    model_config = ConfigDict(from_attributes=True)


class LookupSpecOut(BaseModel):
    table: str
    value_column: str
    display_column: str
    filter_column: str | None = None
    filter_value: Any = None

    model_config = ConfigDict(from_attributes=True)


class ColumnSpecOut(BaseModel):
    name: str
    display_name: str
    data_type: DataType
    editable: bool
    is_key: bool
    computed: bool
    required: bool
    validation: ColumnValidationOut | None = None
    lookup: LookupSpecOut | None = None
    help_text: str = ""
    format: str = ""

    model_config = ConfigDict(from_attributes=True)


class SheetSchemaOut(BaseModel):
    id: str
    name: str
    table_name: str
    key_columns: list[str]
    columns: list[ColumnSpecOut]
    color: str
    is_visible: bool
    rls_scope: str

    model_config = ConfigDict(from_attributes=True)


class WorkbookManifest(BaseModel):
    sheets: list[SheetSchemaOut]


class LookupValue(BaseModel):
    value: str
    display: str
    description: str | None = None


class SheetStats(BaseModel):
    row_count: int
    last_modified: datetime | None = None
    last_modified_by: str | None = None
    column_stats: dict[str, Any] = Field(default_factory=dict)


class RowValidationError(BaseModel):
    row_index: int
    column_name: str
    message: str
    value: str | None = None


class ValidationResult(BaseModel):
    errors: list[RowValidationError] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors


class SheetOperationLogOut(BaseModel):
    id: UUID
    sheet_id: str
    session_id: str | None = None
    operation_type: str
    row_count: int
    actor: str
    processed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SheetAuditReportItem(BaseModel):
    operation_type: str
    count: int
