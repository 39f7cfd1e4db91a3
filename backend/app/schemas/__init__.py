"""Pydantic schemas for the sheet data API."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: active

from .sheets import (
    ColumnSpecOut,
    ColumnValidationOut,
    FilterCriterion,
    LookupSpecOut,
    LookupValue,
    OperationResult,
    OperationStatus,
    QueryMetadata,
    RowDelete,
    RowInsert,
    RowUpdate,
    RowValidationError,
    SaveResults,
    SheetAuditReportItem,
    SheetOperationLogOut,
    SheetQueryRequest,
    SheetQueryResponse,
    SheetSaveRequest,
    SheetSaveResponse,
    SheetSchemaOut,
    SheetStats,
    SortCriterion,
    ValidationResult,
    WorkbookManifest,
)

__all__ = [
    "ColumnSpecOut",
    "ColumnValidationOut",
    "FilterCriterion",
    "LookupSpecOut",
    "LookupValue",
    "OperationResult",
    "OperationStatus",
    "QueryMetadata",
    "RowDelete",
    "RowInsert",
    "RowUpdate",
    "RowValidationError",
    "SaveResults",
    "SheetAuditReportItem",
    "SheetOperationLogOut",
    "SheetQueryRequest",
    "SheetQueryResponse",
    "SheetSaveRequest",
    "SheetSaveResponse",
    "SheetSchemaOut",
    "SheetStats",
    "SortCriterion",
    "ValidationResult",
    "WorkbookManifest",
]
