import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, Index
from sqlalchemy.dialects.postgresql import UUID

from .database import Base


class SheetOperationLog(Base):
    """One applied save category (insert, update or delete) for a sheet."""

    __tablename__ = "sheet_operation_logs"
    __table_args__ = (
        Index("ix_sheet_operation_logs_sheet_processed", "sheet_id", "processed_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sheet_id = Column(String, nullable=False)
    session_id = Column(String, nullable=True)
    operation_type = Column(String, nullable=False)
    row_count = Column(Integer, nullable=False, default=0)
    actor = Column(String, nullable=False)
    processed_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class CostCenter(Base):
    """Reference data backing the cost center lookup column."""

    __tablename__ = "cost_centers"

    code = Column(String(6), primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
