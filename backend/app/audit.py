import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


class SheetAuditSink:
    """Persist save summaries as ``SheetOperationLog`` rows on a session."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        *,
        sheet_id: str,
        session_id: str,
        category: str,
        count: int,
        actor: str,
        timestamp: datetime,
    ) -> models.SheetOperationLog:
        log = models.SheetOperationLog(
            sheet_id=sheet_id,
            session_id=session_id or None,
            operation_type=category,
            row_count=count,
            actor=actor,
            processed_at=timestamp,
        )
        self.db.add(log)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(log)
        logger.debug("Recorded %s x%s on sheet %s for %s", category, count, sheet_id, actor)
        return log


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    sheet_id: str | None = None,
):
    query = db.query(models.SheetOperationLog).filter(
        models.SheetOperationLog.processed_at >= start,
        models.SheetOperationLog.processed_at <= end,
    )
    if sheet_id:
        query = query.filter(models.SheetOperationLog.sheet_id == sheet_id)
    rows = (
        query.with_entities(
            models.SheetOperationLog.operation_type,
            func.sum(models.SheetOperationLog.row_count),
        )
        .group_by(models.SheetOperationLog.operation_type)
        .all()
    )
    return [{"operation_type": r[0], "count": int(r[1] or 0)} for r in rows]
