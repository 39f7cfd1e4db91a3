from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..auth import get_current_actor
from .. import models, schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/", response_model=list[schemas.SheetOperationLogOut])
async def list_logs(
    sheet_id: str | None = None,
    mine: bool = False,
    limit: int = 100,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    query = db.query(models.SheetOperationLog)
    if sheet_id:
        query = query.filter(models.SheetOperationLog.sheet_id == sheet_id)
    if mine:
        query = query.filter(models.SheetOperationLog.actor == actor)
    return (
        query.order_by(models.SheetOperationLog.processed_at.desc())
        .limit(max(1, min(limit, 1000)))
        .all()
    )


@router.get("/report", response_model=list[schemas.SheetAuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    sheet_id: str | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return audit.generate_report(db, start, end, sheet_id)
