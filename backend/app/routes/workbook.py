from fastapi import APIRouter, Depends

from ..auth import get_current_actor
from .. import schemas
from ..services.sheet_schema import SheetRegistry
from .sheets import require_sheet, get_sheet_registry

router = APIRouter(prefix="/api/workbook", tags=["workbook"])


@router.get("/manifest", response_model=schemas.WorkbookManifest)
async def manifest(
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    sheets = [
        schemas.SheetSchemaOut.model_validate(schema)
        for schema in registry.list()
        if schema.is_visible
    ]
    return schemas.WorkbookManifest(sheets=sheets)


@router.get("/sheet/{sheet_id}/schema", response_model=schemas.SheetSchemaOut)
async def sheet_schema(
    sheet_id: str,
    registry: SheetRegistry = Depends(get_sheet_registry),
    actor: str = Depends(get_current_actor),
):
    return schemas.SheetSchemaOut.model_validate(require_sheet(registry, sheet_id))
