"""API endpoints for SEPA batch exports."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.core.storage import service as storage
from src.modules.sepa.schemas import SepaBatchRequest, SepaBatchType
from src.modules.sepa.service import SepaBatchService

router = APIRouter(prefix="/sepa-batches", tags=["SEPA"])


async def _export(
    batch_type: SepaBatchType,
    data: SepaBatchRequest,
    store: bool,
    db: AsyncSession,
) -> Response:
    result = await SepaBatchService(db).generate(batch_type, data)
    await db.commit()
    headers = {
        "Content-Disposition": f'attachment; filename="{result.file_name}"',
        "X-Sepa-Count": str(result.count),
        "X-Sepa-Warnings": str(len(result.warnings)),
        "X-Sepa-Errors": str(len(result.errors)),
    }
    if store:
        stored = await storage.upload(result.content, f"sepa/{result.file_name}", "application/zip")
        headers["X-Storage-Url"] = stored.url
    return Response(content=result.content, media_type="application/zip", headers=headers)


@router.post("/enrollments")
async def export_enrollments(
    data: SepaBatchRequest,
    store: bool = Query(False, description="Also upload the archive to storage"),
    db: AsyncSession = Depends(get_db),
):
    """Direct-debit batch (Cuaderno 19.14 / pain.008 / xlsx) for enrollment invoices expiring in the month."""
    return await _export(SepaBatchType.ENROLLMENT, data, store, db)


@router.post("/employees")
async def export_employees(
    data: SepaBatchRequest,
    store: bool = Query(False, description="Also upload the archive to storage"),
    db: AsyncSession = Depends(get_db),
):
    """Credit-transfer batch (Cuaderno 34.14 / pain.001 / xlsx) for payroll invoices expiring in the month."""
    return await _export(SepaBatchType.EMPLOYEE, data, store, db)
