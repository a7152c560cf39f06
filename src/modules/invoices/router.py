"""API endpoints for Invoices module."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.invoices.models import Invoice
from src.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceFilters,
    InvoiceResponse,
    InvoiceUpdate,
    SnapshotBackfillRequest,
    SnapshotBackfillResult,
)
from src.modules.invoices.service import InvoiceService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def _invoice_to_response(invoice: Invoice) -> InvoiceResponse:
    """Convert Invoice model to response schema."""
    return InvoiceResponse(
        id=invoice.id,
        document_id=invoice.document_id,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
        title=invoice.title,
        category=invoice.category,
        invoice_type=invoice.invoice_type,
        status=invoice.status,
        amounts=invoice.amounts or [],
        iva=float(invoice.iva or 0),
        total=float(invoice.total or 0),
        emission_date=invoice.emission_date,
        expiration_date=invoice.expiration_date,
        enrollment_id=invoice.enrollment_id,
        employee_id=invoice.employee_id,
        guardian_id=invoice.guardian_id,
        party_type=invoice.party_type,
        party_document_id=invoice.party_document_id,
        enrollment_document_id=invoice.enrollment_document_id,
        employee_document_id=invoice.employee_document_id,
        guardian_document_id=invoice.guardian_document_id,
        party_snapshot=invoice.party_snapshot,
        simulation=invoice.simulation,
        simulation_tag=invoice.simulation_tag,
        notes=invoice.notes,
        issued_by=invoice.issued_by,
        registered_by=invoice.registered_by,
    )


@router.post(
    "",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(data: InvoiceCreate, db: AsyncSession = Depends(get_db)):
    """Create an invoice manually (amounts normalized, totals computed, snapshot frozen)."""
    service = InvoiceService(db)
    invoice = await service.create_invoice(data)
    await db.commit()
    await db.refresh(invoice)
    return ApiResponse(success=True, message="Invoice created", data=_invoice_to_response(invoice))


@router.get("", response_model=ApiResponse[PaginatedResponse[InvoiceResponse]])
async def list_invoices(
    filters: InvoiceFilters = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """List invoices with filters and pagination."""
    service = InvoiceService(db)
    invoices, total = await service.list_invoices(filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[_invoice_to_response(i) for i in invoices],
            total=total,
            page=filters.page,
            limit=filters.limit,
        ),
    )


@router.post("/snapshots/backfill", response_model=ApiResponse[SnapshotBackfillResult])
async def backfill_snapshots(data: SnapshotBackfillRequest, db: AsyncSession = Depends(get_db)):
    """Fill party snapshots for invoices that have none (idempotent)."""
    service = InvoiceService(db)
    result = await service.backfill_snapshots(batch_size=data.batch_size, dry_run=data.dry_run)
    return ApiResponse(success=True, message="Snapshot backfill finished", data=result)


@router.get("/{document_id}", response_model=ApiResponse[InvoiceResponse])
async def get_invoice(document_id: str, db: AsyncSession = Depends(get_db)):
    """Get invoice by document id."""
    service = InvoiceService(db)
    invoice = await service.get_invoice(document_id)
    return ApiResponse(success=True, data=_invoice_to_response(invoice))


@router.patch("/{document_id}", response_model=ApiResponse[InvoiceResponse])
async def update_invoice(document_id: str, data: InvoiceUpdate, db: AsyncSession = Depends(get_db)):
    """Update invoice status or notes."""
    service = InvoiceService(db)
    invoice = await service.update_invoice(document_id, data)
    await db.commit()
    return ApiResponse(success=True, message="Invoice updated", data=_invoice_to_response(invoice))


@router.delete("/{document_id}", response_model=ApiResponse[None])
async def delete_invoice(document_id: str, db: AsyncSession = Depends(get_db)):
    """Delete an invoice (explicit admin action)."""
    service = InvoiceService(db)
    await service.delete_invoice(document_id)
    await db.commit()
    return ApiResponse(success=True, message="Invoice deleted", data=None)
