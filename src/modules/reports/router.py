"""API for fiscal and invoice history reports."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.core.storage import service as storage
from src.modules.invoices.models import InvoiceCategory, InvoiceStatus, InvoiceType, RegisteredBy
from src.modules.reports.excel_export import (
    XLSX_MEDIA_TYPE,
    build_modelo_233_csv,
    export_invoice_history,
    export_modelo_233,
)
from src.modules.reports.schemas import ExportFormat, Modelo233Concept, Modelo233Report, Quarter
from src.modules.reports.service import InvoiceHistory, ReportsService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/modelo-233", response_model=ApiResponse[Modelo233Report])
async def get_modelo_233(
    year: int = Query(..., ge=2000, le=2100, description="Fiscal year (required)."),
    quarter: Quarter | None = Query(None, description="Restrict to one quarter."),
    concept: Modelo233Concept = Query(Modelo233Concept.ALL),
    student: str | None = Query(None, description="Student document id."),
    include_months: bool = Query(False, description="List the months with invoices per row."),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    Modelo 233 preview: one row per enrollment with the invoice totals of the
    period split into matricula, comedor and subsidized amounts.

    Requires the company NIF (declarant).
    """
    service = ReportsService(db)
    data = await service.modelo_233(
        year,
        quarter=quarter,
        concept=concept,
        student=student,
        include_months=include_months,
        page=page,
        limit=limit,
    )
    return ApiResponse(data=data)


@router.get("/modelo-233/export")
async def export_modelo_233_file(
    year: int = Query(..., ge=2000, le=2100),
    quarter: Quarter | None = Query(None),
    concept: Modelo233Concept = Query(Modelo233Concept.ALL),
    format: ExportFormat = Query(ExportFormat.CSV, description="csv or xlsx"),
    store: bool = Query(False, description="Also upload the file to storage"),
    db: AsyncSession = Depends(get_db),
):
    """Download the Modelo 233 declaration (every matching row, months included)."""
    rows, _, _ = await ReportsService(db).modelo_233_rows(year, quarter=quarter, concept=concept, include_months=True)
    today = date.today()
    filename = f"modelo233_{year}_{concept.value.upper()}.{format.value}"
    if format == ExportFormat.XLSX:
        content: bytes = export_modelo_233(rows, today)
        media_type = XLSX_MEDIA_TYPE
    else:
        content = build_modelo_233_csv(rows, today).encode("utf-8")
        media_type = "text/csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if store:
        stored = await storage.upload(content, f"reports/233/{today:%Y}/{today:%m}/{filename}", media_type)
        headers["X-Storage-Url"] = stored.url
    return Response(content=content, media_type=media_type, headers=headers)


def _xlsx_response(history: InvoiceHistory) -> Response:
    content = export_invoice_history(history.info_rows, history.invoices, date.today())
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{history.file_name}"',
            "X-Invoice-Count": str(len(history.invoices)),
        },
    )


@router.get("/invoices/enrollments/{document_id}")
async def export_enrollment_invoices(
    document_id: str,
    start_date: date | None = Query(None, description="Emission date from (inclusive)"),
    end_date: date | None = Query(None, description="Emission date to (inclusive)"),
    status: InvoiceStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Invoice history of one enrollment as xlsx (works for deleted enrollments through snapshots)."""
    history = await ReportsService(db).enrollment_history(
        document_id, start_date=start_date, end_date=end_date, status=status
    )
    return _xlsx_response(history)


@router.get("/invoices/employees/{document_id}")
async def export_employee_invoices(
    document_id: str,
    start_date: date | None = Query(None, description="Emission date from (inclusive)"),
    end_date: date | None = Query(None, description="Emission date to (inclusive)"),
    status: InvoiceStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Payroll invoice history of one employee as xlsx."""
    history = await ReportsService(db).employee_history(
        document_id, start_date=start_date, end_date=end_date, status=status
    )
    return _xlsx_response(history)


async def _category_export(
    category: InvoiceCategory,
    start_date: date | None,
    end_date: date | None,
    status: InvoiceStatus | None,
    invoice_type: InvoiceType | None,
    registered_by: RegisteredBy | None,
    sort_by: str,
    sort_order: str,
    db: AsyncSession,
) -> Response:
    history = await ReportsService(db).category_history(
        category,
        start_date=start_date,
        end_date=end_date,
        status=status,
        invoice_type=invoice_type,
        registered_by=registered_by,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return _xlsx_response(history)


@router.get("/invoices/general")
async def export_general_invoices(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    invoice_type: InvoiceType | None = Query(None),
    registered_by: RegisteredBy | None = Query(None),
    sort_by: str = Query("emission_date", pattern="^(emission_date|expiration_date|total|created_at)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    """Every general invoice matching the filters as xlsx."""
    return await _category_export(
        InvoiceCategory.GENERAL, start_date, end_date, status, invoice_type, registered_by, sort_by, sort_order, db
    )


@router.get("/invoices/services")
async def export_service_invoices(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    invoice_type: InvoiceType | None = Query(None),
    registered_by: RegisteredBy | None = Query(None),
    sort_by: str = Query("emission_date", pattern="^(emission_date|expiration_date|total|created_at)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    """Every service invoice matching the filters as xlsx."""
    return await _category_export(
        InvoiceCategory.SERVICE, start_date, end_date, status, invoice_type, registered_by, sort_by, sort_order, db
    )
