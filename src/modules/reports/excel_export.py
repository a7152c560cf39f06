"""Export report data to Excel (XLSX) and CSV."""

import csv
from datetime import date
from decimal import Decimal
from io import BytesIO, StringIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font

from src.modules.invoices.models import Invoice
from src.modules.reports.schemas import Modelo233Row

MODELO_233_HEADERS = [
    "ID Matrícula",
    "NIF Declarante",
    "NIF Primer Progenitor",
    "NIF Segundo Progenitor",
    "Apellidos Primer Progenitor",
    "Nombre Primer Progenitor",
    "DNI Menor",
    "Apellidos Menor",
    "Nombre Menor",
    "Fecha Nacimiento",
    "Meses Pagados",
    "Importe Total",
    "Importe Subvencionado",
    "Fecha Presentación",
]

INVOICE_HEADERS = [
    "ID Recibo",
    "Título",
    "Fecha Emisión",
    "Fecha Vencimiento",
    "Estado",
    "Categoría",
    "Tipo",
    "Subtotal",
    "IVA",
    "Total",
    "Origen",
    "Notas",
]

STATUS_LABELS = {"unpaid": "Pendiente", "inprocess": "En proceso", "paid": "Pagada", "canceled": "Cancelada"}
CATEGORY_LABELS = {
    "employee": "Nómina empleado",
    "enrollment": "Matrícula",
    "general": "General",
    "service": "Servicio",
    "supplier": "Proveedor",
}
TYPE_LABELS = {"charge": "Cargo", "payment": "Pago", "income": "Ingreso", "expense": "Gasto"}
REGISTERED_BY_LABELS = {"administration": "Administración", "bank": "Banco", "system": "Sistema"}

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _cell_value(v: Any) -> Any:
    """Convert value for Excel (Decimal -> float, date stays)."""
    if v is None:
        return None
    if isinstance(v, Decimal):
        return float(v)
    return v


def _write_table(ws: Any, rows: list[list[Any]], start_row: int = 1) -> None:
    """Write list of rows to sheet starting at start_row."""
    for i, row in enumerate(rows, start=start_row):
        for j, val in enumerate(row, start=1):
            ws.cell(row=i, column=j, value=_cell_value(val))


def _bold_row(ws: Any, row: int, columns: int) -> None:
    for c in range(1, columns + 1):
        ws.cell(row, c).font = Font(bold=True)


def _save(wb: Workbook) -> bytes:
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def modelo_233_line(row: Modelo233Row, filed_on: date) -> list[Any]:
    """One declaration line in ``MODELO_233_HEADERS`` order."""
    return [
        row.enrollment_document_id,
        row.declarant_nif,
        row.primary_nif or "",
        row.secondary_nif or "",
        row.first_guardian_lastname or "",
        row.first_guardian_name or "",
        row.student_dni or "",
        row.student_lastname or "",
        row.student_name or "",
        row.student_birthdate.isoformat() if row.student_birthdate else "",
        ",".join(row.months or []),
        row.amounts.total,
        row.amounts.subsidized,
        filed_on.isoformat(),
    ]


def build_modelo_233_csv(rows: list[Modelo233Row], filed_on: date) -> str:
    """Build CSV content for the Modelo 233 declaration."""
    out = StringIO()
    writer = csv.writer(out)
    writer.writerow(MODELO_233_HEADERS)
    for row in rows:
        writer.writerow(modelo_233_line(row, filed_on))
    return out.getvalue()


def export_modelo_233(rows: list[Modelo233Row], filed_on: date) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Modelo 233"
    _write_table(ws, [MODELO_233_HEADERS])
    _bold_row(ws, 1, len(MODELO_233_HEADERS))
    ws.freeze_panes = "A2"
    _write_table(ws, [modelo_233_line(r, filed_on) for r in rows], 2)
    for c in range(1, len(MODELO_233_HEADERS) + 1):
        ws.column_dimensions[ws.cell(1, c).column_letter].width = max(12, len(MODELO_233_HEADERS[c - 1]) + 2)
    return _save(wb)


def _invoice_line(invoice: Invoice) -> list[Any]:
    return [
        invoice.document_id,
        invoice.title or "",
        invoice.emission_date,
        invoice.expiration_date,
        STATUS_LABELS.get(invoice.status, invoice.status or ""),
        CATEGORY_LABELS.get(invoice.category, invoice.category or ""),
        TYPE_LABELS.get(invoice.invoice_type, invoice.invoice_type or ""),
        invoice.subtotal,
        invoice.iva,
        invoice.total,
        REGISTERED_BY_LABELS.get(invoice.registered_by, invoice.registered_by or ""),
        invoice.notes or "",
    ]


def export_invoice_history(info_rows: list[list[str]], invoices: list[Invoice], exported_on: date) -> bytes:
    """
    Info block (bold), export date, then the invoice table with a totals row.

    The header row carries an autofilter; the totals row only appears when
    there is at least one invoice.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Historial de Facturas"
    info = [*info_rows, [f"Fecha de exportación: {exported_on.strftime('%d/%m/%Y')}"]]
    _write_table(ws, info)
    for r in range(1, len(info) + 1):
        ws.cell(r, 1).font = Font(bold=True)

    header_row = len(info) + 2
    _write_table(ws, [INVOICE_HEADERS], header_row)
    _bold_row(ws, header_row, len(INVOICE_HEADERS))
    row = header_row + 1
    for invoice in invoices:
        _write_table(ws, [_invoice_line(invoice)], row)
        for c in (3, 4):
            ws.cell(row, c).number_format = "dd/mm/yyyy"
        row += 1
    if invoices:
        total = sum((i.total or Decimal("0") for i in invoices), Decimal("0"))
        iva = sum((i.iva or Decimal("0") for i in invoices), Decimal("0"))
        _write_table(ws, [["", "", "", "", "", "", "TOTALES:", total - iva, iva, total, "", ""]], row + 1)
        _bold_row(ws, row + 1, len(INVOICE_HEADERS))
    ws.auto_filter.ref = f"A{header_row}:L{header_row}"
    widths = [34, 25, 15, 15, 12, 18, 12, 12, 10, 12, 15, 25]
    for c, width in enumerate(widths, start=1):
        ws.column_dimensions[ws.cell(header_row, c).column_letter].width = width
    return _save(wb)
