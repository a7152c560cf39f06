"""XML (ISO 20022) and XLSX renderers for SEPA batches."""

from datetime import datetime
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from openpyxl import Workbook
from openpyxl.styles import Font

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates" / "sepa"

DIRECT_DEBIT_TEMPLATE = "pain.008.001.02.xml.j2"
CREDIT_TRANSFER_TEMPLATE = "pain.001.001.03.xml.j2"

ENROLLMENT_HEADERS = [
    "Debtor Name", "IBAN", "BIC", "MandateId", "Amount", "Charge Date", "Invoice Number", "Student", "Notes",
]
EMPLOYEE_HEADERS = [
    "Beneficiary Name", "IBAN", "BIC", "SWIFT", "NIF", "Amount", "Execution Date", "Invoice Number", "Notes",
]

_env: Environment | None = None


def _environment() -> Environment:
    global _env
    if _env is None:
        # autoescape: every free text field ends up inside an XML element
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
    return _env


def render_payment_xml(
    template_name: str,
    *,
    msg_id: str,
    company: dict[str, Any],
    transactions: list[dict[str, Any]],
    execution_date: str,
    created_at: datetime,
) -> str:
    """Render a pain.008 / pain.001 message. Amounts are expected as ``"135.00"`` strings."""
    ctrl_sum = sum((Decimal(t["amount"]) for t in transactions), Decimal("0.00"))
    return _environment().get_template(template_name).render(
        msg_id=msg_id,
        created_at=created_at.replace(microsecond=0).isoformat(),
        ctrl_sum=f"{ctrl_sum:.2f}",
        company=company,
        transactions=transactions,
        execution_date=execution_date,
    )


def _cell_value(v: Any) -> Any:
    """Convert value for Excel (Decimal -> float, date stays)."""
    if v is None:
        return None
    if isinstance(v, Decimal):
        return float(v)
    return v


def build_xlsx(title: str, headers: list[str], rows: list[list[Any]]) -> bytes:
    """One sheet: bold header row followed by one row per invoice."""
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]
    for j, header in enumerate(headers, start=1):
        ws.cell(row=1, column=j, value=header).font = Font(bold=True)
    for i, row in enumerate(rows, start=2):
        for j, val in enumerate(row, start=1):
            ws.cell(row=i, column=j, value=_cell_value(val))
    for j, header in enumerate(headers, start=1):
        ws.column_dimensions[ws.cell(row=1, column=j).column_letter].width = max(12, len(header) + 2)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
