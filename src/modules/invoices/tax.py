"""VAT and rounding of invoice totals."""

from dataclasses import dataclass
from decimal import Decimal

from src.core.config import settings
from src.shared.utils.money import ZERO, round_money, to_decimal

# Spanish general VAT rate. Not applied while settings.vat_rate is 0.
IVA_RATE = Decimal("0.21")


@dataclass(frozen=True)
class TaxResult:
    tax: Decimal
    total: Decimal


def calculate_tax(subtotal, rate: Decimal | None = None) -> TaxResult:
    """
    Tax and total for a subtotal, both rounded half-up to 2 decimals.

    ``rate`` defaults to ``settings.vat_rate`` (0: VAT disabled, total is
    the rounded subtotal). Malformed or negative input yields zeros.
    """
    value = to_decimal(subtotal)
    if value is None or value < 0:
        return TaxResult(tax=ZERO, total=ZERO)
    effective_rate = to_decimal(settings.vat_rate if rate is None else rate)
    if effective_rate is None or effective_rate < 0:
        effective_rate = Decimal("0")
    tax = round_money(value * effective_rate)
    total = round_money(value + tax)
    return TaxResult(tax=tax, total=total)
