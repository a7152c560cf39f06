"""
Fixed-width banking layouts (Cuaderno 19.14 direct debit, 34.14 credit transfer).

Each record type is a table of ``FixedField``; the same table renders a record
and parses it back, so the layouts below are the single source of truth for
offsets and lengths. Every line is space-padded to ``RECORD_LENGTH``.
"""

import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

RECORD_LENGTH = 600
LINE_END = "\r\n"
# Account field when the IBAN is missing
NO_ACCOUNT = "0" * 20


@dataclass(frozen=True)
class FixedField:
    """
    One field of a fixed-width record.

    ``text`` is ASCII, left aligned and space padded (truncated when longer);
    ``id`` renders like ``text`` but a value that does not fit is an error;
    ``num`` is digits, right aligned and zero padded (too many digits is an
    error, never silently truncated); ``const`` always renders ``value``.
    """

    name: str
    length: int
    kind: str = "text"
    value: str | None = None


def ascii_text(value: Any) -> str:
    """Transliterate to plain ASCII (``Nómina`` -> ``Nomina``), dropping what has no equivalent."""
    if value is None:
        return ""
    normalized = unicodedata.normalize("NFKD", str(value))
    return normalized.encode("ascii", "ignore").decode("ascii").replace("\r", " ").replace("\n", " ")


def render_field(field: FixedField, value: Any) -> str:
    if field.kind == "const":
        return ascii_text(field.value).ljust(field.length)[: field.length]
    if field.kind == "id":
        text = ascii_text(value).strip()
        if len(text) > field.length:
            raise ValueError(f"{field.name} does not fit in {field.length} characters: {text}")
        return text.ljust(field.length)
    if field.kind == "num":
        digits = "".join(ch for ch in str(value if value is not None else "") if ch.isdigit())
        if len(digits) > field.length:
            raise ValueError(f"{field.name} does not fit in {field.length} digits: {value}")
        return digits.rjust(field.length, "0")
    return ascii_text(value).ljust(field.length)[: field.length]


def render_record(layout: Iterable[FixedField], values: Mapping[str, Any]) -> str:
    """Render one record line (without line terminator), padded to ``RECORD_LENGTH``."""
    line = "".join(render_field(f, values.get(f.name)) for f in layout)
    return line.ljust(RECORD_LENGTH)


def parse_record(layout: Iterable[FixedField], line: str) -> dict[str, str]:
    """Split a record line back into its fields (text stripped, numbers kept as digit strings)."""
    values: dict[str, str] = {}
    pos = 0
    for f in layout:
        chunk = line[pos : pos + f.length]
        values[f.name] = chunk if f.kind == "num" else chunk.strip()
        pos += f.length
    return values


def yyyymmdd(on: date | None) -> str:
    return on.strftime("%Y%m%d") if on else ""


def split_iban(iban: str | None) -> tuple[str, str, str]:
    """``(country, check digits, account)``; all empty when there is no IBAN."""
    compact = (iban or "").replace(" ", "").upper()
    if len(compact) < 5:
        return "", "", ""
    return compact[:2], compact[2:4], compact[4:]


@dataclass(frozen=True)
class CuadernoLayout:
    """Record tables of one Cuaderno, keyed by the 2-digit record type."""

    code: str
    file_prefix: str
    records: dict[str, tuple[FixedField, ...]]

    def render(self, record_type: str, values: Mapping[str, Any]) -> str:
        return render_record(self.records[record_type], values)

    def parse(self, line: str) -> dict[str, str]:
        record_type = line[:2]
        if record_type not in self.records:
            raise ValueError(f"Unknown record type {record_type!r} for cuaderno {self.code}")
        return parse_record(self.records[record_type], line)

    def parse_file(self, content: str) -> list[dict[str, str]]:
        return [self.parse(line) for line in content.splitlines() if line.strip()]


def _cuaderno(code: str, version_code: str, file_prefix: str, scheme: str, purpose: str) -> CuadernoLayout:
    def version(n: int) -> FixedField:
        return FixedField("version", 8, "const", f"{version_code}{n:03d}")

    return CuadernoLayout(
        code=code,
        file_prefix=file_prefix,
        records={
            # File header
            "01": (
                FixedField("record_type", 2, "const", "01"),
                version(1),
                FixedField("presenter_id", 25),
                FixedField("presenter_name", 40),
                FixedField("file_date", 8, "num"),
                FixedField("file_prefix", 3, "const", file_prefix),
                FixedField("file_id", 6),
                FixedField("reserved_1", 9, "num"),
                FixedField("reserved_2", 15, "num"),
                FixedField("receiving_entity", 4),
                FixedField("receiving_office", 4),
            ),
            # Creditor (direct debit) or ordering company (transfer)
            "02": (
                FixedField("record_type", 2, "const", "02"),
                version(2),
                FixedField("company_id", 25),
                FixedField("date", 8, "num"),
                FixedField("company_name", 40),
                FixedField("company_address", 40),
                FixedField("iban_country", 2),
                FixedField("iban_check", 2, "num"),
                FixedField("account", 30, "id"),
            ),
            # One per invoice
            "03": (
                FixedField("record_type", 2, "const", "03"),
                version(3),
                FixedField("reference", 35, "id"),
                FixedField("mandate_id", 35, "id"),
                FixedField("scheme", 8, "const", scheme),
                FixedField("amount_cents", 10, "num"),
                FixedField("date", 8, "num"),
                FixedField("bic", 11),
                FixedField("name", 40),
                FixedField("address", 40),
                FixedField("town", 40),
                FixedField("country", 2),
                FixedField("id_type", 1, "const", "1"),
                FixedField("party_id", 35),
                FixedField("account_type", 1, "const", "A"),
                FixedField("iban_country", 2),
                FixedField("iban_check", 2, "num"),
                FixedField("account", 30, "id"),
                FixedField("purpose", 4, "const", purpose),
                FixedField("remittance", 140),
            ),
            # Totals per date
            "04": (
                FixedField("record_type", 2, "const", "04"),
                FixedField("company_id", 25),
                FixedField("date", 8, "num"),
                FixedField("amount_cents", 10, "num"),
                FixedField("transactions", 6, "num"),
                FixedField("records", 6, "num"),
            ),
            # Totals per company
            "05": (
                FixedField("record_type", 2, "const", "05"),
                FixedField("company_id", 25),
                FixedField("amount_cents", 10, "num"),
                FixedField("transactions", 6, "num"),
                FixedField("records", 6, "num"),
            ),
            # File totals
            "99": (
                FixedField("record_type", 2, "const", "99"),
                FixedField("reserved", 5, "num"),
                FixedField("amount_cents", 10, "num"),
                FixedField("records", 6, "num"),
                FixedField("transactions", 6, "num"),
            ),
        },
    )


DIRECT_DEBIT_19_14 = _cuaderno("1914", "19143", "PRE", "CORE", "SUPP")
CREDIT_TRANSFER_34_14 = _cuaderno("3414", "34140", "ORD", "SALA", "SALA")


def render_cuaderno(
    layout: CuadernoLayout,
    company: Mapping[str, Any],
    transactions: list[Mapping[str, Any]],
    created_on: date,
) -> str:
    """
    Render a whole file: header, company, one 03 per transaction, totals.

    ``company`` needs ``id``, ``name``, ``address`` and ``iban``; each
    transaction carries the 03 field values (``iban`` is split here, its own
    ``date`` is the charge date). ``created_on`` dates the header, company and
    totals records. An IBAN whose account part does not fit raises ValueError.
    """
    today = yyyymmdd(created_on)
    total_cents = sum(int(t.get("amount_cents") or 0) for t in transactions)
    records = 5 + len(transactions)
    country, check, account = split_iban(company.get("iban"))

    lines = [
        layout.render(
            "01",
            {
                "presenter_id": company.get("id"),
                "presenter_name": company.get("name"),
                "file_date": today,
                "file_id": today[2:],
                "receiving_entity": account[:4],
                "receiving_office": account[4:8],
            },
        ),
        layout.render(
            "02",
            {
                "company_id": company.get("id"),
                "date": today,
                "company_name": company.get("name"),
                "company_address": company.get("address"),
                "iban_country": country,
                "iban_check": check,
                "account": account or NO_ACCOUNT,
            },
        ),
    ]
    for tx in transactions:
        tx_country, tx_check, tx_account = split_iban(tx.get("iban"))
        lines.append(
            layout.render(
                "03",
                {**tx, "iban_country": tx_country, "iban_check": tx_check, "account": tx_account or NO_ACCOUNT},
            )
        )
    totals = {"company_id": company.get("id"), "amount_cents": total_cents, "transactions": len(transactions)}
    lines.append(layout.render("04", {**totals, "date": today, "records": len(transactions) + 1}))
    lines.append(layout.render("05", {**totals, "records": len(transactions) + 3}))
    lines.append(layout.render("99", {"amount_cents": total_cents, "records": records, "transactions": len(transactions)}))
    return LINE_END.join(lines) + LINE_END
