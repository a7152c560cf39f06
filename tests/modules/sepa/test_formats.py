from datetime import date

import pytest

from src.modules.sepa.formats import (
    CREDIT_TRANSFER_34_14,
    DIRECT_DEBIT_19_14,
    LINE_END,
    NO_ACCOUNT,
    RECORD_LENGTH,
    FixedField,
    ascii_text,
    render_cuaderno,
    render_field,
    split_iban,
)

COMPANY = {
    "id": "B12345678",
    "name": "Colegio Sol",
    "address": "Calle Mayor 1",
    "iban": "ES9121000418450200051332",
}


def _transactions() -> list[dict]:
    amounts = [13500, 9000, 12000, 4550, 100]
    return [
        {
            "reference": f"inv{i:029d}",
            "mandate_id": f"MANDATO-{i}",
            "amount_cents": cents,
            "date": "20240331",
            "bic": "CAIXESBBXXX",
            "name": f"Tutor Núñez {i}",
            "address": "Calle Luna 2",
            "town": "28001 Madrid",
            "country": "ES",
            "party_id": "12345678Z",
            "iban": "ES7620770024003102575766" if i != 4 else None,
            "remittance": f"Recibo: Recibo mensual - marzo de 2024 - {i}",
        }
        for i, cents in enumerate(amounts)
    ]


class TestFields:
    """Field rendering rules."""

    def test_text_is_ascii_padded_and_truncated(self):
        field = FixedField("name", 8)
        assert render_field(field, "Núñez") == "Nunez   "
        assert render_field(field, "Colegio Sol Madrid") == "Colegio "
        assert render_field(field, None) == " " * 8

    def test_numbers_zero_padded(self):
        field = FixedField("amount_cents", 10, "num")
        assert render_field(field, 13500) == "0000013500"
        with pytest.raises(ValueError):
            render_field(FixedField("n", 3, "num"), 12345)

    def test_const(self):
        assert render_field(FixedField("scheme", 8, "const", "CORE"), "ignored") == "CORE    "

    def test_identifiers_are_never_truncated(self):
        field = FixedField("mandate_id", 35, "id")
        assert render_field(field, "MANDATO-ANA") == "MANDATO-ANA".ljust(35)
        assert render_field(field, "M" * 35) == "M" * 35
        with pytest.raises(ValueError, match="mandate_id"):
            render_field(field, "MANDATO-" + "a" * 32)

    def test_helpers(self):
        assert ascii_text("Nómina\r\nañadida") == "Nomina  anadida"
        assert split_iban("es91 2100 0418 4502 0005 1332") == ("ES", "91", "21000418450200051332")
        assert split_iban(None) == ("", "", "")


class TestCuadernoFiles:
    """Whole fixed-width files."""

    def test_direct_debit_round_trip(self):
        transactions = _transactions()
        content = render_cuaderno(DIRECT_DEBIT_19_14, COMPANY, transactions, date(2024, 3, 25))

        lines = content.split(LINE_END)
        assert lines[-1] == ""
        lines = lines[:-1]
        assert all(len(line) == RECORD_LENGTH for line in lines)
        assert [line[:2] for line in lines] == ["01", "02", "03", "03", "03", "03", "03", "04", "05", "99"]

        records = DIRECT_DEBIT_19_14.parse_file(content)
        header, company = records[0], records[1]
        assert header["version"] == "19143001"
        assert header["file_date"] == "20240325"
        assert header["file_prefix"] == "PRE"
        assert header["receiving_entity"] == "2100"
        assert company["company_name"] == "Colegio Sol"
        assert company["account"] == "21000418450200051332"

        debits = records[2:7]
        assert [r["reference"] for r in debits] == [t["reference"] for t in transactions]
        assert [int(r["amount_cents"]) for r in debits] == [13500, 9000, 12000, 4550, 100]
        assert debits[0]["scheme"] == "CORE"
        assert debits[0]["name"] == "Tutor Nunez 0"
        assert debits[0]["iban_country"] == "ES"
        assert debits[0]["account"] == "20770024003102575766"
        assert debits[0]["purpose"] == "SUPP"
        # Missing IBAN: zero-filled account, blank country
        assert debits[4]["account"] == NO_ACCOUNT
        assert debits[4]["iban_country"] == ""

        totals_date, totals_company, totals_file = records[7], records[8], records[9]
        assert int(totals_date["amount_cents"]) == 39150
        assert int(totals_date["transactions"]) == 5
        assert int(totals_date["records"]) == 6
        assert int(totals_company["records"]) == 8
        assert int(totals_file["records"]) == 10
        assert int(totals_file["transactions"]) == 5

    def test_credit_transfer_layout(self):
        content = render_cuaderno(CREDIT_TRANSFER_34_14, COMPANY, _transactions()[:1], date(2024, 3, 25))
        records = CREDIT_TRANSFER_34_14.parse_file(content)
        assert records[0]["version"] == "34140001"
        assert records[0]["file_prefix"] == "ORD"
        assert records[2]["scheme"] == "SALA"
        assert records[2]["purpose"] == "SALA"

    def test_long_iban_keeps_the_whole_account(self):
        transactions = _transactions()[:1]
        transactions[0]["iban"] = "FR7630006000011234567890189"
        content = render_cuaderno(DIRECT_DEBIT_19_14, COMPANY, transactions, date(2024, 3, 25))

        [debit] = [r for r in DIRECT_DEBIT_19_14.parse_file(content) if r["record_type"] == "03"]
        assert debit["iban_country"] == "FR"
        assert debit["iban_check"] == "76"
        assert debit["account"] == "30006000011234567890189"
        assert all(len(line) == RECORD_LENGTH for line in content.split(LINE_END)[:-1])

    def test_overlong_iban_is_an_error(self):
        transactions = _transactions()[:1]
        transactions[0]["iban"] = "XX00" + "1" * 31
        with pytest.raises(ValueError, match="account"):
            render_cuaderno(DIRECT_DEBIT_19_14, COMPANY, transactions, date(2024, 3, 25))

    def test_unknown_record_type(self):
        with pytest.raises(ValueError):
            DIRECT_DEBIT_19_14.parse("77" + " " * 598)
