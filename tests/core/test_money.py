from decimal import Decimal

from src.shared.utils.money import format_amount, round_money, to_cents, to_decimal


class TestRoundMoney:
    """Tests for round_money function."""

    def test_round_half_up(self):
        """Test ROUND_HALF_UP behavior."""
        assert round_money(10.125) == Decimal("10.13")
        assert round_money(10.124) == Decimal("10.12")
        assert round_money(10.115) == Decimal("10.12")  # banker's rounding edge case
        assert round_money(123.456) == Decimal("123.46")

    def test_from_decimal(self):
        """Test rounding from Decimal input."""
        assert round_money(Decimal("10.125")) == Decimal("10.13")
        assert round_money(Decimal("99.999")) == Decimal("100.00")

    def test_from_string(self):
        """Test rounding from string input."""
        assert round_money("10.125") == Decimal("10.13")
        assert round_money("0.001") == Decimal("0.00")

    def test_negative_numbers(self):
        """Test rounding negative numbers."""
        assert round_money(-10.125) == Decimal("-10.12")  # rounds toward zero
        assert round_money(-10.126) == Decimal("-10.13")

    def test_precision(self):
        """Test that result always has 2 decimal places."""
        assert str(round_money(10)) == "10.00"
        assert str(round_money(10.1)) == "10.10"


class TestToDecimal:
    """Tests for to_decimal parsing."""

    def test_numbers_and_numeric_strings(self):
        assert to_decimal(12) == Decimal("12")
        assert to_decimal(12.5) == Decimal("12.5")
        assert to_decimal(" 12.50 ") == Decimal("12.50")
        assert to_decimal(Decimal("3.10")) == Decimal("3.10")

    def test_rejects_non_finite_and_garbage(self):
        assert to_decimal(None) is None
        assert to_decimal(True) is None
        assert to_decimal(float("nan")) is None
        assert to_decimal(float("inf")) is None
        assert to_decimal("Infinity") is None
        assert to_decimal("") is None
        assert to_decimal("abc") is None
        assert to_decimal({"amount": 1}) is None


class TestCents:
    """Tests for to_cents and format_amount."""

    def test_to_cents(self):
        assert to_cents(Decimal("135.00")) == 13500
        assert to_cents("0.015") == 2
        assert to_cents(1650) == 165000

    def test_format_amount(self):
        assert format_amount(Decimal("135")) == "135.00"
        assert format_amount(None) == "0.00"
        assert format_amount("99.999") == "100.00"
