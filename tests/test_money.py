"""
Test suite for the Money value type

All monetary calculations must use Decimal precision with two fraction
digits and ROUND_HALF_UP.
"""

import pytest
from decimal import Decimal

from wallet_ledger.errors import InvalidAmount, InvalidRequest
from wallet_ledger.money import Money


class TestMoneyParsing:
    """Test parsing of monetary strings"""

    def test_parse_plain_decimal(self):
        assert Money.parse("10.15").amount == Decimal("10.15")
        assert Money.parse("25.5").to_string() == "25.50"
        assert Money.parse("7").to_string() == "7.00"
        assert Money.parse("  3.40 ").to_string() == "3.40"

    def test_parse_signed(self):
        assert Money.parse("-3.25").is_negative()
        assert Money.parse("+3.25") == Money.parse("3.25")

    def test_rounding_is_half_up(self):
        assert Money.parse("100.555").to_string() == "100.56"
        assert Money.parse("100.545").to_string() == "100.55"
        assert Money.parse("0.005").to_string() == "0.01"
        assert Money.parse("0.004").to_string() == "0.00"

    @pytest.mark.parametrize("value", [
        "", "   ", "abc", "1,000.00", "1e3", "NaN", "Infinity", "1/3",
        "10.", ".5", "$10", "1 000",
    ])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidAmount):
            Money.parse(value)

    def test_rejects_non_string(self):
        with pytest.raises(InvalidAmount):
            Money.parse(None)
        with pytest.raises(InvalidAmount):
            Money(10.5)

    def test_rejects_out_of_range(self):
        with pytest.raises(InvalidAmount):
            Money.parse("1" * 19)
        assert Money.parse("9" * 18 + ".99").to_string() == "9" * 18 + ".99"

    @pytest.mark.parametrize("value", [
        Decimal("1e30"), Decimal("-1e30"), Decimal("1" * 19), 10 ** 40,
        Decimal("999999999999999999.995"),
    ])
    def test_rejects_out_of_range_decimal_and_int(self, value):
        with pytest.raises(InvalidAmount):
            Money.parse(value)
        with pytest.raises(InvalidAmount):
            Money(value)

    def test_arithmetic_overflow_is_invalid_amount(self):
        largest = Money.parse("9" * 18 + ".99")
        with pytest.raises(InvalidAmount):
            largest + Money.parse("0.01")

    def test_invalid_amount_is_invalid_request(self):
        with pytest.raises(InvalidRequest):
            Money.parse("oops")


class TestMoneyArithmetic:
    """Test exact arithmetic"""

    def test_add_and_subtract(self):
        balance = Money.parse("100.00")
        assert (balance + Money.parse("25.50")).to_string() == "125.50"
        assert (balance - Money.parse("0.01")).to_string() == "99.99"

    def test_no_floating_drift(self):
        total = Money.zero()
        for _ in range(1000):
            total = total + Money.parse("0.10")
        assert total == Money.parse("100.00")
        assert total.to_string() == "100.00"

    def test_sign_and_predicates(self):
        assert Money.parse("1.00").sign() == 1
        assert Money.parse("-1.00").sign() == -1
        assert Money.zero().sign() == 0
        assert Money.zero().is_zero()
        assert Money.parse("0.01").is_positive()
        assert (-Money.parse("0.01")).is_negative()

    def test_comparison(self):
        assert Money.parse("50.00") < Money.parse("100.00")
        assert Money.parse("100.00") >= Money.parse("100")
        assert Money.parse("100.00") == Money(Decimal("100"))

    def test_negative_zero_renders_as_zero(self):
        assert Money.parse("-0.001").to_string() == "0.00"
        assert str(Money.parse("5.00") - Money.parse("5.00")) == "0.00"
