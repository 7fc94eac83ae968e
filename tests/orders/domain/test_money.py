from decimal import Decimal

import pytest
from protean.exceptions import ValidationError

from orders.money import InvalidAmount, sum_cents, to_int_cents, to_int_cents_or_none, usd_to_cents


class TestToIntCents:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (1999, 1999),
            (19.99, 19),
            ("250", 250),
            (" 42 ", 42),
            (Decimal("10.9"), 10),
            (-5, 0),
            (None, 0),
            ("abc", 0),
            ("", 0),
            (float("nan"), 0),
            (float("inf"), 0),
            (True, 0),
        ],
    )
    def test_coercion(self, value, expected):
        assert to_int_cents(value) == expected

    def test_negative_allowed(self):
        assert to_int_cents("-300", allow_negative=True) == -300

    def test_never_returns_float(self):
        assert isinstance(to_int_cents(12.7), int)


class TestToIntCentsOrNone:
    def test_absent_is_none(self):
        assert to_int_cents_or_none(None) is None
        assert to_int_cents_or_none("not a number") is None

    def test_explicit_zero_is_kept(self):
        assert to_int_cents_or_none(0) == 0
        assert to_int_cents_or_none("0") == 0

    def test_empty_string(self):
        assert to_int_cents_or_none("") is None
        assert to_int_cents_or_none("", coerce_empty_string_to_zero=True) == 0


class TestUsdToCents:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("19.99", 1999),
            ("$1,234.50", 123450),
            ("1,234,567.89", 123456789),
            ("12.345", 1235),
            ("12.344", 1234),
            ("0.1", 10),
            (".5", 50),
            ("7", 700),
            (" $ 3.00 ", 300),
            (19.99, 1999),
            (12, 1200),
            (Decimal("0.29"), 29),
        ],
    )
    def test_parses_exactly(self, value, expected):
        assert usd_to_cents(value) == expected

    def test_every_two_decimal_amount_is_exact(self):
        for cents in range(0, 10000, 7):
            text = f"{cents // 100}.{cents % 100:02d}"
            assert usd_to_cents(text) == cents

    @pytest.mark.parametrize(
        "value",
        ["abc", "", "$", "1.2.3", "12a", "--1", "1,2.3,4", "12,34", "1,234,5", ",100", "1$0", True, float("nan"), None],
    )
    def test_malformed_input_raises(self, value):
        with pytest.raises(InvalidAmount):
            usd_to_cents(value)

    def test_invalid_amount_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            usd_to_cents("abc")
        assert "amount" in exc.value.messages

    def test_negative_is_clamped_unless_allowed(self):
        assert usd_to_cents("-5.00") == 0
        assert usd_to_cents("-5.00", allow_negative=True) == -500
        assert usd_to_cents("$-1,000.00", allow_negative=True) == -100000


class TestSumCents:
    def test_ignores_non_numbers(self):
        assert sum_cents([100, None, "x", 250, True, float("nan")]) == 350
