"""Money utilities: integer-cents coercion and USD parsing.

Every monetary value inside the Orders domain is an integer number of cents.
Stored documents and upstream payloads are loosely typed, so all coercion of
untrusted values happens here and nowhere else.
"""

import math
import re
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

from protean.exceptions import ValidationError

_WHITESPACE = re.compile(r"\s+")
# Optional sign and dollar sign; commas only as thousands separators.
_USD_PATTERN = re.compile(
    r"^(?:(?P<sign>-)\$?|\$(?P<dollar_sign>-)?)?"
    r"(?P<whole>\d{1,3}(?:,\d{3})+|\d*)"
    r"(?:\.(?P<frac>\d*))?$"
)


class InvalidAmount(ValidationError):
    """A monetary input that cannot be parsed into cents."""

    def __init__(self, value, reason: str = "Invalid monetary amount") -> None:
        self.value = value
        super().__init__({"amount": [f"{reason}: {value!r}"]})


def _coerce_to_decimal(value, coerce_empty_string_to_zero: bool = False) -> Decimal | None:
    """Coerce to a finite Decimal, or None when the value is not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value)) if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return Decimal(0) if coerce_empty_string_to_zero else None
        try:
            parsed = Decimal(trimmed)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def to_int_cents_or_none(
    value,
    allow_negative: bool = False,
    coerce_empty_string_to_zero: bool = False,
) -> int | None:
    """Coerce a value holding **cents** to an int, or None if it is absent/invalid.

    Fractions are truncated toward zero and negatives clamped to 0 unless
    ``allow_negative``. None means "not provided", which lets callers tell an
    explicit zero apart from a missing value.
    """
    numeric = _coerce_to_decimal(value, coerce_empty_string_to_zero)
    if numeric is None:
        return None
    truncated = int(numeric)
    if allow_negative:
        return truncated
    return max(0, truncated)


def to_int_cents(
    value,
    allow_negative: bool = False,
    coerce_empty_string_to_zero: bool = False,
) -> int:
    """Coerce a value holding **cents** to an int; invalid input becomes 0."""
    cents = to_int_cents_or_none(
        value,
        allow_negative=allow_negative,
        coerce_empty_string_to_zero=coerce_empty_string_to_zero,
    )
    return 0 if cents is None else cents


def usd_to_cents(value, allow_negative: bool = False) -> int:
    """Parse a USD amount ("$1,234.50", "19.99", 12.5) into integer cents.

    Uses digit arithmetic only, so two-decimal inputs are exact. The third
    decimal digit rounds half-up; further digits are ignored. Negative amounts
    are clamped to 0 unless ``allow_negative``.

    Raises:
        InvalidAmount: no digits, more than one decimal point, stray
            characters, non-finite numbers or booleans.
    """
    if isinstance(value, bool):
        raise InvalidAmount(value)

    if isinstance(value, str):
        text = _WHITESPACE.sub("", value)
    elif isinstance(value, int):
        text = str(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidAmount(value)
        text = format(Decimal(repr(value)), "f")
    elif isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAmount(value)
        text = format(value, "f")
    else:
        raise InvalidAmount(value)

    match = _USD_PATTERN.match(text)
    if match is None:
        raise InvalidAmount(value)

    whole = (match.group("whole") or "").replace(",", "")
    frac = match.group("frac") or ""
    if not whole and not frac:
        raise InvalidAmount(value, reason="Amount has no digits")

    cents = int(whole or "0") * 100 + int(frac[:2].ljust(2, "0"))
    if len(frac) > 2 and frac[2] >= "5":
        cents += 1

    if match.group("sign") or match.group("dollar_sign"):
        return -cents if allow_negative else 0
    return cents


def sum_cents(values: Iterable) -> int:
    """Sum cent values, counting anything that is not a finite number as 0."""
    total = 0
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            total += value
        elif isinstance(value, float) and math.isfinite(value):
            total += math.trunc(value)
    return total
