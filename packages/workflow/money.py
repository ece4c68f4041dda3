from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

CENTS = Decimal("0.01")
# Largest value a Numeric(12, 2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")


class InvalidAmountError(ValueError):
    """Raised when a monetary amount is missing, non-numeric, negative or too large."""


def parse_amount(value: Any, *, field_name: str = "price") -> Decimal:
    """Validate a monetary amount. Zero is valid, negative amounts are not."""

    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"{field_name} is required and must be numeric")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidAmountError(f"{field_name} must be numeric") from None
    else:
        raise InvalidAmountError(f"{field_name} must be numeric")
    if not amount.is_finite():
        raise InvalidAmountError(f"{field_name} must be a finite amount")
    if amount < 0:
        raise InvalidAmountError(f"{field_name} must not be negative")
    try:
        amount = amount.quantize(CENTS)
    except InvalidOperation:
        raise InvalidAmountError(f"{field_name} is too large") from None
    if amount > MAX_AMOUNT:
        raise InvalidAmountError(f"{field_name} must not exceed {MAX_AMOUNT}")
    return amount
