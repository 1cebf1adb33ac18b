from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import InvalidAmountError

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a stored or computed value to a two-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def normalize_amount(value: Any) -> Decimal:
    """Validate a movement amount: finite, positive, at most two decimal places."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmountError("Amount must be a positive number.") from exc

    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError("Amount must be a positive number.")

    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation as exc:
        raise InvalidAmountError("Amount is too large.") from exc
    if quantized != amount:
        raise InvalidAmountError("Amount cannot have more than two decimal places.")
    return quantized
