"""
Money Helpers

Amounts are Decimal and quantized to the currency's minor unit with
ROUND_HALF_UP. Currencies without a listed exponent use 2 places.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from teamledger.exceptions import ValidationError


# ISO 4217 exponents that differ from the default of 2
MINOR_UNITS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "CLP": 0,
    "ISK": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
}


def minor_units(currency: str) -> int:
    return MINOR_UNITS.get(currency.upper(), 2)


def quantize_money(amount: Decimal, currency: str) -> Decimal:
    """Round an amount to the minor unit of its currency."""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    try:
        return amount.quantize(exponent, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(
            "Amount cannot be represented in its currency",
            {"amount": str(amount), "currency": currency},
        )


def normalize_money(
    amount: Any,
    currency: str,
    supported: frozenset[str],
) -> tuple[Decimal, str]:
    """
    Validate and normalize an (amount, currency) pair.

    Returns:
        (quantized amount, upper-case currency)

    Raises:
        ValidationError: If the currency is unsupported or the amount
            is not a finite number
    """
    code = (currency or "").strip().upper()
    if code not in supported:
        raise ValidationError(
            f"Unsupported currency: {currency!r}",
            {"currency": currency, "supported": sorted(supported)},
        )

    if not isinstance(amount, Decimal):
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError("Amount is not a number", {"amount": repr(amount)})
    if not amount.is_finite():
        raise ValidationError("Amount must be finite", {"amount": str(amount)})

    return quantize_money(amount, code), code
