"""Decimal arithmetic for expense amounts.

Monetary values are stored as decimal strings ("12.50") and never go through
float. Blank or unparseable sub-amounts count as zero, matching how the entry
form treats an empty field.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from travel_ledger.utils.constants import MEAL_FIELDS, MILEAGE_RATE

_CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Parse a stored amount, treating None / "" / garbage as zero."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def format_amount(value) -> str:
    """Render an amount as a two-place decimal string."""
    return str(quantize(to_decimal(value)))


def normalize_amount(value) -> str | None:
    """Canonical storage form of an optional sub-amount (None stays None)."""
    if value is None or value == "":
        return None
    return format_amount(value)


def mileage_value(mileage) -> str:
    """Monetary value of a distance in kilometers at MILEAGE_RATE."""
    km = to_decimal(mileage)
    return str(quantize(km * MILEAGE_RATE))


def meal_total(breakfast=None, lunch=None, dinner=None) -> str:
    """Legacy combined meal amount (breakfast + lunch + dinner)."""
    total = to_decimal(breakfast) + to_decimal(lunch) + to_decimal(dinner)
    return str(quantize(total))


def expense_total(amounts: dict, mileage=0) -> str:
    """Sum of every sub-amount plus the mileage value, two places."""
    total = sum(
        (to_decimal(amounts.get(name)) for name in amounts),
        Decimal("0"),
    )
    total += to_decimal(mileage_value(mileage))
    return str(quantize(total))


def meal_total_from(amounts: dict) -> str:
    return meal_total(*(amounts.get(name) for name in MEAL_FIELDS))
