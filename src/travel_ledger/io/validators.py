"""Validation rules for identities, trips and expenses.

Each validator returns a list of error strings; an empty list means the
input may be written.
"""

from travel_ledger.database.models import Expense, Trip
from travel_ledger.utils.amounts import to_decimal
from travel_ledger.utils.constants import AMOUNT_FIELDS, IDENTITY_DIGITS
from travel_ledger.utils.formatters import identity_digits


def validate_identity(value: str | None) -> list[str]:
    """Identity strings are 11 digits; punctuation is ignored."""
    digits = identity_digits(value)
    if not digits:
        return ["identity is required"]
    if len(digits) != IDENTITY_DIGITS:
        return [f"identity must have {IDENTITY_DIGITS} digits"]
    return []


def validate_trip(trip: Trip) -> list[str]:
    errors = []
    if not (trip.name or "").strip():
        errors.append("name is required")
    if trip.start_date and trip.end_date and trip.end_date < trip.start_date:
        errors.append("end date cannot be before start date")
    return errors


def _whole_km(value) -> int | None:
    """Mileage as an int, or None when it is not a whole number."""
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        return int(value or 0)
    except (ValueError, TypeError, OverflowError):
        return None


def validate_expense(expense: Expense) -> list[str]:
    errors = []
    if expense.trip_id is None:
        errors.append("trip is required")
    if expense.date is None:
        errors.append("date is required")
    if not (expense.destination or "").strip():
        errors.append("destination is required")
    if not (expense.justification or "").strip():
        errors.append("justification is required")
    if not (expense.receipt or "").strip():
        errors.append("receipt image is required")
    elif not expense.receipt.startswith("data:"):
        errors.append("receipt must be a data URI")

    mileage = _whole_km(expense.mileage)
    if mileage is None:
        errors.append("mileage must be an integer")
    elif mileage < 0:
        errors.append("mileage cannot be negative")

    for name in AMOUNT_FIELDS:
        if to_decimal(getattr(expense, name)) < 0:
            errors.append(f"{name} cannot be negative")
    return errors
