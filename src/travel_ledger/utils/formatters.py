"""Formatting utilities for display values."""

import re
from datetime import date

from travel_ledger.utils.amounts import quantize, to_decimal
from travel_ledger.utils.constants import IDENTITY_DIGITS


def format_currency(value) -> str:
    """Format an amount as Brazilian reais, e.g. ``R$ 1.234,56``."""
    amount = quantize(to_decimal(value))
    sign = "-" if amount < 0 else ""
    text = f"{abs(amount):,.2f}"
    # Swap separators: 1,234.56 -> 1.234,56
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"


def identity_digits(value: str | None) -> str:
    """Strip punctuation from an identity string."""
    return re.sub(r"\D", "", value or "")


def format_identity(value: str | None) -> str:
    """Format an identity string as ``XXX.XXX.XXX-XX``.

    Partial input is formatted as far as it goes; anything past eleven
    digits is dropped.
    """
    digits = identity_digits(value)[:IDENTITY_DIGITS]
    parts = [digits[0:3], digits[3:6], digits[6:9]]
    head = ".".join(p for p in parts if p)
    tail = digits[9:11]
    return f"{head}-{tail}" if tail else head


def format_date(value: date | None) -> str:
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")


def format_date_range(start: date | None, end: date | None) -> str:
    """Describe a trip's dates: a range, a single day, or an end bound."""
    if start is None and end is None:
        return ""
    if end is None:
        return format_date(start)
    if start is None:
        return f"até {format_date(end)}"
    return f"{format_date(start)} - {format_date(end)}"
