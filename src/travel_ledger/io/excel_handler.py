"""Excel (XLSX) export of a trip's expenses."""

import re
from decimal import Decimal
from pathlib import Path

from openpyxl import Workbook

from travel_ledger.config import Config
from travel_ledger.database.models import Trip
from travel_ledger.database.repository import Repository
from travel_ledger.errors import RecordNotFound
from travel_ledger.utils.amounts import to_decimal
from travel_ledger.utils.formatters import format_date

EXPENSE_COLUMNS = [
    "Data",
    "Destino",
    "Justificativa",
    "Café da manhã",
    "Almoço",
    "Jantar",
    "Taxi/uber",
    "Estacio/pedagio",
    "Km",
    "Outros gastos",
    "Descrição outros gastos",
]

# Numeric columns, in sheet order, and the expense attribute feeding each
_AMOUNT_COLUMNS = [
    "breakfast_value",
    "lunch_value",
    "dinner_value",
    "transport_value",
    "parking_value",
    "mileage_value",
    "other_value",
]


def default_export_path(trip: Trip) -> Path:
    """``<export dir>/Despesas_<trip name>.xlsx`` with spaces as underscores."""
    name = re.sub(r"\s+", "_", trip.name.strip()) or f"viagem_{trip.id}"
    return Path(Config.EXPORT_DIRECTORY) / f"Despesas_{name}.xlsx"


def _cell(value):
    """Blank stays blank; anything else becomes a Decimal cell."""
    if value is None or value == "":
        return None
    return to_decimal(value)


def export_trip_excel(repo: Repository, trip_id: int,
                      filepath: str | Path | None = None) -> int:
    """Export a trip's expenses (newest first) plus a TOTAL row.

    Returns the number of expense rows written.
    """
    trip = repo.get_trip(trip_id)
    if trip is None:
        raise RecordNotFound("trips", trip_id)
    expenses = repo.get_expenses_by_trip(trip_id)
    filepath = Path(filepath) if filepath else default_export_path(trip)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws = wb.active
    ws.title = "Despesas"
    ws.append(EXPENSE_COLUMNS)

    totals = {name: Decimal("0") for name in _AMOUNT_COLUMNS}
    for expense in expenses:
        amounts = [_cell(getattr(expense, name)) for name in _AMOUNT_COLUMNS]
        for name, value in zip(_AMOUNT_COLUMNS, amounts):
            if value is not None:
                totals[name] += value
        ws.append([
            format_date(expense.date),
            expense.destination,
            expense.justification,
            *amounts,
            expense.other_description,
        ])

    ws.append(["", "TOTAL", "", *(totals[name] for name in _AMOUNT_COLUMNS), ""])

    # Auto-fit column widths (approximate)
    for col in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 40)

    wb.save(filepath)
    return len(expenses)
