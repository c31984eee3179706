"""Repository layer — typed access to identity, trips and expenses."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from travel_ledger.database.local_store import LocalStore, StoreTransaction
from travel_ledger.database.models import Expense, Trip, TripSummary, utcnow
from travel_ledger.utils.amounts import quantize, to_decimal
from travel_ledger.utils.constants import (
    EXPENSES_COLLECTION,
    IDENTITY_COLLECTION,
    IDENTITY_KEY,
    MEAL_FIELDS,
    SYNC_PENDING_PUSH,
    SYNC_SYNCED,
    TRIPS_COLLECTION,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _newest_trips_first(trips: list[Trip]) -> list[Trip]:
    return sorted(trips, key=lambda t: t.created_at or _EPOCH, reverse=True)


def _newest_expenses_first(expenses: list[Expense]) -> list[Expense]:
    return sorted(
        expenses,
        key=lambda e: (e.date.isoformat() if e.date else "", e.id or 0),
        reverse=True,
    )


class Repository:
    """Provides all local store operations for the application."""

    def __init__(self, store: LocalStore):
        self.store = store

    # ── Identity ────────────────────────────────────────────────

    def get_identity(self) -> Optional[str]:
        row = self.store.get(IDENTITY_COLLECTION, IDENTITY_KEY)
        return row["identity_value"] if row else None

    def save_identity(self, identity_value: str):
        """Create or overwrite the singleton identity record."""
        self.store.put(IDENTITY_COLLECTION, {
            "id": IDENTITY_KEY,
            "identity_value": identity_value,
            "updated_at": utcnow().isoformat(),
        })

    # ── Trips ───────────────────────────────────────────────────

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        row = self.store.get(TRIPS_COLLECTION, trip_id)
        return Trip.from_row(row) if row else None

    def get_all_trips(self) -> list[Trip]:
        rows = self.store.get_all(TRIPS_COLLECTION)
        return _newest_trips_first([Trip.from_row(r) for r in rows])

    def get_trips_by_identity(self, identity_value: str) -> list[Trip]:
        rows = self.store.get_all_by_index(
            TRIPS_COLLECTION, "identity_value", identity_value
        )
        return _newest_trips_first([Trip.from_row(r) for r in rows])

    def put_trip(self, trip: Trip) -> int:
        """Write a trip; assigns a local key when it has none."""
        trip.id = self.store.put(TRIPS_COLLECTION, trip.to_row())
        return trip.id

    def delete_trip_cascade(self, trip_id: int) -> int:
        """Delete a trip and its expenses in one transaction.

        Returns the number of expenses removed.
        """
        with self.store.transaction() as tx:
            removed = tx.delete_by_index(EXPENSES_COLLECTION, "trip_id", trip_id)
            tx.delete(TRIPS_COLLECTION, trip_id)
        return removed

    def get_pending_trips(self) -> list[Trip]:
        rows = self.store.get_all(TRIPS_COLLECTION)
        trips = [Trip.from_row(r) for r in rows]
        return [t for t in trips if t.is_pending]

    # ── Expenses ────────────────────────────────────────────────

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        row = self.store.get(EXPENSES_COLLECTION, expense_id)
        return Expense.from_row(row) if row else None

    def get_expenses_by_trip(self, trip_id: int) -> list[Expense]:
        rows = self.store.get_all_by_index(EXPENSES_COLLECTION, "trip_id", trip_id)
        return _newest_expenses_first([Expense.from_row(r) for r in rows])

    def put_expense(self, expense: Expense) -> int:
        expense.id = self.store.put(EXPENSES_COLLECTION, expense.to_row())
        return expense.id

    def delete_expense(self, expense_id: int) -> bool:
        return self.store.delete(EXPENSES_COLLECTION, expense_id)

    def get_pending_expenses(self) -> list[Expense]:
        rows = self.store.get_all(EXPENSES_COLLECTION)
        expenses = [Expense.from_row(r) for r in rows]
        return [e for e in expenses if e.is_pending]

    def pending_count(self) -> int:
        return len(self.get_pending_trips()) + len(self.get_pending_expenses())

    # ── Remote identifier adoption ──────────────────────────────

    def adopt_trip_remote_id(self, trip: Trip, remote_id: int) -> Trip:
        """Re-key a trip to its remote id and mark it synced.

        Expenses follow the trip to its new key. Runs in one transaction so
        no expense is ever left pointing at a key that no longer exists.
        """
        with self.store.transaction() as tx:
            old_id = trip.id
            if old_id != remote_id:
                evict_local_record(tx, TRIPS_COLLECTION, remote_id)
            trip.id = remote_id
            trip.remote_id = remote_id
            trip.sync_status = SYNC_SYNCED
            tx.put(TRIPS_COLLECTION, trip.to_row())
            if old_id is not None and old_id != remote_id:
                _move_children(tx, old_id, remote_id)
                tx.delete(TRIPS_COLLECTION, old_id)
        return trip

    def adopt_expense_remote_id(self, expense: Expense, remote_id: int) -> Expense:
        with self.store.transaction() as tx:
            old_id = expense.id
            if old_id != remote_id:
                evict_local_record(tx, EXPENSES_COLLECTION, remote_id)
            expense.id = remote_id
            expense.remote_id = remote_id
            expense.sync_status = SYNC_SYNCED
            tx.put(EXPENSES_COLLECTION, expense.to_row())
            if old_id is not None and old_id != remote_id:
                tx.delete(EXPENSES_COLLECTION, old_id)
        return expense

    # ── Summaries ───────────────────────────────────────────────

    def calculate_trip_summary(self, trip_id: int) -> TripSummary:
        expenses = self.get_expenses_by_trip(trip_id)
        meals = transport = parking = mileage = other = total = Decimal("0")
        for e in expenses:
            if e.meal_value is not None:
                meals += to_decimal(e.meal_value)
            else:
                meals += sum(
                    (to_decimal(getattr(e, f)) for f in MEAL_FIELDS), Decimal("0")
                )
            transport += to_decimal(e.transport_value)
            parking += to_decimal(e.parking_value)
            mileage += to_decimal(e.mileage_value)
            other += to_decimal(e.other_value)
            total += to_decimal(e.total_value)
        return TripSummary(
            meals=str(quantize(meals)),
            transport=str(quantize(transport)),
            parking=str(quantize(parking)),
            mileage=str(quantize(mileage)),
            other=str(quantize(other)),
            total=str(quantize(total)),
            expense_count=len(expenses),
        )


def _move_children(tx: StoreTransaction, old_trip_id: int, new_trip_id: int):
    for row in tx.get_all_by_index(EXPENSES_COLLECTION, "trip_id", old_trip_id):
        row["trip_id"] = new_trip_id
        tx.put(EXPENSES_COLLECTION, row)


def evict_local_record(tx: StoreTransaction, collection: str, key: int):
    """Move a local-only record off ``key`` so a remote record can take it.

    Local auto-assigned keys and remote ids share one key space. A record
    that never reached the remote is moved to a fresh local key (its expenses
    follow); a record already carrying that remote id is left for the caller
    to overwrite.
    """
    row = tx.get(collection, key)
    if row is None or row.get("remote_id") is not None:
        return
    moved = dict(row)
    del moved["id"]
    moved["sync_status"] = SYNC_PENDING_PUSH
    new_key = tx.put(collection, moved)
    if collection == TRIPS_COLLECTION:
        _move_children(tx, key, new_key)
    tx.delete(collection, key)
