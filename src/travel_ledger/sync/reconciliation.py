"""ReconciliationService — bring the local store in line with the remote.

Two strategies:

* light (``sync_trips_from_server``): upsert every remote trip by its remote
  id. Additive only; local trips the server does not know survive.
* full (``verify_and_fix_database``): mirror the remote data set for the
  identity. Everything is fetched before anything local is touched, and the
  wipe + repopulate runs in a single local transaction, so an interrupted
  run leaves the previous contents in place. Records with unpushed local
  changes are carried across the wipe instead of being lost.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional

from travel_ledger.database.local_store import StoreTransaction
from travel_ledger.database.models import Expense, Trip
from travel_ledger.database.repository import Repository, evict_local_record
from travel_ledger.errors import RemoteError, StoreError
from travel_ledger.remote.client import RemoteClient
from travel_ledger.sync.conflict import (
    CONFLICT,
    KEEP_LOCAL,
    TAKE_REMOTE,
    ConflictPolicy,
    LastWriteWins,
)
from travel_ledger.utils.constants import (
    EXPENSES_COLLECTION,
    IDENTITY_COLLECTION,
    IDENTITY_KEY,
    SYNC_CONFLICT,
    SYNC_SYNCED,
    TRIPS_COLLECTION,
)

logger = logging.getLogger(__name__)

TRIPS_CHANGED = "trips_changed"
EXPENSES_CHANGED = "expenses_changed"

LIGHT = "light"
FULL = "full"


@dataclass
class ReconciliationResult:
    success: bool
    strategy: str
    trips: int = 0
    expenses: int = 0
    preserved: int = 0
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


class ReconciliationService:
    """Detects and repairs drift between local and remote for one identity."""

    def __init__(
        self,
        repo: Repository,
        remote: RemoteClient,
        identity_value: str,
        sync_engine=None,
        conflict_policy: Optional[ConflictPolicy] = None,
    ):
        self.repo = repo
        self.remote = remote
        self.identity_value = identity_value
        self.sync_engine = sync_engine
        self.conflict_policy = conflict_policy or LastWriteWins()
        self._listeners: list[Callable[[str], None]] = []

    # ── Change notifications ────────────────────────────────────

    def subscribe(self, callback: Callable[[str], None]):
        """Register a callback receiving TRIPS_CHANGED / EXPENSES_CHANGED."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[str], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, event: str):
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Listener {callback!r} failed on {event}: {e}")

    # ── Light reconciliation ────────────────────────────────────

    def sync_trips_from_server(self) -> ReconciliationResult:
        """Upsert the identity's remote trips into the local store."""
        try:
            remote_trips = self.remote.fetch_trips_by_identity(self.identity_value)
        except RemoteError as e:
            logger.warning(f"Light sync aborted, could not fetch trips: {e}")
            return ReconciliationResult(False, LIGHT, error=str(e))

        logger.info(f"Syncing {len(remote_trips)} remote trip(s) into local store")
        try:
            with self.repo.store.transaction() as tx:
                for trip in remote_trips:
                    self._upsert(tx, TRIPS_COLLECTION, Trip, trip)
        except (StoreError, sqlite3.Error) as e:
            logger.error(f"Light sync failed writing locally: {e}")
            return ReconciliationResult(False, LIGHT, error=str(e))

        self._notify(TRIPS_CHANGED)
        return ReconciliationResult(True, LIGHT, trips=len(remote_trips))

    def sync_expenses_from_server(self, trip_id: int) -> ReconciliationResult:
        """Upsert a trip's remote expenses; used after opening a trip."""
        trip = self.repo.get_trip(trip_id)
        if trip is None or trip.is_local_only:
            return ReconciliationResult(True, LIGHT)
        try:
            remote_expenses = self.remote.fetch_expenses_by_trip(trip.remote_id)
        except RemoteError as e:
            logger.warning(f"Could not fetch expenses of trip {trip_id}: {e}")
            return ReconciliationResult(False, LIGHT, error=str(e))

        try:
            with self.repo.store.transaction() as tx:
                for expense in remote_expenses:
                    expense.trip_id = trip.id
                    self._upsert(tx, EXPENSES_COLLECTION, Expense, expense)
        except (StoreError, sqlite3.Error) as e:
            logger.error(f"Expense sync failed writing locally: {e}")
            return ReconciliationResult(False, LIGHT, error=str(e))

        self._notify(EXPENSES_CHANGED)
        return ReconciliationResult(True, LIGHT, expenses=len(remote_expenses))

    def _upsert(self, tx: StoreTransaction, collection: str, model, remote):
        """Write one remote record under its remote id, per the policy."""
        if remote.remote_id is None:
            return
        evict_local_record(tx, collection, remote.remote_id)
        row = tx.get(collection, remote.remote_id)
        local = model.from_row(row) if row else None
        resolution = self.conflict_policy.resolve(local, remote)
        if resolution == TAKE_REMOTE:
            remote.id = remote.remote_id
            tx.put(collection, remote.to_row())
        elif resolution == CONFLICT:
            local.sync_status = SYNC_CONFLICT
            tx.put(collection, local.to_row())

    # ── Full reconciliation ─────────────────────────────────────

    def check_consistency(self) -> list[int]:
        """Remote trip ids of this identity that are missing locally."""
        remote_trips = self.remote.fetch_trips_by_identity(self.identity_value)
        local_ids = {
            t.remote_id for t in self.repo.get_trips_by_identity(self.identity_value)
        }
        return [t.remote_id for t in remote_trips if t.remote_id not in local_ids]

    def verify_and_fix_database(self) -> ReconciliationResult:
        """Make the local store an exact mirror of the remote for the identity.

        Trips and expenses of other identities are dropped. On failure the
        light strategy runs as a best-effort recovery and its outcome is
        reported.
        """
        logger.info(f"Full reconciliation for identity {self.identity_value}")
        try:
            if self.sync_engine is not None:
                self.sync_engine.push_pending()
            remote_trips = self.remote.fetch_trips_by_identity(self.identity_value)
            remote_expenses = {
                trip.remote_id: self.remote.fetch_expenses_by_trip(trip.remote_id)
                for trip in remote_trips
            }
            preserved = self._replace_local(remote_trips, remote_expenses)
        except (RemoteError, StoreError, sqlite3.Error) as e:
            logger.error(f"Full reconciliation failed, falling back to light sync: {e}")
            fallback = self.sync_trips_from_server()
            fallback.error = str(e)
            return fallback

        expense_count = sum(len(v) for v in remote_expenses.values())
        logger.info(
            f"Local store rebuilt: {len(remote_trips)} trip(s), "
            f"{expense_count} expense(s), {preserved} unpushed record(s) kept"
        )
        self._notify(TRIPS_CHANGED)
        return ReconciliationResult(
            True, FULL,
            trips=len(remote_trips),
            expenses=expense_count,
            preserved=preserved,
        )

    def _replace_local(self, remote_trips: list[Trip],
                       remote_expenses: dict[int, list[Expense]]) -> int:
        """Wipe trips/expenses and repopulate from remote in one transaction.

        Returns how many unpushed local records were carried over.
        """
        with self.repo.store.transaction() as tx:
            unpushed_trips = [
                Trip.from_row(r) for r in tx.get_all(TRIPS_COLLECTION)
                if r["sync_status"] != SYNC_SYNCED
            ]
            unpushed_expenses = [
                Expense.from_row(r) for r in tx.get_all(EXPENSES_COLLECTION)
                if r["sync_status"] != SYNC_SYNCED
            ]

            tx.clear(EXPENSES_COLLECTION)
            tx.clear(TRIPS_COLLECTION)
            tx.put(IDENTITY_COLLECTION, {
                "id": IDENTITY_KEY, "identity_value": self.identity_value,
            })

            for trip in remote_trips:
                trip.id = trip.remote_id
                tx.put(TRIPS_COLLECTION, trip.to_row())
                for expense in remote_expenses.get(trip.remote_id, []):
                    expense.id = expense.remote_id
                    expense.trip_id = trip.id
                    tx.put(EXPENSES_COLLECTION, expense.to_row())

            trip_keys = {}
            preserved = 0
            for trip in unpushed_trips:
                old_key = trip.id
                key = self._carry_over(tx, TRIPS_COLLECTION, Trip, trip)
                if key is not None:
                    trip_keys[old_key] = key
                    preserved += 1
            for expense in unpushed_expenses:
                old_trip_id = expense.trip_id
                expense.trip_id = trip_keys.get(old_trip_id, old_trip_id)
                if tx.get(TRIPS_COLLECTION, expense.trip_id) is None:
                    logger.warning(
                        f"Dropping unpushed expense {expense.id}: "
                        f"trip {old_trip_id} no longer exists"
                    )
                    continue
                if self._carry_over(tx, EXPENSES_COLLECTION, Expense, expense) is not None:
                    preserved += 1
        return preserved

    def _carry_over(self, tx: StoreTransaction, collection: str, model, record):
        """Re-insert an unpushed record after the wipe; returns its new key."""
        if record.is_local_only:
            if tx.get(collection, record.id) is not None:
                record.id = None  # key now taken by a remote record
            return tx.put(collection, record.to_row())

        row = tx.get(collection, record.remote_id)
        if row is None:
            # Deleted remotely while edited locally
            record.sync_status = SYNC_CONFLICT
            return tx.put(collection, record.to_row())
        if self.conflict_policy.resolve(record, model.from_row(row)) == KEEP_LOCAL:
            return tx.put(collection, record.to_row())
        return None
