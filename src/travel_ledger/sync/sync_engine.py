"""SyncEngine — dual writes of trips and expenses to remote and local stores.

Every write tries the remote first. On success the remote id becomes the
record's local key and the record is marked ``synced``; on any remote failure
the write still completes locally and the record is marked ``pending_push``
so ``push_pending`` can deliver it later. Deletes always happen locally,
whatever the remote says.

Concurrent writes to the same record are not serialized: the last write to
reach either store wins. Pushes of pending edits consult a ConflictPolicy.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from travel_ledger.database.models import (
    Expense,
    PushSummary,
    Trip,
    parse_date,
    utcnow,
)
from travel_ledger.database.repository import Repository
from travel_ledger.errors import (
    RecordNotFound,
    RemoteError,
    RemoteRequestFailed,
    RemoteUnreachable,
    ValidationFailed,
)
from travel_ledger.io.validators import validate_expense, validate_trip
from travel_ledger.remote.client import RemoteClient
from travel_ledger.sync.conflict import (
    CONFLICT,
    KEEP_LOCAL,
    ConflictPolicy,
    LastWriteWins,
)
from travel_ledger.utils.constants import (
    AMOUNT_FIELDS,
    SYNC_CONFLICT,
    SYNC_PENDING_PUSH,
    SYNC_SYNCED,
)

logger = logging.getLogger(__name__)

TRIP_EDITABLE_FIELDS = {"name", "start_date", "end_date", "identity_value"}
EXPENSE_EDITABLE_FIELDS = {
    "trip_id", "date", "destination", "justification", "mileage",
    "other_description", "receipt", *AMOUNT_FIELDS,
}


@dataclass
class WriteResult:
    """Outcome of a dual write.

    ``id`` is the key the record can be read back with. ``synced`` is False
    when the write only reached the local store; the data is safe but the
    server has not seen it yet.
    """

    id: int
    synced: bool
    error: Optional[str] = None

    @property
    def pending(self) -> bool:
        return not self.synced


def _is_not_found(error: RemoteError) -> bool:
    return isinstance(error, RemoteRequestFailed) and error.status == 404


def _parsed_date(value, name: str):
    try:
        return parse_date(value)
    except (ValueError, TypeError) as e:
        raise ValidationFailed([f"{name} is not a valid date"]) from e


def _check_fields(changes: dict, allowed: set[str]):
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationFailed(
            [f"{name} cannot be changed" for name in sorted(unknown)]
        )


class SyncEngine:
    """Executes create/update/delete intents against both stores."""

    def __init__(
        self,
        repo: Repository,
        remote: RemoteClient,
        identity_value: str = "",
        conflict_policy: Optional[ConflictPolicy] = None,
    ):
        self.repo = repo
        self.remote = remote
        self.identity_value = identity_value
        self.conflict_policy = conflict_policy or LastWriteWins()

    # ── Reads ───────────────────────────────────────────────────

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        return self.repo.get_trip(trip_id)

    def get_trips(self) -> list[Trip]:
        return self.repo.get_trips_by_identity(self.identity_value)

    def get_expenses(self, trip_id: int) -> list[Expense]:
        return self.repo.get_expenses_by_trip(trip_id)

    def pending_count(self) -> int:
        return self.repo.pending_count()

    # ── Normalization ───────────────────────────────────────────

    def _normalize_trip(self, trip: Trip) -> Trip:
        trip = replace(trip)
        trip.name = (trip.name or "").strip()
        trip.start_date = _parsed_date(trip.start_date, "start_date")
        trip.end_date = _parsed_date(trip.end_date, "end_date")
        trip.identity_value = trip.identity_value or self.identity_value
        return trip

    def _normalize_expense(self, expense: Expense) -> Expense:
        expense = replace(expense)
        expense.date = _parsed_date(expense.date, "date")
        expense.destination = (expense.destination or "").strip()
        expense.justification = (expense.justification or "").strip()
        expense.other_description = expense.other_description or ""
        return expense

    def _validated_trip(self, trip: Trip) -> Trip:
        errors = validate_trip(trip)
        if errors:
            raise ValidationFailed(errors)
        return trip

    def _validated_expense(self, expense: Expense) -> Expense:
        errors = validate_expense(expense)
        if errors:
            raise ValidationFailed(errors)
        return expense.recompute()

    # ── Trips ───────────────────────────────────────────────────

    def save_trip(self, trip: Trip) -> WriteResult:
        """Create a trip remotely and mirror it locally.

        Returns the remote id when the server accepted it, otherwise the
        local id of a ``pending_push`` record.
        """
        trip = self._validated_trip(self._normalize_trip(trip))
        now = utcnow()
        try:
            created = self.remote.create_trip(trip)
        except RemoteError as e:
            logger.warning(f"Saving trip {trip.name!r} locally only: {e}")
            trip.created_at = trip.created_at or now
            trip.updated_at = now
            trip.remote_id = None
            trip.sync_status = SYNC_PENDING_PUSH
            self.repo.put_trip(trip)
            return WriteResult(trip.id, False, str(e))

        trip.created_at = created.created_at or now
        trip.updated_at = created.updated_at or now
        self.repo.adopt_trip_remote_id(trip, created.remote_id)
        logger.info(f"Trip {trip.name!r} saved with remote id {created.remote_id}")
        return WriteResult(created.remote_id, True)

    def update_trip(self, trip_id: int, changes: dict) -> WriteResult:
        """Apply ``changes`` to a trip in both stores.

        A trip that never reached the server is only updated locally. A trip
        missing locally is updated remotely if the server knows it; if the
        server cannot be reached either, RecordNotFound is raised.
        """
        _check_fields(changes, TRIP_EDITABLE_FIELDS)
        existing = self.repo.get_trip(trip_id)
        if existing is None:
            return self._update_remote_only_trip(trip_id, changes)

        trip = self._validated_trip(
            self._normalize_trip(replace(existing, **changes))
        )
        trip.updated_at = utcnow()

        if trip.is_local_only:
            trip.sync_status = SYNC_PENDING_PUSH
            self.repo.put_trip(trip)
            return WriteResult(trip.id, False, "trip has not reached the server yet")

        try:
            self.remote.update_trip(trip.remote_id, trip)
        except RemoteError as e:
            logger.warning(f"Updating trip {trip_id} locally only: {e}")
            trip.sync_status = SYNC_CONFLICT if _is_not_found(e) else SYNC_PENDING_PUSH
            self.repo.put_trip(trip)
            return WriteResult(trip.id, False, str(e))

        trip.sync_status = SYNC_SYNCED
        self.repo.put_trip(trip)
        return WriteResult(trip.id, True)

    def _update_remote_only_trip(self, trip_id: int, changes: dict) -> WriteResult:
        partial = self._normalize_trip(Trip(id=trip_id, **changes))
        errors = validate_trip(partial) if "name" in changes else [
            e for e in validate_trip(partial) if e != "name is required"
        ]
        if errors:
            raise ValidationFailed(errors)
        try:
            self.remote.update_trip(trip_id, partial, only=set(changes))
        except RemoteError as e:
            logger.warning(f"Trip {trip_id} not found locally and remote failed: {e}")
            raise RecordNotFound("trips", trip_id) from e
        return WriteResult(trip_id, True)

    def delete_trip(self, trip_id: int) -> WriteResult:
        """Delete a trip and all its expenses, remotely then locally.

        The local cascade always runs, in one transaction, even when the
        remote delete failed.
        """
        existing = self.repo.get_trip(trip_id)
        synced, error = True, None
        if existing is None or not existing.is_local_only:
            remote_id = existing.remote_id if existing else trip_id
            try:
                self._delete_remote_trip(remote_id)
            except RemoteError as e:
                logger.warning(f"Deleting trip {trip_id} locally only: {e}")
                synced, error = False, str(e)

        removed = self.repo.delete_trip_cascade(trip_id)
        logger.info(f"Deleted trip {trip_id} and {removed} expense(s) locally")
        return WriteResult(trip_id, synced, error)

    def _delete_remote_trip(self, remote_id: int):
        try:
            remote_expenses = self.remote.fetch_expenses_by_trip(remote_id)
        except RemoteRequestFailed as e:
            if not _is_not_found(e):
                raise
            remote_expenses = []
        for expense in remote_expenses:
            self._delete_remote(self.remote.delete_expense, expense.remote_id)
        self._delete_remote(self.remote.delete_trip, remote_id)

    def _delete_remote(self, delete, remote_id: int):
        """Remote delete where "already gone" counts as success."""
        try:
            delete(remote_id)
        except RemoteRequestFailed as e:
            if not _is_not_found(e):
                raise

    # ── Expenses ────────────────────────────────────────────────

    def save_expense(self, expense: Expense) -> WriteResult:
        """Create an expense under its trip in both stores."""
        expense = self._validated_expense(self._normalize_expense(expense))
        trip = self.repo.get_trip(expense.trip_id)
        if trip is None:
            raise RecordNotFound("trips", expense.trip_id)

        now = utcnow()
        if trip.is_local_only:
            return self._save_expense_locally(
                expense, now, "trip has not reached the server yet"
            )
        try:
            created = self.remote.create_expense(trip.remote_id, expense)
        except RemoteError as e:
            logger.warning(f"Saving expense for trip {trip.id} locally only: {e}")
            return self._save_expense_locally(expense, now, str(e))

        expense.created_at = created.created_at or now
        expense.updated_at = created.updated_at or now
        self.repo.adopt_expense_remote_id(expense, created.remote_id)
        return WriteResult(created.remote_id, True)

    def _save_expense_locally(self, expense: Expense, now, reason: str) -> WriteResult:
        expense.created_at = expense.created_at or now
        expense.updated_at = now
        expense.remote_id = None
        expense.sync_status = SYNC_PENDING_PUSH
        self.repo.put_expense(expense)
        return WriteResult(expense.id, False, reason)

    def update_expense(self, expense_id: int, changes: dict) -> WriteResult:
        _check_fields(changes, EXPENSE_EDITABLE_FIELDS)
        existing = self.repo.get_expense(expense_id)
        if existing is None:
            return self._update_remote_only_expense(expense_id, changes)

        expense = self._validated_expense(
            self._normalize_expense(replace(existing, **changes))
        )
        expense.updated_at = utcnow()
        trip = self.repo.get_trip(expense.trip_id)
        if trip is None:
            raise RecordNotFound("trips", expense.trip_id)

        if expense.is_local_only or trip.is_local_only:
            expense.sync_status = SYNC_PENDING_PUSH
            self.repo.put_expense(expense)
            return WriteResult(expense.id, False, "expense has not reached the server yet")

        try:
            self.remote.update_expense(expense.remote_id, expense)
        except RemoteError as e:
            logger.warning(f"Updating expense {expense_id} locally only: {e}")
            expense.sync_status = (
                SYNC_CONFLICT if _is_not_found(e) else SYNC_PENDING_PUSH
            )
            self.repo.put_expense(expense)
            return WriteResult(expense.id, False, str(e))

        expense.sync_status = SYNC_SYNCED
        self.repo.put_expense(expense)
        return WriteResult(expense.id, True)

    def _update_remote_only_expense(self, expense_id: int, changes: dict) -> WriteResult:
        partial = self._normalize_expense(Expense(id=expense_id, **changes))
        try:
            self.remote.update_expense(expense_id, partial, only=set(changes))
        except RemoteError as e:
            raise RecordNotFound("expenses", expense_id) from e
        return WriteResult(expense_id, True)

    def delete_expense(self, expense_id: int) -> WriteResult:
        existing = self.repo.get_expense(expense_id)
        synced, error = True, None
        if existing is None or not existing.is_local_only:
            remote_id = existing.remote_id if existing else expense_id
            try:
                self._delete_remote(self.remote.delete_expense, remote_id)
            except RemoteError as e:
                logger.warning(f"Deleting expense {expense_id} locally only: {e}")
                synced, error = False, str(e)
        self.repo.delete_expense(expense_id)
        return WriteResult(expense_id, synced, error)

    # ── Pending pushes ──────────────────────────────────────────

    def push_pending(self) -> PushSummary:
        """Deliver every ``pending_push`` record to the remote.

        Trips go first so their expenses can be created under the trip's
        remote id. Stops at the first network failure; records that could
        not be pushed stay pending.
        """
        summary = PushSummary()
        try:
            self._push_trips(summary)
            self._push_expenses(summary)
        except RemoteUnreachable as e:
            logger.warning(f"Push interrupted, remote unreachable: {e}")
            summary.errors.append(str(e))
        summary.remaining = self.repo.pending_count()
        if summary.trips_pushed or summary.expenses_pushed:
            logger.info(
                f"Pushed {summary.trips_pushed} trip(s) and "
                f"{summary.expenses_pushed} expense(s); "
                f"{summary.remaining} still pending"
            )
        return summary

    def _push_trips(self, summary: PushSummary):
        pending = sorted(self.repo.get_pending_trips(), key=lambda t: t.id)
        remote_copies = None
        for trip in pending:
            try:
                if trip.is_local_only:
                    created = self.remote.create_trip(trip)
                    trip.created_at = created.created_at or trip.created_at
                    self.repo.adopt_trip_remote_id(trip, created.remote_id)
                    summary.trips_pushed += 1
                    continue

                if remote_copies is None:
                    remote_copies = {
                        t.remote_id: t
                        for t in self.remote.fetch_trips_by_identity(
                            trip.identity_value or self.identity_value
                        )
                    }
                self._push_trip_update(trip, remote_copies.get(trip.remote_id), summary)
            except RemoteRequestFailed as e:
                summary.errors.append(f"trip {trip.id}: {e}")

    def _push_trip_update(self, trip: Trip, remote_copy, summary: PushSummary):
        if remote_copy is None:
            trip.sync_status = SYNC_CONFLICT
            self.repo.put_trip(trip)
            summary.conflicts += 1
            return
        resolution = self.conflict_policy.resolve(trip, remote_copy)
        if resolution == KEEP_LOCAL:
            self.remote.update_trip(trip.remote_id, trip)
            trip.sync_status = SYNC_SYNCED
            self.repo.put_trip(trip)
            summary.trips_pushed += 1
        elif resolution == CONFLICT:
            trip.sync_status = SYNC_CONFLICT
            self.repo.put_trip(trip)
            summary.conflicts += 1
        else:
            remote_copy.id = trip.id
            self.repo.put_trip(remote_copy)

    def _push_expenses(self, summary: PushSummary):
        pending = sorted(self.repo.get_pending_expenses(), key=lambda e: e.id)
        remote_by_trip: dict[int, dict] = {}
        for expense in pending:
            trip = self.repo.get_trip(expense.trip_id)
            if trip is None or trip.is_local_only:
                continue
            try:
                if expense.is_local_only:
                    created = self.remote.create_expense(trip.remote_id, expense)
                    expense.created_at = created.created_at or expense.created_at
                    self.repo.adopt_expense_remote_id(expense, created.remote_id)
                    summary.expenses_pushed += 1
                    continue

                if trip.remote_id not in remote_by_trip:
                    remote_by_trip[trip.remote_id] = {
                        e.remote_id: e
                        for e in self.remote.fetch_expenses_by_trip(trip.remote_id)
                    }
                remote_copy = remote_by_trip[trip.remote_id].get(expense.remote_id)
                self._push_expense_update(expense, remote_copy, summary)
            except RemoteRequestFailed as e:
                summary.errors.append(f"expense {expense.id}: {e}")

    def _push_expense_update(self, expense: Expense, remote_copy, summary: PushSummary):
        if remote_copy is None:
            expense.sync_status = SYNC_CONFLICT
            self.repo.put_expense(expense)
            summary.conflicts += 1
            return
        resolution = self.conflict_policy.resolve(expense, remote_copy)
        if resolution == KEEP_LOCAL:
            self.remote.update_expense(expense.remote_id, expense)
            expense.sync_status = SYNC_SYNCED
            self.repo.put_expense(expense)
            summary.expenses_pushed += 1
        elif resolution == CONFLICT:
            expense.sync_status = SYNC_CONFLICT
            self.repo.put_expense(expense)
            summary.conflicts += 1
        else:
            remote_copy.id = expense.id
            remote_copy.trip_id = expense.trip_id
            self.repo.put_expense(remote_copy)
