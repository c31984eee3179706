"""Application entry point — wires the store, remote client and sync layer."""

import argparse
import logging
import sys

from travel_ledger.config import Config
from travel_ledger.database.local_store import LocalStore
from travel_ledger.database.repository import Repository
from travel_ledger.errors import LedgerError, ValidationFailed
from travel_ledger.io.excel_handler import default_export_path, export_trip_excel
from travel_ledger.io.validators import validate_identity
from travel_ledger.remote.client import RemoteClient
from travel_ledger.sync.reconciliation import ReconciliationService
from travel_ledger.sync.recovery import RECREATED, RecoveryManager
from travel_ledger.sync.sync_engine import SyncEngine
from travel_ledger.utils.constants import SYNC_SYNCED
from travel_ledger.utils.formatters import (
    format_currency,
    format_date_range,
    format_identity,
    identity_digits,
)

logger = logging.getLogger(__name__)


class LedgerApp:
    """One application session for a single identity."""

    def __init__(self, store: LocalStore | None = None,
                 remote: RemoteClient | None = None):
        self.store = store or LocalStore(Config.DATABASE_PATH)
        self.remote = remote or RemoteClient()
        self.repo = Repository(self.store)
        self.recovery = RecoveryManager(self.store)
        self.identity_value: str = ""
        self.engine: SyncEngine | None = None
        self.reconciliation: ReconciliationService | None = None
        self._reconciled = False

    def open(self) -> str:
        """Open (and if needed repair) the local store."""
        outcome = self.recovery.open_store()
        if outcome == RECREATED:
            logger.error("Local history was reset; data will be restored from the server")
        return outcome

    def identify(self, identity_value: str):
        """Set the session identity and build the identity-bound services."""
        errors = validate_identity(identity_value)
        if errors:
            raise ValidationFailed(errors)
        self.identity_value = identity_digits(identity_value)
        self.repo.save_identity(self.identity_value)
        Config.update_identity(self.identity_value)
        self.engine = SyncEngine(self.repo, self.remote, self.identity_value)
        self.reconciliation = ReconciliationService(
            self.repo, self.remote, self.identity_value, sync_engine=self.engine
        )

    def _remembered_identity(self) -> str:
        """Identity stored locally, else the one kept in settings.json.

        The settings copy survives a reset of the local store.
        """
        return self.repo.get_identity() or Config.IDENTITY_VALUE

    def resume(self) -> bool:
        """Open the store and restore the last identity without reconciling."""
        self.open()
        identity_value = self._remembered_identity()
        if not identity_value:
            return False
        self.identify(identity_value)
        return True

    def start_session(self, identity_value: str | None = None):
        """Open the store, establish the identity, reconcile once.

        Falls back to the remembered identity when none is given.
        Returns the full reconciliation result, or None without an identity.
        """
        self.open()
        identity_value = identity_value or self._remembered_identity()
        if not identity_value:
            return None
        self.identify(identity_value)
        if self._reconciled:
            return None
        self._reconciled = True
        return self.reconciliation.verify_and_fix_database()

    def close(self):
        self.remote.close()


# ── Command line ────────────────────────────────────────────────


def _cmd_identify(app: LedgerApp, args) -> int:
    app.open()
    app.identify(args.identity)
    print(f"Identity set to {format_identity(app.identity_value)}")
    return 0


def _cmd_trips(app: LedgerApp, args) -> int:
    if not app.resume():
        print("No identity set. Run 'identify' first.")
        return 1
    for trip in app.engine.get_trips():
        summary = app.repo.calculate_trip_summary(trip.id)
        dates = format_date_range(trip.start_date, trip.end_date)
        marker = "" if trip.sync_status == SYNC_SYNCED else f" [{trip.sync_status}]"
        print(f"{trip.id:>6}  {trip.name}  {dates}  "
              f"{format_currency(summary.total)}{marker}")
    return 0


def _cmd_sync(app: LedgerApp, args) -> int:
    if not app.resume():
        print("No identity set. Run 'identify' first.")
        return 1
    light = app.reconciliation.sync_trips_from_server()
    print(f"Synced {light.trips} trip(s)" if light else f"Sync failed: {light.error}")
    return 0 if light else 1


def _cmd_verify(app: LedgerApp, args) -> int:
    result = app.start_session()
    if result is None:
        print("No identity set. Run 'identify' first.")
        return 1
    if result:
        print(f"Local store mirrors the server: {result.trips} trip(s), "
              f"{result.expenses} expense(s), {result.preserved} unpushed kept")
        return 0
    print(f"Verification failed: {result.error}")
    return 1


def _cmd_push(app: LedgerApp, args) -> int:
    if not app.resume():
        print("No identity set. Run 'identify' first.")
        return 1
    summary = app.engine.push_pending()
    print(f"Pushed {summary.trips_pushed} trip(s), {summary.expenses_pushed} "
          f"expense(s); {summary.conflicts} conflict(s), "
          f"{summary.remaining} still pending")
    return 0 if not summary.errors else 1


def _cmd_export(app: LedgerApp, args) -> int:
    app.open()
    trip = app.repo.get_trip(args.trip_id)
    if trip is None:
        print(f"Trip {args.trip_id} not found")
        return 1
    path = args.output or default_export_path(trip)
    count = export_trip_excel(app.repo, args.trip_id, path)
    print(f"Exported {count} expense(s) to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="travel-ledger",
        description="Offline-first travel expense ledger",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("identify", help="Set the identity (11-digit CPF)")
    p.add_argument("identity")
    p.set_defaults(func=_cmd_identify)

    p = sub.add_parser("trips", help="List local trips for the identity")
    p.set_defaults(func=_cmd_trips)

    p = sub.add_parser("sync", help="Pull trips from the server (additive)")
    p.set_defaults(func=_cmd_sync)

    p = sub.add_parser("verify", help="Rebuild the local store from the server")
    p.set_defaults(func=_cmd_verify)

    p = sub.add_parser("push", help="Send unsynced local records to the server")
    p.set_defaults(func=_cmd_push)

    p = sub.add_parser("export", help="Export a trip's expenses to XLSX")
    p.add_argument("trip_id", type=int)
    p.add_argument("-o", "--output", default=None)
    p.set_defaults(func=_cmd_export)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the travel-ledger command line."""
    logging.basicConfig(
        level=Config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    app = LedgerApp()
    try:
        return args.func(app, args)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
