"""Shared test fixtures."""

import itertools
import json
import re
from datetime import date, datetime, timezone

import httpx
import pytest

from travel_ledger.config import Config
from travel_ledger.database.local_store import LocalStore
from travel_ledger.database.models import Expense, Trip
from travel_ledger.database.repository import Repository
from travel_ledger.remote.client import RemoteClient
from travel_ledger.sync.sync_engine import SyncEngine

IDENTITY = "52998224725"
RECEIPT = "data:image/png;base64,iVBORw0KGgo="
BASE_URL = "http://ledger.test/api"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeApi:
    """In-memory stand-in for the trips/expenses server.

    Records are kept as wire dicts. ``offline`` makes every request fail at
    the network level; ``fail_with`` answers every request with that status.
    """

    def __init__(self, first_id: int = 100):
        self.trips: dict[int, dict] = {}
        self.expenses: dict[int, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.offline = False
        self.fail_with: int | None = None
        self._ids = itertools.count(first_id)

    # ── Seeding helpers ─────────────────────────────────────────

    def add_trip(self, name="Server trip", identity=IDENTITY, **extra) -> dict:
        trip_id = extra.pop("id", None) or next(self._ids)
        now = _now()
        record = {
            "id": trip_id, "name": name, "startDate": None, "endDate": None,
            "identityValue": identity, "createdAt": now, "updatedAt": now,
        }
        record.update(extra)
        self.trips[trip_id] = record
        return record

    def add_expense(self, trip_id: int, **extra) -> dict:
        expense_id = extra.pop("id", None) or next(self._ids)
        now = _now()
        record = {
            "id": expense_id, "tripId": trip_id, "date": "2024-03-10",
            "destination": "Campinas", "justification": "Client visit",
            "breakfastValue": None, "lunchValue": "30.00", "dinnerValue": None,
            "transportValue": None, "parkingValue": None, "mileage": 0,
            "mileageValue": "0.00", "otherValue": None, "otherDescription": "",
            "receipt": RECEIPT, "totalValue": "30.00",
            "createdAt": now, "updatedAt": now,
        }
        record.update(extra)
        self.expenses[expense_id] = record
        return record

    # ── Transport ───────────────────────────────────────────────

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        self.calls.append((request.method, path))
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="server error")
        body = json.loads(request.content) if request.content else {}
        return self._route(request.method, path, body)

    def _route(self, method: str, path: str, body: dict) -> httpx.Response:
        if method == "POST" and path == "/trips":
            return httpx.Response(201, json=self.add_trip(
                name=body["name"], identity=body.get("identityValue"),
                startDate=body.get("startDate"), endDate=body.get("endDate"),
            ))

        m = re.fullmatch(r"/trips/by-identity/(.+)", path)
        if m and method == "GET":
            return httpx.Response(200, json=[
                t for t in self.trips.values() if t["identityValue"] == m.group(1)
            ])

        m = re.fullmatch(r"/trips/(\d+)/expenses", path)
        if m and method == "POST":
            trip_id = int(m.group(1))
            if trip_id not in self.trips:
                return httpx.Response(404, text="trip not found")
            fields = {k: v for k, v in body.items() if k != "tripId"}
            return httpx.Response(201, json=self.add_expense(trip_id, **fields))

        m = re.fullmatch(r"/expenses/by-trip/(\d+)", path)
        if m and method == "GET":
            trip_id = int(m.group(1))
            return httpx.Response(200, json=[
                e for e in self.expenses.values() if e["tripId"] == trip_id
            ])

        m = re.fullmatch(r"/(trips|expenses)/(\d+)", path)
        if m:
            table = self.trips if m.group(1) == "trips" else self.expenses
            key = int(m.group(2))
            if key not in table:
                return httpx.Response(404, text="not found")
            if method == "PUT":
                table[key].update(body)
                table[key]["updatedAt"] = _now()
                return httpx.Response(200, json=table[key])
            if method == "DELETE":
                del table[key]
                if table is self.trips:
                    for eid in [k for k, e in self.expenses.items() if e["tripId"] == key]:
                        del self.expenses[eid]
                return httpx.Response(204)

        return httpx.Response(404, text=f"no route for {method} {path}")


# ── Configuration isolation ─────────────────────────────────────


@pytest.fixture(autouse=True)
def isolate_config(tmp_path, monkeypatch):
    """Redirect settings I/O to a temp file so tests don't touch real config."""
    import travel_ledger.config as config_mod
    monkeypatch.setattr(config_mod, "_SETTINGS_FILE", tmp_path / "settings.json")
    saved = {
        "DATABASE_PATH": Config.DATABASE_PATH,
        "EXPORT_DIRECTORY": Config.EXPORT_DIRECTORY,
        "API_BASE_URL": Config.API_BASE_URL,
        "API_TIMEOUT": Config.API_TIMEOUT,
        "SESSION_COOKIE": Config.SESSION_COOKIE,
        "IDENTITY_VALUE": Config.IDENTITY_VALUE,
    }
    yield
    for attr, val in saved.items():
        setattr(Config, attr, val)


# ── Store / repository ──────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "ledger.db"


@pytest.fixture
def store(db_path):
    """Provide an opened local store."""
    s = LocalStore(db_path)
    s.open()
    return s


@pytest.fixture
def repo(store):
    """Provide a repository over an opened store."""
    return Repository(store)


# ── Remote ──────────────────────────────────────────────────────


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def remote(api):
    client = RemoteClient(base_url=BASE_URL, timeout=5, cookies={},
                          transport=api.transport)
    yield client
    client.close()


@pytest.fixture
def engine(repo, remote):
    return SyncEngine(repo, remote, IDENTITY)


# ── Model factories ─────────────────────────────────────────────


@pytest.fixture
def make_trip():
    def _make(name="Trip to Campinas", **kw):
        kw.setdefault("identity_value", IDENTITY)
        kw.setdefault("start_date", date(2024, 3, 10))
        kw.setdefault("end_date", date(2024, 3, 12))
        return Trip(name=name, **kw)
    return _make


@pytest.fixture
def make_expense():
    def _make(trip_id, **kw):
        kw.setdefault("date", date(2024, 3, 10))
        kw.setdefault("destination", "Campinas")
        kw.setdefault("justification", "Client visit")
        kw.setdefault("receipt", RECEIPT)
        return Expense(trip_id=trip_id, **kw)
    return _make
