"""HTTP client for the remote trips/expenses API.

Stateless apart from the underlying ``httpx.Client``: one request per call,
session cookies on every request, no retries. JSON bodies use the API's
camelCase names and ISO 8601 dates; callers only ever see ``Trip`` and
``Expense`` models with native date values.
"""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from travel_ledger.config import Config
from travel_ledger.database.models import Expense, Trip, parse_date, parse_datetime
from travel_ledger.errors import RemoteRequestFailed, RemoteUnreachable
from travel_ledger.utils.constants import SYNC_SYNCED

logger = logging.getLogger(__name__)

# Model attribute -> wire name
TRIP_WIRE_FIELDS = {
    "name": "name",
    "start_date": "startDate",
    "end_date": "endDate",
    "identity_value": "identityValue",
}

EXPENSE_WIRE_FIELDS = {
    "trip_id": "tripId",
    "date": "date",
    "destination": "destination",
    "justification": "justification",
    "breakfast_value": "breakfastValue",
    "lunch_value": "lunchValue",
    "dinner_value": "dinnerValue",
    "transport_value": "transportValue",
    "parking_value": "parkingValue",
    "mileage": "mileage",
    "mileage_value": "mileageValue",
    "other_value": "otherValue",
    "other_description": "otherDescription",
    "receipt": "receipt",
    "total_value": "totalValue",
}

_DATE_FIELDS = {"start_date", "end_date", "date"}


def _wire_value(name: str, value):
    if name in _DATE_FIELDS and value is not None:
        return value.isoformat()
    return value


def trip_to_wire(trip: Trip, only: Optional[set[str]] = None) -> dict:
    """Serialize a trip; ``only`` limits the body to the named attributes."""
    return {
        wire: _wire_value(attr, getattr(trip, attr))
        for attr, wire in TRIP_WIRE_FIELDS.items()
        if only is None or attr in only
    }


def trip_from_wire(data: dict) -> Trip:
    remote_id = data.get("id")
    return Trip(
        id=remote_id,
        name=data.get("name") or "",
        start_date=parse_date(data.get("startDate")),
        end_date=parse_date(data.get("endDate")),
        identity_value=data.get("identityValue") or "",
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
        remote_id=remote_id,
        sync_status=SYNC_SYNCED,
    )


def expense_to_wire(expense: Expense, only: Optional[set[str]] = None) -> dict:
    return {
        wire: _wire_value(attr, getattr(expense, attr))
        for attr, wire in EXPENSE_WIRE_FIELDS.items()
        if only is None or attr in only
    }


def expense_from_wire(data: dict) -> Expense:
    remote_id = data.get("id")
    expense = Expense(
        id=remote_id,
        trip_id=data.get("tripId"),
        date=parse_date(data.get("date")),
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
        remote_id=remote_id,
        sync_status=SYNC_SYNCED,
    )
    for attr, wire in EXPENSE_WIRE_FIELDS.items():
        if attr in ("trip_id", "date"):
            continue
        if data.get(wire) is not None:
            setattr(expense, attr, data[wire])
    expense.mileage = int(expense.mileage or 0)
    return expense.recompute()


def _decoded(decode, item, path: str):
    """Decode one wire record; malformed records count as a failed request."""
    if not isinstance(item, dict):
        raise RemoteRequestFailed(200, f"{path} returned a non-object record")
    try:
        return decode(item)
    except (ValueError, TypeError, ArithmeticError) as e:
        raise RemoteRequestFailed(200, f"{path} returned a malformed record: {e}") from e


class RemoteClient:
    """Issues trip and expense CRUD calls against the remote API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        cookies: Optional[dict] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url or Config.API_BASE_URL
        self._client = httpx.Client(
            base_url=self.base_url,
            cookies=cookies if cookies is not None else Config.get_cookies(),
            timeout=httpx.Timeout(timeout if timeout is not None else Config.API_TIMEOUT),
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, json: Optional[dict] = None):
        """Send one request; return the decoded JSON body (or None)."""
        try:
            response = self._client.request(method, path, json=json)
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} unreachable: {e}")
            raise RemoteUnreachable(f"{method} {path}: {e}") from e

        if not response.is_success:
            raise RemoteRequestFailed(response.status_code, response.text)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"{method} {path} answered with a non-JSON body: {e}")
            raise RemoteRequestFailed(response.status_code, response.text) from e

    def _created(self, method: str, path: str, json: dict) -> dict:
        """POST a new record; the response must carry its remote id."""
        data = self._request(method, path, json=json)
        if not isinstance(data, dict) or data.get("id") is None:
            raise RemoteRequestFailed(200, f"{method} {path} returned no id")
        return data

    def _fetch_list(self, path: str, decode) -> list:
        """GET a collection; anything but a list of well-formed records fails."""
        data = self._request("GET", path)
        if not isinstance(data, list):
            raise RemoteRequestFailed(200, f"GET {path} did not return a list")
        return [_decoded(decode, item, path) for item in data]

    # ── Trips ───────────────────────────────────────────────────

    def create_trip(self, trip: Trip) -> Trip:
        data = self._created("POST", "/trips", trip_to_wire(trip))
        return _decoded(trip_from_wire, data, "/trips")

    def update_trip(self, trip_id: int, trip: Trip, only: Optional[set[str]] = None):
        self._request("PUT", f"/trips/{trip_id}", json=trip_to_wire(trip, only))

    def delete_trip(self, trip_id: int):
        self._request("DELETE", f"/trips/{trip_id}")

    def fetch_trips_by_identity(self, identity_value: str) -> list[Trip]:
        return self._fetch_list(
            f"/trips/by-identity/{quote(identity_value, safe='')}", trip_from_wire
        )

    # ── Expenses ────────────────────────────────────────────────

    def fetch_expenses_by_trip(self, trip_id: int) -> list[Expense]:
        return self._fetch_list(f"/expenses/by-trip/{trip_id}", expense_from_wire)

    def create_expense(self, trip_id: int, expense: Expense) -> Expense:
        body = expense_to_wire(expense)
        body["tripId"] = trip_id
        path = f"/trips/{trip_id}/expenses"
        return _decoded(expense_from_wire, self._created("POST", path, body), path)

    def update_expense(
        self, expense_id: int, expense: Expense, only: Optional[set[str]] = None
    ):
        self._request(
            "PUT", f"/expenses/{expense_id}", json=expense_to_wire(expense, only)
        )

    def delete_expense(self, expense_id: int):
        self._request("DELETE", f"/expenses/{expense_id}")
