"""Tests for the remote API client and its wire format."""

import json
from datetime import date

import httpx
import pytest

from travel_ledger.database.models import Expense, Trip
from travel_ledger.errors import RemoteRequestFailed, RemoteUnreachable
from travel_ledger.remote.client import (
    RemoteClient,
    expense_from_wire,
    expense_to_wire,
    trip_from_wire,
    trip_to_wire,
)


class TestWireFormat:
    def test_trip_to_wire_camel_case(self):
        trip = Trip(name="Rio", start_date=date(2024, 5, 1),
                    identity_value="52998224725")
        assert trip_to_wire(trip) == {
            "name": "Rio", "startDate": "2024-05-01", "endDate": None,
            "identityValue": "52998224725",
        }

    def test_partial_body(self):
        trip = Trip(name="Rio", start_date=date(2024, 5, 1))
        assert trip_to_wire(trip, only={"name"}) == {"name": "Rio"}

    def test_trip_from_wire_parses_dates(self):
        trip = trip_from_wire({
            "id": 12, "name": "Rio", "startDate": "2024-05-01T00:00:00.000Z",
            "endDate": None, "identityValue": "1",
            "createdAt": "2024-04-30T10:00:00Z",
        })
        assert trip.id == trip.remote_id == 12
        assert trip.start_date == date(2024, 5, 1)
        assert trip.end_date is None
        assert trip.sync_status == "synced"

    def test_expense_from_wire_recomputes(self):
        expense = expense_from_wire({
            "id": 5, "tripId": 12, "date": "2024-05-01",
            "destination": "Rio", "justification": "Fair",
            "lunchValue": 20, "mileage": 100, "totalValue": "bogus",
            "receipt": "data:image/png;base64,AA==",
        })
        assert expense.trip_id == 12
        assert expense.lunch_value == "20.00"
        assert expense.mileage_value == "109.00"
        assert expense.total_value == "129.00"

    def test_expense_to_wire_has_amounts(self):
        body = expense_to_wire(Expense(trip_id=3, date=date(2024, 5, 2),
                                       lunch_value="10.00").recompute())
        assert body["tripId"] == 3
        assert body["date"] == "2024-05-02"
        assert body["lunchValue"] == "10.00"
        assert body["totalValue"] == "10.00"


class TestRequests:
    def test_create_trip(self, remote, api):
        created = remote.create_trip(Trip(name="Rio", identity_value="52998224725"))
        assert created.remote_id in api.trips
        assert api.calls == [("POST", "/trips")]

    def test_fetch_by_identity(self, remote, api):
        api.add_trip("Mine")
        api.add_trip("Theirs", identity="11111111111")
        trips = remote.fetch_trips_by_identity("52998224725")
        assert [t.name for t in trips] == ["Mine"]

    def test_create_expense_under_trip(self, remote, api):
        trip = api.add_trip()
        expense = Expense(trip_id=trip["id"], date=date(2024, 3, 10),
                          destination="X", justification="Y",
                          receipt="data:,").recompute()
        created = remote.create_expense(trip["id"], expense)
        assert api.expenses[created.remote_id]["tripId"] == trip["id"]
        assert ("POST", f"/trips/{trip['id']}/expenses") in api.calls

    def test_delete_trip(self, remote, api):
        trip = api.add_trip()
        remote.delete_trip(trip["id"])
        assert trip["id"] not in api.trips

    def test_http_error_carries_status(self, remote, api):
        with pytest.raises(RemoteRequestFailed) as exc:
            remote.update_trip(999, Trip(name="Nope"))
        assert exc.value.status == 404

    def test_server_error(self, remote, api):
        api.fail_with = 500
        with pytest.raises(RemoteRequestFailed) as exc:
            remote.fetch_trips_by_identity("52998224725")
        assert exc.value.status == 500

    def test_network_failure(self, remote, api):
        api.offline = True
        with pytest.raises(RemoteUnreachable):
            remote.fetch_expenses_by_trip(1)

    def test_create_without_id_fails(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(201, json={}))
        with RemoteClient(base_url="http://ledger.test/api", cookies={},
                          transport=transport) as client:
            with pytest.raises(RemoteRequestFailed):
                client.create_trip(Trip(name="Lost"))

    def test_session_cookie_sent(self):
        seen = {}

        def handler(request):
            seen["cookie"] = request.headers.get("cookie")
            return httpx.Response(200, json=[])

        with RemoteClient(base_url="http://ledger.test/api",
                          cookies={"connect.sid": "abc123"},
                          transport=httpx.MockTransport(handler)) as client:
            client.fetch_trips_by_identity("52998224725")
        assert seen["cookie"] == "connect.sid=abc123"

    def test_identity_path_is_quoted(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.raw_path.decode()
            return httpx.Response(200, content=json.dumps([]))

        with RemoteClient(base_url="http://ledger.test/api", cookies={},
                          transport=httpx.MockTransport(handler)) as client:
            client.fetch_trips_by_identity("529.982/247")
        assert seen["path"] == "/api/trips/by-identity/529.982%2F247"


def _client_answering(response):
    transport = httpx.MockTransport(lambda request: response)
    return RemoteClient(base_url="http://ledger.test/api", cookies={},
                        transport=transport)


class TestMalformedResponses:
    def test_html_page_is_a_failed_request(self):
        page = httpx.Response(200, text="<html>login</html>")
        with _client_answering(page) as client:
            with pytest.raises(RemoteRequestFailed) as exc:
                client.fetch_trips_by_identity("52998224725")
        assert exc.value.status == 200
        assert "<html>" in exc.value.body

    def test_object_instead_of_list(self):
        with _client_answering(httpx.Response(200, json={"trips": []})) as client:
            with pytest.raises(RemoteRequestFailed):
                client.fetch_expenses_by_trip(4)

    def test_empty_body_instead_of_list(self):
        with _client_answering(httpx.Response(200)) as client:
            with pytest.raises(RemoteRequestFailed):
                client.fetch_trips_by_identity("52998224725")

    def test_bad_date_in_trip(self, remote, api):
        api.add_trip("Broken", startDate="not-a-date")
        with pytest.raises(RemoteRequestFailed, match="malformed"):
            remote.fetch_trips_by_identity("52998224725")

    def test_bad_date_in_expense(self, remote, api):
        trip = api.add_trip()
        api.add_expense(trip["id"], date="2024-13-45")
        with pytest.raises(RemoteRequestFailed, match="malformed"):
            remote.fetch_expenses_by_trip(trip["id"])
