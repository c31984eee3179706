"""Tests for model row conversion and derived amounts."""

from datetime import date, datetime, timezone

from travel_ledger.database.models import (
    Expense,
    Trip,
    parse_date,
    parse_datetime,
)


class TestParsing:
    def test_parse_date_accepts_timestamps(self):
        assert parse_date("2024-03-10T15:30:00.000Z") == date(2024, 3, 10)
        assert parse_date("2024-03-10") == date(2024, 3, 10)
        assert parse_date("") is None

    def test_parse_datetime_is_utc(self):
        value = parse_datetime("2024-03-10T12:00:00Z")
        assert value == datetime(2024, 3, 10, 12, tzinfo=timezone.utc)
        naive = parse_datetime("2024-03-10 12:00:00")
        assert naive.tzinfo is not None


class TestTripRows:
    def test_round_trip(self):
        trip = Trip(
            id=4, name="Santos", start_date=date(2024, 1, 2),
            identity_value="52998224725",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        row = trip.to_row()
        assert row["start_date"] == "2024-01-02"
        assert row["end_date"] is None
        assert Trip.from_row(row) == trip

    def test_new_trip_row_has_no_key(self):
        assert "id" not in Trip(name="New").to_row()

    def test_local_only(self):
        assert Trip(id=1).is_local_only
        assert not Trip(id=1, remote_id=1).is_local_only


class TestExpenseRecompute:
    def test_derived_values(self):
        expense = Expense(
            breakfast_value="15.5", lunch_value="30", dinner_value="",
            parking_value="22.00", mileage=10,
        ).recompute()
        assert expense.dinner_value is None
        assert expense.breakfast_value == "15.50"
        assert expense.meal_value == "45.50"
        assert expense.mileage_value == "10.90"
        assert expense.total_value == "78.40"
