"""Tests for the LocalStore keyed collections and lifecycle."""

import sqlite3

import pytest

from travel_ledger.database import local_store
from travel_ledger.database.local_store import LocalStore
from travel_ledger.errors import StoreCorrupt, StoreError, StoreUnavailable


def _trip_row(name="Trip", **extra):
    row = {"name": name, "created_at": "2024-03-10T09:00:00+00:00",
           "identity_value": "52998224725"}
    row.update(extra)
    return row


def _expense_row(trip_id, **extra):
    row = {
        "trip_id": trip_id, "date": "2024-03-10", "destination": "Campinas",
        "justification": "Visit", "receipt": "data:image/png;base64,AA==",
        "total_value": "0.00", "created_at": "2024-03-10T09:00:00+00:00",
    }
    row.update(extra)
    return row


class TestOpen:
    def test_fresh_store_is_ready(self, db_path):
        store = LocalStore(db_path)
        assert store.state == local_store.UNOPENED
        assert store.open() == []
        assert store.is_ready

    def test_reopen_keeps_data(self, store, db_path):
        store.put("trips", _trip_row("Persisted"))
        reopened = LocalStore(db_path)
        reopened.open()
        assert [r["name"] for r in reopened.get_all("trips")] == ["Persisted"]

    def test_missing_collection_is_repaired(self, store, db_path):
        store.put("trips", _trip_row("Survivor"))
        store.db.execute("DROP TABLE identity")

        reopened = LocalStore(db_path)
        assert reopened.open() == ["identity"]
        assert reopened.is_ready
        assert reopened.count("trips") == 1

    def test_unreadable_file_is_corrupt(self, db_path):
        db_path.write_bytes(b"this is not a sqlite database at all" * 50)
        store = LocalStore(db_path)
        with pytest.raises(StoreCorrupt):
            store.open()
        assert store.state == local_store.FAILED

    def test_io_error_is_not_corruption(self, store, db_path, monkeypatch):
        store.put("trips", _trip_row("Survivor"))

        def failing(conn):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(local_store, "ensure_schema", failing)
        reopened = LocalStore(db_path)
        with pytest.raises(StoreError) as exc:
            reopened.open()
        assert not isinstance(exc.value, StoreCorrupt)
        assert reopened.state == local_store.FAILED

    def test_schema_damage_is_corruption(self, db_path, monkeypatch):
        def failing(conn):
            raise sqlite3.OperationalError("no such column: sync_status")

        monkeypatch.setattr(local_store, "ensure_schema", failing)
        with pytest.raises(StoreCorrupt):
            LocalStore(db_path).open()

    def test_no_location_is_unavailable(self):
        store = LocalStore(None)
        with pytest.raises(StoreUnavailable):
            store.open()
        assert store.state == local_store.FAILED

    def test_operations_open_lazily(self, db_path):
        store = LocalStore(db_path)
        assert store.count("trips") == 0
        assert store.is_ready


class TestKeyedOperations:
    def test_put_assigns_key(self, store):
        first = store.put("trips", _trip_row("A"))
        second = store.put("trips", _trip_row("B"))
        assert second > first
        assert store.get("trips", first)["name"] == "A"

    def test_put_with_key_overwrites(self, store):
        key = store.put("trips", _trip_row("Before"))
        store.put("trips", _trip_row("After", id=key))
        assert store.count("trips") == 1
        assert store.get("trips", key)["name"] == "After"

    def test_put_with_explicit_key(self, store):
        assert store.put("trips", _trip_row("Remote", id=500)) == 500
        assert store.get("trips", 500)["name"] == "Remote"

    def test_overwrite_keeps_children(self, store):
        key = store.put("trips", _trip_row("Parent"))
        store.put("expenses", _expense_row(key))
        store.put("trips", _trip_row("Renamed", id=key))
        assert store.count("expenses") == 1

    def test_get_missing_is_none(self, store):
        assert store.get("trips", 999) is None

    def test_unknown_field_rejected(self, store):
        with pytest.raises(StoreError):
            store.put("trips", _trip_row(colour="red"))

    def test_unknown_collection_rejected(self, store):
        with pytest.raises(StoreError):
            store.get("receipts", 1)

    def test_delete_missing_is_not_error(self, store):
        assert store.delete("trips", 12345) is False

    def test_delete_existing(self, store):
        key = store.put("trips", _trip_row())
        assert store.delete("trips", key) is True
        assert store.get("trips", key) is None

    def test_get_all_by_index(self, store):
        a = store.put("trips", _trip_row("A"))
        b = store.put("trips", _trip_row("B"))
        store.put("expenses", _expense_row(a))
        store.put("expenses", _expense_row(b))
        store.put("expenses", _expense_row(a))
        rows = store.get_all_by_index("expenses", "trip_id", a)
        assert len(rows) == 2
        assert all(r["trip_id"] == a for r in rows)

    def test_undeclared_index_rejected(self, store):
        with pytest.raises(StoreError):
            store.get_all_by_index("expenses", "destination", "Campinas")

    def test_clear(self, store):
        store.put("trips", _trip_row("A"))
        store.put("trips", _trip_row("B"))
        assert store.clear("trips") == 2
        assert store.count("trips") == 0

    def test_identity_singleton(self, store):
        store.put("identity", {"id": "user", "identity_value": "1"})
        store.put("identity", {"id": "user", "identity_value": "2"})
        assert store.count("identity") == 1
        assert store.get("identity", "user")["identity_value"] == "2"


class TestTransaction:
    def test_commits_all_or_nothing(self, store):
        key = store.put("trips", _trip_row("Original"))
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.put("trips", _trip_row("Changed", id=key))
                tx.put("trips", _trip_row("Extra"))
                raise RuntimeError("interrupted")
        assert store.count("trips") == 1
        assert store.get("trips", key)["name"] == "Original"

    def test_delete_by_index(self, store):
        a = store.put("trips", _trip_row("A"))
        store.put("expenses", _expense_row(a))
        store.put("expenses", _expense_row(a))
        with store.transaction() as tx:
            assert tx.delete_by_index("expenses", "trip_id", a) == 2
        assert store.count("expenses") == 0


class TestDeleteAndRecreate:
    def test_wipes_everything(self, store):
        store.put("trips", _trip_row("Lost"))
        store.delete_and_recreate()
        assert store.is_ready
        assert store.count("trips") == 0
        assert store.count("expenses") == 0

    def test_recovers_corrupt_file(self, db_path):
        db_path.write_bytes(b"garbage" * 200)
        store = LocalStore(db_path)
        with pytest.raises(StoreCorrupt):
            store.open()
        store.delete_and_recreate()
        assert store.is_ready
        assert store.put("trips", _trip_row("Fresh")) is not None
