"""LocalStore — versioned, key-indexed persistence for the three collections.

Every operation opens its own connection and transaction (open → operate →
close), so no lock outlives a single call. ``transaction()`` exposes the same
operations inside one atomic scope for multi-step work such as cascade
deletes and full reconciliation.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from travel_ledger.database.connection import DatabaseConnection
from travel_ledger.database.schema import (
    COLLECTION_COLUMNS,
    COLLECTION_INDEXES,
    REQUIRED_COLLECTIONS,
    ensure_schema,
    get_schema_version,
    missing_collections,
)
from travel_ledger.errors import StoreCorrupt, StoreError, StoreUnavailable

logger = logging.getLogger(__name__)

# Store lifecycle states
UNOPENED = "unopened"
OPENING = "opening"
READY = "ready"
RECOVERING = "recovering"
FAILED = "failed"


# OperationalError messages that mean the schema itself is damaged; other
# operational errors such as a locked file or a disk I/O error are transient.
_SCHEMA_DAMAGE = (
    "malformed",
    "no such table",
    "no such column",
    "duplicate column",
    "already exists",
)


def _is_schema_damage(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _SCHEMA_DAMAGE)


def _check_collection(collection: str):
    if collection not in COLLECTION_COLUMNS:
        raise StoreError(f"Unknown collection: {collection!r}")


class StoreTransaction:
    """Keyed operations bound to one open connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def put(self, collection: str, record: dict) -> Any:
        """Insert or overwrite a record; returns its key.

        A record without an ``id`` gets an auto-assigned key.
        """
        _check_collection(collection)
        allowed = COLLECTION_COLUMNS[collection]
        unknown = set(record) - set(allowed)
        if unknown:
            raise StoreError(
                f"Unknown fields for {collection}: {', '.join(sorted(unknown))}"
            )
        data = {k: v for k, v in record.items() if not (k == "id" and v is None)}
        columns = list(data)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO {collection} ({', '.join(columns)}) "  # noqa: S608
            f"VALUES ({placeholders})"
        )
        updates = [c for c in columns if c != "id"]
        if "id" in data and updates:
            sql += " ON CONFLICT(id) DO UPDATE SET " + ", ".join(
                f"{c} = excluded.{c}" for c in updates
            )
        elif "id" in data:
            sql += " ON CONFLICT(id) DO NOTHING"
        cursor = self.conn.execute(sql, tuple(data[c] for c in columns))
        return data["id"] if "id" in data else cursor.lastrowid

    def get(self, collection: str, key) -> Optional[dict]:
        _check_collection(collection)
        row = self.conn.execute(
            f"SELECT * FROM {collection} WHERE id = ?", (key,)  # noqa: S608
        ).fetchone()
        return dict(row) if row else None

    def get_all(self, collection: str) -> list[dict]:
        """All records in key order; callers sort by a meaningful field."""
        _check_collection(collection)
        rows = self.conn.execute(
            f"SELECT * FROM {collection} ORDER BY id"  # noqa: S608
        ).fetchall()
        return [dict(r) for r in rows]

    def get_all_by_index(self, collection: str, index: str, value) -> list[dict]:
        _check_collection(collection)
        if index not in COLLECTION_INDEXES[collection]:
            raise StoreError(f"No index {index!r} on {collection}")
        rows = self.conn.execute(
            f"SELECT * FROM {collection} WHERE {index} = ? ORDER BY id",  # noqa: S608
            (value,),
        ).fetchall()
        return [dict(r) for r in rows]

    def delete(self, collection: str, key) -> bool:
        """Delete by key. Deleting a missing key is not an error."""
        _check_collection(collection)
        cursor = self.conn.execute(
            f"DELETE FROM {collection} WHERE id = ?", (key,)  # noqa: S608
        )
        return cursor.rowcount > 0

    def delete_by_index(self, collection: str, index: str, value) -> int:
        _check_collection(collection)
        if index not in COLLECTION_INDEXES[collection]:
            raise StoreError(f"No index {index!r} on {collection}")
        cursor = self.conn.execute(
            f"DELETE FROM {collection} WHERE {index} = ?", (value,)  # noqa: S608
        )
        return cursor.rowcount

    def clear(self, collection: str) -> int:
        _check_collection(collection)
        cursor = self.conn.execute(f"DELETE FROM {collection}")  # noqa: S608
        return cursor.rowcount

    def count(self, collection: str) -> int:
        _check_collection(collection)
        row = self.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM {collection}"  # noqa: S608
        ).fetchone()
        return row["cnt"]


class LocalStore:
    """Durable client-side store for identity, trips and expenses."""

    def __init__(self, db_path: str | Path | None):
        self.db_path = db_path
        self.db: Optional[DatabaseConnection] = None
        self.state = UNOPENED
        self.repaired: list[str] = []

    @property
    def is_ready(self) -> bool:
        return self.state == READY

    def open(self) -> list[str]:
        """Open the store, creating or repairing its schema.

        Returns the collections that were missing from an existing store and
        had to be added. Raises StoreUnavailable when there is no persistent
        location, StoreCorrupt when the file is unreadable or the additive
        repair fails, and StoreError for transient failures that leave the
        file as it was.
        """
        self.state = OPENING
        try:
            self.db = DatabaseConnection(self.db_path)
            with self.db.get_connection() as conn:
                version = get_schema_version(conn)
                missing = missing_collections(conn)
                fresh = version == 0 and len(missing) == len(REQUIRED_COLLECTIONS)
                if missing and not fresh:
                    self.state = RECOVERING
                    logger.warning(
                        f"Local store is missing collections {missing}; "
                        f"adding them"
                    )
                created = ensure_schema(conn)
        except StoreUnavailable:
            self.state = FAILED
            raise
        except sqlite3.OperationalError as e:
            self.state = FAILED
            if _is_schema_damage(e):
                raise StoreCorrupt(f"Schema upgrade failed: {e}") from e
            raise StoreError(f"Local store could not be opened: {e}") from e
        except sqlite3.DatabaseError as e:
            self.state = FAILED
            raise StoreCorrupt(f"Local store is unreadable: {e}") from e

        self.repaired = [] if fresh else created
        self.state = READY
        return self.repaired

    def _ensure_open(self):
        if self.state == UNOPENED:
            self.open()
        elif self.state == FAILED:
            raise StoreUnavailable("Local store failed to open")

    @contextmanager
    def transaction(self):
        """One atomic scope over every collection."""
        self._ensure_open()
        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield StoreTransaction(conn)

    def put(self, collection: str, record: dict):
        with self.transaction() as tx:
            return tx.put(collection, record)

    def get(self, collection: str, key) -> Optional[dict]:
        with self.transaction() as tx:
            return tx.get(collection, key)

    def get_all(self, collection: str) -> list[dict]:
        with self.transaction() as tx:
            return tx.get_all(collection)

    def get_all_by_index(self, collection: str, index: str, value) -> list[dict]:
        with self.transaction() as tx:
            return tx.get_all_by_index(collection, index, value)

    def delete(self, collection: str, key) -> bool:
        with self.transaction() as tx:
            return tx.delete(collection, key)

    def clear(self, collection: str) -> int:
        with self.transaction() as tx:
            return tx.clear(collection)

    def count(self, collection: str) -> int:
        with self.transaction() as tx:
            return tx.count(collection)

    def delete_and_recreate(self):
        """Destroy the whole store and rebuild empty collections.

        Irreversible. Only RecoveryManager calls this, after an explicit
        decision that the store cannot be repaired in place.
        """
        self.state = RECOVERING
        logger.error(f"Deleting and recreating local store at {self.db_path}")
        try:
            if self.db is None:
                self.db = DatabaseConnection(self.db_path)
            self.db.destroy()
            with self.db.get_connection() as conn:
                ensure_schema(conn)
        except StoreUnavailable:
            self.state = FAILED
            raise
        except (OSError, sqlite3.DatabaseError) as e:
            self.state = FAILED
            raise StoreError(f"Could not recreate local store: {e}") from e
        self.repaired = []
        self.state = READY
