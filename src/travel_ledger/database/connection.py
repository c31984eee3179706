"""SQLite connection management with context manager."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from travel_ledger.errors import StoreUnavailable


class DatabaseConnection:
    """Manages SQLite connections with foreign key enforcement.

    Each ``get_connection()`` block is one transaction: it commits when the
    block exits normally and rolls back on any exception.
    """

    def __init__(self, db_path: str | Path | None):
        if not db_path or str(db_path) == ":memory:":
            raise StoreUnavailable("No persistent storage location configured")
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(
                f"Cannot create storage directory {self.db_path.parent}: {e}"
            ) from e

    @contextmanager
    def get_connection(self):
        """Yield a connection that auto-commits or rolls back."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()):
        """Run a single statement and return the fetched rows."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_script(self, sql_script: str):
        """Run a multi-statement SQL script."""
        with self.get_connection() as conn:
            conn.executescript(sql_script)

    def exists(self) -> bool:
        return self.db_path.exists()

    def destroy(self):
        """Delete the database file and its journal side files."""
        for suffix in ("", "-journal", "-wal", "-shm"):
            path = Path(f"{self.db_path}{suffix}")
            if path.exists():
                path.unlink()
