"""Database schema definition, initialization, and migrations.

The local store holds three collections (identity, trips, expenses).
``ensure_schema`` is the single entry point: it creates exactly the
collections that are missing, applies column migrations to older stores, and
never deletes existing rows.
"""

SCHEMA_VERSION = 2

_SCHEMA_VERSION_TABLE = """CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)"""

# Collection name -> statements creating it (table first, then indexes)
_COLLECTION_STATEMENTS = {
    "identity": [
        """CREATE TABLE IF NOT EXISTS identity (
            id TEXT PRIMARY KEY CHECK (id = 'user'),
            identity_value TEXT NOT NULL,
            updated_at TIMESTAMP
        )""",
    ],
    "trips": [
        """CREATE TABLE IF NOT EXISTS trips (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            start_date TEXT,
            end_date TEXT,
            identity_value TEXT,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP,
            remote_id INTEGER,
            sync_status TEXT NOT NULL DEFAULT 'synced'
                CHECK (sync_status IN ('synced', 'pending_push', 'conflict'))
        )""",
        "CREATE INDEX IF NOT EXISTS idx_trips_identity ON trips(identity_value)",
        "CREATE INDEX IF NOT EXISTS idx_trips_created_at ON trips(created_at)",
    ],
    "expenses": [
        """CREATE TABLE IF NOT EXISTS expenses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            trip_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            destination TEXT NOT NULL,
            justification TEXT NOT NULL,
            breakfast_value TEXT,
            lunch_value TEXT,
            dinner_value TEXT,
            transport_value TEXT,
            parking_value TEXT,
            mileage INTEGER NOT NULL DEFAULT 0 CHECK (mileage >= 0),
            mileage_value TEXT,
            other_value TEXT,
            other_description TEXT,
            receipt TEXT NOT NULL,
            total_value TEXT NOT NULL,
            meal_value TEXT,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP,
            remote_id INTEGER,
            sync_status TEXT NOT NULL DEFAULT 'synced'
                CHECK (sync_status IN ('synced', 'pending_push', 'conflict')),
            FOREIGN KEY (trip_id) REFERENCES trips(id) ON DELETE CASCADE
        )""",
        "CREATE INDEX IF NOT EXISTS idx_expenses_trip ON expenses(trip_id)",
        "CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date)",
    ],
}

# Collection name -> its columns (the only fields a record may carry)
COLLECTION_COLUMNS = {
    "identity": ["id", "identity_value", "updated_at"],
    "trips": [
        "id", "name", "start_date", "end_date", "identity_value",
        "created_at", "updated_at", "remote_id", "sync_status",
    ],
    "expenses": [
        "id", "trip_id", "date", "destination", "justification",
        "breakfast_value", "lunch_value", "dinner_value",
        "transport_value", "parking_value", "mileage", "mileage_value",
        "other_value", "other_description", "receipt", "total_value",
        "meal_value", "created_at", "updated_at", "remote_id", "sync_status",
    ],
}

# Secondary indexes callers may query by
COLLECTION_INDEXES = {
    "identity": [],
    "trips": ["identity_value", "created_at"],
    "expenses": ["trip_id", "date"],
}

REQUIRED_COLLECTIONS = list(_COLLECTION_STATEMENTS)

# ── Migration from v1 → v2 ──────────────────────────────────────
# v1 stores carried no sync bookkeeping. Rows that predate it are assumed to
# be keyed by their remote id, which is how v1 stored synced records.
_V2_COLUMNS = {
    "trips": [
        ("updated_at", "TIMESTAMP"),
        ("remote_id", "INTEGER"),
        ("sync_status", "TEXT NOT NULL DEFAULT 'synced'"),
    ],
    "expenses": [
        ("meal_value", "TEXT"),
        ("updated_at", "TIMESTAMP"),
        ("remote_id", "INTEGER"),
        ("sync_status", "TEXT NOT NULL DEFAULT 'synced'"),
    ],
}


def existing_collections(conn) -> set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table'"
    ).fetchall()
    return {r[0] for r in rows}


def missing_collections(conn) -> list[str]:
    """Required collections absent from the store, in creation order."""
    present = existing_collections(conn)
    return [name for name in REQUIRED_COLLECTIONS if name not in present]


def _get_schema_version(conn) -> int:
    """Get the current schema version, or 0 if none was recorded."""
    row = conn.execute(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if row is None:
        return 0
    row = conn.execute(
        "SELECT MAX(version) AS v FROM schema_version"
    ).fetchone()
    return row["v"] if row and row["v"] else 0


def get_schema_version(conn) -> int:
    return _get_schema_version(conn)


def _table_columns(conn, table: str) -> set[str]:
    return {
        row[1] for row in conn.execute(f"PRAGMA table_info({table})")  # noqa: S608
    }


def _migrate_v1_to_v2(conn):
    """Add sync bookkeeping columns to stores created before v2."""
    for table, columns in _V2_COLUMNS.items():
        present = _table_columns(conn, table)
        added = []
        for name, decl in columns:
            if name not in present:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                added.append(name)
        if "remote_id" in added:
            conn.execute(f"UPDATE {table} SET remote_id = id")  # noqa: S608
        if "updated_at" in added:
            conn.execute(
                f"UPDATE {table} SET updated_at = created_at"  # noqa: S608
            )
    if "meal_value" in _table_columns(conn, "expenses"):
        conn.execute(
            "UPDATE expenses SET meal_value = printf('%.2f', "
            "COALESCE(CAST(breakfast_value AS REAL), 0) + "
            "COALESCE(CAST(lunch_value AS REAL), 0) + "
            "COALESCE(CAST(dinner_value AS REAL), 0)) "
            "WHERE meal_value IS NULL"
        )


def ensure_schema(conn) -> list[str]:
    """Bring the store up to SCHEMA_VERSION without touching existing rows.

    Returns the collections that had to be created. Safe to call on every
    open: a complete, current store is left unchanged.
    """
    conn.execute(_SCHEMA_VERSION_TABLE)
    version = _get_schema_version(conn)
    missing = missing_collections(conn)

    for name in missing:
        for stmt in _COLLECTION_STATEMENTS[name]:
            conn.execute(stmt)

    if version < 2:
        # Collections that were already present may be v1 tables
        _migrate_v1_to_v2(conn)

    # Indexes of pre-existing collections may be missing too
    for statements in _COLLECTION_STATEMENTS.values():
        for stmt in statements[1:]:
            conn.execute(stmt)

    if version < SCHEMA_VERSION:
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
    return missing


def initialize_database(db_connection) -> list[str]:
    """Create or upgrade the schema through a DatabaseConnection."""
    with db_connection.get_connection() as conn:
        return ensure_schema(conn)
