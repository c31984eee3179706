"""Exception hierarchy shared by the store, remote and sync layers."""


class LedgerError(Exception):
    """Base exception for travel-ledger."""


# ── Local store ─────────────────────────────────────────────────


class StoreError(LedgerError):
    """Base exception for local store operations."""


class StoreUnavailable(StoreError):
    """The host provides no persistent storage location."""


class StoreCorrupt(StoreError):
    """Expected collections are missing or the store file is unreadable."""


class StoreRecreated(StoreError):
    """The local store was destroyed and rebuilt; local history is gone."""


class RecordNotFound(StoreError):
    """An update targeted a record that does not exist locally."""

    def __init__(self, collection: str, key):
        super().__init__(f"{collection} record {key!r} not found")
        self.collection = collection
        self.key = key


# ── Remote API ──────────────────────────────────────────────────


class RemoteError(LedgerError):
    """Base exception for remote API calls."""


class RemoteUnreachable(RemoteError):
    """Network-level failure: timeout, DNS, connection refused."""


class RemoteRequestFailed(RemoteError):
    """The remote answered with a non-success HTTP status."""

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"Remote request failed with HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body


# ── Validation ──────────────────────────────────────────────────


class ValidationFailed(LedgerError):
    """Input rejected before any write was attempted."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)
