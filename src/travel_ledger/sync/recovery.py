"""RecoveryManager — open the local store, repairing it if needed.

Missing collections are added in place without touching existing data.
Only when that repair fails is the store deleted and rebuilt, and the caller
is told so it can warn the user that local history was reset.
"""

import logging

from travel_ledger.database.local_store import LocalStore
from travel_ledger.errors import StoreCorrupt, StoreRecreated

logger = logging.getLogger(__name__)

OK = "ok"
REPAIRED = "repaired"
RECREATED = "recreated"


class RecoveryManager:
    """Chooses between additive repair and destructive recreation."""

    def __init__(self, store: LocalStore):
        self.store = store
        self.last_outcome: str | None = None
        self.last_error: str | None = None

    def open_store(self, strict: bool = False) -> str:
        """Open the store and return OK, REPAIRED or RECREATED.

        StoreUnavailable propagates untouched: there is nothing to recover
        without persistent storage. Transient StoreErrors propagate too; the
        store is only reset for StoreCorrupt. With ``strict=True`` a recreation raises
        StoreRecreated (after the store is usable again) instead of
        returning RECREATED.
        """
        try:
            repaired = self.store.open()
        except StoreCorrupt as e:
            logger.error(f"Additive repair failed, local store will be reset: {e}")
            self.store.delete_and_recreate()
            self.last_outcome = RECREATED
            self.last_error = str(e)
            if strict:
                raise StoreRecreated(
                    "Local store was reset; unsynced local data was lost"
                ) from e
            return RECREATED

        self.last_error = None
        if repaired:
            logger.warning(f"Local store repaired, added collections: {repaired}")
            self.last_outcome = REPAIRED
        else:
            self.last_outcome = OK
        return self.last_outcome
