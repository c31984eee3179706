"""Conflict policies deciding which copy of a record survives a sync.

``LastWriteWins`` is the default: whichever copy was written last is kept,
with no field-level merge. Alternative policies (version counters, manual
review) plug in through the same ``resolve`` call.
"""

from datetime import datetime, timezone

from travel_ledger.utils.constants import SYNC_CONFLICT, SYNC_PENDING_PUSH

TAKE_REMOTE = "take_remote"
KEEP_LOCAL = "keep_local"
CONFLICT = "conflict"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ConflictPolicy:
    """Decides between a local record and the remote copy of it."""

    def resolve(self, local, remote) -> str:
        raise NotImplementedError


class LastWriteWins(ConflictPolicy):
    """Keep the most recently written copy.

    A synced local record always yields to the remote. A record with
    unpushed local edits is kept only if it was written strictly after the
    remote copy; ties go to the remote.
    """

    def resolve(self, local, remote) -> str:
        if local is None:
            return TAKE_REMOTE
        if local.sync_status not in (SYNC_PENDING_PUSH, SYNC_CONFLICT):
            return TAKE_REMOTE
        local_at = local.updated_at or local.created_at or _EPOCH
        remote_at = remote.updated_at or remote.created_at or _EPOCH
        if local_at > remote_at:
            return KEEP_LOCAL
        return TAKE_REMOTE


class RemoteAlwaysWins(ConflictPolicy):
    """Treat the remote as authoritative regardless of local edits."""

    def resolve(self, local, remote) -> str:
        return TAKE_REMOTE
