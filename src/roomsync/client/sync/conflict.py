"""Conflict resolution between a local replica and a remote snapshot.

Implements record-level "last write wins":
1. A clean local replica never protects anything: remote wins
2. A dirty local replica wins only while it is strictly newer than
   the remote snapshot
3. Equal timestamps favour the remote authority

Fields are never merged individually. A snapshot discarded in favour of
a dirty local edit is picked up again on a later pass, once the pending
edit has been pushed and the server has stamped a fresher timestamp.
"""

from __future__ import annotations

from roomsync.client.sync.types import ConflictDiscarded, Resolution, RoomReplica


def resolve(local: RoomReplica, remote: RoomReplica) -> Resolution:
    """Decide which version of a room assignment should be kept.

    Args:
        local: The local replica.
        remote: The incoming remote snapshot for the same id.

    Returns:
        Resolution.REMOTE_WINS or Resolution.LOCAL_WINS.
    """
    if not local.is_dirty:
        return Resolution.REMOTE_WINS
    if remote.updated_at >= local.updated_at:
        return Resolution.REMOTE_WINS
    return Resolution.LOCAL_WINS


def describe_discard(local: RoomReplica, remote: RoomReplica) -> ConflictDiscarded:
    """Build the record of a remote snapshot that lost to a local edit."""
    return ConflictDiscarded(
        room_id=local.id,
        local_updated_at=local.updated_at,
        remote_updated_at=remote.updated_at,
    )
