"""Last-writer-wins conflict resolution.

Session records are totally ordered by ``(revision, updated_at,
session_id)``. This is a tie-breaking order for whole-snapshot
replacement, not a causal clock. Documents without a revision counter
fall back to comparing their own timestamps.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from layoutsync.models.session import SessionUpdate


def sort_key(record: SessionUpdate) -> tuple[int, datetime, str]:
    """Return the total-order key of a session record."""
    return (record.revision, record.updated_at, record.session_id)


def should_apply(incoming: SessionUpdate, current: SessionUpdate) -> bool:
    """Return True iff *incoming* supersedes *current*.

    Higher revision wins; on equal revisions the strictly later
    ``updated_at`` wins; on equal timestamps the lexicographically greater
    ``session_id`` wins, so equal-timestamp writers cannot oscillate.
    Identical records never supersede each other.
    """
    return sort_key(incoming) > sort_key(current)


def is_stale(incoming_at: datetime, current_at: datetime | None) -> bool:
    """Timestamp-only staleness for documents without a revision counter.

    An incoming document is stale only if it is strictly older than the
    held one; equal timestamps are accepted.
    """
    if current_at is None:
        return False
    return incoming_at < current_at
