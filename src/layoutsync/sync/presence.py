"""Ephemeral per-participant presence with TTL expiry."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from layoutsync.models.session import PresenceEntry

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from layoutsync.models.session import SessionUpdate

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_TTL = timedelta(seconds=60)

Presence = dict[str, PresenceEntry]


def presence_entry(update: SessionUpdate, *, is_local: bool) -> PresenceEntry:
    """Build the presence entry a record implies for its sender."""
    return PresenceEntry(
        session_id=update.session_id,
        active_frame=update.active_frame,
        selection_path=update.selection_path,
        active_surface=update.active_surface,
        last_seen_at=update.updated_at,
        is_local=is_local,
    )


class PresenceTracker:
    """Maintains presence maps; every call returns a new dict.

    Attributes:
        ttl: Non-local entries not seen within this window are pruned.
    """

    def __init__(self, ttl: timedelta = DEFAULT_PRESENCE_TTL) -> None:
        self.ttl = ttl

    def track(
        self,
        presence: Mapping[str, PresenceEntry],
        update: SessionUpdate,
        local_session_id: str,
        now: datetime,
    ) -> Presence:
        """Upsert the sender of *update*, then prune expired entries."""
        sender = update.session_id
        upserted = dict(presence)
        upserted[sender] = presence_entry(
            update, is_local=sender == local_session_id
        )
        return self.prune(upserted, now)

    def prune(self, presence: Mapping[str, PresenceEntry], now: datetime) -> Presence:
        """Drop non-local entries whose ``last_seen_at`` is older than the TTL."""
        kept = {
            session_id: entry
            for session_id, entry in presence.items()
            if entry.is_local or now - entry.last_seen_at <= self.ttl
        }
        expired = presence.keys() - kept.keys()
        if expired:
            logger.debug("PRESENCE_PRUNED: %s", sorted(expired))
        return kept

    @staticmethod
    def ensure_local(
        presence: Mapping[str, PresenceEntry],
        snapshot: SessionUpdate,
        local_session_id: str,
    ) -> Presence:
        """Reinsert the local participant's entry if it is missing."""
        if local_session_id in presence:
            return dict(presence)
        healed = dict(presence)
        healed[local_session_id] = presence_entry(
            snapshot.model_copy(update={"session_id": local_session_id}),
            is_local=True,
        )
        return healed

    @staticmethod
    def relabel(
        presence: Mapping[str, PresenceEntry], local_session_id: str
    ) -> Presence:
        """Recompute ``is_local`` for a map written by another participant."""
        return {
            session_id: (
                entry
                if entry.is_local == (session_id == local_session_id)
                else entry.model_copy(
                    update={"is_local": session_id == local_session_id}
                )
            )
            for session_id, entry in presence.items()
        }
