"""Tests for presence tracking and TTL pruning."""

from __future__ import annotations

from datetime import timedelta

from layoutsync.models.session import PresenceEntry, SessionUpdate
from layoutsync.sync.presence import PresenceTracker, presence_entry
from tests.helpers import EPOCH


def _update(
    session_id: str, *, seconds: float = 0, frame: str = "desktop"
) -> SessionUpdate:
    return SessionUpdate(
        session_id=session_id,
        revision=1,
        updated_at=EPOCH + timedelta(seconds=seconds),
        active_frame=frame,
    )


def _entry(
    session_id: str, *, seconds: float = 0, is_local: bool = False
) -> PresenceEntry:
    return presence_entry(_update(session_id, seconds=seconds), is_local=is_local)


class TestTrack:
    """Upsert of the sender followed by pruning."""

    def test_sender_is_upserted_from_update_fields(self) -> None:
        """upsert should record the sender from update fields."""
        tracker = PresenceTracker()

        presence = tracker.track({}, _update("peer", frame="tablet"), "me", EPOCH)

        assert presence["peer"].active_frame == "tablet"
        assert presence["peer"].last_seen_at == EPOCH
        assert presence["peer"].is_local is False

    def test_local_sender_is_flagged_local(self) -> None:
        """upsert should flag the local sender as local."""
        tracker = PresenceTracker()

        presence = tracker.track({}, _update("me"), "me", EPOCH)

        assert presence["me"].is_local is True

    def test_returns_new_mapping(self) -> None:
        """upsert should return a new mapping."""
        tracker = PresenceTracker()
        original = {"peer": _entry("peer")}

        presence = tracker.track(original, _update("other"), "me", EPOCH)

        assert presence is not original
        assert set(original) == {"peer"}


class TestPrune:
    """TTL expiry with the local exemption."""

    def test_expired_remote_entries_are_dropped(self) -> None:
        """prune should drop expired remote entries."""
        tracker = PresenceTracker(timedelta(seconds=60))
        presence = {
            "stale": _entry("stale", seconds=0),
            "fresh": _entry("fresh", seconds=30),
        }

        kept = tracker.prune(presence, EPOCH + timedelta(seconds=61))

        assert set(kept) == {"fresh"}

    def test_entry_exactly_at_ttl_is_kept(self) -> None:
        """prune should keep an entry exactly at the TTL."""
        tracker = PresenceTracker(timedelta(seconds=60))

        kept = tracker.prune({"peer": _entry("peer")}, EPOCH + timedelta(seconds=60))

        assert "peer" in kept

    def test_local_entry_never_expires(self) -> None:
        """prune should never drop the local entry."""
        tracker = PresenceTracker(timedelta(seconds=60))
        presence = {"me": _entry("me", is_local=True)}

        kept = tracker.prune(presence, EPOCH + timedelta(hours=2))

        assert "me" in kept


class TestEnsureLocal:
    """Self-healing reinsertion of the local participant."""

    def test_missing_local_entry_is_reinserted(self) -> None:
        """ensure_local should reinsert a missing local entry."""
        snapshot = _update("peer", frame="mobile")

        healed = PresenceTracker.ensure_local({}, snapshot, "me")

        assert healed["me"].is_local is True
        assert healed["me"].session_id == "me"
        assert healed["me"].active_frame == "mobile"

    def test_existing_local_entry_is_kept(self) -> None:
        """ensure_local should keep an existing local entry."""
        existing = _entry("me", seconds=5, is_local=True)

        healed = PresenceTracker.ensure_local({"me": existing}, _update("peer"), "me")

        assert healed["me"] == existing


class TestRelabel:
    def test_is_local_recomputed_for_this_participant(self) -> None:
        """ensure_local should recompute is_local for this participant."""
        presence = {
            "writer": _entry("writer", is_local=True),
            "me": _entry("me", is_local=False),
        }

        relabelled = PresenceTracker.relabel(presence, "me")

        assert relabelled["writer"].is_local is False
        assert relabelled["me"].is_local is True
