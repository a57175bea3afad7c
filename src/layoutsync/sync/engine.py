"""Shared-session engine: one session record kept consistent across writers.

The engine owns the current ``SessionSnapshot``. Local changes go through
``update()``, which is authoritative and always applies. Everything that
arrives from elsewhere (broadcast, remote subscription, connect-time
reads) goes through ``apply_update()``, which runs last-writer-wins
conflict resolution first. Every accepted transition replaces the
snapshot object; nothing is mutated in place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal
from uuid import uuid4

from pydantic import ValidationError

from layoutsync.models.base import parse_wire
from layoutsync.models.session import (
    LINEAGE_FIELDS,
    SHARED_FIELDS,
    CompiledShadow,
    SessionSnapshot,
    SessionUpdate,
    default_drawers,
)
from layoutsync.persistence.adapter import ConditionalWrite
from layoutsync.persistence.paths import global_session_path
from layoutsync.sync.pipeline import PipelineCoordinator
from layoutsync.sync.presence import (
    DEFAULT_PRESENCE_TTL,
    PresenceTracker,
    presence_entry,
)
from layoutsync.sync.resolver import should_apply

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import timedelta

    from layoutsync.models.artifacts import CompiledArtifact
    from layoutsync.models.session import (
        ActiveSurface,
        DrawerName,
        DrawerState,
        FrameName,
    )
    from layoutsync.persistence.adapter import PersistenceAdapter
    from layoutsync.persistence.protocol import Unsubscribe
    from layoutsync.sync.pipeline import PublishMetadata

logger = logging.getLogger(__name__)

Origin = Literal["local", "remote"]

_VIEW_FIELDS = ("active_frame", "selection_path", "scale", "drawers")
_POINTER_FIELDS = ("draft_id", "compiled_id", "compiled_shadow")
_PIPELINE_FIELDS = ("pipeline", "draft_lock")


@dataclass(frozen=True)
class ChangeSet:
    """Which parts of the snapshot an accepted update touched.

    Attributes:
        session: Frame, selection, scale or drawer layout changed.
        surface: The active surface changed.
        pipeline: Pipeline state or draft lock changed.
        draft_pointers: Draft id, compiled id or compiled shadow changed.
    """

    session: bool = False
    surface: bool = False
    pipeline: bool = False
    draft_pointers: bool = False

    @property
    def any(self) -> bool:
        return self.session or self.surface or self.pipeline or self.draft_pointers


def classify_changes(previous: SessionUpdate, current: SessionUpdate) -> ChangeSet:
    """Compute field-level dirty flags between two snapshots."""

    def changed(names: tuple[str, ...]) -> bool:
        return any(getattr(previous, n) != getattr(current, n) for n in names)

    return ChangeSet(
        session=changed(_VIEW_FIELDS),
        surface=previous.active_surface != current.active_surface,
        pipeline=changed(_PIPELINE_FIELDS),
        draft_pointers=changed(_POINTER_FIELDS),
    )


SessionListener = Callable[[SessionSnapshot, Origin, ChangeSet], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SharedSessionEngine:
    """Keeps one session snapshot consistent with every other participant.

    Attributes:
        app_id: Application whose session this is.
        adapter: Storage capabilities for this participant.
        local_session_id: This participant's identity in the session.
        pipeline: Compile/publish coordinator layered on this engine.
    """

    def __init__(
        self,
        app_id: str,
        adapter: PersistenceAdapter,
        *,
        session_id: str | None = None,
        active_frame: FrameName = "desktop",
        selection_path: str | None = None,
        active_surface: ActiveSurface = "canvas",
        scale: float = 1.0,
        drawers: Mapping[DrawerName, DrawerState] | None = None,
        draft_id: str | None = None,
        compiled_id: str | None = None,
        presence_ttl: timedelta = DEFAULT_PRESENCE_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.app_id = app_id
        self.adapter = adapter
        self.local_session_id = session_id or f"session-{uuid4()}"
        self.path = global_session_path(app_id)
        self._clock = clock
        self._tracker = PresenceTracker(presence_ttl)
        self._listeners: list[SessionListener] = []
        self._unsubscribers: list[Unsubscribe] = []
        self._connected = False

        seed = SessionUpdate(
            session_id=self.local_session_id,
            revision=0,
            updated_at=self.now(),
            active_frame=active_frame,
            selection_path=selection_path,
            active_surface=active_surface,
            scale=scale,
            drawers=dict(drawers) if drawers is not None else default_drawers(),
            draft_id=draft_id,
            compiled_id=compiled_id,
        )
        self._snapshot = SessionSnapshot(
            **{name: getattr(seed, name) for name in SessionUpdate.model_fields},
            presence={self.local_session_id: presence_entry(seed, is_local=True)},
        )
        self.pipeline = PipelineCoordinator(self)

    # --- Read surface ---

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def draft_locked(self) -> bool:
        return self._snapshot.draft_lock.locked

    @property
    def connected(self) -> bool:
        return self._connected

    def now(self) -> datetime:
        return self._clock()

    def subscribe(self, listener: SessionListener) -> Unsubscribe:
        """Register *listener* for accepted updates. Returns an unsubscribe handle."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Local updates ---

    def update(self, **fields: Any) -> bool:
        """Apply a local change to the shared fields.

        Accepts any of the shared field names as keyword arguments. Explicit
        ``draft_id``/``compiled_id`` win over a ``compiled_shadow`` pointer,
        which wins over the current values.

        Returns:
            True if the snapshot changed, False for a no-op.

        Raises:
            TypeError: If a keyword is not a shared field name.
        """
        record = self.stage(**fields)
        if record is None:
            return False
        self.commit(record)
        return True

    def stage(self, **fields: Any) -> SessionUpdate | None:
        """Build the next local record without applying it.

        Returns None if the merged fields equal the current ones or if the
        values do not validate.
        """
        unknown = fields.keys() - set(SHARED_FIELDS)
        if unknown:
            msg = f"not a shared session field: {', '.join(sorted(unknown))}"
            raise TypeError(msg)

        current = self._snapshot
        merged = {name: getattr(current, name) for name in SHARED_FIELDS}
        merged.update(fields)
        try:
            shadow = fields.get("compiled_shadow")
            if shadow is not None:
                shadow = CompiledShadow.model_validate(shadow)
                merged["compiled_shadow"] = shadow
            if "draft_id" not in fields:
                merged["draft_id"] = shadow.draft_id if shadow else current.draft_id
            if "compiled_id" not in fields:
                merged["compiled_id"] = (
                    shadow.compiled_id if shadow else current.compiled_id
                )
            record = SessionUpdate(
                session_id=self.local_session_id,
                revision=current.revision + 1,
                updated_at=self.now(),
                **merged,
            )
        except ValidationError:
            logger.warning("Rejected invalid local session update", exc_info=True)
            return None

        # Compare validated values so dict inputs match their held models.
        if all(
            getattr(record, name) == getattr(current, name) for name in SHARED_FIELDS
        ):
            return None
        return record

    def commit(self, record: SessionUpdate, *, mirror_remote: bool = True) -> None:
        """Apply a local record, bypassing conflict resolution.

        Persists locally, broadcasts the record, and mirrors the snapshot
        to the remote store unless *mirror_remote* is False (the caller has
        already written it).
        """
        previous = self._snapshot
        presence = self._tracker.track(
            previous.presence, record, self.local_session_id, self.now()
        )
        presence = PresenceTracker.ensure_local(
            presence, previous, self.local_session_id
        )
        self._snapshot = self._merge(previous, record, presence)
        logger.debug(
            "SESSION_LOCAL_UPDATE: app=%s revision=%d", self.app_id, record.revision
        )
        self._persist_local()
        self.adapter.publish(self.path, record.to_wire(), self.local_session_id)
        if mirror_remote and self.adapter.has_remote:
            self.adapter.spawn(
                self._mirror_remote(self._snapshot), f"session mirror {self.path}"
            )
        self._notify(previous, "local")

    # --- Remote updates ---

    def apply_update(
        self, update: SessionUpdate | Mapping[str, Any], origin: Origin = "remote"
    ) -> bool:
        """Apply a record from another writer if it wins conflict resolution.

        Raw payloads with an unknown schema version are ignored. A losing
        record still refreshes its sender's presence, but emits nothing.

        Returns:
            True if the snapshot's shared fields were replaced.
        """
        record = parse_wire(SessionUpdate, update)
        if record is None:
            logger.debug("SESSION_PAYLOAD_IGNORED: app=%s", self.app_id)
            return False

        current = self._snapshot
        presence = self._tracker.track(
            current.presence, record, self.local_session_id, self.now()
        )
        presence = PresenceTracker.ensure_local(
            presence, current, self.local_session_id
        )

        if not should_apply(record, current):
            self._snapshot = current.model_copy(update={"presence": presence})
            logger.debug(
                "STALE_UPDATE_DROPPED: app=%s from=%s revision=%d held=%d",
                self.app_id,
                record.session_id,
                record.revision,
                current.revision,
            )
            return False

        self._snapshot = self._merge(current, record, presence)
        logger.debug(
            "SESSION_REMOTE_UPDATE: app=%s from=%s revision=%d",
            self.app_id,
            record.session_id,
            record.revision,
        )
        self._persist_local()
        self._notify(current, origin)
        return True

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        """Restore persisted state and start listening to update sources."""
        if self._connected:
            return
        self._connected = True
        self._restore_local()

        unsubscribe = self.adapter.listen(
            self.path, self._on_broadcast, self.local_session_id
        )
        if unsubscribe is not None:
            self._unsubscribers.append(unsubscribe)

        if self.adapter.has_remote:
            await self._bootstrap_remote()
            unsubscribe = self.adapter.subscribe_remote(self.path, self._on_remote)
            if unsubscribe is not None:
                self._unsubscribers.append(unsubscribe)

        logger.info(
            "SESSION_CONNECTED: app=%s session=%s revision=%d",
            self.app_id,
            self.local_session_id[:16],
            self._snapshot.revision,
        )

    async def disconnect(self) -> None:
        """Stop listening and wait for pending background writes."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._connected = False
        await self.adapter.drain()
        logger.info("SESSION_DISCONNECTED: app=%s", self.app_id)

    def _restore_local(self) -> None:
        raw = self.adapter.read_local(self.path)
        if raw is None:
            self._persist_local()
            return
        persisted = parse_wire(SessionSnapshot, raw)
        if persisted is None:
            logger.info(
                "Persisted session for %s is incompatible, ignoring", self.app_id
            )
            return
        if should_apply(self._snapshot, persisted):
            return
        presence = PresenceTracker.relabel(persisted.presence, self.local_session_id)
        presence = self._tracker.prune(presence, self.now())
        presence = PresenceTracker.ensure_local(
            presence, persisted, self.local_session_id
        )
        self._snapshot = persisted.model_copy(update={"presence": presence})
        logger.info(
            "SESSION_RESTORED: app=%s revision=%d", self.app_id, persisted.revision
        )

    async def _bootstrap_remote(self) -> None:
        try:
            payload = await self.adapter.read_remote(self.path)
        except Exception:
            logger.warning("Remote read failed for %s", self.path, exc_info=True)
            return
        if payload is None:
            try:
                seed = self.session_write(self._snapshot)
                await self.adapter.write_conditional([seed])
            except Exception:
                logger.warning("Remote seed failed for %s", self.path, exc_info=True)
            else:
                logger.info("SESSION_REMOTE_SEEDED: app=%s", self.app_id)
            return
        self.apply_update(payload, "remote")

    def _on_broadcast(self, payload: Any) -> None:
        record = parse_wire(SessionUpdate, payload)
        if record is None or record.session_id == self.local_session_id:
            return
        self.apply_update(record, "remote")

    def _on_remote(self, payload: Any) -> None:
        record = parse_wire(SessionUpdate, payload)
        if record is None or record.session_id == self.local_session_id:
            # Our own writes echo back from the remote store.
            return
        self.apply_update(record, "remote")

    # --- Persistence helpers ---

    def project(self, record: SessionUpdate) -> SessionSnapshot:
        """Return the snapshot *record* would produce, without applying it."""
        return self._merge(self._snapshot, record, self._snapshot.presence)

    def session_write(self, snapshot: SessionSnapshot) -> ConditionalWrite:
        """Remote write of *snapshot* that only lands if it wins resolution."""

        def supersedes(existing: Any | None) -> bool:
            held = parse_wire(SessionUpdate, existing)
            return held is None or should_apply(snapshot, held)

        return ConditionalWrite(self.path, snapshot.to_wire(), supersedes)

    async def _mirror_remote(self, snapshot: SessionSnapshot) -> None:
        landed = await self.adapter.write_conditional([self.session_write(snapshot)])
        if not landed:
            logger.debug(
                "SESSION_MIRROR_SKIPPED: app=%s revision=%d",
                self.app_id,
                snapshot.revision,
            )

    def _persist_local(self) -> None:
        self.adapter.write_local(self.path, self._snapshot.to_wire())

    @staticmethod
    def _merge(
        current: SessionSnapshot, record: SessionUpdate, presence: dict[str, Any]
    ) -> SessionSnapshot:
        fields = LINEAGE_FIELDS + SHARED_FIELDS
        values = {name: getattr(record, name) for name in fields}
        values["presence"] = presence
        return current.model_copy(update=values)

    def _notify(self, previous: SessionSnapshot, origin: Origin) -> None:
        changes = classify_changes(previous, self._snapshot)
        snapshot = self._snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot, origin, changes)
            except Exception:
                logger.exception("Session listener failed")

    # --- Pipeline ---

    def trigger_pipeline(self, draft_id: str) -> str | None:
        return self.pipeline.trigger(draft_id)

    def abort_pipeline(self, reason: str | None = None) -> bool:
        return self.pipeline.abort(reason)

    async def publish_pipeline(
        self, artifact: CompiledArtifact, metadata: PublishMetadata | None = None
    ) -> bool:
        return await self.pipeline.publish(artifact, metadata)

    def report_pipeline_failure(self, code: str, message: str) -> bool:
        return self.pipeline.report_failure(code, message)
