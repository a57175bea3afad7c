"""Replicated satellite documents: the draft and its compiled output.

One ``ArtifactStore`` holds the current version of one document. It is
persisted locally, broadcast to same-process participants and mirrored to
the remote store, all under timestamp-only last-writer-wins: a document
is rejected only if it is strictly older than the one held.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar
from uuid import uuid4

from layoutsync.models.artifacts import CompiledArtifact, DraftArtifact
from layoutsync.models.base import WireModel, parse_wire
from layoutsync.persistence.adapter import ConditionalWrite
from layoutsync.persistence.paths import compiled_path, draft_path
from layoutsync.sync.resolver import is_stale

if TYPE_CHECKING:
    from datetime import datetime

    from layoutsync.persistence.adapter import PersistenceAdapter
    from layoutsync.persistence.protocol import Unsubscribe

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=WireModel)

Origin = Literal["local", "remote"]
ArtifactListener = Callable[[Any, Origin], None]
WriteGate = Callable[[], bool]


@dataclass(frozen=True)
class ArtifactKind(Generic[A]):
    """How to key, identify and date one kind of document.

    Attributes:
        name: Short name used in log lines.
        model: Wire model the documents validate against.
        path_of: Builds the document path from ``(app_id, document_id)``.
        id_of: Extracts the document id.
        timestamp_of: Extracts the timestamp compared for staleness.
    """

    name: str
    model: type[A]
    path_of: Callable[[str, str], str]
    id_of: Callable[[A], str]
    timestamp_of: Callable[[A], datetime]


DRAFT_KIND: ArtifactKind[DraftArtifact] = ArtifactKind(
    name="draft",
    model=DraftArtifact,
    path_of=draft_path,
    id_of=lambda doc: doc.draft_id,
    timestamp_of=lambda doc: doc.updated_at,
)

COMPILED_KIND: ArtifactKind[CompiledArtifact] = ArtifactKind(
    name="compiled",
    model=CompiledArtifact,
    path_of=compiled_path,
    id_of=lambda doc: doc.compiled_id,
    timestamp_of=lambda doc: doc.compiled_at,
)


class ArtifactStore(Generic[A]):
    """Holds and replicates the current version of one artifact document.

    The store is keyed by ``(app_id, document_id)``. Writing a document with
    a different id, or calling ``follow()``, moves the store to that id.

    Attributes:
        kind: Document kind handled by this store.
        app_id: Application the document belongs to.
        adapter: Storage capabilities for this participant.
        participant_id: Identity used to skip our own broadcasts.
    """

    def __init__(
        self,
        kind: ArtifactKind[A],
        app_id: str,
        adapter: PersistenceAdapter,
        initial: A | None = None,
        *,
        document_id: str | None = None,
        participant_id: str | None = None,
        write_gate: WriteGate | None = None,
    ) -> None:
        self.kind = kind
        self.app_id = app_id
        self.adapter = adapter
        self.participant_id = participant_id or f"{kind.name}-{uuid4()}"
        self._write_gate = write_gate
        self._snapshot: A | None = initial
        self._document_id = kind.id_of(initial) if initial is not None else document_id
        self._listeners: list[ArtifactListener] = []
        self._unsubscribers: list[Unsubscribe] = []
        self._connected = False

    # --- Read surface ---

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def path(self) -> str | None:
        if self._document_id is None:
            return None
        return self.kind.path_of(self.app_id, self._document_id)

    @property
    def connected(self) -> bool:
        return self._connected

    def read(self) -> A | None:
        return self._snapshot

    def subscribe(self, listener: ArtifactListener) -> Unsubscribe:
        """Register *listener* for accepted writes. Returns an unsubscribe handle."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Writes ---

    def write(
        self, doc: A, origin: Origin = "local", *, mirror_remote: bool = True
    ) -> bool:
        """Replace the held document with *doc* unless it is stale.

        Local writes are persisted, broadcast and mirrored to the remote
        store; remote-origin writes are only persisted locally.

        Returns:
            True if *doc* is now the held document.

        Raises:
            TypeError: If *doc* is not of this store's model.
        """
        if not isinstance(doc, self.kind.model):
            msg = (
                f"{self.kind.name} store expects {self.kind.model.__name__}, "
                f"got {type(doc).__name__}"
            )
            raise TypeError(msg)

        doc_id = self.kind.id_of(doc)
        current = self._snapshot
        same_document = current is not None and doc_id == self._document_id
        if same_document and is_stale(
            self.kind.timestamp_of(doc), self.kind.timestamp_of(current)
        ):
            logger.debug(
                "STALE_ARTIFACT_DROPPED: kind=%s id=%s origin=%s",
                self.kind.name,
                doc_id,
                origin,
            )
            return False

        gate = self._write_gate
        if origin == "local" and gate is not None and not gate():
            logger.info("ARTIFACT_WRITE_LOCKED: kind=%s id=%s", self.kind.name, doc_id)
            return False

        if same_document and doc == current:
            return True

        if doc_id != self._document_id:
            self._rekey(doc_id)
        self._snapshot = doc
        path = self.path
        assert path is not None
        self.adapter.write_local(path, doc.to_wire())
        if origin == "local":
            self.adapter.publish(path, doc.to_wire(), self.participant_id)
            if mirror_remote and self.adapter.has_remote:
                self.adapter.spawn(
                    self._mirror_remote(doc), f"{self.kind.name} mirror {path}"
                )
        logger.debug(
            "ARTIFACT_WRITTEN: kind=%s id=%s origin=%s", self.kind.name, doc_id, origin
        )
        self._notify(doc, origin)
        return True

    def remote_write(self, doc: A) -> ConditionalWrite:
        """Remote write of *doc* that only lands if the stored copy is not newer."""
        timestamp = self.kind.timestamp_of(doc)

        def supersedes(existing: Any | None) -> bool:
            held = parse_wire(self.kind.model, existing)
            return held is None or not is_stale(timestamp, self.kind.timestamp_of(held))

        return ConditionalWrite(
            self.kind.path_of(self.app_id, self.kind.id_of(doc)),
            doc.to_wire(),
            supersedes,
        )

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        """Adopt persisted copies and start listening for updates."""
        if self._connected:
            return
        self._connected = True
        await self._attach()
        logger.info(
            "ARTIFACT_CONNECTED: kind=%s app=%s id=%s",
            self.kind.name,
            self.app_id,
            self._document_id,
        )

    async def disconnect(self) -> None:
        self._detach()
        self._connected = False
        await self.adapter.drain()

    async def follow(self, document_id: str | None) -> None:
        """Move the store to *document_id* and load that document."""
        if document_id is None or document_id == self._document_id:
            return
        self._rekey(document_id, reattach=False)
        if self._connected:
            await self._attach()

    # --- Internals ---

    def _rekey(self, document_id: str, *, reattach: bool = True) -> None:
        logger.info(
            "ARTIFACT_REKEYED: kind=%s %s -> %s",
            self.kind.name,
            self._document_id,
            document_id,
        )
        self._detach()
        self._document_id = document_id
        held = self._snapshot
        if held is not None and self.kind.id_of(held) != document_id:
            self._snapshot = None
        if reattach and self._connected:
            self._listen()

    async def _attach(self) -> None:
        if self.path is None:
            return
        self._restore_local()
        self._listen()
        if self.adapter.has_remote:
            await self._bootstrap_remote()

    def _listen(self) -> None:
        path = self.path
        if path is None:
            return
        unsubscribe = self.adapter.listen(path, self._on_update, self.participant_id)
        if unsubscribe is not None:
            self._unsubscribers.append(unsubscribe)
        unsubscribe = self.adapter.subscribe_remote(path, self._on_update)
        if unsubscribe is not None:
            self._unsubscribers.append(unsubscribe)

    def _detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _restore_local(self) -> None:
        path = self.path
        assert path is not None
        raw = self.adapter.read_local(path)
        if raw is None:
            if self._snapshot is not None:
                self.adapter.write_local(path, self._snapshot.to_wire())
            return
        persisted = parse_wire(self.kind.model, raw)
        if persisted is None:
            logger.info(
                "Persisted %s at %s is incompatible, ignoring", self.kind.name, path
            )
            return
        held = self._snapshot
        if held is not None and is_stale(
            self.kind.timestamp_of(persisted), self.kind.timestamp_of(held)
        ):
            return
        self._snapshot = persisted

    async def _bootstrap_remote(self) -> None:
        path = self.path
        assert path is not None
        try:
            payload = await self.adapter.read_remote(path)
        except Exception:
            logger.warning("Remote read failed for %s", path, exc_info=True)
            return
        if payload is None:
            if self._snapshot is None:
                return
            try:
                seed = self.remote_write(self._snapshot)
                await self.adapter.write_conditional([seed])
            except Exception:
                logger.warning("Remote seed failed for %s", path, exc_info=True)
            else:
                logger.info(
                    "ARTIFACT_REMOTE_SEEDED: kind=%s path=%s", self.kind.name, path
                )
            return
        self._on_update(payload)

    def _on_update(self, payload: Any) -> None:
        doc = parse_wire(self.kind.model, payload)
        if doc is None:
            logger.debug("ARTIFACT_PAYLOAD_IGNORED: kind=%s", self.kind.name)
            return
        if self.kind.id_of(doc) != self._document_id:
            return
        self.write(doc, "remote")

    async def _mirror_remote(self, doc: A) -> None:
        landed = await self.adapter.write_conditional([self.remote_write(doc)])
        if not landed:
            logger.debug(
                "ARTIFACT_MIRROR_SKIPPED: kind=%s id=%s",
                self.kind.name,
                self.kind.id_of(doc),
            )

    def _notify(self, doc: A, origin: Origin) -> None:
        for listener in list(self._listeners):
            try:
                listener(doc, origin)
            except Exception:
                logger.exception("%s listener failed", self.kind.name)


def draft_store(
    app_id: str,
    adapter: PersistenceAdapter,
    initial: DraftArtifact | None = None,
    **kwargs: Any,
) -> ArtifactStore[DraftArtifact]:
    return ArtifactStore(DRAFT_KIND, app_id, adapter, initial, **kwargs)


def compiled_store(
    app_id: str,
    adapter: PersistenceAdapter,
    initial: CompiledArtifact | None = None,
    **kwargs: Any,
) -> ArtifactStore[CompiledArtifact]:
    return ArtifactStore(COMPILED_KIND, app_id, adapter, initial, **kwargs)
