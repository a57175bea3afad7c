"""One participant's view of an app: session engine plus its two documents."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from layoutsync.config import get_settings
from layoutsync.sync.artifacts import compiled_store, draft_store
from layoutsync.sync.engine import SharedSessionEngine

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from layoutsync.config import Settings
    from layoutsync.models.artifacts import CompiledArtifact, DraftArtifact
    from layoutsync.models.session import SessionSnapshot
    from layoutsync.persistence.adapter import PersistenceAdapter
    from layoutsync.persistence.protocol import Unsubscribe
    from layoutsync.sync.artifacts import ArtifactStore
    from layoutsync.sync.engine import ChangeSet, Origin

logger = logging.getLogger(__name__)


class Workspace:
    """Wires the session engine, draft store, compiled store and pipeline.

    The draft store refuses local writes while the draft lock is held, and
    the compiled store follows the session's ``compiled_id`` pointer.

    Attributes:
        engine: Shared-session engine.
        drafts: Store of the draft document.
        compiled: Store of the currently published compiled document.
    """

    def __init__(
        self,
        engine: SharedSessionEngine,
        drafts: ArtifactStore[DraftArtifact],
        compiled: ArtifactStore[CompiledArtifact],
    ) -> None:
        self.engine = engine
        self.drafts = drafts
        self.compiled = compiled
        self._unsubscribe: Unsubscribe | None = None
        engine.pipeline.compiled_store = compiled

    @classmethod
    def open(
        cls,
        app_id: str,
        adapter: PersistenceAdapter,
        *,
        draft: DraftArtifact,
        compiled: CompiledArtifact | None = None,
        settings: Settings | None = None,
        session_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
        local_compiler: bool = False,
    ) -> Workspace:
        """Build a workspace for *app_id* on *adapter*.

        Args:
            app_id: Application id.
            adapter: Storage capabilities for this participant.
            draft: Initial draft, used when nothing is persisted yet.
            compiled: Initial compiled document, if any.
            settings: Defaults to ``get_settings()``.
            session_id: Participant identity; random if omitted.
            clock: Time source, for tests.
            local_compiler: Install a ``LocalCompileWorker`` as the compile
                hook when the adapter has none.
        """
        settings = settings or get_settings()
        options: dict[str, Any] = {
            "session_id": session_id,
            "draft_id": draft.draft_id,
            "compiled_id": compiled.compiled_id if compiled is not None else None,
            "presence_ttl": timedelta(seconds=settings.sync.presence_ttl_seconds),
        }
        if clock is not None:
            options["clock"] = clock
        engine = SharedSessionEngine(app_id, adapter, **options)
        participant = engine.local_session_id
        drafts = draft_store(
            app_id,
            adapter,
            draft,
            participant_id=participant,
            write_gate=lambda: not engine.draft_locked,
        )
        compiled_doc = compiled_store(
            app_id,
            adapter,
            compiled,
            participant_id=participant,
        )
        workspace = cls(engine, drafts, compiled_doc)

        if local_compiler and not adapter.supports_compile_worker:
            from layoutsync.compiler import LocalCompileWorker

            adapter.compile_worker = LocalCompileWorker(workspace)
        return workspace

    @property
    def adapter(self) -> PersistenceAdapter:
        return self.engine.adapter

    async def connect(self) -> None:
        """Connect the engine, then both stores, and start following pointers."""
        await self.engine.connect()
        await self.drafts.follow(self.engine.snapshot.draft_id)
        await self.drafts.connect()
        await self.compiled.follow(self.engine.snapshot.compiled_id)
        await self.compiled.connect()
        self._unsubscribe = self.engine.subscribe(self._on_session)
        logger.info(
            "WORKSPACE_CONNECTED: app=%s draft=%s compiled=%s",
            self.engine.app_id,
            self.drafts.document_id,
            self.compiled.document_id,
        )

    async def disconnect(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.compiled.disconnect()
        await self.drafts.disconnect()
        await self.engine.disconnect()

    def _on_session(
        self, snapshot: SessionSnapshot, origin: Origin, changes: ChangeSet
    ) -> None:
        if not changes.draft_pointers:
            return
        if snapshot.compiled_id != self.compiled.document_id:
            self.adapter.spawn(
                self.compiled.follow(snapshot.compiled_id),
                f"follow compiled {snapshot.compiled_id}",
            )
        if snapshot.draft_id != self.drafts.document_id:
            self.adapter.spawn(
                self.drafts.follow(snapshot.draft_id),
                f"follow draft {snapshot.draft_id}",
            )
        logger.debug(
            "WORKSPACE_POINTERS: origin=%s draft=%s compiled=%s",
            origin,
            snapshot.draft_id,
            snapshot.compiled_id,
        )
