"""Compile/publish pipeline state machine and its draft lock.

States: idle, compiling, success, error.

    idle|success|error --trigger--> compiling
    compiling --abort--> idle
    compiling --publish--> success
    any --failure--> error

The draft lock is set on trigger and cleared on every exit from
compiling. Failures never raise; they become ``pipeline.error`` and reach
subscribers through the normal change notifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from layoutsync.models.session import (
    PIPELINE_ABORTED,
    CompiledShadow,
    DraftLock,
    PipelineError,
    PipelineState,
    PipelineStatus,
)
from layoutsync.persistence.protocol import CompileRequest
from layoutsync.sync.resolver import sort_key

if TYPE_CHECKING:
    from datetime import datetime

    from layoutsync.models.artifacts import CompiledArtifact
    from layoutsync.sync.artifacts import ArtifactStore
    from layoutsync.sync.engine import SharedSessionEngine

logger = logging.getLogger(__name__)

PUBLISH_FAILED = "PUBLISH_FAILED"
PUBLISH_REJECTED = "PUBLISH_REJECTED"


@dataclass(frozen=True)
class PublishMetadata:
    """Optional labels recorded with a published version."""

    tag: str | None = None
    notes: str | None = None


def new_compiled_id(draft_id: str) -> str:
    """Allocate a fresh compiled-document id for *draft_id*."""
    return f"compiled-{draft_id}-{uuid4().hex[:12]}"


class PipelineCoordinator:
    """Drives the pipeline through the engine's local update path.

    Attributes:
        engine: The session engine whose snapshot holds the pipeline state.
        compiled_store: Store the published compiled document is written to.
    """

    def __init__(
        self,
        engine: SharedSessionEngine,
        compiled_store: ArtifactStore[CompiledArtifact] | None = None,
    ) -> None:
        self.engine = engine
        self.compiled_store = compiled_store

    @property
    def state(self) -> PipelineState:
        return self.engine.snapshot.pipeline

    @property
    def is_draft_locked(self) -> bool:
        return self.engine.draft_locked

    def _released_lock(self, now: datetime) -> DraftLock:
        lock = self.engine.snapshot.draft_lock
        if not lock.locked:
            return lock
        return lock.model_copy(update={"locked": False, "released_at": now})

    def trigger(self, draft_id: str) -> str | None:
        """Start compiling *draft_id*.

        Returns:
            The allocated compiled id, or None if a compile is already running.
        """
        if self.state.status is PipelineStatus.COMPILING:
            logger.warning(
                "PIPELINE_TRIGGER_IGNORED: draft=%s already compiling %s",
                draft_id,
                self.state.draft_id,
            )
            return None

        now = self.engine.now()
        compiled_id = new_compiled_id(draft_id)
        self.engine.update(
            pipeline=PipelineState(
                status=PipelineStatus.COMPILING,
                triggered_at=now,
                draft_id=draft_id,
                compiled_id=compiled_id,
            ),
            draft_lock=DraftLock(locked=True, draft_id=draft_id, locked_at=now),
        )
        logger.info("PIPELINE_TRIGGERED: draft=%s compiled=%s", draft_id, compiled_id)

        adapter = self.engine.adapter
        if adapter.supports_compile_worker:
            request = CompileRequest(
                app_id=self.engine.app_id,
                draft_id=draft_id,
                compiled_id=compiled_id,
                triggered_at=now,
            )
            adapter.spawn(
                adapter.invoke_compile_worker(request), f"compile {compiled_id}"
            )
        return compiled_id

    def abort(self, reason: str | None = None) -> bool:
        """Return to idle and release the draft lock.

        This is a state change only; an in-flight compile must notice it
        by itself.
        """
        pipeline = self.state
        if pipeline.status is not PipelineStatus.COMPILING:
            logger.info("PIPELINE_ABORT_IGNORED: status=%s", pipeline.status)
            return False

        now = self.engine.now()
        error = (
            PipelineError(code=PIPELINE_ABORTED, message=reason)
            if reason is not None
            else None
        )
        applied = self.engine.update(
            pipeline=PipelineState(
                status=PipelineStatus.IDLE,
                aborted_at=now,
                draft_id=pipeline.draft_id,
                compiled_id=pipeline.compiled_id,
                error=error,
            ),
            draft_lock=self._released_lock(now),
        )
        logger.info("PIPELINE_ABORTED: draft=%s reason=%s", pipeline.draft_id, reason)
        return applied

    async def publish(
        self, artifact: CompiledArtifact, metadata: PublishMetadata | None = None
    ) -> bool:
        """Publish *artifact* and move the pipeline to success.

        With a transactional remote store the compiled document and the
        session snapshot are written in one transaction: both land or
        neither does. A transaction that finds newer documents skips
        silently; one that raises moves the pipeline to error.

        Returns:
            True if the publish was applied.
        """
        pipeline = self.state
        if pipeline.status is not PipelineStatus.COMPILING:
            logger.warning(
                "PIPELINE_PUBLISH_IGNORED: status=%s compiled=%s",
                pipeline.status,
                artifact.compiled_id,
            )
            return False
        if self.compiled_store is None:
            logger.error("Cannot publish %s: no compiled store", artifact.compiled_id)
            return False

        now = self.engine.now()
        metadata = metadata or PublishMetadata()
        draft_id = pipeline.draft_id or artifact.draft_id
        fields: dict[str, Any] = {
            "pipeline": PipelineState(
                status=PipelineStatus.SUCCESS,
                triggered_at=pipeline.triggered_at,
                published_at=now,
                tag=metadata.tag,
                notes=metadata.notes,
                draft_id=draft_id,
                compiled_id=artifact.compiled_id,
            ),
            "compiled_shadow": CompiledShadow(
                draft_id=draft_id, compiled_id=artifact.compiled_id, published_at=now
            ),
            "compiled_id": artifact.compiled_id,
            "draft_lock": self._released_lock(now),
        }

        if self.engine.adapter.supports_transactions:
            return await self._publish_atomically(artifact, fields)

        if not self.compiled_store.write(artifact):
            self.report_failure(
                PUBLISH_REJECTED,
                f"Compiled document {artifact.compiled_id} is older than the held one",
            )
            return False
        self.engine.update(**fields)
        logger.info("PIPELINE_PUBLISHED: compiled=%s", artifact.compiled_id)
        return True

    async def _publish_atomically(
        self, artifact: CompiledArtifact, fields: dict[str, Any]
    ) -> bool:
        assert self.compiled_store is not None
        record = self.engine.stage(**fields)
        if record is None:
            return False
        staged_from = self.engine.snapshot
        writes = [
            self.compiled_store.remote_write(artifact),
            self.engine.session_write(self.engine.project(record)),
        ]
        try:
            landed = await self.engine.adapter.write_conditional(writes)
        except Exception as exc:
            logger.exception("Transactional publish of %s failed", artifact.compiled_id)
            self.report_failure(PUBLISH_FAILED, str(exc) or type(exc).__name__)
            return False
        if not landed:
            logger.info(
                "PIPELINE_PUBLISH_SKIPPED: compiled=%s superseded remotely",
                artifact.compiled_id,
            )
            return False

        self.compiled_store.write(artifact, mirror_remote=False)
        held = self.engine.snapshot
        if held is staged_from or sort_key(held) == sort_key(record):
            # Commit even if the record is already held so peers hear it.
            self.engine.commit(record, mirror_remote=False)
        else:
            # Other updates landed while the transaction ran; rebase on them.
            self.engine.update(**fields)
        logger.info(
            "PIPELINE_PUBLISHED: compiled=%s (transactional)", artifact.compiled_id
        )
        return True

    def report_failure(self, code: str, message: str) -> bool:
        """Move the pipeline to error from any state, keeping the last publish."""
        pipeline = self.state
        now = self.engine.now()
        applied = self.engine.update(
            pipeline=PipelineState(
                status=PipelineStatus.ERROR,
                triggered_at=pipeline.triggered_at,
                draft_id=pipeline.draft_id,
                compiled_id=pipeline.compiled_id,
                error=PipelineError(code=code, message=message),
            ),
            draft_lock=self._released_lock(now),
        )
        logger.warning("PIPELINE_FAILED: code=%s message=%s", code, message)
        return applied
