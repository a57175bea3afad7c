"""Tests for Workspace wiring and the in-process compile worker."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from layoutsync.compiler import DRAFT_NOT_FOUND, LocalCompileWorker
from layoutsync.config import Settings, SyncConfig
from layoutsync.models.session import PipelineStatus, SessionSnapshot
from layoutsync.persistence import (
    MemoryKeyValueStore,
    MemoryRemoteStore,
    compiled_path,
    global_session_path,
)
from layoutsync.sync import Workspace
from tests.helpers import EPOCH, make_compiled, make_draft

if TYPE_CHECKING:
    from collections.abc import Callable

    from layoutsync.persistence import PersistenceAdapter
    from tests.helpers import ManualClock


def _settings(**sync: object) -> Settings:
    return Settings(_env_file=None, sync=SyncConfig(**sync))  # type: ignore[call-arg]


def _open(
    adapter: PersistenceAdapter,
    clock: ManualClock,
    session_id: str = "me",
    **kwargs: object,
) -> Workspace:
    return Workspace.open(
        "app",
        adapter,
        draft=make_draft(),
        settings=_settings(),
        session_id=session_id,
        clock=clock,
        **kwargs,  # type: ignore[arg-type]
    )


class TestOpen:
    def test_wires_engine_stores_and_pipeline(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """open should wire the engine, stores and pipeline."""
        ws = _open(make_adapter(), clock)

        assert ws.engine.local_session_id == "me"
        assert ws.engine.snapshot.draft_id == "d1"
        assert ws.drafts.document_id == "d1"
        assert ws.drafts.read() == make_draft()
        assert ws.compiled.read() is None
        assert ws.engine.pipeline.compiled_store is ws.compiled
        assert ws.adapter is ws.engine.adapter

    def test_presence_ttl_comes_from_settings(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """open should take the presence TTL from settings."""
        ws = Workspace.open(
            "app",
            make_adapter(),
            draft=make_draft(),
            settings=_settings(presence_ttl_seconds=5),
            clock=clock,
        )

        assert ws.engine._tracker.ttl == timedelta(seconds=5)

    def test_local_compiler_is_installed_once(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """open should install the local compiler only once."""
        adapter = make_adapter()

        ws = _open(adapter, clock, local_compiler=True)

        assert isinstance(adapter.compile_worker, LocalCompileWorker)
        assert adapter.compile_worker.workspace is ws

        _open(adapter, clock, session_id="other", local_compiler=True)

        assert adapter.compile_worker.workspace is ws


class TestDraftLock:
    @pytest.mark.asyncio
    async def test_draft_edits_are_refused_while_compiling(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """Local draft edits should be refused while compiling."""
        ws = _open(make_adapter(), clock)
        await ws.connect()
        edited = make_draft(updated_at=EPOCH + timedelta(minutes=1), title="edited")

        ws.engine.trigger_pipeline("d1")

        assert ws.drafts.write(edited) is False
        assert ws.drafts.read() == make_draft()

        ws.engine.abort_pipeline()

        assert ws.drafts.write(edited) is True
        assert ws.drafts.read() == edited
        await ws.disconnect()

    @pytest.mark.asyncio
    async def test_remote_drafts_pass_the_lock(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """Remote drafts should pass the draft lock."""
        ws = _open(make_adapter(), clock)
        await ws.connect()
        ws.engine.trigger_pipeline("d1")
        newer = make_draft(updated_at=EPOCH + timedelta(minutes=1), title="peer")

        assert ws.drafts.write(newer, "remote") is True
        await ws.disconnect()


class TestConnect:
    @pytest.mark.asyncio
    async def test_follows_persisted_compiled_pointer(self, clock: ManualClock) -> None:
        """connect should follow the persisted compiled pointer."""
        from layoutsync.persistence import PersistenceAdapter

        local = MemoryKeyValueStore()
        local.set(compiled_path("app", "c1"), make_compiled("c1").to_wire())
        local.set(
            global_session_path("app"),
            SessionSnapshot(
                session_id="earlier",
                revision=3,
                updated_at=EPOCH,
                draft_id="d1",
                compiled_id="c1",
            ).to_wire(),
        )
        ws = _open(PersistenceAdapter(local=local), clock)

        await ws.connect()

        assert ws.engine.snapshot.compiled_id == "c1"
        assert ws.compiled.document_id == "c1"
        assert ws.compiled.read() == make_compiled("c1")
        await ws.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_stops_following(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """disconnect should disconnect the engine and both stores."""
        ws = _open(make_adapter(), clock)
        await ws.connect()

        await ws.disconnect()

        assert ws.engine.connected is False
        assert ws.drafts.connected is False
        assert ws.compiled.connected is False


class TestLocalCompileWorker:
    """Trigger, compile in-process and publish."""

    @pytest.mark.asyncio
    async def test_trigger_compiles_and_publishes(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """trigger should compile and publish in-process."""
        ws = _open(make_adapter(), clock, local_compiler=True)
        await ws.connect()

        compiled_id = ws.engine.trigger_pipeline("d1")
        await ws.adapter.drain()

        assert compiled_id is not None
        pipeline = ws.engine.pipeline.state
        assert pipeline.status is PipelineStatus.SUCCESS
        assert pipeline.compiled_id == compiled_id
        assert ws.engine.snapshot.compiled_id == compiled_id
        assert ws.engine.draft_locked is False
        published = ws.compiled.read()
        assert published is not None
        assert published.compiled_id == compiled_id
        assert published.runtime.nodes["hero"]["props"]["styler"] == {"color": "red"}
        await ws.disconnect()

    @pytest.mark.asyncio
    async def test_abort_discards_the_result(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """abort should discard the in-flight compile result."""
        ws = _open(make_adapter(), clock, local_compiler=True)
        await ws.connect()

        ws.engine.trigger_pipeline("d1")
        ws.engine.abort_pipeline("changed my mind")
        await ws.adapter.drain()

        assert ws.engine.pipeline.state.status is PipelineStatus.IDLE
        assert ws.compiled.read() is None
        assert ws.engine.snapshot.compiled_id is None
        await ws.disconnect()

    @pytest.mark.asyncio
    async def test_missing_draft_reports_failure(
        self, make_adapter: Callable[..., PersistenceAdapter], clock: ManualClock
    ) -> None:
        """Compiling a missing draft should report failure."""
        ws = _open(make_adapter(), clock, local_compiler=True)
        await ws.connect()

        ws.engine.trigger_pipeline("missing")
        await ws.adapter.drain()

        pipeline = ws.engine.pipeline.state
        assert pipeline.status is PipelineStatus.ERROR
        assert pipeline.error is not None
        assert pipeline.error.code == DRAFT_NOT_FOUND
        assert ws.engine.draft_locked is False
        await ws.disconnect()

    @pytest.mark.asyncio
    async def test_peer_follows_published_document(
        self,
        make_adapter: Callable[..., PersistenceAdapter],
        remote: MemoryRemoteStore,
        clock: ManualClock,
    ) -> None:
        """A peer should follow the newly published document."""
        author = _open(
            make_adapter(remote=remote), clock, "author", local_compiler=True
        )
        viewer = _open(make_adapter(remote=remote), clock, "viewer")
        await author.connect()
        await viewer.connect()

        compiled_id = author.engine.trigger_pipeline("d1")
        await author.adapter.drain()
        await viewer.adapter.drain()

        assert viewer.engine.snapshot.compiled_id == compiled_id
        assert viewer.compiled.document_id == compiled_id
        followed = viewer.compiled.read()
        assert followed is not None
        assert followed.compiled_id == compiled_id
        await author.disconnect()
        await viewer.disconnect()
