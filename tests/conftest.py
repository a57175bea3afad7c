"""Shared pytest fixtures for layoutsync tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from dotenv import load_dotenv

from layoutsync.config import get_settings
from layoutsync.persistence import (
    LocalBroadcastHub,
    MemoryKeyValueStore,
    MemoryRemoteStore,
    PersistenceAdapter,
    reset_broadcast_hub,
)
from tests.helpers import ManualClock

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

load_dotenv()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def hub() -> LocalBroadcastHub:
    return LocalBroadcastHub()


@pytest.fixture
def remote() -> MemoryRemoteStore:
    return MemoryRemoteStore()


@pytest.fixture
def make_adapter(hub: LocalBroadcastHub) -> Callable[..., PersistenceAdapter]:
    """Build adapters sharing one broadcast hub, one per participant."""

    def _make(
        *,
        remote: MemoryRemoteStore | None = None,
        transactional: bool = False,
        local: Any = None,
        compile_worker: Any = None,
    ) -> PersistenceAdapter:
        return PersistenceAdapter(
            local=local if local is not None else MemoryKeyValueStore(),
            broadcast=hub,
            remote=remote,
            compile_worker=compile_worker,
            supports_transactions=transactional,
        )

    return _make


@pytest.fixture(autouse=True)
def _isolate_globals() -> Iterator[None]:
    """Reset cached settings and the process-wide hub around every test."""
    get_settings.cache_clear()
    reset_broadcast_hub()
    yield
    get_settings.cache_clear()
    reset_broadcast_hub()
