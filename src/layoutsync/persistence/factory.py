"""Persistence adapter factory.

Builds the adapter for this process from configuration: file or memory
local storage, the shared in-process broadcast hub, and an SQL remote
store when ``DATABASE__URL`` is set.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from layoutsync.config import get_settings
from layoutsync.persistence.adapter import PersistenceAdapter
from layoutsync.persistence.files import FileKeyValueStore
from layoutsync.persistence.memory import LocalBroadcastHub, MemoryKeyValueStore

if TYPE_CHECKING:
    from layoutsync.config import Settings
    from layoutsync.persistence.protocol import (
        BroadcastChannel,
        CompileWorker,
        KeyValueStore,
    )

# Process-wide hub so every participant in this process hears the others.
_broadcast_hub: LocalBroadcastHub | None = None


def get_broadcast_hub() -> LocalBroadcastHub:
    """Get the process-wide broadcast hub."""
    global _broadcast_hub  # noqa: PLW0603
    if _broadcast_hub is None:
        _broadcast_hub = LocalBroadcastHub()
    return _broadcast_hub


def build_local_store(settings: Settings) -> KeyValueStore:
    """Return a file store under STORAGE__LOCAL_DIR, or memory if unset."""
    if settings.storage.local_dir is not None:
        return FileKeyValueStore(settings.storage.local_dir)
    return MemoryKeyValueStore()


def build_adapter(
    settings: Settings | None = None,
    *,
    broadcast: BroadcastChannel | None = None,
    compile_worker: CompileWorker | None = None,
) -> PersistenceAdapter:
    """Build the persistence adapter described by *settings*.

    Args:
        settings: Defaults to ``get_settings()``.
        broadcast: Channel override; defaults to the process-wide hub.
        compile_worker: Optional compile-worker hook.
    """
    settings = settings or get_settings()
    remote = None
    if settings.database.url:
        from layoutsync.persistence.sql import SqlDocumentStore

        remote = SqlDocumentStore(
            settings.database.url,
            poll_interval=settings.sync.remote_poll_interval,
            echo=settings.dev.database_echo,
        )

    return PersistenceAdapter(
        local=build_local_store(settings),
        broadcast=broadcast if broadcast is not None else get_broadcast_hub(),
        remote=remote,
        compile_worker=compile_worker,
        supports_transactions=remote is not None
        and settings.sync.transactional_publish,
    )


def reset_broadcast_hub() -> None:
    """Drop the process-wide hub. Useful in tests."""
    global _broadcast_hub  # noqa: PLW0603
    _broadcast_hub = None
