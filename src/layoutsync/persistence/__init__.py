"""Storage capabilities consumed by the sync engine.

Usage:
    from layoutsync.persistence import build_adapter

    adapter = build_adapter()  # configured from the environment
"""

from layoutsync.persistence.adapter import ConditionalWrite, PersistenceAdapter
from layoutsync.persistence.factory import (
    build_adapter,
    get_broadcast_hub,
    reset_broadcast_hub,
)
from layoutsync.persistence.files import FileKeyValueStore
from layoutsync.persistence.memory import (
    LocalBroadcastHub,
    MemoryKeyValueStore,
    MemoryRemoteStore,
)
from layoutsync.persistence.paths import (
    DocumentKind,
    compiled_path,
    document_path,
    draft_path,
    global_session_path,
)
from layoutsync.persistence.protocol import (
    CompileRequest,
    RemoteSnapshot,
    resolve_snapshot_data,
    snapshot_exists,
)

__all__ = [
    "CompileRequest",
    "ConditionalWrite",
    "DocumentKind",
    "FileKeyValueStore",
    "LocalBroadcastHub",
    "MemoryKeyValueStore",
    "MemoryRemoteStore",
    "PersistenceAdapter",
    "RemoteSnapshot",
    "build_adapter",
    "compiled_path",
    "document_path",
    "draft_path",
    "get_broadcast_hub",
    "global_session_path",
    "reset_broadcast_hub",
    "resolve_snapshot_data",
    "snapshot_exists",
]
