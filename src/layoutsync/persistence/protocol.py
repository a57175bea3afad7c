"""Protocols for the storage capabilities the sync engine consumes.

Concrete stores (in-memory, file, SQL) implement these so they can be
combined freely inside a ``PersistenceAdapter``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

# Receives one raw record from an update source.
BroadcastCallback = Callable[[Any], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class RemoteSnapshot:
    """Document snapshot as returned by a remote store.

    ``data`` is either the value itself or a zero-argument callable that
    produces it; ``exists`` may be omitted, in which case presence of data
    decides.
    """

    data: Any = None
    exists: bool | None = None


def resolve_snapshot_data(snapshot: RemoteSnapshot | None) -> Any:
    """Normalise eager and lazy snapshot payloads to a plain value."""
    if snapshot is None:
        return None
    payload = snapshot.data
    if callable(payload):
        return payload()
    return payload


def snapshot_exists(snapshot: RemoteSnapshot | None) -> bool:
    """Return whether *snapshot* refers to an existing document."""
    if snapshot is None:
        return False
    if snapshot.exists is not None:
        return snapshot.exists
    return snapshot.data is not None


@dataclass(frozen=True)
class CompileRequest:
    """Payload handed to the external compile worker."""

    app_id: str
    draft_id: str
    compiled_id: str
    triggered_at: datetime


class KeyValueStore(Protocol):
    """Synchronous local storage of JSON-compatible documents."""

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None if absent."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...


class BroadcastChannel(Protocol):
    """Same-process delivery of raw update records to other participants."""

    def publish(self, topic: str, payload: Any, sender: str) -> None:
        """Deliver *payload* to every subscriber of *topic* except *sender*."""
        ...

    def subscribe(
        self, topic: str, callback: BroadcastCallback, participant: str
    ) -> Unsubscribe:
        """Register *callback* for records on *topic* sent by others."""
        ...


class Transaction(Protocol):
    """Read/write handle passed to a transaction body."""

    async def get(self, path: str) -> RemoteSnapshot | None: ...

    def set(self, path: str, value: Any) -> None: ...


TransactionBody = Callable[[Transaction], Awaitable[Any]]


class RemoteDocumentStore(Protocol):
    """Remote document store with change subscriptions."""

    async def get(self, path: str) -> RemoteSnapshot | None: ...

    async def set(self, path: str, value: Any) -> None: ...

    def subscribe(
        self,
        path: str,
        on_snapshot: Callable[[RemoteSnapshot | None], None],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Unsubscribe: ...


class TransactionalDocumentStore(RemoteDocumentStore, Protocol):
    """Remote store that can run a read-modify-write body atomically."""

    async def run_transaction(self, body: TransactionBody) -> Any: ...


CompileWorker = Callable[[CompileRequest], Awaitable[None]]
