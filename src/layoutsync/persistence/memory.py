"""In-process implementations of the storage capabilities.

Used for single-process deployments (several engines sharing one event
loop) and throughout the test suite.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from layoutsync.persistence.protocol import RemoteSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable

    from layoutsync.persistence.protocol import (
        BroadcastCallback,
        TransactionBody,
        Unsubscribe,
    )

logger = logging.getLogger(__name__)


class MemoryKeyValueStore:
    """Dict-backed key-value store holding deep copies of stored values."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        return sorted(self._data)


class LocalBroadcastHub:
    """Named same-process channel delivering records to other participants.

    One hub is shared by every participant in the process; a participant
    never receives its own records.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[tuple[str, BroadcastCallback]]] = (
            defaultdict(list)
        )

    def publish(self, topic: str, payload: Any, sender: str) -> None:
        for participant, callback in list(self._subscribers.get(topic, ())):
            if participant == sender:
                continue
            try:
                callback(copy.deepcopy(payload))
            except Exception:
                logger.exception(
                    "BROADCAST_DELIVERY_FAILED: topic=%s participant=%s",
                    topic,
                    participant,
                )

    def subscribe(
        self, topic: str, callback: BroadcastCallback, participant: str
    ) -> Unsubscribe:
        entry = (participant, callback)
        self._subscribers[topic].append(entry)

        def unsubscribe() -> None:
            entries = self._subscribers.get(topic, [])
            if entry in entries:
                entries.remove(entry)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))


class _MemoryTransaction:
    """Buffers writes until the transaction body completes."""

    def __init__(self, store: MemoryRemoteStore) -> None:
        self._store = store
        self.writes: dict[str, Any] = {}

    async def get(self, path: str) -> RemoteSnapshot | None:
        if path in self.writes:
            return RemoteSnapshot(data=copy.deepcopy(self.writes[path]), exists=True)
        return self._store._snapshot(path)

    def set(self, path: str, value: Any) -> None:
        self.writes[path] = copy.deepcopy(value)


class MemoryRemoteStore:
    """In-process transactional document store with change subscriptions.

    Subscribers are notified synchronously after every committed write,
    including the writer's own subscription.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Any] = {}
        self._listeners: dict[str, list[Callable[[RemoteSnapshot | None], None]]] = (
            defaultdict(list)
        )
        self._lock = asyncio.Lock()

    def _snapshot(self, path: str) -> RemoteSnapshot:
        if path not in self._documents:
            return RemoteSnapshot(data=None, exists=False)
        value = copy.deepcopy(self._documents[path])
        return RemoteSnapshot(data=lambda: value, exists=True)

    async def get(self, path: str) -> RemoteSnapshot | None:
        return self._snapshot(path)

    async def set(self, path: str, value: Any) -> None:
        async with self._lock:
            self._commit({path: value})

    def subscribe(
        self,
        path: str,
        on_snapshot: Callable[[RemoteSnapshot | None], None],
        on_error: Callable[[BaseException], None] | None = None,  # noqa: ARG002
    ) -> Unsubscribe:
        self._listeners[path].append(on_snapshot)

        def unsubscribe() -> None:
            listeners = self._listeners.get(path, [])
            if on_snapshot in listeners:
                listeners.remove(on_snapshot)

        return unsubscribe

    async def run_transaction(self, body: TransactionBody) -> Any:
        async with self._lock:
            transaction = _MemoryTransaction(self)
            result = await body(transaction)
            self._commit(transaction.writes)
            return result

    def _commit(self, writes: dict[str, Any]) -> None:
        for path, value in writes.items():
            self._documents[path] = copy.deepcopy(value)
        for path in writes:
            for listener in list(self._listeners.get(path, ())):
                try:
                    listener(self._snapshot(path))
                except Exception:
                    logger.exception("REMOTE_LISTENER_FAILED: path=%s", path)

    def paths(self) -> list[str]:
        return sorted(self._documents)
