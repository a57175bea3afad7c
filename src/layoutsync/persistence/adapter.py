"""Persistence adapter combining local, broadcast, remote and worker capabilities.

The adapter is the only place that talks to storage. It turns every
storage failure into a log line and a "nothing happened" result, so
callers never see I/O exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from layoutsync.persistence.protocol import resolve_snapshot_data, snapshot_exists

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence

    from layoutsync.persistence.protocol import (
        BroadcastCallback,
        BroadcastChannel,
        CompileRequest,
        CompileWorker,
        KeyValueStore,
        RemoteDocumentStore,
        RemoteSnapshot,
        Transaction,
        Unsubscribe,
    )

logger = logging.getLogger(__name__)

# Local storage failures that are logged and swallowed.
_LOCAL_IO_ERRORS = (OSError, TypeError, ValueError)


@dataclass(frozen=True)
class ConditionalWrite:
    """A remote write that only lands if it supersedes the stored document.

    Attributes:
        path: Document path.
        payload: Wire payload to store.
        supersedes: Called with the currently stored payload (None when
            absent); returns True if *payload* should replace it.
    """

    path: str
    payload: Any
    supersedes: Callable[[Any | None], bool]


@dataclass
class PersistenceAdapter:
    """Storage capabilities available to one participant.

    Capabilities are declared explicitly: ``supports_transactions`` must be
    set by whoever builds the adapter, and is never inferred from the
    remote store's shape.
    """

    local: KeyValueStore | None = None
    broadcast: BroadcastChannel | None = None
    remote: RemoteDocumentStore | None = None
    compile_worker: CompileWorker | None = None
    supports_transactions: bool = False
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.supports_transactions and self.remote is None:
            msg = "supports_transactions requires a remote store"
            raise ValueError(msg)

    @property
    def supports_compile_worker(self) -> bool:
        return self.compile_worker is not None

    @property
    def has_remote(self) -> bool:
        return self.remote is not None

    # --- Local key-value store ---

    def read_local(self, path: str) -> Any | None:
        """Return the locally stored payload, or None if absent or unreadable."""
        if self.local is None:
            return None
        try:
            return self.local.get(path)
        except _LOCAL_IO_ERRORS:
            logger.warning("Local read failed for %s", path, exc_info=True)
            return None

    def write_local(self, path: str, payload: Any) -> bool:
        """Persist *payload* locally. Returns False if storage failed."""
        if self.local is None:
            return False
        try:
            self.local.set(path, payload)
        except _LOCAL_IO_ERRORS:
            logger.warning("Local write failed for %s", path, exc_info=True)
            return False
        return True

    # --- Same-process broadcast ---

    def publish(self, path: str, payload: Any, sender: str) -> None:
        if self.broadcast is not None:
            self.broadcast.publish(path, payload, sender)

    def listen(
        self, path: str, callback: BroadcastCallback, participant: str
    ) -> Unsubscribe | None:
        if self.broadcast is None:
            return None
        return self.broadcast.subscribe(path, callback, participant)

    # --- Remote document store ---

    async def read_remote(self, path: str) -> Any | None:
        """Return the remote payload, or None if the document does not exist.

        Raises whatever the remote store raises; callers decide whether a
        failed read may be treated as "absent".
        """
        if self.remote is None:
            return None
        snapshot = await self.remote.get(path)
        if not snapshot_exists(snapshot):
            return None
        return resolve_snapshot_data(snapshot)

    async def write_remote(self, path: str, payload: Any) -> None:
        if self.remote is not None:
            await self.remote.set(path, payload)

    async def write_conditional(self, writes: Sequence[ConditionalWrite]) -> bool:
        """Write every document in *writes*, or none of them.

        Uses a transaction when supported, so the staleness checks rerun
        against the committed state. Otherwise reads then writes, which is
        not linearizable; a lost race surfaces later as a stale update the
        resolver drops.

        Returns:
            True if the writes landed, False if any stored document was
            newer (the whole batch is skipped).
        """
        if self.remote is None or not writes:
            return False

        if self.supports_transactions:

            async def body(transaction: Transaction) -> bool:
                for write in writes:
                    existing = await transaction.get(write.path)
                    current = (
                        resolve_snapshot_data(existing)
                        if snapshot_exists(existing)
                        else None
                    )
                    if not write.supersedes(current):
                        return False
                for write in writes:
                    transaction.set(write.path, write.payload)
                return True

            run_transaction = self.remote.run_transaction  # type: ignore[attr-defined]
            return bool(await run_transaction(body))

        for write in writes:
            if not write.supersedes(await self.read_remote(write.path)):
                return False
        for write in writes:
            await self.remote.set(write.path, write.payload)
        return True

    def subscribe_remote(
        self, path: str, callback: Callable[[Any], None]
    ) -> Unsubscribe | None:
        """Deliver every existing remote snapshot of *path* to *callback*."""
        if self.remote is None:
            return None

        def on_snapshot(snapshot: RemoteSnapshot | None) -> None:
            if snapshot_exists(snapshot):
                callback(resolve_snapshot_data(snapshot))

        def on_error(exc: BaseException) -> None:
            logger.warning("Remote subscription error on %s: %s", path, exc)

        return self.remote.subscribe(path, on_snapshot, on_error)

    # --- Compile worker ---

    async def invoke_compile_worker(self, request: CompileRequest) -> bool:
        """Hand *request* to the compile worker. Failures are non-fatal."""
        if self.compile_worker is None:
            return False
        try:
            await self.compile_worker(request)
        except Exception:
            logger.warning(
                "Compile worker invocation failed for draft %s",
                request.draft_id,
                exc_info=True,
            )
            return False
        return True

    # --- Background work ---

    def spawn(
        self, coro: Coroutine[Any, Any, Any], label: str
    ) -> asyncio.Task[Any] | None:
        """Run *coro* in the background; its exceptions are logged, not raised.

        Without a running event loop the work is dropped with a warning:
        remote mirroring is best-effort.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, skipping background %s", label)
            return None

        async def guarded() -> Any:
            try:
                return await coro
            except Exception:
                logger.exception("Background %s failed", label)
                return None

        task = loop.create_task(guarded(), name=label)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for all background work, including work spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
