"""SQL-backed remote document store.

Documents live in a single ``sync_document`` table keyed by document
path, with the JSON payload in one column. Transactions lock the rows
they read (``SELECT ... FOR UPDATE`` where the dialect supports it).
Change subscriptions poll, since a plain SQL database cannot push.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import Column, DateTime
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import Field, SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from layoutsync.persistence.protocol import RemoteSnapshot

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from layoutsync.persistence.protocol import TransactionBody, Unsubscribe

logger = logging.getLogger(__name__)

_NOT_SEEN = object()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncDocument(SQLModel, table=True):
    """One replicated document (session snapshot, draft or compiled output).

    Attributes:
        path: Document path from the key scheme, e.g.
            ``/artifacts/{app}/public/data/globalSession``.
        payload: Wire-format JSON of the document.
        updated_at: When the row was last written.
    """

    __tablename__ = "sync_document"

    path: str = Field(sa_column=Column(sa.String(512), primary_key=True))
    payload: dict[str, Any] = Field(sa_column=Column(sa.JSON(), nullable=False))
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


async def _upsert(session: AsyncSession, path: str, value: Any) -> None:
    row = await session.get(SyncDocument, path, with_for_update=True)
    if row is None:
        session.add(SyncDocument(path=path, payload=value))
    else:
        row.payload = value
        row.updated_at = _utcnow()
        session.add(row)


class _SqlTransaction:
    """Transaction handle: locked reads, writes buffered until commit."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._writes: dict[str, Any] = {}

    async def get(self, path: str) -> RemoteSnapshot | None:
        if path in self._writes:
            return RemoteSnapshot(data=self._writes[path], exists=True)
        row = await self._session.get(SyncDocument, path, with_for_update=True)
        if row is None:
            return RemoteSnapshot(data=None, exists=False)
        return RemoteSnapshot(data=row.payload, exists=True)

    def set(self, path: str, value: Any) -> None:
        self._writes[path] = value

    async def flush(self) -> None:
        for path, value in self._writes.items():
            await _upsert(self._session, path, value)


class SqlDocumentStore:
    """Transactional remote store on any SQLAlchemy async database.

    Call ``start()`` before use and ``close()`` on shutdown.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
        poll_interval: float = 1.0,
        echo: bool = False,
    ) -> None:
        if url is None and engine is None:
            msg = "SqlDocumentStore needs a database url or an engine"
            raise ValueError(msg)
        self._url = url
        self._echo = echo
        self.engine = engine
        self.poll_interval = poll_interval
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._pollers: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        """Create the engine (if needed) and the document table."""
        if self.engine is None:
            assert self._url is not None
            self.engine = create_async_engine(
                self._url, echo=self._echo, pool_pre_ping=True
            )
        self._session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("SQL document store ready")

    async def close(self) -> None:
        """Stop all pollers and dispose of the engine."""
        for task in list(self._pollers):
            task.cancel()
        if self._pollers:
            await asyncio.gather(*self._pollers, return_exceptions=True)
        self._pollers.clear()
        if self.engine is not None:
            await self.engine.dispose()
        self._session_factory = None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            await self.start()
        assert self._session_factory is not None
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                logger.exception("Document store session error, rolling back")
                await session.rollback()
                raise

    async def get(self, path: str) -> RemoteSnapshot | None:
        async with self._session() as session:
            row = await session.get(SyncDocument, path)
            if row is None:
                return RemoteSnapshot(data=None, exists=False)
            return RemoteSnapshot(data=row.payload, exists=True)

    async def set(self, path: str, value: Any) -> None:
        async with self._session() as session:
            await _upsert(session, path, value)

    async def run_transaction(self, body: TransactionBody) -> Any:
        async with self._session() as session:
            transaction = _SqlTransaction(session)
            result = await body(transaction)
            await transaction.flush()
            return result

    def subscribe(
        self,
        path: str,
        on_snapshot: Callable[[RemoteSnapshot | None], None],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Unsubscribe:
        """Poll *path* and report every observed payload change.

        Must be called from a running event loop.
        """
        task = asyncio.get_running_loop().create_task(
            self._poll(path, on_snapshot, on_error)
        )
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(
        self,
        path: str,
        on_snapshot: Callable[[RemoteSnapshot | None], None],
        on_error: Callable[[BaseException], None] | None,
    ) -> None:
        last_seen: Any = _NOT_SEEN
        while True:
            try:
                snapshot = await self.get(path)
                current = snapshot.data if snapshot else None
                if current is not None and current != last_seen:
                    last_seen = current
                    on_snapshot(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if on_error is not None:
                    on_error(exc)
                else:
                    logger.exception("Polling %s failed", path)
            await asyncio.sleep(self.poll_interval)
