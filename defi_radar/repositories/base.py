from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from defi_radar.core.database import AsyncSessionLocal
from defi_radar.core.errors import ReconciliationBatchError


SessionFactory = Callable[[], AsyncSession]


class BaseRepository:
    """Store access shared by the repositories.

    `session_factory` returns a fresh `AsyncSession`; the default is the lazy
    factory bound to `DATABASE_URL`.
    """

    def __init__(self, session_factory: SessionFactory = AsyncSessionLocal) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def write_batch(self, entity: str, size: int) -> AsyncIterator[AsyncSession]:
        """One atomic batch: commit on success, roll back and raise
        `ReconciliationBatchError` when the store rejects it."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            raise ReconciliationBatchError(entity, size, str(exc).splitlines()[0] if str(exc) else repr(exc)) from exc
