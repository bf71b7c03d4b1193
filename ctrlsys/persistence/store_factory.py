from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ctrlsys.persistence.database import (
    async_engine,
    build_engine,
    build_session_factory,
    create_schema,
)
from ctrlsys.persistence.repositories.completion_repository import CompletionRepository
from ctrlsys.persistence.repositories.memory_store import (
    InMemoryCompletionLedger,
    InMemoryTimerStore,
)
from ctrlsys.persistence.repositories.timer_repository import TimerRepository
from ctrlsys.persistence.store_base import CompletionLedger, TimerStore


class StoreProvider:
    """Hands out a store per unit of work.

    ``sql``: a fresh AsyncSession per scope, closed on exit.
    ``memory``: the same process-wide store every time.
    """

    def __init__(
        self,
        backend: str = "sql",
        *,
        database_url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        if backend not in ("sql", "memory"):
            raise ValueError(f"Unsupported store backend: {backend}")
        self.backend = backend
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._memory_timers: Optional[InMemoryTimerStore] = None
        self._memory_completions: Optional[InMemoryCompletionLedger] = None

        if backend == "sql":
            if session_factory is None:
                if engine is None:
                    engine = build_engine(database_url) if database_url else async_engine
                self.engine = engine
                session_factory = build_session_factory(engine)
            self.session_factory = session_factory
        else:
            self._memory_timers = InMemoryTimerStore()
            self._memory_completions = InMemoryCompletionLedger()

    async def init_schema(self) -> None:
        if self.backend == "sql" and self.engine is not None:
            await create_schema(self.engine)

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[TimerStore]:
        if self._memory_timers is not None:
            yield self._memory_timers
            return
        async with self.session_factory() as session:
            yield TimerRepository(session)

    @asynccontextmanager
    async def completions(self) -> AsyncIterator[CompletionLedger]:
        if self._memory_completions is not None:
            yield self._memory_completions
            return
        async with self.session_factory() as session:
            yield CompletionRepository(session)
