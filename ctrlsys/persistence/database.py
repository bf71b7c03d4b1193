from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ctrlsys.config import DATABASE_URL

# ─────────────────────────────── engine factory ────────────────────────────────


def build_engine(url: str = DATABASE_URL, *, echo: bool = False) -> AsyncEngine:
    kwargs = {"echo": echo, "future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # aiosqlite: let the dialect pick its pool, wait on the file lock instead of failing
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(pool_size=20, max_overflow=40, pool_timeout=30)
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


async_engine = build_engine()

Base = declarative_base()

# ─────────────────────────────── schema ────────────────────────────────


async def create_schema(engine: AsyncEngine) -> None:
    # Make sure every model is registered on Base.metadata
    from ctrlsys.persistence import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
