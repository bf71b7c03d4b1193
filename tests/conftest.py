import pytest_asyncio

from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.persistence.store_factory import StoreProvider


@pytest_asyncio.fixture
async def sql_provider(tmp_path):
    """File-backed SQLite store, one database per test."""
    provider = StoreProvider("sql", database_url=f"sqlite+aiosqlite:///{tmp_path / 'ctrlsys-test.db'}")
    await provider.init_schema()
    yield provider
    await provider.dispose()


@pytest_asyncio.fixture(params=["sql", "memory"])
async def provider(request, tmp_path):
    """Runs the test once against each store backend."""
    if request.param == "memory":
        yield StoreProvider("memory")
        return
    provider = StoreProvider("sql", database_url=f"sqlite+aiosqlite:///{tmp_path / 'ctrlsys-test.db'}")
    await provider.init_schema()
    yield provider
    await provider.dispose()


@pytest_asyncio.fixture
async def hub():
    hub = BroadcastHub(buffer_size=100)
    yield hub
    hub.clear()
