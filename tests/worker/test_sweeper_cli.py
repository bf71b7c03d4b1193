import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from click.testing import CliRunner

from ctrlsys.persistence.store_factory import StoreProvider
from ctrlsys.worker.sweeper_cli import cli


@pytest.mark.asyncio
async def test_once_completes_expired_timers(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
    provider = StoreProvider("sql", database_url=url)
    await provider.init_schema()
    past = datetime.now(UTC) - timedelta(seconds=10)
    async with provider.scope() as store:
        timer = await store.create(name="stale", duration_seconds=1, now=past)
        await store.start(timer.timer_id, now=past)
    await provider.dispose()

    # the command runs its own event loop
    result = await _invoke_in_thread(["--once", "--database-url", url])
    assert result.exit_code == 0, result.output
    assert "completed 1 expired timer(s)" in result.output

    provider = StoreProvider("sql", database_url=url)
    async with provider.scope() as store:
        assert (await store.get(timer.timer_id)).status == "completed"
    await provider.dispose()


async def _invoke_in_thread(args):
    return await asyncio.to_thread(CliRunner().invoke, cli, args)
