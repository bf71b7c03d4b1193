import asyncio
import logging

import click

from ctrlsys.config import DATABASE_URL, HUB_BUFFER_SIZE, LOG_LEVEL, SWEEP_INTERVAL_SECONDS
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.observability.tracing import init_tracer
from ctrlsys.persistence.store_factory import StoreProvider
from ctrlsys.worker.timer_worker import run_sweeper_loop, sweep_once


async def _sweep_one_tick(provider: StoreProvider, hub: BroadcastHub) -> int:
    await provider.init_schema()
    try:
        async with provider.scope() as store:
            completed = await sweep_once(store, hub)
        return len(completed)
    finally:
        await provider.dispose()


async def _sweep_forever(provider: StoreProvider, hub: BroadcastHub, interval: float) -> None:
    await provider.init_schema()
    try:
        await run_sweeper_loop(provider.scope, hub, interval_seconds=interval)
    finally:
        await provider.dispose()


@click.command()
@click.option("--once", is_flag=True, help="Run a single sweep and exit (for debugging).")
@click.option("--interval", default=SWEEP_INTERVAL_SECONDS, show_default=True, help="Seconds between sweeps.")
@click.option("--database-url", default=DATABASE_URL, show_default=True, help="SQLAlchemy async URL of the timer store.")
def cli(once, interval, database_url):
    """
    Run the timer expiration sweeper outside the API process.

    Events are published to an in-process hub with no subscribers here;
    API processes pick the transitions up on their next read.
    """
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    init_tracer("ctrlsys-sweeper")
    provider = StoreProvider("sql", database_url=database_url)
    hub = BroadcastHub(HUB_BUFFER_SIZE)

    if once:
        count = asyncio.run(_sweep_one_tick(provider, hub))
        click.echo(f"completed {count} expired timer(s)")
    else:
        try:
            asyncio.run(_sweep_forever(provider, hub, interval))
        except KeyboardInterrupt:
            click.echo("sweeper stopped")


if __name__ == "__main__":
    cli()
