from __future__ import annotations

"""Entrypoint of a standalone timer job (one process, one timer)."""

import asyncio
import logging
import sys

import click
import uvicorn

from ctrlsys.errors import ConfigError, CtrlsysError
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.job.config import JobConfig
from ctrlsys.job.control_plane import ControlPlaneClient
from ctrlsys.job.runner import TimerRunner
from ctrlsys.job.service import create_job_app
from ctrlsys.job.status import JobStatus, StatusCell
from ctrlsys.observability.tracing import init_tracer

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
UPDATE_BUFFER_SIZE = 1000
SHUTDOWN_GRACE_SECONDS = 2.0


async def run_job(config: JobConfig, *, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> bool:
    """Serve the status surface while the timer runs; ``True`` if it completed."""
    hub = BroadcastHub(UPDATE_BUFFER_SIZE)
    cell = StatusCell(JobStatus.from_config(config))
    client = ControlPlaneClient(config.control_plane_endpoint, token=config.control_plane_token)
    runner = TimerRunner(config, cell, hub, client)

    server = uvicorn.Server(
        uvicorn.Config(
            create_job_app(cell, hub),
            host="0.0.0.0",
            port=config.rpc_port,
            log_level=config.python_log_level.lower(),
        )
    )
    logger.info("[TimerJob] status server listening on %s", config.bind_address)

    server_task = asyncio.create_task(server.serve(), name="timer-job-server")
    runner_task = asyncio.create_task(runner.run(), name="timer-job-runner")
    done, _ = await asyncio.wait({server_task, runner_task}, return_when=asyncio.FIRST_COMPLETED)

    if runner_task in done:
        # let streaming clients see the final update
        await asyncio.sleep(grace_seconds)
        server.should_exit = True
        await asyncio.gather(server_task, return_exceptions=True)
    else:
        logger.warning("[TimerJob] status server stopped before the timer finished")
        await runner.force_stop("Status server stopped")
        runner_task.cancel()
        await asyncio.gather(runner_task, return_exceptions=True)
        return False

    exc = runner_task.exception()
    if exc is not None:
        logger.error("[TimerJob] timer_id=%s failed: %s", config.timer_id, exc)
        return False
    logger.info("[TimerJob] timer_id=%s finished", config.timer_id)
    return True


def _load_config() -> JobConfig:
    try:
        return JobConfig.from_env()
    except ConfigError as exc:
        click.echo(f"configuration error: {exc.message}", err=True)
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """Standalone countdown timer that reports its completion to the control plane."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
def run():
    """Run the timer (default)."""
    config = _load_config()
    logging.basicConfig(
        level=config.python_log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    init_tracer("ctrlsys-timer-job", mode="job", version=VERSION)
    logger.info(
        "[TimerJob] config timer_id=%s name=%r duration=%ss control_plane=%s debug=%s",
        config.timer_id,
        config.name,
        config.duration_seconds,
        config.control_plane_endpoint,
        config.is_debug,
    )
    try:
        ok = asyncio.run(run_job(config))
    except CtrlsysError as exc:
        logger.error("[TimerJob] %s", exc.message)
        ok = False
    sys.exit(0 if ok else 1)


@cli.command()
def health():
    """Exit 0 when the environment holds a valid job configuration."""
    _load_config()
    click.echo("healthy")


@cli.command()
def version():
    click.echo(f"ctrlsys-timer-job {VERSION}")


if __name__ == "__main__":
    cli()
