from __future__ import annotations

"""Expiration sweeper: flips running timers past their deadline to completed."""

from asyncio import CancelledError, sleep
from datetime import datetime, UTC
import logging
from typing import AsyncContextManager, Callable, List, Optional

from ctrlsys.domain.timer_state import TimerStatus
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.events.eventbus_model import TimerEventType
from ctrlsys.observability.prometheus_metrics import (
    sweeper_errors,
    sweeper_ticks,
    timer_transitions,
)
from ctrlsys.observability.tracing import annotate, traced_span
from ctrlsys.persistence.models import Timer
from ctrlsys.persistence.store_base import TimerStore
from ctrlsys.service.timer_service import timer_event

logger = logging.getLogger(__name__)

StoreScope = Callable[[], AsyncContextManager[TimerStore]]

# -----------------------------------------------------------------------------
# One sweep
# -----------------------------------------------------------------------------


async def sweep_once(
    store: TimerStore,
    hub: BroadcastHub,
    *,
    now: Optional[datetime] = None,
) -> List[Timer]:
    """Complete every expired running timer and announce each one.

    The store returns exactly the rows this call transitioned, so a timer
    is announced once even when two sweeps overlap.
    """
    now = now or datetime.now(UTC)
    async with traced_span("timer.sweep", sweep_now=now.isoformat()) as span:
        completed = await store.sweep_expired(now)
        annotate(span, sweep_completed=len(completed))

    if not completed:
        logger.debug("[Sweeper] no expired timers at %s", now)
        return completed

    logger.info("[Sweeper] completed %s expired timer(s)", len(completed))
    for timer in completed:
        logger.info(
            "[Sweeper] timer_id=%s name=%r %s -> %s (expires_at=%s)",
            timer.timer_id,
            timer.name,
            TimerStatus.RUNNING.value,
            timer.status,
            timer.expires_at,
        )
        timer_transitions.labels(status=TimerStatus.COMPLETED.value).inc()
        hub.publish(timer_event(timer, TimerEventType.Completed, now))
    return completed


# -----------------------------------------------------------------------------
# Poll loop
# -----------------------------------------------------------------------------


async def run_sweeper_loop(
    store_scope: StoreScope,
    hub: BroadcastHub,
    *,
    interval_seconds: float = 1.0,
) -> None:
    """Tick forever; a failed tick is logged and the next one runs as usual."""
    logger.info("[Sweeper] loop start interval=%ss", interval_seconds)

    try:
        while True:
            sweeper_ticks.inc()
            try:
                async with store_scope() as store:
                    await sweep_once(store, hub)
            except CancelledError:
                raise
            except Exception as err:
                sweeper_errors.inc()
                logger.exception("[Sweeper] sweep failed, retrying next tick: %s", err)

            await sleep(interval_seconds)
    except CancelledError:
        logger.info("[Sweeper] loop stopped")
        raise
