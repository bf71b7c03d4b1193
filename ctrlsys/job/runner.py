from __future__ import annotations

"""Drives one standalone timer from start to a reported completion."""

import asyncio
import logging
from typing import Protocol

from ctrlsys.domain.timer_state import OVERRUN_LIMIT, JobState
from ctrlsys.errors import ControlPlaneUnavailableError, TimerJobError
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.events.eventbus_model import TimerEventType
from ctrlsys.job.config import JobConfig
from ctrlsys.job.control_plane import build_report
from ctrlsys.job.status import StatusCell
from ctrlsys.observability.prometheus_metrics import completion_reports
from ctrlsys.observability.tracing import annotate, traced_span
from ctrlsys.service.completion_service import CompletionAck, CompletionReport

logger = logging.getLogger(__name__)


class CompletionReporter(Protocol):
    async def send(self, report: CompletionReport) -> CompletionAck: ...


class TimerRunner:
    def __init__(
        self,
        config: JobConfig,
        cell: StatusCell,
        hub: BroadcastHub,
        reporter: CompletionReporter,
    ):
        self.config = config
        self.cell = cell
        self.hub = hub
        self.reporter = reporter

    async def run(self) -> None:
        """Tick until the control plane acknowledged completion.

        Raises :class:`ControlPlaneUnavailableError` when the report fails and
        :class:`TimerJobError` on overrun or a forced stop; the status is
        ``failed`` in both cases.
        """
        loop = asyncio.get_running_loop()
        interval = self.config.update_interval
        logger.info(
            "[TimerJob] starting timer_id=%s name=%r duration=%ss",
            self.config.timer_id,
            self.config.name,
            self.config.duration_seconds,
        )

        tick = 0
        next_tick = loop.time()
        while True:
            tick += 1
            async with self.cell.write() as status:
                state = status.update_state()
                self.hub.publish(status.to_event(TimerEventType.Tick))
                if tick % 10 == 0 or state == JobState.STARTING:
                    logger.debug("[TimerJob] %s", status.summary())

                if state == JobState.FAILED:
                    raise TimerJobError(status.error_message or "Unknown error")
                due = state == JobState.RUNNING and status.should_complete()
                overrun = status.elapsed() > status.duration + OVERRUN_LIMIT.total_seconds()
                remaining = status.remaining()

            if overrun:
                message = f"Timer exceeded maximum duration by {int(OVERRUN_LIMIT.total_seconds())} seconds"
                logger.warning("[TimerJob] timer_id=%s %s", self.config.timer_id, message)
                await self.mark_failed(message)
                raise TimerJobError(message)
            if due:
                await self._complete()
                return

            next_tick += interval
            # wake at the deadline rather than up to one interval later
            wake = min(next_tick, loop.time() + remaining) if remaining > 0 else next_tick
            await asyncio.sleep(max(0.0, wake - loop.time()))

    async def _complete(self) -> None:
        logger.info("[TimerJob] timer_id=%s elapsed, reporting to control plane", self.config.timer_id)
        async with self.cell.read() as status:
            report = build_report(status)

        try:
            async with traced_span(
                "timer_job.report_completion",
                timer_id=self.config.timer_id,
                duration_seconds=self.config.duration_seconds,
                total_duration_seconds=report.total_duration_seconds,
            ) as span:
                ack = await self.reporter.send(report)
                annotate(span, duplicate=ack.duplicate)
        except ControlPlaneUnavailableError as exc:
            completion_reports.labels(outcome="failed").inc()
            logger.error("[TimerJob] failed to report completion timer_id=%s: %s", self.config.timer_id, exc)
            await self.mark_failed(f"Failed to report completion: {exc.message}")
            raise

        completion_reports.labels(outcome="acknowledged").inc()
        async with self.cell.write() as status:
            if status.is_terminal:
                # force-stopped while the report was in flight
                raise TimerJobError(status.error_message or "Timer stopped before completion")
            status.mark_completed()
            self.hub.publish(status.to_event(TimerEventType.Completed))
            logger.info("[TimerJob] completed: %s", status.summary())

    async def mark_failed(self, message: str) -> None:
        async with self.cell.write() as status:
            if status.is_terminal:
                return
            status.mark_failed(message)
            self.hub.publish(status.to_event(TimerEventType.Failed))
        logger.error("[TimerJob] timer_id=%s marked failed: %s", self.config.timer_id, message)

    async def force_stop(self, reason: str = "Timer stopped before completion") -> None:
        """Fail the timer from outside; a running ``run()`` raises on its next tick."""
        await self.mark_failed(reason)
