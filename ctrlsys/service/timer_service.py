from __future__ import annotations

"""Timer service layer: the operations callers get (create, start, cancel, stream).

Combines the store (sole arbiter of state changes) with the broadcast hub.
An event is published only by the caller whose conditional update actually
moved the timer, so observers see each transition once.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ctrlsys.config import WS_PUSH_INTERVAL_SECONDS
from ctrlsys.domain.timer_state import (
    LIST_RETENTION,
    MAX_DURATION_SECONDS,
    MIN_DURATION_SECONDS,
    TimerStatus,
)
from ctrlsys.errors import (
    CtrlsysError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.events.eventbus_model import TimerEvent, TimerEventType
from ctrlsys.observability.prometheus_metrics import timer_transitions, timers_created
from ctrlsys.persistence.models import Timer
from ctrlsys.persistence.store_base import TimerStore
from ctrlsys.service.timer_view import TimerView, timer_elapsed_seconds

__all__ = ["TimerService", "timer_event", "validate_timer_id"]

logger = logging.getLogger(__name__)

StoreScope = Callable[[], AsyncContextManager[TimerStore]]

_TERMINAL_EVENTS = {
    TimerStatus.COMPLETED.value: TimerEventType.Completed,
    TimerStatus.CANCELLED.value: TimerEventType.Cancelled,
}


# ─────────────────────────── validation ───────────────────────────


def validate_timer_id(timer_id: Optional[str]) -> str:
    if timer_id is None or not str(timer_id).strip():
        raise ValidationError("Timer ID cannot be empty")
    return str(timer_id).strip()


def _validate_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise ValidationError("name cannot be empty")
    return name.strip()


def _validate_duration(duration_seconds: int) -> int:
    if (
        isinstance(duration_seconds, bool)
        or not isinstance(duration_seconds, int)
        or not MIN_DURATION_SECONDS <= duration_seconds <= MAX_DURATION_SECONDS
    ):
        raise ValidationError(
            f"duration_seconds must be between {MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS} (24 hours)"
        )
    return duration_seconds


def _validate_labels(labels: Optional[Dict[str, str]]) -> Dict[str, str]:
    labels = labels or {}
    for k, v in labels.items():
        if not isinstance(k, str) or not isinstance(v, str):
            raise ValidationError("labels must map strings to strings")
    return dict(labels)


def timer_event(timer: Timer, event_type: TimerEventType, now: Optional[datetime] = None) -> TimerEvent:
    view = TimerView.from_timer(timer, now)
    return TimerEvent(
        timer_id=timer.timer_id,
        event_type=event_type,
        status=view.status.value,
        elapsed_seconds=timer_elapsed_seconds(timer, now),
        remaining_seconds=view.remaining_seconds,
        attributes={"timer": view.model_dump(mode="json")},
    )


# ─────────────────────────── facade ───────────────────────────


class TimerService:
    """High-level timer operations on top of a :class:`TimerStore` scope."""

    def __init__(
        self,
        store_scope: StoreScope,
        hub: BroadcastHub,
        *,
        retention: timedelta = LIST_RETENTION,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._scope = store_scope
        self.hub = hub
        self.retention = retention
        self._clock = clock

    @asynccontextmanager
    async def _store(self, op: str) -> AsyncIterator[TimerStore]:
        try:
            async with self._scope() as store:
                yield store
        except CtrlsysError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            logger.error("[TimerService] store failure during %s: %s", op, exc)
            raise StoreUnavailableError(f"Timer store unavailable during {op}") from exc

    def _publish(self, timer: Timer, event_type: TimerEventType) -> None:
        self.hub.publish(timer_event(timer, event_type))

    # ─────────────────────────── CRUD ───────────────────────────────

    async def create_timer(
        self,
        *,
        name: str,
        duration_seconds: int,
        labels: Optional[Dict[str, str]] = None,
        created_by: str = "api",
        auto_start: bool = True,
    ) -> Timer:
        name = _validate_name(name)
        duration_seconds = _validate_duration(duration_seconds)
        labels = _validate_labels(labels)

        async with self._store("create") as store:
            timer = await store.create(
                name=name,
                duration_seconds=duration_seconds,
                labels=labels,
                created_by=created_by or "api",
                now=self._clock(),
            )
        timers_created.inc()
        logger.info(
            "[TimerService] created timer_id=%s name=%r duration=%ss",
            timer.timer_id,
            timer.name,
            timer.duration_seconds,
        )
        self._publish(timer, TimerEventType.Created)

        if auto_start:
            timer = await self.start_timer(timer.timer_id)
        return timer

    async def get_timer(self, timer_id: str) -> Timer:
        timer_id = validate_timer_id(timer_id)
        async with self._store("get") as store:
            timer = await store.get(timer_id)
        if timer is None:
            raise NotFoundError(f"Timer {timer_id} not found")
        return timer

    async def list_timers(self) -> List[Timer]:
        async with self._store("list") as store:
            return await store.list_timers(now=self._clock(), retention=self.retention)

    async def delete_timer(self, timer_id: str) -> None:
        timer_id = validate_timer_id(timer_id)
        async with self._store("delete") as store:
            deleted = await store.delete(timer_id)
        if not deleted:
            raise NotFoundError(f"Timer {timer_id} not found")
        logger.info("[TimerService] deleted timer_id=%s", timer_id)

    # ─────────────────────────── transitions ─────────────────────────

    async def start_timer(self, timer_id: str) -> Timer:
        """Pending → running.  Already running returns the timer unchanged."""
        timer_id = validate_timer_id(timer_id)
        async with self._store("start") as store:
            timer, started = await store.start(timer_id, now=self._clock())
        if timer is None:
            raise NotFoundError(f"Timer {timer_id} not found")

        status = TimerStatus(timer.status)
        if started:
            timer_transitions.labels(status=status.value).inc()
            logger.info(
                "[TimerService] started timer_id=%s expires_at=%s", timer.timer_id, timer.expires_at
            )
            self._publish(timer, TimerEventType.Started)
        elif status.is_terminal:
            raise InvalidTransitionError(status, TimerStatus.RUNNING, terminal=True)
        return timer

    async def cancel_timer(self, timer_id: str) -> Timer:
        """Cancel a non-terminal timer; cancelling twice is not an error."""
        timer_id = validate_timer_id(timer_id)
        async with self._store("cancel") as store:
            timer, cancelled = await store.cancel(timer_id)
        if timer is None:
            raise NotFoundError(f"Timer {timer_id} not found")

        if cancelled:
            timer_transitions.labels(status=TimerStatus.CANCELLED.value).inc()
            logger.info("[TimerService] cancelled timer_id=%s", timer.timer_id)
            self._publish(timer, TimerEventType.Cancelled)
        return timer

    async def update_timer(
        self,
        timer_id: str,
        *,
        status: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> Timer:
        """PATCH semantics: replace labels, then request a status change."""
        timer_id = validate_timer_id(timer_id)
        target: Optional[TimerStatus] = None
        if status is not None:
            try:
                target = TimerStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown timer status: {status}") from None

        timer: Optional[Timer] = None
        if labels is not None:
            labels = _validate_labels(labels)
            async with self._store("update_labels") as store:
                timer = await store.update_labels(timer_id, labels)
            if timer is None:
                raise NotFoundError(f"Timer {timer_id} not found")
            self._publish(timer, TimerEventType.Updated)

        if target == TimerStatus.RUNNING:
            return await self.start_timer(timer_id)
        if target == TimerStatus.CANCELLED:
            return await self.cancel_timer(timer_id)
        if target is not None:
            current = TimerStatus((timer or await self.get_timer(timer_id)).status)
            # completion is driven by the deadline, never by a request
            raise InvalidTransitionError(current, target, terminal=current.is_terminal)

        return timer or await self.get_timer(timer_id)

    # ─────────────────────────── streaming ──────────────────────────

    async def snapshot(self, timer_id: str) -> TimerEvent:
        timer = await self.get_timer(timer_id)
        return timer_event(timer, TimerEventType.Snapshot)

    async def stream(
        self,
        timer_id: str,
        *,
        push_interval: float = WS_PUSH_INTERVAL_SECONDS,
    ) -> AsyncIterator[TimerEvent]:
        """Snapshot first, then one event per hub event for this timer or per
        ``push_interval``, until a terminal state has been delivered."""
        timer_id = validate_timer_id(timer_id)
        loop = asyncio.get_running_loop()

        # subscribe before the snapshot so no transition falls in between
        with self.hub.subscribe() as sub:
            snapshot = await self.snapshot(timer_id)
            yield snapshot
            if TimerStatus(snapshot.status).is_terminal:
                return

            next_push = loop.time() + push_interval
            while True:
                event = await sub.get(timeout=max(0.0, next_push - loop.time()))
                if event is not None and event.timer_id != timer_id:
                    continue

                async with self._store("stream") as store:
                    timer = await store.get(timer_id)
                if timer is None:
                    logger.info("[TimerService] timer_id=%s deleted while streaming", timer_id)
                    return

                if event is not None:
                    event_type = event.event_type
                else:
                    event_type = _TERMINAL_EVENTS.get(timer.status, TimerEventType.Tick)
                current = timer_event(timer, event_type)
                yield current
                if TimerStatus(current.status).is_terminal:
                    return
                next_push = loop.time() + push_interval
