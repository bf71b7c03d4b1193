from __future__ import annotations

"""In-process stores: one asyncio.Lock around the whole map.

Every operation is short and never awaits while holding the lock, so a
single guard is enough to make each status check-and-set atomic.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ctrlsys.domain.timer_state import LIST_RETENTION, STATUS_PRIORITY, TimerStatus
from ctrlsys.errors import InvalidTransitionError
from ctrlsys.persistence.models import JobCompletion, Timer
from ctrlsys.persistence.store_base import CompletionLedger, TimerStore
from ctrlsys.utils.timefmt import to_utc_naive, utc_naive_now


def _detach(row, model):
    """Copy a row so callers never observe later in-place mutation."""
    values = {c.name: getattr(row, c.name) for c in model.__table__.columns}
    if isinstance(values.get("labels"), dict):
        values["labels"] = dict(values["labels"])
    return model(**values)


class InMemoryTimerStore(TimerStore):
    def __init__(self):
        self._timers: Dict[str, Timer] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        *,
        name: str,
        duration_seconds: int,
        labels: Optional[Dict[str, str]] = None,
        created_by: str = "api",
        now: Optional[datetime] = None,
    ) -> Timer:
        timer = Timer(
            timer_id=str(uuid.uuid4()),
            name=name,
            duration_seconds=duration_seconds,
            status=TimerStatus.PENDING.value,
            labels=dict(labels or {}),
            created_by=created_by,
            created_at=to_utc_naive(now) if now else utc_naive_now(),
            started_at=None,
            expires_at=None,
        )
        async with self._lock:
            self._timers[timer.timer_id] = timer
            return _detach(timer, Timer)

    async def get(self, timer_id: str) -> Optional[Timer]:
        async with self._lock:
            timer = self._timers.get(timer_id)
            return _detach(timer, Timer) if timer else None

    async def list_timers(
        self, *, now: datetime, retention: timedelta = LIST_RETENTION
    ) -> List[Timer]:
        cutoff = to_utc_naive(now - retention)
        async with self._lock:
            visible = [
                _detach(t, Timer)
                for t in self._timers.values()
                if TimerStatus(t.status).is_active or t.created_at >= cutoff
            ]
        # two stable sorts: newest first, then by status priority
        visible.sort(key=lambda t: t.created_at, reverse=True)
        visible.sort(key=lambda t: STATUS_PRIORITY[TimerStatus(t.status)])
        return visible

    async def start(self, timer_id: str, *, now: datetime) -> Tuple[Optional[Timer], bool]:
        now_naive = to_utc_naive(now)
        async with self._lock:
            timer = self._timers.get(timer_id)
            if timer is None:
                return None, False
            if timer.status != TimerStatus.PENDING.value:
                return _detach(timer, Timer), False
            timer.status = TimerStatus.RUNNING.value
            timer.started_at = now_naive
            timer.expires_at = now_naive + timedelta(seconds=timer.duration_seconds)
            return _detach(timer, Timer), True

    async def cancel(self, timer_id: str) -> Tuple[Optional[Timer], bool]:
        async with self._lock:
            timer = self._timers.get(timer_id)
            if timer is None:
                return None, False
            status = TimerStatus(timer.status)
            if status == TimerStatus.CANCELLED:
                return _detach(timer, Timer), False
            status.check_transition(TimerStatus.CANCELLED)
            timer.status = TimerStatus.CANCELLED.value
            return _detach(timer, Timer), True

    async def update_labels(self, timer_id: str, labels: Dict[str, str]) -> Optional[Timer]:
        async with self._lock:
            timer = self._timers.get(timer_id)
            if timer is None:
                return None
            status = TimerStatus(timer.status)
            if status.is_terminal:
                raise InvalidTransitionError(
                    status,
                    status,
                    terminal=True,
                    message=f"Timer is already {status.value}; labels can no longer change",
                )
            timer.labels = dict(labels)
            return _detach(timer, Timer)

    async def sweep_expired(self, now: datetime) -> List[Timer]:
        now_naive = to_utc_naive(now)
        completed: List[Timer] = []
        async with self._lock:
            for timer in self._timers.values():
                if (
                    timer.status == TimerStatus.RUNNING.value
                    and timer.expires_at is not None
                    and timer.expires_at <= now_naive
                ):
                    timer.status = TimerStatus.COMPLETED.value
                    completed.append(_detach(timer, Timer))
        completed.sort(key=lambda t: t.expires_at)
        return completed

    async def delete(self, timer_id: str) -> bool:
        async with self._lock:
            return self._timers.pop(timer_id, None) is not None


class InMemoryCompletionLedger(CompletionLedger):
    def __init__(self):
        self._completions: Dict[str, JobCompletion] = {}
        self._lock = asyncio.Lock()

    async def record(self, completion: JobCompletion) -> Tuple[JobCompletion, bool]:
        async with self._lock:
            existing = self._completions.get(completion.timer_id)
            if existing is not None:
                return _detach(existing, JobCompletion), False
            if completion.reported_at is None:
                completion.reported_at = utc_naive_now()
            self._completions[completion.timer_id] = _detach(completion, JobCompletion)
            return _detach(completion, JobCompletion), True

    async def get(self, timer_id: str) -> Optional[JobCompletion]:
        async with self._lock:
            found = self._completions.get(timer_id)
            return _detach(found, JobCompletion) if found else None

    async def list_completions(self) -> List[JobCompletion]:
        async with self._lock:
            rows = [_detach(c, JobCompletion) for c in self._completions.values()]
        rows.sort(key=lambda c: c.reported_at, reverse=True)
        return rows
