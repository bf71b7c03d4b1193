from __future__ import annotations

"""In-memory status record of a standalone timer job.

Elapsed time is measured on the monotonic clock so wall-clock jumps cannot
shorten or stretch a run; ``started_at`` / ``completed_at`` are wall-clock
stamps for humans and for the completion report.
"""

import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional

from ctrlsys.domain.timer_state import STARTING_GRACE, JobState
from ctrlsys.events.eventbus_model import TimerEvent, TimerEventType
from ctrlsys.service.completion_service import TimerMetadata
from ctrlsys.utils.lock_manager import ReadWriteLock

Clock = Callable[[], float]


class JobMetadata(TimerMetadata):
    """Identity of the job, fixed at startup and echoed in every report."""

    @classmethod
    def from_config(cls, config: Any, now: Optional[datetime] = None) -> "JobMetadata":
        return cls(
            timer_id=config.timer_id,
            name=config.name,
            labels=dict(config.labels),
            duration_seconds=config.duration_seconds,
            created_at=now or datetime.now(UTC),
            created_by=config.created_by,
        )


class JobStatus:
    def __init__(self, metadata: JobMetadata, *, clock: Clock = time.monotonic):
        self.metadata = metadata
        self.state = JobState.STARTING
        self._clock = clock
        self._start = clock()
        self.started_at = datetime.now(UTC)
        self.duration = float(metadata.duration_seconds)
        self.completed_at: Optional[datetime] = None
        self.error_message: Optional[str] = None

    @classmethod
    def from_config(cls, config: Any, *, clock: Clock = time.monotonic) -> "JobStatus":
        return cls(JobMetadata.from_config(config), clock=clock)

    @property
    def timer_id(self) -> str:
        return self.metadata.timer_id

    # ---- timing -------------------------------------------------------------

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._start)

    def remaining(self) -> float:
        return max(0.0, self.duration - self.elapsed())

    def elapsed_seconds(self) -> int:
        return int(self.elapsed())

    def remaining_seconds(self) -> int:
        return int(self.remaining())

    def completion_percentage(self) -> float:
        if self.duration <= 0:
            return 1.0
        return min(1.0, self.elapsed() / self.duration)

    def should_complete(self) -> bool:
        return self.elapsed() >= self.duration

    # ---- state --------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def update_state(self) -> JobState:
        """Leave ``starting`` once the grace period is over.

        A running job stays running here; the runner completes it only after
        the control plane has acknowledged the report.
        """
        if self.state == JobState.STARTING and self.elapsed() > STARTING_GRACE.total_seconds():
            self._move(JobState.RUNNING)
        return self.state

    def mark_completed(self) -> None:
        if self.is_terminal:
            return
        self._move(JobState.COMPLETED)
        self.completed_at = datetime.now(UTC)

    def mark_failed(self, message: str) -> None:
        if self.is_terminal:
            return
        self._move(JobState.FAILED)
        self.completed_at = datetime.now(UTC)
        self.error_message = message

    def _move(self, target: JobState) -> None:
        self.state.check_transition(target)
        self.state = target

    # ---- views --------------------------------------------------------------

    def summary(self) -> str:
        return (
            f"Timer '{self.metadata.name}' ({self.timer_id}) - State: {self.state}, "
            f"Elapsed: {self.elapsed_seconds()}s, Remaining: {self.remaining_seconds()}s, "
            f"Progress: {self.completion_percentage() * 100:.1f}%"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timer_id": self.timer_id,
            "metadata": self.metadata.model_dump(mode="json"),
            "state": self.state.value,
            "elapsed_seconds": self.elapsed_seconds(),
            "remaining_seconds": 0 if self.state == JobState.COMPLETED else self.remaining_seconds(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
        }

    def to_event(self, event_type: TimerEventType) -> TimerEvent:
        remaining = 0 if self.is_terminal else self.remaining_seconds()
        return TimerEvent(
            timer_id=self.timer_id,
            event_type=event_type,
            status=self.state.value,
            elapsed_seconds=self.elapsed_seconds(),
            remaining_seconds=remaining,
            attributes={"error_message": self.error_message} if self.error_message else {},
        )


class StatusCell:
    """The one owned copy of a job's status, guarded by a reader-writer lock."""

    def __init__(self, status: JobStatus):
        self._status = status
        self._lock = ReadWriteLock()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[JobStatus]:
        async with self._lock.read():
            yield self._status

    @asynccontextmanager
    async def write(self) -> AsyncIterator[JobStatus]:
        async with self._lock.write():
            yield self._status
