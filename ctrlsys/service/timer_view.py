from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

from ctrlsys.domain.timer_state import TimerStatus, elapsed_seconds, remaining_seconds
from ctrlsys.persistence.models import Timer
from ctrlsys.utils.timefmt import as_utc, to_utc_naive, utc_naive_now


class TimerView(BaseModel):
    """Timer as callers see it; ``remaining_seconds`` is recomputed on every read."""

    id: str
    name: str
    duration_seconds: int
    status: TimerStatus
    labels: Dict[str, str]
    created_by: str
    created_at: datetime
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    remaining_seconds: Optional[int] = None

    model_config = ConfigDict(use_enum_values=False)

    @classmethod
    def from_timer(cls, timer: Timer, now: Optional[datetime] = None) -> "TimerView":
        now_naive = to_utc_naive(now) if now else utc_naive_now()
        status = TimerStatus(timer.status)
        if status == TimerStatus.COMPLETED:
            remaining = 0
        elif status == TimerStatus.CANCELLED:
            # a cancelled timer has no deadline left to count down to
            remaining = None
        else:
            remaining = remaining_seconds(timer.expires_at, now_naive)
        return cls(
            id=timer.timer_id,
            name=timer.name,
            duration_seconds=timer.duration_seconds,
            status=status,
            labels=dict(timer.labels or {}),
            created_by=timer.created_by,
            created_at=as_utc(timer.created_at),
            started_at=as_utc(timer.started_at),
            expires_at=as_utc(timer.expires_at),
            remaining_seconds=remaining,
        )


def timer_elapsed_seconds(timer: Timer, now: Optional[datetime] = None) -> int:
    """Elapsed run time; a completed timer has used its whole duration."""
    if timer.status == TimerStatus.COMPLETED.value:
        return timer.duration_seconds
    elapsed = elapsed_seconds(timer.started_at, to_utc_naive(now) if now else utc_naive_now())
    return min(elapsed, timer.duration_seconds)
