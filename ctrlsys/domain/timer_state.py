from __future__ import annotations

"""Timer lifecycle vocabularies.

Shared-database timers and standalone timer jobs were built as two
deployment modes with their own state names.  They are kept as two enums on
purpose (``cancelled`` is user intent, ``failed`` is a fault) but both
answer the same questions through :class:`LifecycleState`.
"""

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional

from ctrlsys.errors import InvalidTransitionError

__all__ = [
    "LifecycleState",
    "TimerStatus",
    "JobState",
    "STATUS_PRIORITY",
    "MIN_DURATION_SECONDS",
    "MAX_DURATION_SECONDS",
    "STARTING_GRACE",
    "OVERRUN_LIMIT",
    "LIST_RETENTION",
    "remaining_seconds",
    "elapsed_seconds",
]

MIN_DURATION_SECONDS = 1
MAX_DURATION_SECONDS = 86400

STARTING_GRACE = timedelta(milliseconds=100)
OVERRUN_LIMIT = timedelta(seconds=30)
LIST_RETENTION = timedelta(hours=24)


class LifecycleState(str, Enum):
    """Predicates common to every timer state vocabulary."""

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[type(self)][self]

    @property
    def is_active(self) -> bool:
        return not self.is_terminal

    def can_transition_to(self, target: "LifecycleState") -> bool:
        return target in _TRANSITIONS[type(self)][self]

    def check_transition(self, target: "LifecycleState") -> None:
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self, target, terminal=self.is_terminal)

    def __str__(self) -> str:
        return self.value


class TimerStatus(LifecycleState):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class JobState(LifecycleState):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: Dict[type, Dict[LifecycleState, FrozenSet[LifecycleState]]] = {
    TimerStatus: {
        TimerStatus.PENDING: frozenset({TimerStatus.RUNNING, TimerStatus.CANCELLED}),
        TimerStatus.RUNNING: frozenset({TimerStatus.COMPLETED, TimerStatus.CANCELLED}),
        TimerStatus.COMPLETED: frozenset(),
        TimerStatus.CANCELLED: frozenset(),
    },
    JobState: {
        JobState.STARTING: frozenset({JobState.RUNNING, JobState.FAILED}),
        JobState.RUNNING: frozenset({JobState.COMPLETED, JobState.FAILED}),
        JobState.COMPLETED: frozenset(),
        JobState.FAILED: frozenset(),
    },
}

# Listing order: running first, then pending, completed, cancelled
STATUS_PRIORITY: Dict[TimerStatus, int] = {
    TimerStatus.RUNNING: 1,
    TimerStatus.PENDING: 2,
    TimerStatus.COMPLETED: 3,
    TimerStatus.CANCELLED: 4,
}


def remaining_seconds(expires_at: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole seconds left before the deadline, rounded up and floored at zero.

    Rounding up makes 0 coincide with ``expires_at``, the moment the sweeper
    may complete the timer.

    ``None`` while the timer has no deadline yet (pending).
    """
    if expires_at is None:
        return None
    return max(0, math.ceil((expires_at - now).total_seconds()))


def elapsed_seconds(started_at: Optional[datetime], now: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((now - started_at).total_seconds()))
