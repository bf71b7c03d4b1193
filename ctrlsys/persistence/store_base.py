from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ctrlsys.domain.timer_state import LIST_RETENTION
from ctrlsys.persistence.models import JobCompletion, Timer


class TimerStore(ABC):
    """Persistence contract for shared-mode timers.

    Every mutation is a conditional update on ``status`` so concurrent
    start/cancel/sweep calls never double-transition a timer.
    """

    @abstractmethod
    async def create(
        self,
        *,
        name: str,
        duration_seconds: int,
        labels: Optional[Dict[str, str]] = None,
        created_by: str = "api",
        now: Optional[datetime] = None,
    ) -> Timer: ...

    @abstractmethod
    async def get(self, timer_id: str) -> Optional[Timer]: ...

    @abstractmethod
    async def list_timers(
        self, *, now: datetime, retention: timedelta = LIST_RETENTION
    ) -> List[Timer]: ...

    @abstractmethod
    async def start(self, timer_id: str, *, now: datetime) -> Tuple[Optional[Timer], bool]: ...

    @abstractmethod
    async def cancel(self, timer_id: str) -> Tuple[Optional[Timer], bool]: ...

    @abstractmethod
    async def update_labels(self, timer_id: str, labels: Dict[str, str]) -> Optional[Timer]: ...

    @abstractmethod
    async def sweep_expired(self, now: datetime) -> List[Timer]: ...

    @abstractmethod
    async def delete(self, timer_id: str) -> bool: ...


class CompletionLedger(ABC):
    """Where the control plane records completion reports from timer jobs."""

    @abstractmethod
    async def record(self, completion: JobCompletion) -> Tuple[JobCompletion, bool]: ...

    @abstractmethod
    async def get(self, timer_id: str) -> Optional[JobCompletion]: ...

    @abstractmethod
    async def list_completions(self) -> List[JobCompletion]: ...
