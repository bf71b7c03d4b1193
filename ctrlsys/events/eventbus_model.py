from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TimerEventType(str, Enum):
    Snapshot = "snapshot"
    Created = "created"
    Started = "started"
    Tick = "tick"
    Updated = "updated"
    Completed = "completed"
    Cancelled = "cancelled"
    Failed = "failed"


class TimerEvent(BaseModel):
    timer_id: str
    event_type: TimerEventType
    # value from either vocabulary (TimerStatus / JobState)
    status: str
    elapsed_seconds: int = 0
    remaining_seconds: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # shared mode carries the full timer JSON under "timer"
    attributes: Dict[str, Any] = Field(default_factory=dict)
