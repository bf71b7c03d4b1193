from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ctrlsys.domain.timer_state import MAX_DURATION_SECONDS, MIN_DURATION_SECONDS


class TimerCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    duration_seconds: int = Field(..., ge=MIN_DURATION_SECONDS, le=MAX_DURATION_SECONDS)
    labels: Dict[str, str] = Field(default_factory=dict)
    created_by: Optional[str] = None
    auto_start: bool = True

    model_config = ConfigDict(extra="forbid")


class TimerUpdateRequest(BaseModel):
    # status is validated by the service so unknown values map to the error taxonomy
    status: Optional[str] = None
    labels: Optional[Dict[str, str]] = None

    model_config = ConfigDict(extra="forbid")


class HealthResponse(BaseModel):
    status: str = "healthy"
    subscribers: int = 0
    streams: int = 0
