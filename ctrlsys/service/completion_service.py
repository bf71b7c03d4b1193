from __future__ import annotations

"""Control-plane side of the standalone timer job completion report."""

import logging
from datetime import datetime
from typing import AsyncContextManager, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from ctrlsys.errors import BadRequestError, NotFoundError, StoreUnavailableError
from ctrlsys.observability.prometheus_metrics import completion_reports
from ctrlsys.persistence.models import JobCompletion
from ctrlsys.persistence.store_base import CompletionLedger
from ctrlsys.utils.timefmt import as_utc, to_utc_naive

logger = logging.getLogger(__name__)


class TimerMetadata(BaseModel):
    timer_id: str
    name: str
    labels: Dict[str, str] = Field(default_factory=dict)
    duration_seconds: int
    created_at: datetime
    created_by: str = "system"


class CompletionReport(BaseModel):
    """Wire format of the report a timer job sends when it finishes."""

    timer_id: str
    metadata: TimerMetadata
    total_duration_seconds: int
    completed_at: datetime


class CompletionAck(BaseModel):
    acknowledged: bool
    timer_id: str
    duplicate: bool = False


class CompletionRecord(BaseModel):
    timer_id: str
    name: str
    labels: Dict[str, str]
    duration_seconds: int
    total_duration_seconds: int
    created_by: str
    created_at: Optional[datetime] = None
    completed_at: datetime
    reported_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_row(cls, row: JobCompletion) -> "CompletionRecord":
        return cls(
            timer_id=row.timer_id,
            name=row.name,
            labels=dict(row.labels or {}),
            duration_seconds=row.duration_seconds,
            total_duration_seconds=row.total_duration_seconds,
            created_by=row.created_by,
            created_at=as_utc(row.created_at),
            completed_at=as_utc(row.completed_at),
            reported_at=as_utc(row.reported_at),
        )


class CompletionService:
    def __init__(self, ledger_scope: Callable[[], AsyncContextManager[CompletionLedger]]):
        self._scope = ledger_scope

    async def acknowledge(self, timer_id: str, report: CompletionReport) -> CompletionAck:
        if not timer_id or not timer_id.strip():
            raise BadRequestError("Timer ID cannot be empty")
        if report.timer_id != timer_id or report.metadata.timer_id != timer_id:
            raise BadRequestError(
                f"Report for timer '{report.timer_id}' posted to timer '{timer_id}'"
            )

        row = JobCompletion(
            timer_id=timer_id,
            name=report.metadata.name,
            labels=dict(report.metadata.labels),
            duration_seconds=report.metadata.duration_seconds,
            total_duration_seconds=report.total_duration_seconds,
            created_by=report.metadata.created_by,
            created_at=to_utc_naive(report.metadata.created_at),
            completed_at=to_utc_naive(report.completed_at),
        )
        try:
            async with self._scope() as ledger:
                _, created = await ledger.record(row)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("[ControlPlane] failed to record completion timer_id=%s: %s", timer_id, exc)
            raise StoreUnavailableError("Completion ledger unavailable") from exc

        completion_reports.labels(outcome="recorded" if created else "duplicate").inc()
        logger.info(
            "[ControlPlane] completion acknowledged timer_id=%s name=%r total=%ss duplicate=%s",
            timer_id,
            report.metadata.name,
            report.total_duration_seconds,
            not created,
        )
        return CompletionAck(acknowledged=True, timer_id=timer_id, duplicate=not created)

    async def get(self, timer_id: str) -> CompletionRecord:
        async with self._scope() as ledger:
            row = await ledger.get(timer_id)
        if row is None:
            raise NotFoundError(f"No completion recorded for timer {timer_id}")
        return CompletionRecord.from_row(row)

    async def list_completions(self) -> List[CompletionRecord]:
        async with self._scope() as ledger:
            rows = await ledger.list_completions()
        return [CompletionRecord.from_row(r) for r in rows]
