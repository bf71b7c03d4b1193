from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ctrlsys.domain.timer_state import LIST_RETENTION, STATUS_PRIORITY, TimerStatus
from ctrlsys.errors import InvalidTransitionError
from ctrlsys.persistence.models import Timer
from ctrlsys.persistence.repositories.base_repository import BaseRepository
from ctrlsys.persistence.store_base import TimerStore
from ctrlsys.utils.timefmt import to_utc_naive, utc_naive_now

logger = logging.getLogger(__name__)

_ACTIVE = (TimerStatus.PENDING.value, TimerStatus.RUNNING.value)


class TimerRepository(BaseRepository[Timer], TimerStore):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Timer)

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
        )
        return await self.add(timer)

    async def get(self, timer_id: str) -> Optional[Timer]:
        return await self.get_by_id(timer_id, refresh=True)

    async def list_timers(
        self, *, now: datetime, retention: timedelta = LIST_RETENTION
    ) -> List[Timer]:
        cutoff = to_utc_naive(now - retention)
        priority = case(
            {status.value: rank for status, rank in STATUS_PRIORITY.items()},
            value=Timer.status,
            else_=len(STATUS_PRIORITY) + 1,
        )
        stmt = (
            select(Timer)
            .where(or_(Timer.status.in_(_ACTIVE), Timer.created_at >= cutoff))
            .order_by(priority, Timer.created_at.desc())
            .execution_options(populate_existing=True)
        )
        res = await self.session.execute(stmt)
        return list(res.scalars().all())

    async def start(self, timer_id: str, *, now: datetime) -> Tuple[Optional[Timer], bool]:
        current = await self.get(timer_id)
        if current is None:
            return None, False
        if current.status != TimerStatus.PENDING.value:
            return current, False

        now_naive = to_utc_naive(now)
        stmt = (
            update(Timer)
            .where(
                Timer.timer_id == timer_id,
                Timer.status == TimerStatus.PENDING.value,
            )
            .values(
                status=TimerStatus.RUNNING.value,
                started_at=now_naive,
                expires_at=now_naive + timedelta(seconds=current.duration_seconds),
            )
            .returning(Timer.timer_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        started = result.scalar_one_or_none() is not None
        await self.session.commit()

        if started:
            logger.debug("[TimerRepo] claimed start timer_id=%s", timer_id)
        else:
            logger.debug("[TimerRepo] start lost race timer_id=%s", timer_id)
        return await self.get(timer_id), started

    async def cancel(self, timer_id: str) -> Tuple[Optional[Timer], bool]:
        stmt = (
            update(Timer)
            .where(Timer.timer_id == timer_id, Timer.status.in_(_ACTIVE))
            .values(status=TimerStatus.CANCELLED.value)
            .returning(Timer.timer_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        cancelled = result.scalar_one_or_none() is not None
        await self.session.commit()

        timer = await self.get(timer_id)
        if timer is None or cancelled:
            return timer, cancelled
        if timer.status == TimerStatus.CANCELLED.value:
            return timer, False
        raise InvalidTransitionError(
            TimerStatus(timer.status), TimerStatus.CANCELLED, terminal=True
        )

    async def update_labels(self, timer_id: str, labels: Dict[str, str]) -> Optional[Timer]:
        stmt = (
            update(Timer)
            .where(Timer.timer_id == timer_id, Timer.status.in_(_ACTIVE))
            .values(labels=dict(labels))
            .returning(Timer.timer_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        changed = result.scalar_one_or_none() is not None
        await self.session.commit()

        timer = await self.get(timer_id)
        if timer is None or changed:
            return timer
        status = TimerStatus(timer.status)
        raise InvalidTransitionError(
            status,
            status,
            terminal=True,
            message=f"Timer is already {status.value}; labels can no longer change",
        )

    async def sweep_expired(self, now: datetime) -> List[Timer]:
        now_naive = to_utc_naive(now)
        stmt = (
            update(Timer)
            .where(
                Timer.status == TimerStatus.RUNNING.value,
                Timer.expires_at <= now_naive,
            )
            .values(status=TimerStatus.COMPLETED.value)
            .returning(Timer.timer_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        completed_ids = list(result.scalars().all())
        await self.session.commit()

        if not completed_ids:
            return []

        res = await self.session.execute(
            select(Timer)
            .where(Timer.timer_id.in_(completed_ids))
            .order_by(Timer.expires_at)
            .execution_options(populate_existing=True)
        )
        return list(res.scalars().all())

    async def delete(self, timer_id: str) -> bool:
        return await self.delete_by_id(timer_id)
