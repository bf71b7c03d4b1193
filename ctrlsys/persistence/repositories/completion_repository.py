from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ctrlsys.persistence.models import JobCompletion
from ctrlsys.persistence.repositories.base_repository import BaseRepository
from ctrlsys.persistence.store_base import CompletionLedger
from ctrlsys.utils.timefmt import utc_naive_now

logger = logging.getLogger(__name__)


class CompletionRepository(BaseRepository[JobCompletion], CompletionLedger):
    def __init__(self, session: AsyncSession):
        super().__init__(session, JobCompletion)

    async def record(self, completion: JobCompletion) -> Tuple[JobCompletion, bool]:
        """Insert once per timer_id; a repeated report returns the stored row."""
        existing = await self.get_by_id(completion.timer_id)
        if existing is not None:
            return existing, False
        if completion.reported_at is None:
            completion.reported_at = utc_naive_now()
        try:
            return await self.add(completion), True
        except IntegrityError:
            # concurrent duplicate report won the insert
            logger.debug("[CompletionRepo] duplicate report timer_id=%s", completion.timer_id)
            return await self.get_by_id(completion.timer_id, refresh=True), False

    async def get(self, timer_id: str) -> Optional[JobCompletion]:
        return await self.get_by_id(timer_id, refresh=True)

    async def list_completions(self) -> List[JobCompletion]:
        res = await self.session.execute(
            select(JobCompletion).order_by(JobCompletion.reported_at.desc())
        )
        return list(res.scalars().all())
