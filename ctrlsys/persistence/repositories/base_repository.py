# ctrlsys/persistence/repositories/base_repository.py

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Generic async CRUD repository; subclasses add conditional updates."""

    def __init__(self, session: AsyncSession, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    async def get_by_id(self, id_value: Any, *, refresh: bool = False) -> Optional[T]:
        return await self.session.get(self.model_class, id_value, populate_existing=refresh)

    async def add(self, entity: T) -> T:
        self.session.add(entity)
        try:
            await self.session.commit()
            await self.session.refresh(entity)
            return entity
        except IntegrityError:
            await self.session.rollback()
            raise

    async def delete_by_id(self, id_value: Any) -> bool:
        entity = await self.get_by_id(id_value)
        if not entity:
            return False
        await self.session.delete(entity)
        await self.session.commit()
        return True
