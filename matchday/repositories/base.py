"""
Repository base over an AsyncSession.
No business logic, only read/write operations.
"""
from typing import Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.orm.base import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


class Repository(Generic[ModelT]):
    model: Type[ModelT]

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, entity_id: int, lock: bool = False) -> Optional[ModelT]:
        query = select(self.model).where(self.model.id == entity_id)
        if lock:
            # Locked reads must see rows committed by the previous lock holder
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_by_tournament(self, tournament_id: int) -> List[ModelT]:
        result = await self.db.execute(
            select(self.model)
            .where(self.model.tournament_id == tournament_id)
            .order_by(self.model.id)
        )
        return list(result.scalars().all())

    async def save(self, entity: ModelT) -> ModelT:
        self.db.add(entity)
        await self.db.flush()
        return entity

    async def save_all(self, entities: Iterable[ModelT]) -> List[ModelT]:
        entities = list(entities)
        self.db.add_all(entities)
        await self.db.flush()
        return entities

    async def delete(self, entity: ModelT):
        await self.db.delete(entity)
        await self.db.flush()
