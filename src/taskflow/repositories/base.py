"""Generic async repository shared by the concrete persistence helpers."""

from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import func
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """CRUD helpers bound to one model type and one session.

    Repositories flush but never commit; transaction boundaries belong to
    the services.
    """

    def __init__(self, session: AsyncSession, model_type: type[ModelType]) -> None:
        self._session = session
        self._model_type = model_type

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def get(self, entity_id: int) -> ModelType | None:
        """Retrieve a model instance by its primary key."""
        return await self._session.get(self._model_type, entity_id)

    async def list(self) -> list[ModelType]:
        """Return every row ordered by primary key."""
        model: Any = self._model_type
        result = await self._session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())

    async def list_by_ids(self, ids: Sequence[int]) -> list[ModelType]:
        if not ids:
            return []
        model: Any = self._model_type
        result = await self._session.execute(select(model).where(model.id.in_(list(ids))))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(self._model_type))
        return int(result.scalar_one())

    async def add(self, instance: ModelType) -> ModelType:
        """Add and flush a new entity instance."""
        self._session.add(instance)
        await self._session.flush()
        return instance

    async def delete(self, instance: ModelType) -> None:
        await self._session.delete(instance)
        await self._session.flush()

    async def refresh(self, instance: ModelType) -> ModelType:
        """Reload ``instance`` from the database, discarding stale attributes."""
        await self._session.refresh(instance)
        return instance
