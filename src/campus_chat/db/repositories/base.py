from typing import Any, Generic, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campus_chat.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base class for data access layer.

    Repositories only flush; the caller owns the transaction (see
    ``campus_chat.db.utils.session_management.transaction``).
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, session: AsyncSession, pk: Any) -> ModelType | None:
        """Get a single record by primary key."""
        return await session.get(self.model, pk)

    async def get_by_attribute(self, session: AsyncSession, attribute: str | None = None, value: Any = None, expression: Any | None = None) -> ModelType | None:
        """Get a single record by an attribute or a complex expression."""
        if expression is not None:
            stmt = select(self.model).where(expression)
        elif attribute is not None:
            stmt = select(self.model).where(getattr(self.model, attribute) == value)
        else:
            raise ValueError("Either attribute/value or expression must be provided")
        result = await session.execute(stmt)
        return result.scalars().first()

    async def create(self, session: AsyncSession, data: dict) -> ModelType:
        """Create a new record."""
        instance = self.model(**data)
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        return instance

    async def update(self, session: AsyncSession, pk: Any, data: dict) -> ModelType | None:
        """Update a record by primary key."""
        stmt = (
            update(self.model)
            .where(self.model.id == pk)
            .values(**data)
            .execution_options(synchronize_session="fetch")
        )
        await session.execute(stmt)
        await session.flush()
        instance = await session.get(self.model, pk, populate_existing=True)
        return instance
