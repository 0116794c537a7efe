from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_chat.core.diagnostics import track_db
from campus_chat.db.models import Rating
from campus_chat.db.repositories.base import BaseRepository


class RatingRepository(BaseRepository[Rating]):
    """Repository for session ratings."""

    def __init__(self):
        super().__init__(Rating)

    @track_db
    async def insert_rating(self, session: AsyncSession, session_id: int, rater_id: int, value: int) -> Rating:
        return await self.create(
            session,
            data={
                "session_id": session_id,
                "rater_id": rater_id,
                "rating": value,
                "created_at": datetime.utcnow(),
            },
        )

    @track_db
    async def get_for_session(self, session: AsyncSession, session_id: int) -> list[Rating]:
        result = await session.execute(select(Rating).where(Rating.session_id == session_id))
        return list(result.scalars().all())


rating_repo = RatingRepository()
