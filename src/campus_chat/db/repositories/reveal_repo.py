from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from campus_chat.core.diagnostics import track_db
from campus_chat.db.models import RevealConsent
from campus_chat.db.repositories.base import BaseRepository


class RevealRepository(BaseRepository[RevealConsent]):
    """Repository for per-session reveal consent records."""

    def __init__(self):
        super().__init__(RevealConsent)

    @track_db
    async def get_for_session(self, session: AsyncSession, session_id: int) -> RevealConsent | None:
        return await self.get_by_attribute(session, "session_id", session_id)

    @track_db
    async def start(self, session: AsyncSession, session_id: int, proposer_id: int, proposer_is_user1: bool) -> RevealConsent:
        """Create or reset the record with the proposer's consent recorded."""
        record = await self.get_for_session(session, session_id)
        if record is None:
            record = RevealConsent(session_id=session_id, proposer_id=proposer_id)
            session.add(record)
        record.proposer_id = proposer_id
        record.user1_consent = True if proposer_is_user1 else None
        record.user2_consent = None if proposer_is_user1 else True
        record.user1_dismissed = False
        record.user2_dismissed = False
        await session.flush()
        return record

    @track_db
    async def clear(self, session: AsyncSession, session_id: int) -> None:
        await session.execute(delete(RevealConsent).where(RevealConsent.session_id == session_id))


reveal_repo = RevealRepository()
