from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_chat.core.diagnostics import track_db
from campus_chat.db.models import ChatMessage
from campus_chat.db.repositories.base import BaseRepository


class ChatMessageRepository(BaseRepository[ChatMessage]):
    """Repository for chat messages."""

    def __init__(self):
        super().__init__(ChatMessage)

    @track_db
    async def insert_message(
        self,
        session: AsyncSession,
        session_id: int,
        sender_id: int,
        content: str,
    ) -> ChatMessage:
        """
        Append a message to a chat session.

        Args:
            session: Database session
            session_id: ID of the chat session
            sender_id: ID of the message sender
            content: Message text

        Returns:
            The created message
        """
        return await self.create(
            session,
            data={
                "session_id": session_id,
                "sender_id": sender_id,
                "content": content,
                "created_at": datetime.utcnow(),
            }
        )

    @track_db
    async def query_messages(self, session: AsyncSession, session_id: int) -> list[ChatMessage]:
        """Get all messages for a chat session, oldest first, ties broken by id."""
        query = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    @track_db
    async def get_tail(self, session: AsyncSession, session_id: int, limit: int = 10) -> list[ChatMessage]:
        """Get the latest ``limit`` messages, oldest first."""
        query = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        result = await session.execute(query)
        return list(reversed(result.scalars().all()))

    @track_db
    async def count_messages(self, session: AsyncSession, session_id: int) -> int:
        query = select(func.count()).select_from(ChatMessage).where(ChatMessage.session_id == session_id)
        result = await session.execute(query)
        return result.scalar_one() or 0


chat_message_repo = ChatMessageRepository()
