from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campus_chat.core.diagnostics import track_db
from campus_chat.db.models import ChatSession, SessionStatus


@track_db
async def insert_session(session: AsyncSession, user1_id: int, user2_id: int) -> ChatSession:
    """Insert a new active chat session between two users."""
    chat_session = ChatSession(
        user1_id=user1_id,
        user2_id=user2_id,
        status=SessionStatus.ACTIVE.value,
        started_at=datetime.utcnow(),
    )
    session.add(chat_session)
    await session.flush()
    await session.refresh(chat_session)
    return chat_session


@track_db
async def get_by_id(session: AsyncSession, chat_session_id: int) -> ChatSession | None:
    return await session.get(ChatSession, chat_session_id, populate_existing=True)


@track_db
async def get_active_session_for_user(session: AsyncSession, user_id: int) -> ChatSession | None:
    """Get the active chat session for a user."""
    query = (
        select(ChatSession)
        .where(
            and_(
                or_(ChatSession.user1_id == user_id, ChatSession.user2_id == user_id),
                ChatSession.status == SessionStatus.ACTIVE.value,
            )
        )
        .order_by(ChatSession.started_at.desc())
    )
    result = await session.execute(query)
    return result.scalars().first()


@track_db
async def update_status(
    session: AsyncSession,
    chat_session_id: int,
    status: SessionStatus,
) -> bool:
    """
    Move an active session to ``status``.

    Conditional on the session still being active. Returns whether a row
    changed, so a concurrent close by the other participant is detected.
    """
    query = (
        update(ChatSession)
        .where(
            ChatSession.id == chat_session_id,
            ChatSession.status == SessionStatus.ACTIVE.value,
        )
        .values(status=status.value, ended_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(query)
    return result.rowcount == 1


@track_db
async def get_recent_partner_ids(
    session: AsyncSession,
    user_id: int,
    since: datetime,
    limit: int = 50,
) -> set[int]:
    """Ids of users who shared a session with ``user_id`` started at or after ``since``."""
    query = (
        select(ChatSession.user1_id, ChatSession.user2_id)
        .where(
            or_(ChatSession.user1_id == user_id, ChatSession.user2_id == user_id),
            ChatSession.started_at >= since,
        )
        .order_by(ChatSession.started_at.desc())
        .limit(limit)
    )
    result = await session.execute(query)
    partner_ids = set()
    for user1_id, user2_id in result.all():
        if user1_id != user_id:
            partner_ids.add(user1_id)
        if user2_id != user_id:
            partner_ids.add(user2_id)
    return partner_ids
