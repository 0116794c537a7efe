from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campus_chat.core.diagnostics import track_db
from campus_chat.db.models import Gender, User
from campus_chat.db.repositories.base import BaseRepository


@dataclass(frozen=True)
class IdentityCard:
    """Real identity fields disclosed after a mutual reveal."""
    alias: str
    name: Optional[str]
    email: Optional[str]
    details: Optional[str]


class UserRepository(BaseRepository[User]):
    """Identity store: profiles, presence and the single-active-session guard."""

    def __init__(self):
        super().__init__(User)

    @track_db
    async def get_by_telegram_user_id(self, session: AsyncSession, telegram_user_id: int) -> User | None:
        return await self.get_by_attribute(session, "telegram_user_id", telegram_user_id)

    @track_db
    async def get_by_email(self, session: AsyncSession, email: str) -> User | None:
        return await self.get_by_attribute(session, "email", email.lower())

    @track_db
    async def upsert_profile(self, session: AsyncSession, data: dict) -> User:
        """
        Insert or update a profile.

        Matches on ``id`` when given, then on ``telegram_user_id``, then on
        ``email``; creates a new user when nothing matches.
        """
        user = None
        if data.get("id") is not None:
            user = await self.get(session, data["id"])
        if user is None and data.get("telegram_user_id") is not None:
            user = await self.get_by_telegram_user_id(session, data["telegram_user_id"])
        if user is None and data.get("email"):
            user = await self.get_by_email(session, data["email"])

        if user is None:
            user = await self.create(session, data)
            logger.info(f"Created user {user.id}")
            return user

        for key, value in data.items():
            if key != "id":
                setattr(user, key, value)
        await session.flush()
        return user

    @track_db
    async def set_online(self, session: AsyncSession, user_id: int, online: bool) -> None:
        """Flip the online flag; going online also stamps ``last_active``."""
        values = {"is_online": online}
        if online:
            values["last_active"] = datetime.utcnow()
        await session.execute(update(User).where(User.id == user_id).values(**values))

    @track_db
    async def count_online(self, session: AsyncSession, exclude_id: int | None = None) -> int:
        query = select(func.count()).select_from(User).where(User.is_online == True)  # noqa: E712
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        result = await session.execute(query)
        return result.scalar_one() or 0

    @track_db
    async def find_online_candidates(
        self,
        session: AsyncSession,
        gender: Gender,
        exclude_id: int,
        limit: int,
    ) -> list[User]:
        """Online, onboarded users of ``gender`` without an active session, in id order."""
        query = (
            select(User)
            .where(
                User.is_online == True,  # noqa: E712
                User.gender == gender.value,
                User.id != exclude_id,
                User.alias != "",
                User.active_session_id.is_(None),
            )
            .order_by(User.id)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    @track_db
    async def get_identity_card(self, session: AsyncSession, user_id: int) -> IdentityCard | None:
        user = await self.get(session, user_id)
        if not user:
            return None
        return IdentityCard(alias=user.alias, name=user.real_name, email=user.email, details=user.details)

    @track_db
    async def claim_active_session(
        self,
        session: AsyncSession,
        user_ids: Iterable[int],
        chat_session_id: int,
    ) -> bool:
        """
        Mark every user as holding ``chat_session_id``.

        Conditional write: only users without an active session are updated.
        Returns True when all of them were claimed; the caller must roll back
        otherwise.
        """
        ids = list(user_ids)
        result = await session.execute(
            update(User)
            .where(User.id.in_(ids), User.active_session_id.is_(None))
            .values(active_session_id=chat_session_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == len(ids)

    @track_db
    async def release_active_session(self, session: AsyncSession, chat_session_id: int) -> int:
        result = await session.execute(
            update(User)
            .where(User.active_session_id == chat_session_id)
            .values(active_session_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


user_repo = UserRepository()
