"""
Onboarding: college email, gender, alias, and resolving the caller's
``SessionContext`` once they are done.
"""
import random
import re
from typing import Iterable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.aliases import MAX_ALIAS_LENGTH, generate_alias
from campus_chat.core.context import SessionContext
from campus_chat.core.errors import AuthRequired, InvalidEmail, ProfileLocked
from campus_chat.db.models import Gender, User
from campus_chat.db.repositories import user_repo
from campus_chat.db.utils.session_management import transaction

EMAIL_PATTERN = re.compile(r"^[a-z0-9._%+-]+@([a-z0-9-]+(\.[a-z0-9-]+)+)$")


def validate_college_email(email: str, domains: Iterable[str]) -> str:
    """Return the normalised address, or raise ``InvalidEmail`` if it is not on a college domain."""
    normalised = (email or "").strip().lower()
    match = EMAIL_PATTERN.match(normalised)
    if not match:
        raise InvalidEmail(f"malformed email {email!r}")
    domain = match.group(1)
    allowed = [d.lower().lstrip("@") for d in domains]
    if domain not in allowed:
        raise InvalidEmail(
            f"domain {domain} is not a college domain",
            notice=f"Use your @{allowed[0]} email." if allowed else InvalidEmail.notice,
        )
    return normalised


class Onboarding:
    """Profile setup steps, in the order the user goes through them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        college_domains: Iterable[str],
        rng: random.Random | None = None,
    ):
        self.session_factory = session_factory
        self.college_domains = list(college_domains)
        self.rng = rng or random.Random()

    async def get_user(self, telegram_user_id: int) -> User | None:
        async with transaction(self.session_factory) as session:
            return await user_repo.get_by_telegram_user_id(session, telegram_user_id)

    async def register_email(self, telegram_user_id: int, email: str) -> User:
        """Attach a verified college email to the caller, creating their profile if needed."""
        normalised = validate_college_email(email, self.college_domains)
        async with transaction(self.session_factory) as session:
            owner = await user_repo.get_by_email(session, normalised)
            user = await user_repo.get_by_telegram_user_id(session, telegram_user_id)
            taken = owner is not None and (
                owner.telegram_user_id not in (None, telegram_user_id)
                or (user is not None and owner.id != user.id)
            )
            if taken:
                raise InvalidEmail(
                    f"{normalised} already belongs to another account",
                    notice="That email is already in use.",
                )
            data = {"telegram_user_id": telegram_user_id, "email": normalised}
            if user is not None:
                data["id"] = user.id
            elif owner is not None:
                data["id"] = owner.id
            user = await user_repo.upsert_profile(session, data)
        logger.info(f"User {user.id} registered email on {normalised.split('@')[1]}")
        return user

    async def choose_gender(self, user_id: int, gender: Gender) -> User:
        """Set the gender once; choosing a different one later raises ``ProfileLocked``."""
        async with transaction(self.session_factory) as session:
            user = await user_repo.get(session, user_id)
            if user is None:
                raise AuthRequired(f"user {user_id} does not exist")
            if user.gender and user.gender != gender.value:
                raise ProfileLocked(f"gender of user {user_id} is already set")
            user.gender = gender.value
            await session.flush()
        return user

    async def set_alias(self, user_id: int, alias: str | None = None) -> User:
        """Set the alias, generating a random one when ``alias`` is blank."""
        chosen = (alias or "").strip()[:MAX_ALIAS_LENGTH] or generate_alias(self.rng)
        async with transaction(self.session_factory) as session:
            user = await user_repo.get(session, user_id)
            if user is None:
                raise AuthRequired(f"user {user_id} does not exist")
            if user.alias_locked:
                raise ProfileLocked(f"alias of user {user_id} is locked")
            user.alias = chosen
            await session.flush()
        return user

    async def lock_alias(self, user_id: int) -> None:
        async with transaction(self.session_factory) as session:
            user = await user_repo.get(session, user_id)
            if user is None:
                raise AuthRequired(f"user {user_id} does not exist")
            user.alias_locked = True

    async def set_identity(self, user_id: int, real_name: str | None, details: str | None = None) -> User:
        """Store the identity fields shown to a counterpart after a mutual reveal."""
        async with transaction(self.session_factory) as session:
            user = await user_repo.get(session, user_id)
            if user is None:
                raise AuthRequired(f"user {user_id} does not exist")
            user = await user_repo.update(session, user_id, {
                "real_name": (real_name or "").strip() or None,
                "details": (details or "").strip() or None,
            })
        return user

    async def resolve_context(self, telegram_user_id: int) -> SessionContext:
        """
        Build the caller's ``SessionContext``.

        Raises:
            AuthRequired: unknown caller or onboarding not finished
        """
        user = await self.get_user(telegram_user_id)
        if user is None or not user.is_onboarded:
            raise AuthRequired(f"telegram user {telegram_user_id} has not finished onboarding")
        return SessionContext(user_id=user.id, gender=Gender(user.gender), alias=user.alias)
