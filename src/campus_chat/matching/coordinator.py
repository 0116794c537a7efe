"""
Session lifecycle: open a session for a matched pair and move it from
Active to one of its terminal states.

    Active --advance_to_ended--> Ended
    Active --advance_to_rated--> Rated

No transition leaves Ended or Rated.
"""
import asyncio

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.config import Settings
from campus_chat.core.errors import (
    CounterpartBusy,
    InvalidRating,
    InvalidTransition,
    NotAParticipant,
    SessionNotActive,
)
from campus_chat.core.feed import ChangeFeed, sessions_topic
from campus_chat.core.templates import get_template
from campus_chat.db.models import ChatSession, SessionStatus
from campus_chat.db.repositories import chat_session_repo, rating_repo, reveal_repo, user_repo
from campus_chat.db.utils.session_management import transaction
from campus_chat.matching.channel import ChatChannel


class SessionCoordinator:
    """Creates chat sessions and advances their status."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        channel: ChatChannel,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.channel = channel
        self.settings = settings

    async def open_session(self, requester_id: int, counterpart_id: int, seed_warmup: bool = True) -> ChatSession:
        """
        Open an Active session between two users and seed the warm-up lines.

        The insert and the claim on both users' active-session slot share one
        transaction, so a counterpart picked by two searches at once ends up
        in only one session.

        Raises:
            InvalidTransition: requester and counterpart are the same user
            CounterpartBusy: either user already holds an Active session
            PersistenceError: the store write failed
        """
        if requester_id == counterpart_id:
            raise InvalidTransition(f"user {requester_id} cannot be matched with themselves")

        async with transaction(self.session_factory) as session:
            chat_session = await chat_session_repo.insert_session(session, requester_id, counterpart_id)
            claimed = await user_repo.claim_active_session(session, (requester_id, counterpart_id), chat_session.id)
            if not claimed:
                logger.warning(f"Session between {requester_id} and {counterpart_id} rejected: a participant is busy")
                raise CounterpartBusy(f"user {requester_id} or {counterpart_id} already has an active session")
            requester = await user_repo.get(session, requester_id)
            counterpart = await user_repo.get(session, counterpart_id)
            requester_alias = requester.alias if requester else ""
            counterpart_alias = counterpart.alias if counterpart else ""

        logger.info(f"Opened chat session {chat_session.id} between {requester_id} and {counterpart_id}")
        await self.feed.publish(
            sessions_topic(counterpart_id),
            {"event": "opened", "session": chat_session, "partner_id": requester_id},
        )

        if seed_warmup:
            await self.seed_warmup(chat_session, requester_alias, counterpart_alias)
        return chat_session

    async def seed_warmup(self, chat_session: ChatSession, requester_alias: str, counterpart_alias: str) -> int:
        """
        Append the scripted opening lines, counterpart first, with a short
        pause between them. Stops quietly if the session closes meanwhile.

        Returns:
            Number of lines appended
        """
        senders = {"requester": chat_session.user1_id, "counterpart": chat_session.user2_id}
        lines = get_template("warmup_messages")
        appended = 0
        for index, line in enumerate(lines):
            if index and self.settings.warmup_delay_seconds:
                await asyncio.sleep(self.settings.warmup_delay_seconds)
            text = line["text"].format(requester_alias=requester_alias, counterpart_alias=counterpart_alias)
            try:
                await self.channel.send(chat_session.id, senders[line["sender"]], text)
            except SessionNotActive:
                logger.info(f"Session {chat_session.id} closed during warm-up after {appended} lines")
                break
            appended += 1
        return appended

    async def get_session(self, session_id: int) -> ChatSession | None:
        async with transaction(self.session_factory) as session:
            return await chat_session_repo.get_by_id(session, session_id)

    async def get_active_session_for_user(self, user_id: int) -> ChatSession | None:
        async with transaction(self.session_factory) as session:
            return await chat_session_repo.get_active_session_for_user(session, user_id)

    async def advance_to_ended(self, session_id: int, by_user_id: int | None = None) -> ChatSession:
        """
        End an Active session.

        Raises:
            InvalidTransition: the session is missing or no longer Active
        """
        return await self._advance(session_id, SessionStatus.ENDED, by_user_id)

    async def advance_to_rated(self, session_id: int, rater_id: int, rating_value: int) -> ChatSession:
        """
        Record ``rater_id``'s rating and close the session as Rated.

        Raises:
            InvalidRating: value outside the configured scale (checked before any write)
            NotAParticipant: the rater is not in the session
            InvalidTransition: the session is missing or no longer Active
        """
        if not self.settings.rating_min <= rating_value <= self.settings.rating_max:
            raise InvalidRating(
                f"rating {rating_value} outside {self.settings.rating_min}..{self.settings.rating_max}"
            )
        return await self._advance(session_id, SessionStatus.RATED, rater_id, rating_value)

    async def _advance(
        self,
        session_id: int,
        status: SessionStatus,
        by_user_id: int | None,
        rating_value: int | None = None,
    ) -> ChatSession:
        async with transaction(self.session_factory) as session:
            chat_session = await chat_session_repo.get_by_id(session, session_id)
            if chat_session is None:
                logger.error(f"Cannot move missing session {session_id} to {status.value}")
                raise InvalidTransition(f"session {session_id} does not exist")
            if by_user_id is not None and chat_session.partner_of(by_user_id) is None:
                raise NotAParticipant(f"user {by_user_id} is not in session {session_id}")

            changed = await chat_session_repo.update_status(session, session_id, status)
            if not changed:
                logger.error(f"Invalid transition for session {session_id}: {chat_session.status} -> {status.value}")
                raise InvalidTransition(f"session {session_id} is {chat_session.status}, cannot become {status.value}")

            if rating_value is not None:
                await rating_repo.insert_rating(session, session_id, by_user_id, rating_value)
            await user_repo.release_active_session(session, session_id)
            await reveal_repo.clear(session, session_id)
            chat_session = await chat_session_repo.get_by_id(session, session_id)

        logger.info(f"Session {session_id} is now {status.value}")
        for user_id in chat_session.participant_ids:
            await self.feed.publish(
                sessions_topic(user_id),
                {"event": "closed", "session": chat_session, "by_user_id": by_user_id},
            )
        return chat_session
