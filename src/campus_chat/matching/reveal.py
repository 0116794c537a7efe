"""
Reveal handshake: mutual consent before real identities are shown.

The consent record is persisted per session, so a reload or a second device
sees the same state. Each participant sees the handshake as one of:

    idle      nothing proposed, or the last outcome was dismissed
    pending   a proposal is waiting for the counterpart's answer
    accepted  both agreed; identities are visible for the rest of the session
    declined  the counterpart said no; nothing was exchanged

Identity data is only ever read in ``disclose`` and only after both
consents are recorded as True.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.errors import (
    InvalidTransition,
    NotAParticipant,
    RevealNotAccepted,
    SessionNotActive,
)
from campus_chat.core.feed import ChangeFeed, reveal_topic
from campus_chat.db.models import ChatSession, RevealConsent
from campus_chat.db.repositories import IdentityCard, chat_session_repo, reveal_repo, user_repo
from campus_chat.db.utils.session_management import transaction


class RevealState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


@dataclass(frozen=True)
class RevealEvent:
    """Published on ``reveal:{session_id}`` whenever the record changes."""
    session_id: int
    action: str  # proposed, accepted, declined, dismissed
    actor_id: int
    proposer_id: Optional[int]


def _slot(chat_session: ChatSession, user_id: int) -> int:
    if user_id == chat_session.user1_id:
        return 1
    if user_id == chat_session.user2_id:
        return 2
    raise NotAParticipant(f"user {user_id} is not in session {chat_session.id}")


def _consent(record: RevealConsent, slot: int) -> Optional[bool]:
    return record.user1_consent if slot == 1 else record.user2_consent


def _dismissed(record: RevealConsent, slot: int) -> bool:
    return record.user1_dismissed if slot == 1 else record.user2_dismissed


def state_from_record(record: Optional[RevealConsent], slot: int) -> RevealState:
    """Derive what participant ``slot`` (1 or 2) sees from a consent record."""
    if record is None:
        return RevealState.IDLE
    if record.is_declined:
        return RevealState.IDLE if _dismissed(record, slot) else RevealState.DECLINED
    if record.is_accepted:
        return RevealState.IDLE if _dismissed(record, slot) else RevealState.ACCEPTED
    return RevealState.PENDING


class RevealHandshake:
    """Two-party reveal protocol backed by the ``reveal_consents`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    async def _load(self, session: AsyncSession, session_id: int, user_id: int, require_active: bool = True):
        chat_session = await chat_session_repo.get_by_id(session, session_id)
        if chat_session is None:
            raise SessionNotActive(f"session {session_id} does not exist")
        slot = _slot(chat_session, user_id)
        if require_active and not chat_session.is_active:
            raise SessionNotActive(f"session {session_id} is {chat_session.status}")
        record = await reveal_repo.get_for_session(session, session_id)
        return chat_session, slot, record

    async def state_for(self, session_id: int, user_id: int) -> RevealState:
        async with transaction(self.session_factory) as session:
            chat_session, slot, record = await self._load(session, session_id, user_id, require_active=False)
            if not chat_session.is_active:
                return RevealState.IDLE
            return state_from_record(record, slot)

    async def proposer_of(self, session_id: int) -> Optional[int]:
        async with transaction(self.session_factory) as session:
            record = await reveal_repo.get_for_session(session, session_id)
            return record.proposer_id if record else None

    async def propose(self, session_id: int, user_id: int) -> RevealState:
        """
        Ask the counterpart to reveal identities.

        Legal when nothing is in flight: a pending or accepted handshake
        cannot be proposed again; a declined one can.
        """
        async with transaction(self.session_factory) as session:
            chat_session, slot, record = await self._load(session, session_id, user_id)
            if record is not None and not record.is_declined:
                current = state_from_record(record, slot)
                raise InvalidTransition(f"cannot propose a reveal in session {session_id} while {current.value}")
            await reveal_repo.start(session, session_id, user_id, proposer_is_user1=(slot == 1))

        logger.info(f"User {user_id} proposed a reveal in session {session_id}")
        await self.feed.publish(reveal_topic(session_id), RevealEvent(session_id, "proposed", user_id, user_id))
        return RevealState.PENDING

    async def respond(self, session_id: int, user_id: int, accept: bool) -> RevealState:
        """Answer a pending proposal. Only the counterpart of the proposer may answer."""
        async with transaction(self.session_factory) as session:
            chat_session, slot, record = await self._load(session, session_id, user_id)
            if record is None or state_from_record(record, slot) is not RevealState.PENDING:
                raise InvalidTransition(f"no pending reveal to answer in session {session_id}")
            if record.proposer_id == user_id or _consent(record, slot) is not None:
                raise InvalidTransition(f"user {user_id} cannot answer their own reveal proposal")

            if slot == 1:
                record.user1_consent = accept
            else:
                record.user2_consent = accept
            await session.flush()
            proposer_id = record.proposer_id
            outcome = RevealState.ACCEPTED if record.is_accepted else RevealState.DECLINED

        action = "accepted" if accept else "declined"
        logger.info(f"User {user_id} {action} the reveal in session {session_id}")
        await self.feed.publish(reveal_topic(session_id), RevealEvent(session_id, action, user_id, proposer_id))
        return outcome

    async def dismiss(self, session_id: int, user_id: int) -> RevealState:
        """Close the accepted or declined outcome for ``user_id``; a declined record
        dismissed by both participants is removed."""
        async with transaction(self.session_factory) as session:
            chat_session, slot, record = await self._load(session, session_id, user_id)
            current = state_from_record(record, slot)
            if current not in (RevealState.ACCEPTED, RevealState.DECLINED):
                raise InvalidTransition(f"nothing to dismiss in session {session_id} ({current.value})")

            if slot == 1:
                record.user1_dismissed = True
            else:
                record.user2_dismissed = True
            proposer_id = record.proposer_id
            if record.is_declined and record.user1_dismissed and record.user2_dismissed:
                await reveal_repo.clear(session, session_id)
            else:
                await session.flush()

        await self.feed.publish(reveal_topic(session_id), RevealEvent(session_id, "dismissed", user_id, proposer_id))
        return RevealState.IDLE

    async def disclose(self, session_id: int, viewer_id: int) -> IdentityCard:
        """
        Return the counterpart's identity card.

        Raises:
            RevealNotAccepted: both participants have not agreed
        """
        async with transaction(self.session_factory) as session:
            chat_session, slot, record = await self._load(session, session_id, viewer_id)
            if record is None or not record.is_accepted:
                raise RevealNotAccepted(f"reveal not accepted by both participants of session {session_id}")
            card = await user_repo.get_identity_card(session, chat_session.partner_of(viewer_id))

        if card is None:
            raise RevealNotAccepted(f"counterpart of user {viewer_id} has no identity on record")
        return card
