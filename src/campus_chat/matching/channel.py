"""
Chat channel: append, read back and subscribe to the messages of a session.
"""
from typing import Awaitable, Callable, Dict, Iterable, Union

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.errors import EmptyContent, NotAParticipant, SessionNotActive
from campus_chat.core.feed import ChangeFeed, Subscription, messages_topic
from campus_chat.db.models import ChatMessage
from campus_chat.db.repositories import chat_message_repo, chat_session_repo
from campus_chat.db.utils.session_management import transaction

MessageListener = Callable[[ChatMessage], Union[None, Awaitable[None]]]


class ChatChannel:
    """Message store for chat sessions with change notifications."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    async def send(self, session_id: int, sender_id: int, content: str) -> ChatMessage:
        """
        Append a message from ``sender_id`` and notify subscribers.

        Raises:
            EmptyContent: content is blank after trimming (checked before any store call)
            SessionNotActive: the session is missing or no longer active
            NotAParticipant: the sender is not one of the two participants
        """
        text = (content or "").strip()
        if not text:
            raise EmptyContent("message content is blank")

        async with transaction(self.session_factory) as session:
            chat_session = await chat_session_repo.get_by_id(session, session_id)
            if chat_session is None or not chat_session.is_active:
                raise SessionNotActive(f"session {session_id} is not active")
            if chat_session.partner_of(sender_id) is None:
                raise NotAParticipant(f"user {sender_id} is not in session {session_id}")
            message = await chat_message_repo.insert_message(session, session_id, sender_id, text)

        logger.debug(f"Message {message.id} appended to session {session_id} by user {sender_id}")
        await self.feed.publish(messages_topic(session_id), message)
        return message

    def subscribe(self, session_id: int, on_message: MessageListener) -> Subscription:
        """Call ``on_message`` for every message appended after now, in append order."""
        return self.feed.subscribe(messages_topic(session_id), on_message)

    async def history(self, session_id: int) -> list[ChatMessage]:
        """All messages of the session, ascending by creation time then id."""
        async with transaction(self.session_factory) as session:
            return await chat_message_repo.query_messages(session, session_id)

    async def tail(self, session_id: int, limit: int = 10) -> list[ChatMessage]:
        async with transaction(self.session_factory) as session:
            return await chat_message_repo.get_tail(session, session_id, limit)


class MessageLog:
    """
    Consumer-side view of a session's messages.

    Backlog and live deliveries can overlap; entries are de-duplicated by id
    and always read back sorted by ``(created_at, id)``.
    """

    def __init__(self):
        self._by_id: Dict[int, ChatMessage] = {}

    def add(self, message: ChatMessage) -> bool:
        """Record ``message``; returns False when it was already seen."""
        if message.id in self._by_id:
            return False
        self._by_id[message.id] = message
        return True

    def merge(self, messages: Iterable[ChatMessage]) -> list[ChatMessage]:
        """Record a batch and return the new entries in order."""
        fresh = [m for m in messages if self.add(m)]
        return sorted(fresh, key=lambda m: m.sort_key)

    @property
    def messages(self) -> list[ChatMessage]:
        return sorted(self._by_id.values(), key=lambda m: m.sort_key)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._by_id
