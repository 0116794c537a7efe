"""
Lobby: one user's view of the matching flow.

    idle --start_search--> searching --matched--> matched --next--> rating
      ^                        |                     |                |
      +----cancel_search-------+                     |                |
      +-------------------------------end------------+                |
      +------------------------------------------rate / skip_rating---+

A counterpart's lobby follows along through the ``sessions:{user_id}``
topic: it switches to matched when someone opens a session with them and
back to idle when the other side closes it. Every public operation turns a
``ChatError`` into a notice for the view and never raises.
"""
import asyncio
import functools
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from campus_chat.core.context import SessionContext
from campus_chat.core.errors import ChatError, InvalidTransition
from campus_chat.core.feed import Subscription, reveal_topic, sessions_topic
from campus_chat.db.models import ChatMessage, ChatSession
from campus_chat.db.repositories import IdentityCard
from campus_chat.matching.channel import MessageLog
from campus_chat.matching.responders import AutoResponder
from campus_chat.matching.reveal import RevealEvent, RevealState
from campus_chat.services import ChatServices


class LobbyStatus(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    MATCHED = "matched"
    RATING = "rating"


class LobbyListener:
    """Receives lobby updates. Override what the view cares about."""

    async def on_status(self, status: LobbyStatus) -> None:
        pass

    async def on_matched(self, session: ChatSession, partner_alias: str) -> None:
        pass

    async def on_message(self, message: ChatMessage, mine: bool) -> None:
        pass

    async def on_reveal(self, event: RevealEvent, state: RevealState) -> None:
        pass

    async def on_session_closed(self, session: ChatSession, by_partner: bool) -> None:
        pass

    async def on_online_count(self, count: int) -> None:
        pass

    async def on_notice(self, notice: str) -> None:
        pass


def guarded(func):
    """Decorator for lobby operations: report ``ChatError`` as a notice and return None."""
    @functools.wraps(func)
    async def wrapper(self: "Lobby", *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except InvalidTransition as e:
            logger.error(f"Lobby {self.ctx.user_id}: {func.__name__} rejected: {e}")
            await self.listener.on_notice(e.notice)
        except ChatError as e:
            logger.warning(f"Lobby {self.ctx.user_id}: {func.__name__} failed: {e}")
            await self.listener.on_notice(e.notice)
        return None

    return wrapper


class Lobby:
    """Drives search, chat, reveal and rating for one signed-in user."""

    def __init__(
        self,
        services: ChatServices,
        ctx: SessionContext,
        listener: LobbyListener | None = None,
        is_live: Callable[[int], bool] = lambda user_id: False,
    ):
        self.services = services
        self.ctx = ctx
        self.listener = listener or LobbyListener()
        self.is_live = is_live
        self.status = LobbyStatus.IDLE
        self.session: Optional[ChatSession] = None
        self.partner_id: Optional[int] = None
        self.partner_alias: Optional[str] = None
        self.log = MessageLog()
        self.entered = False

        self.presence = services.presence_tracker()
        self.responder: AutoResponder = services.auto_responder()
        self._search_task: Optional[asyncio.Task] = None
        self._session_subscriptions: List[Subscription] = []
        self._user_subscription: Optional[Subscription] = None
        self._backlog_loaded = False
        self._buffer: Dict[int, ChatMessage] = {}

    # -- lifecycle -----------------------------------------------------

    async def enter(self) -> None:
        """Go online, start presence updates and pick up an Active session left open."""
        if self.entered:
            return
        await self.services.onboarding.lock_alias(self.ctx.user_id)
        self._user_subscription = self.services.feed.subscribe(
            sessions_topic(self.ctx.user_id), self._on_session_event
        )
        await self.services.presence.go_online(self.ctx.user_id)
        await self.presence.start(self.listener.on_online_count)
        self.entered = True

        existing = await self.services.coordinator.get_active_session_for_user(self.ctx.user_id)
        if existing is not None:
            logger.info(f"Lobby {self.ctx.user_id}: resuming session {existing.id}")
            await self._attach(existing, existing.partner_of(self.ctx.user_id))

    async def leave(self) -> None:
        """Tear everything down. No listener call happens after this returns."""
        if not self.entered:
            return
        await self._cancel_search_task()
        if self.session is not None:
            try:
                await self.services.coordinator.advance_to_ended(self.session.id, self.ctx.user_id)
            except ChatError as e:
                logger.info(f"Lobby {self.ctx.user_id}: session already closed on leave: {e}")
        self._detach()
        if self._user_subscription is not None:
            self._user_subscription.close()
            self._user_subscription = None
        await self.presence.stop()
        await self.responder.close()
        try:
            await self.services.presence.go_offline(self.ctx.user_id)
        except ChatError as e:
            logger.warning(f"Error setting offline: {e}")
        self.entered = False
        self.status = LobbyStatus.IDLE

    # -- search --------------------------------------------------------

    @guarded
    async def start_search(self) -> Optional[asyncio.Task]:
        if self.status is not LobbyStatus.IDLE:
            raise InvalidTransition(f"cannot search while {self.status.value}")
        await self._set_status(LobbyStatus.SEARCHING)
        self._search_task = asyncio.create_task(self._search())
        return self._search_task

    @guarded
    async def cancel_search(self) -> None:
        """Stop a pending search. A session already written is ended instead."""
        await self._cancel_search_task()
        if self.session is not None:
            await self.services.coordinator.advance_to_ended(self.session.id, self.ctx.user_id)
        elif self.status is LobbyStatus.SEARCHING:
            await self._set_status(LobbyStatus.IDLE)

    async def _cancel_search_task(self) -> None:
        task = self._search_task
        self._search_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _search_delay(self) -> float:
        settings = self.services.settings
        return self.services.rng.uniform(settings.search_delay_min_seconds, settings.search_delay_max_seconds)

    async def _search(self) -> Optional[ChatSession]:
        coordinator = self.services.coordinator
        try:
            counterpart = await self.services.matchmaker.find_match(self.ctx)
            delay = self._search_delay()
            if delay > 0:
                await asyncio.sleep(delay)

            opening = asyncio.ensure_future(
                coordinator.open_session(self.ctx.user_id, counterpart.id, seed_warmup=False)
            )
            try:
                chat_session = await asyncio.shield(opening)
            except asyncio.CancelledError:
                # The record may already be written; it cannot be retracted, only ended
                try:
                    chat_session = await opening
                    await coordinator.advance_to_ended(chat_session.id, self.ctx.user_id)
                except ChatError as e:
                    logger.info(f"Lobby {self.ctx.user_id}: search cancelled while opening failed: {e}")
                raise

            await self._attach(chat_session, counterpart.id, counterpart.alias)
            await coordinator.seed_warmup(chat_session, self.ctx.alias, counterpart.alias)
            return chat_session
        except ChatError as e:
            if self.status is LobbyStatus.SEARCHING:
                logger.warning(f"Lobby {self.ctx.user_id}: search failed: {e}")
                await self._set_status(LobbyStatus.IDLE)
                await self.listener.on_notice(e.notice)
            return None

    # -- chat ----------------------------------------------------------

    async def _attach(self, chat_session: ChatSession, partner_id: int, partner_alias: str | None = None) -> None:
        if self.session is not None and self.session.id == chat_session.id:
            return
        self._detach()
        self.session = chat_session
        self.partner_id = partner_id
        if partner_alias is None:
            partner = await self.services.get_user(partner_id)
            partner_alias = partner.alias if partner else "Stranger"
        self.partner_alias = partner_alias

        # Subscribe before reading the backlog so nothing falls in between
        self._backlog_loaded = False
        self._buffer = {}
        channel = self.services.channel
        self._session_subscriptions = [
            channel.subscribe(chat_session.id, self._on_message),
            self.services.feed.subscribe(reveal_topic(chat_session.id), self._on_reveal_event),
        ]
        if self.services.settings.auto_reply_enabled and not self.is_live(partner_id):
            self.responder.attach(chat_session.id, partner_id)

        await self._set_status(LobbyStatus.MATCHED)
        await self.listener.on_matched(chat_session, partner_alias)

        backlog = await channel.history(chat_session.id)
        pending = list(backlog) + list(self._buffer.values())
        self._buffer = {}
        self._backlog_loaded = True
        for message in self.log.merge(pending):
            await self.listener.on_message(message, message.sender_id == self.ctx.user_id)

    def _detach(self) -> None:
        for subscription in self._session_subscriptions:
            subscription.close()
        self._session_subscriptions = []
        if self.session is not None:
            self.responder.detach(self.session.id)
        self.session = None
        self.partner_id = None
        self.partner_alias = None
        self.log = MessageLog()
        self._buffer = {}

    async def _on_message(self, message: ChatMessage) -> None:
        if self.session is None or message.session_id != self.session.id:
            return
        if not self._backlog_loaded:
            self._buffer[message.id] = message
            return
        if self.log.add(message):
            await self.listener.on_message(message, message.sender_id == self.ctx.user_id)

    @guarded
    async def send(self, text: str) -> Optional[ChatMessage]:
        if self.session is None or self.status is not LobbyStatus.MATCHED:
            raise InvalidTransition("not in a chat")
        return await self.services.channel.send(self.session.id, self.ctx.user_id, text)

    def history(self) -> list[ChatMessage]:
        return self.log.messages

    # -- reveal --------------------------------------------------------

    def _require_session(self) -> ChatSession:
        if self.session is None:
            raise InvalidTransition("not in a chat")
        return self.session

    @guarded
    async def propose_reveal(self) -> Optional[RevealState]:
        return await self.services.reveal.propose(self._require_session().id, self.ctx.user_id)

    @guarded
    async def respond_reveal(self, accept: bool) -> Optional[RevealState]:
        return await self.services.reveal.respond(self._require_session().id, self.ctx.user_id, accept)

    @guarded
    async def dismiss_reveal(self) -> Optional[RevealState]:
        return await self.services.reveal.dismiss(self._require_session().id, self.ctx.user_id)

    @guarded
    async def reveal_state(self) -> Optional[RevealState]:
        if self.session is None:
            return RevealState.IDLE
        return await self.services.reveal.state_for(self.session.id, self.ctx.user_id)

    @guarded
    async def disclose(self) -> Optional[IdentityCard]:
        return await self.services.reveal.disclose(self._require_session().id, self.ctx.user_id)

    async def _on_reveal_event(self, event: RevealEvent) -> None:
        if self.session is None or event.session_id != self.session.id:
            return
        try:
            state = await self.services.reveal.state_for(event.session_id, self.ctx.user_id)
        except ChatError as e:
            logger.warning(f"Lobby {self.ctx.user_id}: could not read reveal state: {e}")
            return
        await self.listener.on_reveal(event, state)

    # -- closing -------------------------------------------------------

    @guarded
    async def next(self) -> None:
        """Leave the chat view for the rating screen."""
        if self.status is not LobbyStatus.MATCHED:
            raise InvalidTransition(f"cannot rate while {self.status.value}")
        await self._set_status(LobbyStatus.RATING)

    @guarded
    async def rate(self, value: int) -> Optional[ChatSession]:
        if self.status is not LobbyStatus.RATING or self.session is None:
            raise InvalidTransition(f"nothing to rate while {self.status.value}")
        return await self.services.coordinator.advance_to_rated(self.session.id, self.ctx.user_id, value)

    @guarded
    async def skip_rating(self) -> Optional[ChatSession]:
        if self.status is not LobbyStatus.RATING or self.session is None:
            raise InvalidTransition(f"nothing to skip while {self.status.value}")
        return await self.services.coordinator.advance_to_ended(self.session.id, self.ctx.user_id)

    @guarded
    async def end(self) -> Optional[ChatSession]:
        """End the current chat without rating it."""
        session = self._require_session()
        return await self.services.coordinator.advance_to_ended(session.id, self.ctx.user_id)

    async def _on_session_event(self, payload: dict) -> None:
        chat_session: ChatSession = payload["session"]
        if payload["event"] == "opened":
            if self.session is not None:
                return
            if self._search_task is not None and not self._search_task.done():
                # Someone else's search found us first
                self._search_task.cancel()
                self._search_task = None
            await self._attach(chat_session, payload["partner_id"])
            return

        if self.session is None or chat_session.id != self.session.id:
            return
        by_partner = payload.get("by_user_id") != self.ctx.user_id
        self._detach()
        await self._set_status(LobbyStatus.IDLE)
        await self.listener.on_session_closed(chat_session, by_partner)

    async def _set_status(self, status: LobbyStatus) -> None:
        if status is self.status:
            return
        logger.debug(f"Lobby {self.ctx.user_id}: {self.status.value} -> {status.value}")
        self.status = status
        await self.listener.on_status(status)


class LobbyRegistry:
    """Lobbies of the users currently connected to this process."""

    def __init__(self, services: ChatServices):
        self.services = services
        self._lobbies: Dict[int, Lobby] = {}

    def get(self, user_id: int) -> Optional[Lobby]:
        return self._lobbies.get(user_id)

    def is_live(self, user_id: int) -> bool:
        lobby = self._lobbies.get(user_id)
        return lobby is not None and lobby.entered

    async def open(self, ctx: SessionContext, listener: LobbyListener) -> Lobby:
        lobby = self._lobbies.get(ctx.user_id)
        if lobby is None:
            lobby = Lobby(self.services, ctx, listener, is_live=self.is_live)
            self._lobbies[ctx.user_id] = lobby
        await lobby.enter()
        return lobby

    async def close(self, user_id: int) -> None:
        lobby = self._lobbies.pop(user_id, None)
        if lobby is not None:
            await lobby.leave()

    async def close_all(self) -> None:
        for user_id in list(self._lobbies):
            await self.close(user_id)
