"""
Presence tracking: the online flag and the derived online-user count.
"""
import asyncio
import inspect
from typing import Awaitable, Callable, Optional, Union

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.errors import PersistenceError
from campus_chat.core.feed import PRESENCE_TOPIC, ChangeFeed, Subscription
from campus_chat.db.models import Gender, User
from campus_chat.db.repositories import user_repo
from campus_chat.db.utils.session_management import transaction, with_retry

CountListener = Callable[[int], Union[None, Awaitable[None]]]


class PresenceTracker:
    """
    Online flag writes plus a live online count.

    ``start`` begins watching: it computes the count, refreshes it on every
    presence change and every ``refresh_seconds``. ``stop`` tears everything
    down; once it returns the listener is never called again.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        refresh_seconds: float = 30.0,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.refresh_seconds = refresh_seconds
        self.online_count = 0
        self._listener: Optional[CountListener] = None
        self._subscription: Optional[Subscription] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._running = False

    async def go_online(self, user_id: int) -> None:
        async with transaction(self.session_factory) as session:
            await user_repo.set_online(session, user_id, True)
        logger.info(f"User {user_id} is online")
        await self.feed.publish(PRESENCE_TOPIC, {"user_id": user_id, "online": True})

    async def go_offline(self, user_id: int) -> None:
        async with transaction(self.session_factory) as session:
            await user_repo.set_online(session, user_id, False)
        logger.info(f"User {user_id} went offline")
        await self.feed.publish(PRESENCE_TOPIC, {"user_id": user_id, "online": False})

    async def count_online(self, exclude_id: int | None = None) -> int:
        async with transaction(self.session_factory) as session:
            return await user_repo.count_online(session, exclude_id=exclude_id)

    @with_retry(max_attempts=3, base_delay=0.2, max_delay=2.0)
    async def candidates(self, requester_id: int, gender: Gender, limit: int) -> list[User]:
        """Online users of ``gender`` other than the requester, capped at ``limit``."""
        async with transaction(self.session_factory) as session:
            return await user_repo.find_online_candidates(session, gender, requester_id, limit)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, on_count: Optional[CountListener] = None) -> None:
        if self._running:
            return
        self._running = True
        self._listener = on_count
        self._subscription = self.feed.subscribe(PRESENCE_TOPIC, self._on_presence_change)
        await self.refresh()
        self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._listener = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Online count refresh task had failed: {e}")
            self._refresh_task = None

    async def refresh(self) -> int:
        """Recount online users and notify the listener. Keeps the last count on failure."""
        try:
            count = await self.count_online()
        except PersistenceError as e:
            logger.warning(f"Error updating online count: {e}")
            return self.online_count

        self.online_count = count
        listener = self._listener
        if self._running and listener is not None:
            try:
                result = listener(count)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Online count listener failed for count {count}")
        return count

    async def _on_presence_change(self, _payload) -> None:
        if self._running:
            await self.refresh()

    async def _refresh_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.refresh_seconds)
            await self.refresh()
