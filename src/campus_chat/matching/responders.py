"""
Counterpart simulation.

When the matched counterpart has no live client, an ``AutoResponder`` can
answer on their behalf. What it says is decided by a ``ResponsePolicy`` so a
smarter backend can be swapped in without touching the chat channel.
"""
import asyncio
import random
from typing import Dict, List, Optional, Protocol, Sequence, Set

from loguru import logger

from campus_chat.core.errors import ChatError
from campus_chat.core.feed import Subscription
from campus_chat.core.templates import get_template
from campus_chat.db.models import ChatMessage
from campus_chat.matching.channel import ChatChannel


class ResponsePolicy(Protocol):
    async def respond_to(self, tail: Sequence[ChatMessage], responder_id: int) -> Optional[str]:
        """Return the reply text for the conversation tail, or None to stay quiet."""
        ...


class CannedResponsePolicy:
    """Replies with a random line from a fixed list."""

    def __init__(self, lines: Sequence[str] | None = None, rng: random.Random | None = None):
        self.lines = list(lines) if lines is not None else list(get_template("auto_responses"))
        self.rng = rng or random.Random()

    async def respond_to(self, tail: Sequence[ChatMessage], responder_id: int) -> Optional[str]:
        if not self.lines:
            return None
        # Only answer when the last word was someone else's
        if tail and tail[-1].sender_id == responder_id:
            return None
        return self.rng.choice(self.lines)


class AutoResponder:
    """Answers messages in attached sessions after a fixed delay."""

    def __init__(
        self,
        channel: ChatChannel,
        policy: ResponsePolicy,
        delay: float = 2.0,
        tail_size: int = 10,
    ):
        self.channel = channel
        self.policy = policy
        self.delay = delay
        self.tail_size = tail_size
        self._subscriptions: Dict[int, Subscription] = {}
        self._pending: Set[asyncio.Task] = set()

    def attach(self, session_id: int, responder_id: int) -> None:
        """Reply as ``responder_id`` to every message the other participant sends."""
        if session_id in self._subscriptions:
            return

        def on_message(message: ChatMessage) -> None:
            if message.sender_id == responder_id:
                return
            task = asyncio.create_task(self._reply(session_id, responder_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        self._subscriptions[session_id] = self.channel.subscribe(session_id, on_message)
        logger.info(f"Auto responder attached to session {session_id} as user {responder_id}")

    def detach(self, session_id: int) -> None:
        subscription = self._subscriptions.pop(session_id, None)
        if subscription is not None:
            subscription.close()

    @property
    def pending(self) -> List[asyncio.Task]:
        return list(self._pending)

    async def _reply(self, session_id: int, responder_id: int) -> None:
        await asyncio.sleep(self.delay)
        if session_id not in self._subscriptions:
            return
        try:
            tail = await self.channel.tail(session_id, self.tail_size)
            text = await self.policy.respond_to(tail, responder_id)
            if text:
                await self.channel.send(session_id, responder_id, text)
        except ChatError as e:
            # The session may have ended while we were waiting
            logger.info(f"Auto reply in session {session_id} skipped: {e}")

    async def close(self) -> None:
        """Detach from every session and cancel replies still waiting."""
        for session_id in list(self._subscriptions):
            self.detach(session_id)
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
