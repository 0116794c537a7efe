"""
In-process change feed.

Stands in for the realtime change notifications of the backing store: store
writers publish on a topic and every live subscription on that topic is
invoked in registration order. Topics used by the matching layer:

    messages:{session_id}   a message was appended
    reveal:{session_id}     the reveal consent record changed
    sessions:{user_id}      a session involving the user was opened or closed
    presence                a user went online or offline
"""
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

from loguru import logger

Listener = Callable[[Any], Union[None, Awaitable[None]]]


def messages_topic(session_id: int) -> str:
    return f"messages:{session_id}"


def reveal_topic(session_id: int) -> str:
    return f"reveal:{session_id}"


def sessions_topic(user_id: int) -> str:
    return f"sessions:{user_id}"


PRESENCE_TOPIC = "presence"


class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``; ``close`` is idempotent."""

    def __init__(self, feed: "ChangeFeed", topic: str, callback: Listener):
        self.feed = feed
        self.topic = topic
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._remove(self)

    def __repr__(self) -> str:
        return f"<Subscription {self.topic} closed={self.closed}>"


class ChangeFeed:
    """Topic-based publish/subscribe for change notifications."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Listener) -> Subscription:
        subscription = Subscription(self, topic, callback)
        self._subscribers[topic].append(subscription)
        logger.debug(f"Subscribed to {topic} ({len(self._subscribers[topic])} listeners)")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        listeners = self._subscribers.get(subscription.topic)
        if listeners and subscription in listeners:
            listeners.remove(subscription)
        if not listeners:
            self._subscribers.pop(subscription.topic, None)

    def listener_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    async def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver ``payload`` to every live subscription on ``topic``.

        Listeners run one after another in registration order. A failing
        listener is logged and does not stop delivery to the others.

        Returns:
            Number of listeners invoked
        """
        delivered = 0
        # Snapshot so listeners may unsubscribe while we iterate
        for subscription in list(self._subscribers.get(topic, [])):
            if subscription.closed:
                continue
            try:
                result = subscription.callback(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.exception(f"Listener on {topic} failed: {e}")
        return delivered
