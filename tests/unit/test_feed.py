from unittest.mock import MagicMock

import pytest

from campus_chat.core.feed import ChangeFeed, messages_topic


@pytest.mark.asyncio
async def test_publish_reaches_listeners_in_order():
    feed = ChangeFeed()
    seen = []
    feed.subscribe("t", lambda payload: seen.append(("sync", payload)))

    async def async_listener(payload):
        seen.append(("async", payload))

    feed.subscribe("t", async_listener)
    delivered = await feed.publish("t", 1)

    assert delivered == 2
    assert seen == [("sync", 1), ("async", 1)]


@pytest.mark.asyncio
async def test_closed_subscription_gets_nothing():
    feed = ChangeFeed()
    listener = MagicMock()
    subscription = feed.subscribe(messages_topic(5), listener)
    subscription.close()
    subscription.close()

    assert await feed.publish(messages_topic(5), "hello") == 0
    listener.assert_not_called()
    assert feed.listener_count(messages_topic(5)) == 0


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    feed = ChangeFeed()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    feed.subscribe("t", broken)
    feed.subscribe("t", received.append)

    assert await feed.publish("t", "x") == 1
    assert received == ["x"]


@pytest.mark.asyncio
async def test_listener_may_unsubscribe_while_publishing():
    feed = ChangeFeed()
    calls = []
    subscription = None

    def once(payload):
        calls.append(payload)
        subscription.close()

    subscription = feed.subscribe("t", once)
    await feed.publish("t", 1)
    await feed.publish("t", 2)
    assert calls == [1]
