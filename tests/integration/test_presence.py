import asyncio

import pytest

from campus_chat.matching.presence import PresenceTracker
from campus_chat.db.models import Gender


@pytest.mark.asyncio
async def test_online_count_follows_presence_changes(services, test_session_maker, make_user):
    user = await make_user(Gender.DUDE, online=False)
    await make_user(Gender.GIRL)
    counts = []
    tracker = PresenceTracker(test_session_maker, services.feed, refresh_seconds=3600)

    await tracker.start(counts.append)
    await services.presence.go_online(user.id)
    await services.presence.go_offline(user.id)

    assert counts == [1, 2, 1]
    assert tracker.online_count == 1
    await tracker.stop()


@pytest.mark.asyncio
async def test_no_updates_after_stop(services, test_session_maker, make_user):
    user = await make_user(Gender.DUDE, online=False)
    counts = []
    tracker = PresenceTracker(test_session_maker, services.feed, refresh_seconds=0.01)

    await tracker.start(counts.append)
    await asyncio.sleep(0.05)
    await tracker.stop()
    seen = len(counts)

    await services.presence.go_online(user.id)
    await asyncio.sleep(0.05)

    assert len(counts) == seen
    assert not tracker.is_running


@pytest.mark.asyncio
async def test_stop_is_idempotent(services, test_session_maker):
    tracker = PresenceTracker(test_session_maker, services.feed)
    await tracker.stop()
    await tracker.start()
    await tracker.stop()
    await tracker.stop()


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_refreshes(services, test_session_maker, make_user):
    await make_user(Gender.GIRL)
    calls = []

    def flaky_listener(count):
        calls.append(count)
        if len(calls) == 2:
            raise RuntimeError("view hiccup")

    tracker = PresenceTracker(test_session_maker, services.feed, refresh_seconds=0.01)
    await tracker.start(flaky_listener)
    await asyncio.sleep(0.1)

    assert len(calls) > 2
    assert not tracker._refresh_task.done()

    await tracker.stop()
    assert not tracker.is_running
