import asyncio

import pytest
from sqlalchemy import func, select

from campus_chat.core.context import SessionContext
from campus_chat.core.errors import CounterpartBusy, InvalidTransition
from campus_chat.core.templates import get_template
from campus_chat.db.models import ChatSession, Gender, SessionStatus, User
from campus_chat.matching.lobby import LobbyListener, LobbyStatus
from campus_chat.matching.reveal import RevealState


class RecordingListener(LobbyListener):
    def __init__(self):
        self.statuses = []
        self.matched = []
        self.messages = []
        self.reveals = []
        self.closed = []
        self.counts = []
        self.notices = []

    async def on_status(self, status):
        self.statuses.append(status)

    async def on_matched(self, session, partner_alias):
        self.matched.append((session.id, partner_alias))

    async def on_message(self, message, mine):
        self.messages.append((message.content, mine))

    async def on_reveal(self, event, state):
        self.reveals.append((event.action, state))

    async def on_session_closed(self, session, by_partner):
        self.closed.append((session.id, session.status, by_partner))

    async def on_online_count(self, count):
        self.counts.append(count)

    async def on_notice(self, notice):
        self.notices.append(notice)


def context_for(user) -> SessionContext:
    return SessionContext(user_id=user.id, gender=Gender(user.gender), alias=user.alias)


@pytest.fixture
async def lobbies(registry, requester, counterpart):
    """Entered lobbies for the requester and the counterpart."""
    listeners = RecordingListener(), RecordingListener()
    lobby_a = await registry.open(context_for(requester), listeners[0])
    lobby_b = await registry.open(context_for(counterpart), listeners[1])
    return (lobby_a, listeners[0]), (lobby_b, listeners[1])


@pytest.fixture
async def matched(lobbies):
    (lobby_a, listener_a), (lobby_b, listener_b) = lobbies
    task = await lobby_a.start_search()
    await task
    return lobbies


@pytest.mark.asyncio
async def test_search_matches_both_lobbies(matched, requester, counterpart):
    (lobby_a, listener_a), (lobby_b, listener_b) = matched

    assert lobby_a.status is LobbyStatus.MATCHED
    assert lobby_b.status is LobbyStatus.MATCHED
    assert lobby_a.session.id == lobby_b.session.id
    assert listener_a.statuses == [LobbyStatus.SEARCHING, LobbyStatus.MATCHED]
    assert listener_a.matched == [(lobby_a.session.id, counterpart.alias)]
    assert listener_b.matched == [(lobby_b.session.id, requester.alias)]

    assert [mine for _, mine in listener_a.messages] == [False, True, False]
    assert [mine for _, mine in listener_b.messages] == [True, False, True]
    assert [text for text, _ in listener_a.messages] == [text for text, _ in listener_b.messages]


@pytest.mark.asyncio
async def test_search_with_no_one_online_reports_a_notice(registry, test_session, requester):
    listener = RecordingListener()
    lobby = await registry.open(context_for(requester), listener)

    task = await lobby.start_search()
    assert await task is None

    assert lobby.status is LobbyStatus.IDLE
    assert listener.notices == ["No girls online right now. Try again later!"]
    assert await test_session.scalar(select(func.count()).select_from(ChatSession)) == 0


@pytest.mark.asyncio
async def test_cancel_before_session_is_written(services, lobbies, test_session):
    (lobby_a, listener_a), (lobby_b, listener_b) = lobbies
    services.settings.search_delay_min_seconds = 5
    services.settings.search_delay_max_seconds = 5

    await lobby_a.start_search()
    await asyncio.sleep(0.05)
    await lobby_a.cancel_search()

    assert lobby_a.status is LobbyStatus.IDLE
    assert lobby_b.status is LobbyStatus.IDLE
    assert listener_a.statuses == [LobbyStatus.SEARCHING, LobbyStatus.IDLE]
    assert await test_session.scalar(select(func.count()).select_from(ChatSession)) == 0


@pytest.mark.asyncio
async def test_cancel_after_match_ends_the_session(services, matched):
    (lobby_a, listener_a), (lobby_b, listener_b) = matched
    session_id = lobby_a.session.id

    await lobby_a.cancel_search()

    chat_session = await services.coordinator.get_session(session_id)
    assert chat_session.status == SessionStatus.ENDED.value
    assert lobby_a.status is LobbyStatus.IDLE
    assert lobby_b.status is LobbyStatus.IDLE
    assert listener_b.closed == [(session_id, SessionStatus.ENDED.value, True)]


@pytest.mark.asyncio
async def test_cancel_while_session_is_being_opened(services, lobbies, test_session, monkeypatch):
    """The record is written but open_session has not returned when the search is cancelled."""
    (lobby_a, listener_a), (lobby_b, listener_b) = lobbies
    open_session = services.coordinator.open_session

    async def slow_open_session(*args, **kwargs):
        chat_session = await open_session(*args, **kwargs)
        await asyncio.sleep(0.2)
        return chat_session

    monkeypatch.setattr(services.coordinator, "open_session", slow_open_session)

    await lobby_a.start_search()
    await asyncio.sleep(0.1)
    await lobby_a.cancel_search()

    statuses = (await test_session.scalars(select(ChatSession.status))).all()
    assert statuses == [SessionStatus.ENDED.value]
    assert lobby_a.status is LobbyStatus.IDLE
    assert lobby_b.status is LobbyStatus.IDLE
    assert lobby_a.session is None
    assert listener_a.notices == []


@pytest.mark.asyncio
async def test_cancel_during_failed_open_stays_quiet(services, lobbies, monkeypatch):
    (lobby_a, listener_a), (lobby_b, _) = lobbies

    async def busy_open_session(*args, **kwargs):
        await asyncio.sleep(0.2)
        raise CounterpartBusy("taken by another search")

    monkeypatch.setattr(services.coordinator, "open_session", busy_open_session)

    await lobby_a.start_search()
    await asyncio.sleep(0.05)
    await lobby_a.cancel_search()

    assert lobby_a.status is LobbyStatus.IDLE
    assert lobby_b.status is LobbyStatus.IDLE
    assert listener_a.statuses == [LobbyStatus.SEARCHING, LobbyStatus.IDLE]
    assert listener_a.notices == []


@pytest.mark.asyncio
async def test_end_closes_the_chat_for_both(services, matched):
    (lobby_a, listener_a), (lobby_b, listener_b) = matched
    session_id = lobby_a.session.id

    ended = await lobby_a.end()

    assert ended.status == SessionStatus.ENDED.value
    assert lobby_a.status is LobbyStatus.IDLE
    assert lobby_b.status is LobbyStatus.IDLE
    assert listener_a.closed == [(session_id, SessionStatus.ENDED.value, False)]
    assert listener_b.closed == [(session_id, SessionStatus.ENDED.value, True)]


@pytest.mark.asyncio
async def test_messages_reach_the_other_lobby(matched):
    (lobby_a, listener_a), (lobby_b, listener_b) = matched

    await lobby_a.send("hello there")
    await lobby_b.send("hi!")

    assert listener_b.messages[-2:] == [("hello there", False), ("hi!", True)]
    assert listener_a.messages[-2:] == [("hello there", True), ("hi!", False)]
    assert [m.content for m in lobby_a.history()][-2:] == ["hello there", "hi!"]


@pytest.mark.asyncio
async def test_blank_message_becomes_a_notice(matched):
    (lobby_a, listener_a), _ = matched
    assert await lobby_a.send("   ") is None
    assert listener_a.notices == ["Type something first."]


@pytest.mark.asyncio
async def test_sending_while_idle_is_rejected_quietly(lobbies):
    (lobby_a, listener_a), _ = lobbies
    assert await lobby_a.send("anyone?") is None
    assert listener_a.notices == [InvalidTransition.notice]


@pytest.mark.asyncio
async def test_reveal_through_lobbies(matched, counterpart):
    (lobby_a, listener_a), (lobby_b, listener_b) = matched

    assert await lobby_a.propose_reveal() is RevealState.PENDING
    assert listener_b.reveals == [("proposed", RevealState.PENDING)]

    assert await lobby_b.respond_reveal(True) is RevealState.ACCEPTED
    assert listener_a.reveals[-1] == ("accepted", RevealState.ACCEPTED)

    card = await lobby_a.disclose()
    assert card.email == counterpart.email
    assert await lobby_a.dismiss_reveal() is RevealState.IDLE
    assert await lobby_a.reveal_state() is RevealState.IDLE
    assert await lobby_b.reveal_state() is RevealState.ACCEPTED


@pytest.mark.asyncio
async def test_rating_returns_both_to_idle(services, test_session, matched):
    (lobby_a, listener_a), (lobby_b, listener_b) = matched
    session_id = lobby_a.session.id

    await lobby_a.next()
    assert lobby_a.status is LobbyStatus.RATING
    await lobby_a.rate(3)

    assert lobby_a.status is LobbyStatus.IDLE
    assert lobby_b.status is LobbyStatus.IDLE
    assert listener_a.closed == [(session_id, SessionStatus.RATED.value, False)]
    assert listener_b.closed == [(session_id, SessionStatus.RATED.value, True)]


@pytest.mark.asyncio
async def test_rating_needs_the_rating_screen(matched):
    (lobby_a, listener_a), _ = matched
    assert await lobby_a.rate(3) is None
    assert lobby_a.status is LobbyStatus.MATCHED
    assert listener_a.notices == [InvalidTransition.notice]


@pytest.mark.asyncio
async def test_skip_rating_ends_session(services, matched):
    (lobby_a, _), (lobby_b, _) = matched
    session_id = lobby_a.session.id

    await lobby_a.next()
    await lobby_a.skip_rating()

    assert (await services.coordinator.get_session(session_id)).status == SessionStatus.ENDED.value
    assert lobby_b.status is LobbyStatus.IDLE


@pytest.mark.asyncio
async def test_leaving_ends_the_chat_and_goes_offline(registry, test_session, matched, requester):
    (lobby_a, _), (lobby_b, listener_b) = matched

    await registry.close(requester.id)

    assert lobby_b.status is LobbyStatus.IDLE
    assert listener_b.closed[0][2] is True
    user = await test_session.get(User, requester.id)
    assert user.is_online is False
    assert user.active_session_id is None


@pytest.mark.asyncio
async def test_entering_resumes_an_active_session(services, registry, requester, counterpart):
    chat_session = await services.coordinator.open_session(requester.id, counterpart.id)
    listener = RecordingListener()

    lobby = await registry.open(context_for(requester), listener)

    assert lobby.status is LobbyStatus.MATCHED
    assert lobby.session.id == chat_session.id
    assert [mine for _, mine in listener.messages] == [False, True, False]


@pytest.mark.asyncio
async def test_offline_counterpart_gets_auto_replies(services, registry, requester, counterpart):
    services.settings.auto_reply_enabled = True
    listener = RecordingListener()
    lobby = await registry.open(context_for(requester), listener)

    await (await lobby.start_search())
    await asyncio.gather(*lobby.responder.pending)
    await lobby.send("so what's up")
    await asyncio.gather(*lobby.responder.pending)

    history = await services.channel.history(lobby.session.id)
    assert history[-1].sender_id == counterpart.id
    assert history[-1].content in get_template("auto_responses")
    assert listener.messages[-1] == (history[-1].content, False)


@pytest.mark.asyncio
async def test_lobby_shows_online_count(lobbies):
    (lobby_a, listener_a), (lobby_b, listener_b) = lobbies
    assert listener_b.counts[-1] == 2
    assert lobby_a.presence.online_count == 2
