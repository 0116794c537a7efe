import pytest

from campus_chat.chat_bot import handlers
from campus_chat.chat_bot.states import ChatState
from campus_chat.core.errors import InvalidRating
from campus_chat.db.models import Gender
from campus_chat.matching.lobby import LobbyStatus
from tests.fixtures.bot import make_callback, make_message

DUDE_TG = 1001
GIRL_TG = 2002


async def onboard(services, telegram_user_id: int, email: str, gender: Gender):
    user = await services.onboarding.register_email(telegram_user_id, email)
    await services.onboarding.choose_gender(user.id, gender)
    await services.onboarding.set_alias(user.id)
    return user


def sent_to(mock_bot, chat_id: int) -> list[str]:
    return [
        call.kwargs["text"]
        for call in mock_bot.send_message.call_args_list
        if call.kwargs.get("chat_id") == chat_id
    ]


@pytest.mark.bot
@pytest.mark.asyncio
async def test_start_asks_for_college_email(services, registry, mock_bot, mock_state):
    message = make_message("/start", DUDE_TG)

    await handlers.cmd_start(message, mock_state, mock_bot, services, registry)

    text = message.answer.call_args.args[0]
    assert "@rguktn.ac.in" in text
    mock_state.set_state.assert_called_with(ChatState.waiting_for_email)


@pytest.mark.bot
@pytest.mark.asyncio
async def test_wrong_domain_is_rejected(services, mock_state):
    message = make_message("me@gmail.com", DUDE_TG)

    await handlers.handle_email(message, mock_state, services)

    assert "@rguktn.ac.in" in message.answer.call_args.args[0]
    mock_state.set_state.assert_not_called()


@pytest.mark.bot
@pytest.mark.asyncio
async def test_onboarding_walkthrough(services, registry, mock_bot, mock_state):
    await handlers.handle_email(make_message("n190001@rguktn.ac.in", DUDE_TG), mock_state, services)
    mock_state.set_state.assert_called_with(ChatState.choosing_gender)

    gender_callback = make_callback("gender:dude", DUDE_TG)
    await handlers.handle_gender(gender_callback, mock_state, services)
    mock_state.set_state.assert_called_with(ChatState.choosing_alias)
    first_offer = gender_callback.message.edit_text.call_args.args[0]

    reroll = make_callback("alias:reroll", DUDE_TG)
    await handlers.handle_alias_reroll(reroll, services)
    assert reroll.message.edit_text.called

    keep = make_callback("alias:keep", DUDE_TG)
    await handlers.handle_alias_keep(keep, mock_state, mock_bot, services, registry)
    mock_state.set_state.assert_called_with(ChatState.ready)

    user = await services.onboarding.get_user(DUDE_TG)
    assert user.alias_locked
    assert user.is_online
    assert registry.is_live(user.id)
    assert "<b>" in first_offer


@pytest.mark.bot
@pytest.mark.asyncio
async def test_find_match_and_relay_text(services, registry, mock_bot, mock_state):
    await onboard(services, DUDE_TG, "n190001@rguktn.ac.in", Gender.DUDE)
    girl = await onboard(services, GIRL_TG, "n190002@rguktn.ac.in", Gender.GIRL)
    await handlers.get_lobby(mock_bot, GIRL_TG, services, registry)

    await handlers.handle_find(make_message(handlers.FIND_BUTTON, DUDE_TG), mock_bot, services, registry)
    dude_lobby = await handlers.get_lobby(mock_bot, DUDE_TG, services, registry)
    await dude_lobby._search_task

    assert dude_lobby.status is LobbyStatus.MATCHED
    assert any(girl.alias in text for text in sent_to(mock_bot, DUDE_TG))

    await handlers.handle_text(make_message("hey <you>", DUDE_TG), mock_bot, services, registry)

    assert sent_to(mock_bot, GIRL_TG)[-1].endswith("hey &lt;you&gt;")


@pytest.mark.bot
@pytest.mark.asyncio
async def test_find_before_onboarding_asks_to_start(services, registry, mock_bot):
    message = make_message(handlers.FIND_BUTTON, DUDE_TG)

    await handlers.handle_find(message, mock_bot, services, registry)

    assert "/start" in message.answer.call_args.args[0]


@pytest.mark.bot
@pytest.mark.asyncio
async def test_malformed_rating_callback_is_rejected(services, registry, mock_bot):
    await onboard(services, DUDE_TG, "n190001@rguktn.ac.in", Gender.DUDE)
    callback = make_callback("rate:lots", DUDE_TG)

    await handlers.handle_rating(callback, mock_bot, services, registry)

    callback.answer.assert_awaited_once_with(InvalidRating.notice, show_alert=True)
    callback.message.edit_reply_markup.assert_not_awaited()
    lobby = await handlers.get_lobby(mock_bot, DUDE_TG, services, registry)
    assert lobby.status is LobbyStatus.IDLE
