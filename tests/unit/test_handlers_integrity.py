from campus_chat.chat_bot.handlers import router
from campus_chat.chat_bot.keyboards import (
    FIND_BUTTON,
    get_in_chat_keyboard,
    get_main_menu_keyboard,
    get_rating_keyboard,
)


def test_router_has_handlers():
    """The chat router handles both messages and button callbacks."""
    message_callbacks = {h.callback.__name__ for h in router.message.handlers}
    callback_callbacks = {h.callback.__name__ for h in router.callback_query.handlers}

    assert {"cmd_start", "handle_email", "handle_find", "handle_cancel", "handle_text"} <= message_callbacks
    assert {"handle_gender", "handle_alias_keep", "handle_reveal_callback", "handle_rating"} <= callback_callbacks


def test_catch_all_text_handler_is_last():
    assert router.message.handlers[-1].callback.__name__ == "handle_unknown"


def test_rating_keyboard_covers_the_scale():
    keyboard = get_rating_keyboard()
    data = [button.callback_data for row in keyboard.inline_keyboard for button in row]
    assert data == ["rate:1", "rate:2", "rate:3", "rate:4", "rate:skip"]


def test_reply_keyboards():
    assert get_main_menu_keyboard().keyboard[0][0].text == FIND_BUTTON
    assert len(get_in_chat_keyboard().keyboard[0]) == 2
