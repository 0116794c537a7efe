from aiogram import types
from aiogram.utils.keyboard import ReplyKeyboardBuilder, InlineKeyboardBuilder

from campus_chat.core.templates import get_template

FIND_BUTTON = "🔍 Find someone"
CANCEL_BUTTON = "❌ Cancel search"
REVEAL_BUTTON = "🎭 Reveal"
NEXT_BUTTON = "⏭ Next"


def get_main_menu_keyboard() -> types.ReplyKeyboardMarkup:
    """Creates the main menu keyboard with the find button."""
    builder = ReplyKeyboardBuilder()
    builder.row(types.KeyboardButton(text=FIND_BUTTON))
    return builder.as_markup(resize_keyboard=True, one_time_keyboard=False)


def get_searching_keyboard() -> types.ReplyKeyboardMarkup:
    builder = ReplyKeyboardBuilder()
    builder.row(types.KeyboardButton(text=CANCEL_BUTTON))
    return builder.as_markup(resize_keyboard=True, one_time_keyboard=False)


def get_in_chat_keyboard() -> types.ReplyKeyboardMarkup:
    """Creates a keyboard for when a user is in a chat."""
    builder = ReplyKeyboardBuilder()
    builder.row(
        types.KeyboardButton(text=REVEAL_BUTTON),
        types.KeyboardButton(text=NEXT_BUTTON),
    )
    return builder.as_markup(resize_keyboard=True, one_time_keyboard=False)


def get_gender_keyboard() -> types.InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        types.InlineKeyboardButton(text="🧔 Dude", callback_data="gender:dude"),
        types.InlineKeyboardButton(text="👩 Girl", callback_data="gender:girl"),
    )
    return builder.as_markup()


def get_alias_keyboard() -> types.InlineKeyboardMarkup:
    """Keep the offered alias or roll a new one."""
    builder = InlineKeyboardBuilder()
    builder.row(
        types.InlineKeyboardButton(text="✅ Keep it", callback_data="alias:keep"),
        types.InlineKeyboardButton(text="🎲 Roll again", callback_data="alias:reroll"),
    )
    return builder.as_markup()


def get_reveal_answer_keyboard() -> types.InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        types.InlineKeyboardButton(text="✅ Reveal", callback_data="reveal:accept"),
        types.InlineKeyboardButton(text="🙈 Stay hidden", callback_data="reveal:decline"),
    )
    return builder.as_markup()


def get_reveal_dismiss_keyboard() -> types.InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(types.InlineKeyboardButton(text="👌 OK", callback_data="reveal:dismiss"))
    return builder.as_markup()


def get_rating_keyboard() -> types.InlineKeyboardMarkup:
    """
    Creates the rating keyboard.

    One button per configured rating option, valued 1..n in template order,
    plus a skip button.
    """
    builder = InlineKeyboardBuilder()
    buttons = [
        types.InlineKeyboardButton(text=f"{option['icon']} {option['label']}", callback_data=f"rate:{value}")
        for value, option in enumerate(get_template("rating_options"), start=1)
    ]
    builder.row(*buttons[:2])
    builder.row(*buttons[2:])
    builder.row(types.InlineKeyboardButton(text="Skip", callback_data="rate:skip"))
    return builder.as_markup()
