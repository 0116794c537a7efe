"""
Telegram handlers: onboarding, the main menu and the in-chat controls.

Onboarding steps are tracked with FSM states. Once the user is ready, what
a message means depends on their lobby (searching, matched, rating), not on
the FSM state, because a counterpart's search can move the lobby at any time.
"""
from html import escape

from aiogram import Bot, F, Router
from aiogram.filters import CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from loguru import logger

from campus_chat.core.errors import AuthRequired, ChatError, InvalidRating
from campus_chat.core.templates import get_text_template
from campus_chat.db.models import Gender
from campus_chat.matching.lobby import Lobby, LobbyRegistry, LobbyStatus
from campus_chat.services import ChatServices

from .delivery import TelegramLobbyListener
from .keyboards import (
    CANCEL_BUTTON,
    FIND_BUTTON,
    NEXT_BUTTON,
    REVEAL_BUTTON,
    get_alias_keyboard,
    get_gender_keyboard,
    get_main_menu_keyboard,
)
from .states import ChatState

router = Router()


async def get_lobby(bot: Bot, telegram_user_id: int, services: ChatServices, registry: LobbyRegistry) -> Lobby:
    """
    Return the caller's lobby, opening it on first use.

    Raises:
        AuthRequired: the caller has not finished onboarding
    """
    ctx = await services.onboarding.resolve_context(telegram_user_id)
    lobby = registry.get(ctx.user_id)
    if lobby is not None and lobby.entered:
        return lobby
    listener = TelegramLobbyListener(bot, telegram_user_id, ctx, services)
    return await registry.open(ctx, listener)


async def show_main_menu(message: Message, lobby: Lobby) -> None:
    online = await lobby.presence.count_online()
    await message.answer(
        get_text_template("main_menu", alias=escape(lobby.ctx.alias), online=online),
        reply_markup=get_main_menu_keyboard(),
    )


@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    """Resume onboarding at the first missing step, or show the main menu."""
    telegram_user_id = message.from_user.id
    user = await services.onboarding.get_user(telegram_user_id)

    if user is None or not user.email:
        domain = services.settings.college_email_domains[0]
        await message.answer(get_text_template("welcome", domain=f"@{domain}"))
        await state.set_state(ChatState.waiting_for_email)
        return
    if not user.gender:
        await message.answer(get_text_template("ask_gender"), reply_markup=get_gender_keyboard())
        await state.set_state(ChatState.choosing_gender)
        return
    if not user.alias_locked:
        if not user.alias:
            user = await services.onboarding.set_alias(user.id)
        await message.answer(
            get_text_template("alias_offer", alias=escape(user.alias)), reply_markup=get_alias_keyboard()
        )
        await state.set_state(ChatState.choosing_alias)
        return

    lobby = await get_lobby(bot, telegram_user_id, services, registry)
    await state.set_state(ChatState.ready)
    await show_main_menu(message, lobby)


@router.message(ChatState.waiting_for_email, F.text)
async def handle_email(message: Message, state: FSMContext, services: ChatServices):
    try:
        await services.onboarding.register_email(message.from_user.id, message.text)
    except ChatError as e:
        logger.info(f"Email rejected for telegram user {message.from_user.id}: {e}")
        await message.answer(escape(e.notice))
        return
    await message.answer(get_text_template("ask_gender"), reply_markup=get_gender_keyboard())
    await state.set_state(ChatState.choosing_gender)


@router.callback_query(ChatState.choosing_gender, F.data.startswith("gender:"))
async def handle_gender(callback: CallbackQuery, state: FSMContext, services: ChatServices):
    gender = Gender(callback.data.split(":", 1)[1])
    user = await services.onboarding.get_user(callback.from_user.id)
    if user is None:
        await callback.answer(AuthRequired.notice, show_alert=True)
        return
    try:
        await services.onboarding.choose_gender(user.id, gender)
        user = await services.onboarding.set_alias(user.id)
    except ChatError as e:
        await callback.answer(e.notice, show_alert=True)
        return
    await callback.message.edit_text(
        get_text_template("alias_offer", alias=escape(user.alias)), reply_markup=get_alias_keyboard()
    )
    await state.set_state(ChatState.choosing_alias)
    await callback.answer()


@router.callback_query(ChatState.choosing_alias, F.data == "alias:reroll")
async def handle_alias_reroll(callback: CallbackQuery, services: ChatServices):
    user = await services.onboarding.get_user(callback.from_user.id)
    if user is None:
        await callback.answer(AuthRequired.notice, show_alert=True)
        return
    try:
        user = await services.onboarding.set_alias(user.id)
    except ChatError as e:
        await callback.answer(e.notice, show_alert=True)
        return
    await callback.message.edit_text(
        get_text_template("alias_offer", alias=escape(user.alias)), reply_markup=get_alias_keyboard()
    )
    await callback.answer()


@router.callback_query(ChatState.choosing_alias, F.data == "alias:keep")
async def handle_alias_keep(
    callback: CallbackQuery, state: FSMContext, bot: Bot, services: ChatServices, registry: LobbyRegistry
):
    try:
        lobby = await get_lobby(bot, callback.from_user.id, services, registry)
    except ChatError as e:
        await callback.answer(e.notice, show_alert=True)
        return
    await callback.message.edit_reply_markup(reply_markup=None)
    await state.set_state(ChatState.ready)
    await show_main_menu(callback.message, lobby)
    await callback.answer()


@router.message(F.text == FIND_BUTTON)
async def handle_find(message: Message, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    try:
        lobby = await get_lobby(bot, message.from_user.id, services, registry)
    except AuthRequired as e:
        await message.answer(escape(e.notice))
        return
    await lobby.start_search()


@router.message(F.text == CANCEL_BUTTON)
async def handle_cancel(message: Message, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    try:
        lobby = await get_lobby(bot, message.from_user.id, services, registry)
    except AuthRequired as e:
        await message.answer(escape(e.notice))
        return
    was_searching = lobby.status is LobbyStatus.SEARCHING
    await lobby.cancel_search()
    if was_searching and lobby.status is LobbyStatus.IDLE:
        await message.answer(get_text_template("search_cancelled"), reply_markup=get_main_menu_keyboard())


@router.message(F.text == REVEAL_BUTTON)
async def handle_reveal(message: Message, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    try:
        lobby = await get_lobby(bot, message.from_user.id, services, registry)
    except AuthRequired as e:
        await message.answer(escape(e.notice))
        return
    await lobby.propose_reveal()


@router.message(F.text == NEXT_BUTTON)
async def handle_next(message: Message, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    try:
        lobby = await get_lobby(bot, message.from_user.id, services, registry)
    except AuthRequired as e:
        await message.answer(escape(e.notice))
        return
    await lobby.next()


@router.callback_query(F.data.startswith("reveal:"))
async def handle_reveal_callback(callback: CallbackQuery, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    action = callback.data.split(":", 1)[1]
    try:
        lobby = await get_lobby(bot, callback.from_user.id, services, registry)
    except AuthRequired as e:
        await callback.answer(e.notice, show_alert=True)
        return

    if action == "dismiss":
        await lobby.dismiss_reveal()
    else:
        await lobby.respond_reveal(action == "accept")
    await callback.message.edit_reply_markup(reply_markup=None)
    await callback.answer()


@router.callback_query(F.data.startswith("rate:"))
async def handle_rating(callback: CallbackQuery, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    choice = callback.data.split(":", 1)[1]
    try:
        lobby = await get_lobby(bot, callback.from_user.id, services, registry)
    except AuthRequired as e:
        await callback.answer(e.notice, show_alert=True)
        return

    if choice == "skip":
        await lobby.skip_rating()
    elif choice.isdigit():
        await lobby.rate(int(choice))
    else:
        logger.warning(f"Malformed rating callback from {callback.from_user.id}: {callback.data!r}")
        await callback.answer(InvalidRating.notice, show_alert=True)
        return
    await callback.message.edit_reply_markup(reply_markup=None)
    await callback.answer()


@router.message(ChatState.ready, F.text)
async def handle_text(message: Message, bot: Bot, services: ChatServices, registry: LobbyRegistry):
    """Relay free text to the current chat partner."""
    try:
        lobby = await get_lobby(bot, message.from_user.id, services, registry)
    except AuthRequired as e:
        await message.answer(escape(e.notice))
        return
    if lobby.status is LobbyStatus.MATCHED:
        await lobby.send(message.text)
    elif lobby.status is LobbyStatus.SEARCHING:
        await message.answer(get_text_template("searching"))
    else:
        await show_main_menu(message, lobby)


@router.message(F.text)
async def handle_unknown(message: Message):
    await message.answer("Send /start to begin.")
