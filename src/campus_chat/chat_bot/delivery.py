"""
Delivers lobby updates to a Telegram chat.
"""
from html import escape

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from loguru import logger

from campus_chat.core.context import SessionContext
from campus_chat.core.errors import ChatError
from campus_chat.core.templates import get_text_template
from campus_chat.db.models import ChatMessage, ChatSession, SessionStatus
from campus_chat.matching.lobby import LobbyListener, LobbyStatus
from campus_chat.matching.reveal import RevealEvent, RevealState
from campus_chat.services import ChatServices

from .keyboards import (
    get_in_chat_keyboard,
    get_main_menu_keyboard,
    get_rating_keyboard,
    get_reveal_answer_keyboard,
    get_reveal_dismiss_keyboard,
    get_searching_keyboard,
)


class TelegramLobbyListener(LobbyListener):
    """Sends one user's lobby updates to their private chat with the bot."""

    def __init__(self, bot: Bot, chat_id: int, ctx: SessionContext, services: ChatServices):
        self.bot = bot
        self.chat_id = chat_id
        self.ctx = ctx
        self.services = services
        self.partner_alias = "Stranger"
        self.online_count = 0

    async def _send(self, text: str, reply_markup=None) -> None:
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text, reply_markup=reply_markup)
        except TelegramAPIError as e:
            logger.error(f"Failed to deliver to chat {self.chat_id}: {e}")

    async def on_status(self, status: LobbyStatus) -> None:
        if status is LobbyStatus.SEARCHING:
            await self._send(get_text_template("searching"), get_searching_keyboard())
        elif status is LobbyStatus.RATING:
            await self._send(get_text_template("rate_prompt"), get_rating_keyboard())

    async def on_matched(self, session: ChatSession, partner_alias: str) -> None:
        self.partner_alias = partner_alias
        await self._send(get_text_template("matched", alias=escape(partner_alias)), get_in_chat_keyboard())

    async def on_message(self, message: ChatMessage, mine: bool) -> None:
        if mine:
            return
        await self._send(f"<b>{escape(self.partner_alias)}:</b> {escape(message.content)}")

    async def on_reveal(self, event: RevealEvent, state: RevealState) -> None:
        alias = escape(self.partner_alias)
        by_me = event.actor_id == self.ctx.user_id
        if event.action == "proposed":
            if by_me:
                await self._send(get_text_template("reveal_proposed", alias=alias))
            else:
                await self._send(get_text_template("reveal_incoming", alias=alias), get_reveal_answer_keyboard())
        elif event.action == "accepted":
            await self._show_identity(event.session_id)
        elif event.action == "declined":
            key = "reveal_declined_by_you" if by_me else "reveal_declined_by_them"
            await self._send(get_text_template(key, alias=alias), get_reveal_dismiss_keyboard())

    async def _show_identity(self, session_id: int) -> None:
        try:
            card = await self.services.reveal.disclose(session_id, self.ctx.user_id)
        except ChatError as e:
            logger.warning(f"Could not disclose identity in session {session_id}: {e}")
            await self._send(e.notice)
            return
        text = get_text_template(
            "reveal_accepted",
            alias=escape(card.alias),
            name=escape(card.name or "Unknown"),
            email=escape(card.email or ""),
            details=escape(card.details or ""),
        )
        await self._send(text, get_reveal_dismiss_keyboard())

    async def on_session_closed(self, session: ChatSession, by_partner: bool) -> None:
        if session.status == SessionStatus.RATED.value and not by_partner:
            text = get_text_template("rated")
        else:
            text = get_text_template("partner_left")
        await self._send(text, get_main_menu_keyboard())

    async def on_online_count(self, count: int) -> None:
        self.online_count = count

    async def on_notice(self, notice: str) -> None:
        await self._send(escape(notice))
