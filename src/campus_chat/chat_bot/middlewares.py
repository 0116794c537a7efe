from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from loguru import logger

from campus_chat.matching.lobby import LobbyRegistry
from campus_chat.services import ChatServices


class ServicesMiddleware(BaseMiddleware):
    """Middleware to inject the services container and lobby registry into handler calls."""

    def __init__(self, services: ChatServices, registry: LobbyRegistry):
        self.services = services
        self.registry = registry
        super().__init__()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        data["services"] = self.services
        data["registry"] = self.registry
        return await handler(event, data)


class LoggingMiddleware(BaseMiddleware):
    """Middleware for logging bot events and user actions."""

    def __init__(self):
        super().__init__()
        logger.info("Logging middleware initialized")

    async def __call__(self, handler, event, data):
        user_id = None
        kind = type(event).__name__

        if getattr(event, "message", None) and event.message.from_user:
            user_id = event.message.from_user.id
            kind = "message"
        elif getattr(event, "callback_query", None) and event.callback_query.from_user:
            user_id = event.callback_query.from_user.id
            kind = f"callback {event.callback_query.data}"

        logger.debug(f"Update from telegram user {user_id}: {kind}")
        try:
            return await handler(event, data)
        except Exception:
            logger.exception(f"Unhandled error processing {kind} from telegram user {user_id}")
            raise
