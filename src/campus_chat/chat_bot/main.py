import asyncio

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from loguru import logger

from campus_chat.matching.lobby import LobbyRegistry
from campus_chat.services import ChatServices

from .handlers import router
from .middlewares import LoggingMiddleware, ServicesMiddleware


def create_dispatcher(services: ChatServices, registry: LobbyRegistry) -> Dispatcher:
    """Build a dispatcher with the middlewares and handlers registered."""
    dp = Dispatcher(storage=MemoryStorage())
    dp.update.middleware(LoggingMiddleware())
    dp.update.middleware(ServicesMiddleware(services, registry))
    dp.include_router(router)
    logger.info("Registered chat bot handlers")
    return dp


async def start_chat_bot(services: ChatServices, token: str | None = None) -> None:
    """Initialize the chat bot and poll for updates until cancelled."""
    token = token or services.settings.CHAT_BOT_TOKEN
    if not token or not token.strip() or len(token) < 20:
        logger.error(f"Invalid token format. Token length: {len(token) if token else 0}")
        raise ValueError("Invalid token format")

    bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    registry = LobbyRegistry(services)
    dp = create_dispatcher(services, registry)

    try:
        bot_info = await bot.get_me()
        logger.info(f"Bot verification successful: @{bot_info.username}")
        await bot.delete_webhook(drop_pending_updates=True)
        logger.info("Starting chat bot in polling mode...")
        await dp.start_polling(bot, handle_signals=False)
    except asyncio.CancelledError:
        logger.info("Bot polling cancelled")
        raise
    finally:
        await registry.close_all()
        await bot.session.close()
        logger.info("Chat bot stopped.")
