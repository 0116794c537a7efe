#!/usr/bin/env python3
"""
Main entry point for the campus anonymous chat.
"""
import asyncio
import signal
import sys

from aiohttp import web
from dotenv import load_dotenv
from loguru import logger

from campus_chat.chat_bot.main import start_chat_bot
from campus_chat.core.config import get_settings
from campus_chat.core.diagnostics import get_diagnostics_report
from campus_chat.db.base import create_engine, create_session_factory, init_models
from campus_chat.services import ChatServices, build_services


def setup_logging(debug: bool = False) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "INFO")
    logger.add("logs/campus_chat_{time}.log", rotation="10 MB", level="DEBUG", backtrace=True)


def create_health_app(services: ChatServices) -> web.Application:
    app = web.Application()

    async def health_handler(request):
        """Simple health check endpoint."""
        return web.json_response({"status": "ok", "service": services.settings.app_name})

    async def diagnostics_handler(request):
        return web.Response(text=get_diagnostics_report())

    app.router.add_get("/health", health_handler)
    app.router.add_get("/", health_handler)
    app.router.add_get("/diagnostics", diagnostics_handler)
    return app


async def run_health_server(app: web.Application, host: str, port: int) -> None:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Health check server running on {host}:{port}")
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        logger.info("Health check server stopping")
        await runner.cleanup()


async def main() -> None:
    load_dotenv()
    settings = get_settings()
    setup_logging(settings.debug)

    engine = create_engine(settings.db_url, echo=settings.debug)
    await init_models(engine)
    services = build_services(create_session_factory(engine), settings)

    tasks = [
        asyncio.create_task(run_health_server(create_health_app(services), settings.WEBAPP_HOST, settings.WEBAPP_PORT)),
        asyncio.create_task(start_chat_bot(services)),
    ]

    def cancel_all(sig_name: str) -> None:
        logger.info(f"Received {sig_name}, shutting down...")
        for task in tasks:
            task.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, cancel_all, sig.name)

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.opt(exception=task.exception()).error("Service task failed")
    finally:
        logger.info("Initiating shutdown sequence...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await engine.dispose()
        logger.info("Shutdown sequence complete.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped by keyboard interrupt")


if __name__ == "__main__":
    run()
