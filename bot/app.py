from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from aiogram import Bot
from fastapi import FastAPI
from loguru import logger

from bot.routers import build_router
from services.config_service import BotSettings
from services.notifier import Notifier
from services.orchestrator import SignalProcessor


def create_app(settings: BotSettings | None = None, processor: SignalProcessor | None = None) -> FastAPI:
    settings = settings or BotSettings()
    notifier = Notifier(settings.TELEGRAM_CHAT_ID if settings.TELEGRAM_BOT_TOKEN else "")
    processor = processor or SignalProcessor.from_settings(settings, notifier=notifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bot = None
        if settings.TELEGRAM_BOT_TOKEN and processor.notifier.enabled:
            bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
            await processor.notifier.start(bot)
        logger.info("Relay starting in {} mode", settings.MODE)
        if not settings.WEBHOOK_SECRET:
            logger.warning("WEBHOOK_SECRET is not set; /webhook accepts signals from any caller")
        await processor.notifier.send(f"Relay startup ({settings.MODE})")
        try:
            yield
        finally:
            await processor.notifier.stop()
            await processor.close()
            if bot:
                await bot.session.close()
            logger.info("Relay stopped")

    app = FastAPI(title="BingX webhook relay", lifespan=lifespan)
    app.state.processor = processor
    app.include_router(build_router(processor))
    return app


def main() -> None:
    settings = BotSettings()
    logger.info("Webhook URL: http://localhost:{}/webhook", settings.PORT)
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
