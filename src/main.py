"""scenebot process: app/dashboard API, media files, and the Telegram reporter bot.

    python -m src.main

Telegram runs in long-polling mode unless TELEGRAM_WEBHOOK_SECRET is set,
in which case updates arrive on POST /webhook/telegram.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from telegram.ext import Application

from src.admin.events import start_event_system, stop_event_system, subscribe
from src.channels.app import app_router
from src.channels.telegram import create_telegram_app, telegram_router
from src.config import settings
from src.conversation.engine import IntakeEngine
from src.conversation.factory import create_intake_engine
from src.db.engine import check_connections, db_lifespan
from src.security import audit_on_event

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """stdlib logging to stdout, structlog on top (JSON lines in production)."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # Request URLs carry the Maps API key and the bot token
    for noisy in ("httpx", "telegram.ext"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@asynccontextmanager
async def telegram_runtime(engine: IntakeEngine) -> AsyncIterator[Application | None]:
    """Run the reporter bot for the lifetime of the block (None if no token)."""
    if not settings.telegram.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, Telegram intake disabled")
        yield None
        return

    bot_app = create_telegram_app(engine)
    await bot_app.initialize()
    await bot_app.start()
    polling = not settings.telegram.telegram_webhook_secret
    if polling and bot_app.updater is not None:
        await bot_app.updater.start_polling(drop_pending_updates=True)
    logger.info("Telegram bot running (%s)", "polling" if polling else "webhook")
    try:
        yield bot_app
    finally:
        if bot_app.updater is not None and bot_app.updater.running:
            await bot_app.updater.stop()
        await bot_app.stop()
        await bot_app.shutdown()
        logger.info("Telegram bot stopped")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("scenebot starting (env=%s, intake=%s)", settings.environment, settings.intake.intake_mode)

    async with AsyncExitStack() as stack:
        await stack.enter_async_context(db_lifespan())

        subscribe(audit_on_event)
        await start_event_system()
        stack.push_async_callback(stop_event_system)

        engine = create_intake_engine()
        engine.store.start_sweeper(settings.intake.sweep_interval_seconds)
        stack.push_async_callback(engine.store.stop_sweeper)

        app.state.telegram_app = await stack.enter_async_context(telegram_runtime(engine))
        yield

    logger.info("scenebot stopped")


configure_logging()

app = FastAPI(
    title="scenebot",
    description="Crowd-sourced incident reports: Telegram intake and app/dashboard API",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(app_router)
app.include_router(telegram_router)

_media_root = Path(settings.media.media_root)
_media_root.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=_media_root), name="media")


@app.get("/health")
async def health() -> dict[str, object]:
    connections = await check_connections()
    return {
        "status": "ok" if connections["database"] else "degraded",
        "intake_mode": settings.intake.intake_mode,
        **connections,
    }


if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
