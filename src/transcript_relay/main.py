"""FastAPI application entry point for Transcript Relay"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from transcript_relay.api.webhook import get_bot, reset_bot
from transcript_relay.api.webhook import router as webhook_router
from transcript_relay.core.config import settings
from transcript_relay.core.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager for startup/shutdown."""
    # Startup
    configure_logging()
    if not settings.allowed_chat_ids:
        logger.warning("allow_list_empty", detail="every chat may use the bot")
    bot = get_bot()
    if settings.webhook_url:
        await bot.gateway.set_webhook(settings.webhook_url, settings.webhook_secret)
    yield
    # Shutdown
    await bot.shutdown()
    reset_bot()


app = FastAPI(
    title="Transcript Relay API",
    description="Streams voice message transcripts back into Telegram chats",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhook_router)


@app.get("/api/v1/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict with status "ok" if the service is healthy.
    """
    return {"status": "ok"}


def run() -> None:
    """Serve the application with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
