"""Webhook endpoint receiving Telegram updates"""

import hmac
import threading

from fastapi import APIRouter, Depends, Header, HTTPException

from transcript_relay.core.cancellation import CancellationRegistry
from transcript_relay.core.config import Settings, get_settings
from transcript_relay.core.logging import get_logger
from transcript_relay.media import MediaFetcher
from transcript_relay.relay import TranscriptBot, TranscriptionSession
from transcript_relay.stt import OpenAITranscriber
from transcript_relay.telegram import TelegramGateway, Update

router = APIRouter()
logger = get_logger(__name__)

# Global bot instance (lazy loaded, thread-safe)
_bot: TranscriptBot | None = None
_bot_lock = threading.Lock()


def build_bot(settings: Settings) -> TranscriptBot:
    """Wire the gateway, fetcher, transcriber and registry together."""
    gateway = TelegramGateway(
        token=settings.bot_token,
        api_url=settings.telegram_api_url,
        max_retries=settings.telegram_max_retries,
        min_interval_ms=settings.telegram_min_interval_ms,
    )
    fetcher = MediaFetcher(
        tmp_dir=settings.tmp_dir,
        ffmpeg_binary=settings.ffmpeg_binary,
    )
    transcriber = OpenAITranscriber(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.stt_model,
        language=settings.stt_language,
        stream=settings.stt_stream,
        dictionary_path=settings.stt_dictionary_path,
    )
    registry = CancellationRegistry()
    session = TranscriptionSession(
        gateway,
        fetcher,
        transcriber,
        registry,
        min_update_interval_ms=settings.min_update_interval_ms,
    )
    return TranscriptBot(settings, gateway, fetcher, session, registry)


def get_bot() -> TranscriptBot:
    """Get or create the global bot instance (thread-safe)."""
    global _bot
    if _bot is None:
        with _bot_lock:
            # Double-check locking pattern
            if _bot is None:
                settings = get_settings()
                logger.info(
                    "initializing_bot",
                    stt_model=settings.stt_model,
                    allowed_chats=len(settings.allowed_chat_ids),
                )
                _bot = build_bot(settings)
    return _bot


def reset_bot() -> None:
    """Forget the global bot instance (after shutdown)."""
    global _bot
    with _bot_lock:
        _bot = None


@router.post("/api/v1/telegram/webhook")
async def telegram_webhook(
    update: Update,
    bot: TranscriptBot = Depends(get_bot),
    settings: Settings = Depends(get_settings),
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
) -> dict[str, bool]:
    """Receive a Telegram update and schedule its processing.

    Returns:
        ``{"ok": true}`` as soon as the update is scheduled.

    Raises:
        HTTPException: 403 if the secret token header does not match.
    """
    if settings.webhook_secret and not hmac.compare_digest(
        (x_telegram_bot_api_secret_token or "").encode(),
        settings.webhook_secret.encode(),
    ):
        logger.warning("webhook_secret_mismatch", update_id=update.update_id)
        raise HTTPException(status_code=403, detail="Invalid secret token")

    logger.debug("update_received", update_id=update.update_id)
    bot.dispatch(update)
    return {"ok": True}
