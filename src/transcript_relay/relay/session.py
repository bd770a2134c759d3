"""Session driver: one inbound media message through to its transcript."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from transcript_relay.core.cancellation import CancellationRegistry
from transcript_relay.core.errors import (
    DuplicateRequestError,
    RelayError,
    TranscriptionCancelled,
)
from transcript_relay.core.logging import get_logger
from transcript_relay.media.fetcher import MediaFetcher
from transcript_relay.relay.engine import (
    MIN_UPDATE_INTERVAL_MS,
    PLACEHOLDER_TEXT,
    TranscriptRelay,
)
from transcript_relay.stt.base import BaseTranscriber
from transcript_relay.telegram.gateway import HTML, TelegramGateway, stop_keyboard
from transcript_relay.telegram.models import VIDEO_KINDS, Message

logger = get_logger(__name__)


def request_token(message: Message) -> str:
    """Session token derived from the triggering message."""
    return f"{message.chat.id}:{message.message_id}"


class TranscriptionSession:
    """Runs transcription sessions against shared collaborators.

    Each ``run`` call registers a cancellation handle, downloads (and if
    needed converts) the media, transcribes it and relays the transcript.
    Whatever happens, the handle is unregistered and temporary files are
    deleted before ``run`` returns.
    """

    def __init__(
        self,
        gateway: TelegramGateway,
        fetcher: MediaFetcher,
        transcriber: BaseTranscriber,
        registry: CancellationRegistry,
        min_update_interval_ms: int = MIN_UPDATE_INTERVAL_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.fetcher = fetcher
        self.transcriber = transcriber
        self.registry = registry
        self.min_update_interval_ms = min_update_interval_ms
        self._sleep = sleep

    async def run(self, message: Message) -> None:
        media = message.media
        if media is None:
            raise ValueError("Message has no transcribable media")
        kind, attachment = media
        chat_id = message.chat.id
        token = request_token(message)

        try:
            handle = self.registry.register(token)
        except DuplicateRequestError:
            logger.warning("session_duplicate_request", token=token)
            return

        start_time = time.perf_counter()
        logger.info(
            "session_start",
            token=token,
            kind=kind,
            file_size=attachment.file_size,
            duration=attachment.duration,
        )

        relay: TranscriptRelay | None = None
        temp_files: list[Path] = []
        try:
            keyboard = stop_keyboard(token)
            placeholder = await self.gateway.send_message(
                chat_id,
                PLACEHOLDER_TEXT,
                reply_to_id=message.message_id,
                parse_mode=HTML,
                keyboard=keyboard,
            )
            relay = TranscriptRelay(
                self.gateway,
                placeholder,
                keyboard,
                min_update_interval_ms=self.min_update_interval_ms,
                sleep=self._sleep,
            )

            file_path = await handle.guard(self.gateway.get_file(attachment.file_id))
            audio_path = await self.fetcher.download(
                self.gateway.file_url(file_path),
                handle,
                suffix=Path(file_path).suffix or ".ogg",
            )
            temp_files.append(audio_path)

            if kind in VIDEO_KINDS:
                audio_path = await self.fetcher.extract_audio(audio_path, handle)
                temp_files.append(audio_path)

            transcription = await self.transcriber.transcribe(audio_path, handle)
            result = await relay.deliver(transcription)
            logger.info(
                "session_completed",
                token=token,
                message_count=result.message_count,
                text_length=result.text_length,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
        except TranscriptionCancelled:
            logger.info("session_cancelled", token=token)
            if relay is not None:
                await self._report(token, relay.stop())
        except RelayError as e:
            logger.error(
                "session_error",
                token=token,
                error_type=type(e).__name__,
                error=str(e),
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            if relay is not None:
                await self._report(token, relay.fail(str(e)))
        except Exception as e:
            logger.exception("session_unexpected_error", token=token)
            if relay is not None:
                await self._report(token, relay.fail(str(e)))
        finally:
            self.registry.unregister(token)
            for path in reversed(temp_files):
                self.fetcher.delete_file(path)

    async def _report(self, token: str, edit: Awaitable[object]) -> None:
        """Await a terminal status edit; its failure is logged only."""
        try:
            await edit
        except RelayError as e:
            logger.error("session_report_failed", token=token, error=str(e))
