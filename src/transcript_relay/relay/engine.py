"""Transcript relay engine.

Maps a transcription (a completed string or a stream of deltas) onto a
sequence of Telegram messages: the live message is edited in place while
text arrives, and a new message is opened whenever the next delta would
push it past the length limit.
"""

import asyncio
import html
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from transcript_relay.core.errors import TransportError
from transcript_relay.core.logging import get_logger
from transcript_relay.stt.base import (
    BatchTranscript,
    StreamingTranscript,
    TranscriptDelta,
    TranscriptDone,
    TranscriptEvent,
    TranscriptionResult,
)
from transcript_relay.telegram.gateway import HTML, MessageRef, TelegramGateway

logger = get_logger(__name__)

# Telegram limit, counted after formatting entities are parsed
MAX_MESSAGE_LENGTH = 4096
# Raw length of PROGRESS_SUFFIX, the longest in-progress suffix
RESERVED_SUFFIX_LENGTH = 23
MIN_UPDATE_INTERVAL_MS = 1000

PLACEHOLDER_TEXT = "<em>Start transcribing...</em>"
PROGRESS_SUFFIX = "\n<em>Generating...</em>"
STOPPED_SUFFIX = "\n<em>Stopped</em>"
EMPTY_TRANSCRIPT_TEXT = "<em>No speech recognized</em>"
ERROR_TEXT = "Error processing voice message: {error}"

# text, visible, parse_mode, keyboard
PendingEdit = tuple[str, str, str | None, dict[str, Any] | None]


def chunk_text(text: str, size: int) -> list[str]:
    """Split ``text`` into consecutive slices of at most ``size`` characters."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    return [text[i : i + size] for i in range(0, len(text), size)]


@dataclass
class RelayResult:
    """Summary of a finished relay."""

    last_message: MessageRef
    message_count: int
    text_length: int


class LiveMessage:
    """The outbound message currently accepting edits.

    Paced edits are fire-and-forget but never overlap: while one edit is in
    flight, newer requests replace each other and only the latest is sent
    afterwards. ``edit`` waits for that queue to settle before writing.
    ``visible`` only moves once an edit has been accepted by the chat.
    """

    def __init__(self, gateway: TelegramGateway, ref: MessageRef, visible: str) -> None:
        self.gateway = gateway
        self.ref = ref
        # HTML form of the text shown, without any status suffix
        self.visible = visible
        self._pending: PendingEdit | None = None
        self._task: asyncio.Task[None] | None = None

    def schedule(
        self,
        text: str,
        visible: str,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> None:
        self._pending = (text, visible, parse_mode, keyboard)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending is not None:
            text, visible, parse_mode, keyboard = self._pending
            self._pending = None
            try:
                await self.gateway.edit_message_text(
                    self.ref, text, parse_mode=parse_mode, keyboard=keyboard
                )
            except TransportError as e:
                logger.warning(
                    "relay_paced_edit_failed",
                    message_id=self.ref.message_id,
                    error=str(e),
                )
            else:
                self.visible = visible

    async def settle(self) -> None:
        """Drop queued paced edits and wait for the one in flight."""
        self._pending = None
        if self._task is not None:
            task, self._task = self._task, None
            await task

    async def edit(
        self,
        text: str,
        visible: str,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> MessageRef:
        await self.settle()
        ref = await self.gateway.edit_message_text(
            self.ref, text, parse_mode=parse_mode, keyboard=keyboard
        )
        self.visible = visible
        return ref


class TranscriptRelay:
    """Streams one transcription into a chain of Telegram messages.

    The caller creates the placeholder message; the relay owns it from then
    on. Exactly one of ``deliver``, ``stop`` or ``fail`` ends the relay's
    interaction with the chat.

    Args:
        gateway: Chat gateway used for every send and edit.
        placeholder: Message already showing ``PLACEHOLDER_TEXT``.
        keyboard: Inline keyboard kept on in-progress messages (the Stop
            button); closing, final, stopped and error edits drop it.
        max_message_length: Hard limit per message.
        reserved_suffix_length: Room kept free while a message is in progress.
        min_update_interval_ms: Minimum spacing of paced edits per message.
        clock: Monotonic clock in seconds.
        sleep: Coroutine used for the final pacing wait.
    """

    def __init__(
        self,
        gateway: TelegramGateway,
        placeholder: MessageRef,
        keyboard: dict[str, Any] | None = None,
        *,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        reserved_suffix_length: int = RESERVED_SUFFIX_LENGTH,
        min_update_interval_ms: int = MIN_UPDATE_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if reserved_suffix_length >= max_message_length:
            raise ValueError("Reserved suffix must be shorter than a message")
        self.gateway = gateway
        self.keyboard = keyboard
        self.max_message_length = max_message_length
        self.capacity = max_message_length - reserved_suffix_length
        self.min_update_interval = min_update_interval_ms / 1000
        self._clock = clock
        self._sleep = sleep

        self._live = LiveMessage(gateway, placeholder, PLACEHOLDER_TEXT)
        self.buffer = ""
        self.last_update = clock()
        self.message_count = 1
        self.text_length = 0

    @property
    def live_ref(self) -> MessageRef:
        return self._live.ref

    async def deliver(self, result: TranscriptionResult) -> RelayResult:
        """Deliver a transcription of either shape."""
        match result:
            case StreamingTranscript(events=events):
                return await self.relay(events)
            case BatchTranscript(text=text):
                return await self.deliver_batch(text)
        raise TypeError(f"Unsupported transcription result: {result!r}")

    async def relay(self, events: AsyncIterator[TranscriptEvent]) -> RelayResult:
        """Consume ``events`` until the terminal marker and flush the tail.

        Cancellation surfaces as TranscriptionCancelled from ``events`` and
        propagates to the caller, which then calls ``stop``.
        """
        start_time = time.perf_counter()
        logger.info("relay_stream_start", message_id=self.live_ref.message_id)

        try:
            async for event in events:
                match event:
                    case TranscriptDelta(text=delta):
                        await self._append(delta)
                    case TranscriptDone():
                        break
                    case _:
                        logger.info("relay_unknown_event", event=repr(event))
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

        remaining = self.min_update_interval - (self._clock() - self.last_update)
        if remaining > 0:
            logger.debug("relay_final_delay", delay_ms=round(remaining * 1000, 2))
            await self._sleep(remaining)

        if self.buffer:
            ref = await self._live.edit(self.buffer, html.escape(self.buffer))
        else:
            ref = await self._live.edit(
                EMPTY_TRANSCRIPT_TEXT, EMPTY_TRANSCRIPT_TEXT, parse_mode=HTML
            )

        logger.info(
            "relay_stream_completed",
            message_id=ref.message_id,
            message_count=self.message_count,
            text_length=self.text_length,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return RelayResult(ref, self.message_count, self.text_length)

    async def _append(self, delta: str) -> None:
        # A delta longer than a whole message is fed in message-sized pieces
        for piece in chunk_text(delta, self.capacity):
            if len(self.buffer) + len(piece) <= self.capacity:
                self.buffer += piece
                self.text_length += len(piece)
                now = self._clock()
                if now - self.last_update > self.min_update_interval:
                    self.last_update = now
                    visible = html.escape(self.buffer)
                    self._live.schedule(
                        visible + PROGRESS_SUFFIX,
                        visible,
                        parse_mode=HTML,
                        keyboard=self.keyboard,
                    )
            else:
                await self._rotate(piece)

    async def _rotate(self, piece: str) -> None:
        closing = self._live
        logger.info(
            "relay_message_rotation",
            message_id=closing.ref.message_id,
            buffer_length=len(self.buffer),
            piece_length=len(piece),
        )
        await closing.edit(self.buffer, html.escape(self.buffer))

        visible = html.escape(piece)
        ref = await self.gateway.send_message(
            closing.ref.chat_id,
            visible + PROGRESS_SUFFIX,
            reply_to_id=closing.ref.message_id,
            parse_mode=HTML,
            keyboard=self.keyboard,
        )
        self._live = LiveMessage(self.gateway, ref, visible)
        self.message_count += 1
        self.buffer = piece
        self.text_length += len(piece)
        self.last_update = self._clock()

    async def deliver_batch(self, text: str) -> RelayResult:
        """Write a completed transcription as consecutive full-size messages."""
        chunks = chunk_text(text, self.max_message_length)
        if not chunks:
            ref = await self._live.edit(
                EMPTY_TRANSCRIPT_TEXT, EMPTY_TRANSCRIPT_TEXT, parse_mode=HTML
            )
            return RelayResult(ref, self.message_count, 0)

        ref = await self._live.edit(chunks[0], html.escape(chunks[0]))
        for chunk in chunks[1:]:
            ref = await self.gateway.send_message(
                ref.chat_id, chunk, reply_to_id=ref.message_id
            )
            self._live = LiveMessage(self.gateway, ref, html.escape(chunk))
            self.message_count += 1

        self.text_length = len(text)
        logger.info(
            "relay_batch_completed",
            message_id=ref.message_id,
            message_count=self.message_count,
            text_length=self.text_length,
        )
        return RelayResult(ref, self.message_count, self.text_length)

    async def stop(self) -> MessageRef:
        """Mark the live message as stopped; no further edits follow."""
        live = self._live
        logger.info("relay_stopped", message_id=live.ref.message_id)
        await live.settle()
        return await live.edit(
            live.visible + STOPPED_SUFFIX, live.visible, parse_mode=HTML
        )

    async def fail(self, error: str) -> MessageRef:
        """Replace the live message with an error summary."""
        text = ERROR_TEXT.format(error=error)[: self.max_message_length]
        return await self._live.edit(text, html.escape(text))
