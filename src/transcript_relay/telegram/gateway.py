"""Telegram Bot API gateway with per-chat throttling and auto-retry."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from transcript_relay.core.errors import TelegramAPIError
from transcript_relay.core.logging import get_logger

logger = get_logger(__name__)

HTML = "HTML"
STOP_CALLBACK_PREFIX = "stop:"
REQUEST_TIMEOUT = 30.0  # seconds
RETRY_BACKOFF_SECONDS = 1.0
NOT_MODIFIED = "message is not modified"


@dataclass(frozen=True)
class MessageRef:
    """Identifies an outbound message."""

    chat_id: int
    message_id: int


def stop_keyboard(token: str) -> dict[str, Any]:
    """Inline keyboard with a single Stop button for ``token``."""
    return {
        "inline_keyboard": [
            [{"text": "Stop", "callback_data": f"{STOP_CALLBACK_PREFIX}{token}"}]
        ]
    }


class ChatThrottler:
    """Keeps consecutive calls to the same chat at least ``interval`` apart.

    Chats idle for longer than the interval are forgotten.
    """

    def __init__(
        self,
        interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._sleep = sleep
        self._clock = clock
        self._last_call: dict[int, float] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    async def wait(self, chat_id: int) -> None:
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        async with lock:
            last = self._last_call.get(chat_id)
            if last is not None:
                delay = last + self.interval - self._clock()
                if delay > 0:
                    await self._sleep(delay)
            now = self._clock()
            self._last_call[chat_id] = now
            self._prune(now)

    def _prune(self, now: float) -> None:
        # a held lock means a caller is still waiting on that chat
        stale = [
            chat_id
            for chat_id, last in self._last_call.items()
            if now - last >= self.interval and not self._locks[chat_id].locked()
        ]
        for chat_id in stale:
            del self._last_call[chat_id]
            del self._locks[chat_id]


class TelegramGateway:
    """Minimal async client for the Bot API methods the relay needs.

    Every call is throttled per chat and retried on HTTP 429 (honouring
    ``retry_after``), on 5xx answers and on network errors. Callers never
    wrap these methods in their own retry loop.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        max_retries: int = 3,
        min_interval_ms: int = 1000,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.max_retries = max_retries
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self._sleep = sleep
        self._throttler = ChatThrottler(min_interval_ms / 1000, sleep=sleep)

    def file_url(self, file_path: str) -> str:
        """Download URL of a file returned by ``get_file``."""
        return f"{self.api_url}/file/bot{self.token}/{file_path}"

    async def _call(
        self, method: str, payload: dict[str, Any], chat_id: int | None = None
    ) -> Any:
        url = f"{self.api_url}/bot{self.token}/{method}"
        attempt = 0
        while True:
            if chat_id is not None:
                await self._throttler.wait(chat_id)

            try:
                response = await self._client.post(url, json=payload)
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning(
                        "telegram_network_retry",
                        method=method,
                        attempt=attempt,
                        error=str(e),
                    )
                    await self._sleep(RETRY_BACKOFF_SECONDS * attempt)
                    continue
                raise TelegramAPIError(method, str(e)) from e

            if data.get("ok"):
                return data.get("result")

            error_code = data.get("error_code", response.status_code)
            description = data.get("description", "")
            retry_after = (data.get("parameters") or {}).get("retry_after")

            if attempt < self.max_retries and (error_code == 429 or error_code >= 500):
                attempt += 1
                if retry_after:
                    delay = float(retry_after)
                else:
                    delay = RETRY_BACKOFF_SECONDS * attempt
                logger.warning(
                    "telegram_api_retry",
                    method=method,
                    attempt=attempt,
                    error_code=error_code,
                    delay_s=delay,
                )
                await self._sleep(delay)
                continue

            raise TelegramAPIError(method, description, error_code, retry_after)

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_id: int | None = None,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> MessageRef:
        """Send a message and return its reference."""
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_id is not None:
            payload["reply_parameters"] = {
                "message_id": reply_to_id,
                "allow_sending_without_reply": True,
            }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if keyboard:
            payload["reply_markup"] = keyboard

        result = await self._call("sendMessage", payload, chat_id=chat_id)
        return MessageRef(chat_id=chat_id, message_id=result["message_id"])

    async def edit_message_text(
        self,
        ref: MessageRef,
        text: str,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> MessageRef:
        """Replace the text of ``ref``.

        Omitting ``keyboard`` removes any inline keyboard from the message.
        An edit that would not change the message counts as success.
        """
        payload: dict[str, Any] = {
            "chat_id": ref.chat_id,
            "message_id": ref.message_id,
            "text": text,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if keyboard:
            payload["reply_markup"] = keyboard

        try:
            await self._call("editMessageText", payload, chat_id=ref.chat_id)
        except TelegramAPIError as e:
            if e.error_code == 400 and NOT_MODIFIED in e.description.lower():
                logger.debug("telegram_edit_not_modified", message_id=ref.message_id)
                return ref
            raise
        return ref

    async def get_file(self, file_id: str) -> str:
        """Resolve ``file_id`` to the Bot API file path."""
        result = await self._call("getFile", {"file_id": file_id})
        file_path = result.get("file_path")
        if not file_path:
            raise TelegramAPIError("getFile", "file is not available for download")
        return file_path

    async def set_webhook(self, url: str, secret_token: str | None = None) -> None:
        payload: dict[str, Any] = {"url": url}
        if secret_token:
            payload["secret_token"] = secret_token
        await self._call("setWebhook", payload)
        logger.info("telegram_webhook_set", url=url)

    async def answer_callback_query(self, callback_query_id: str, text: str) -> None:
        await self._call(
            "answerCallbackQuery",
            {"callback_query_id": callback_query_id, "text": text},
        )

    async def aclose(self) -> None:
        await self._client.aclose()
