"""Routing of Telegram updates to commands, sessions and stop requests."""

import asyncio

from transcript_relay.core.cancellation import CancellationRegistry
from transcript_relay.core.config import Settings
from transcript_relay.core.errors import RelayError
from transcript_relay.core.logging import get_logger
from transcript_relay.media.fetcher import MediaFetcher
from transcript_relay.relay.session import TranscriptionSession
from transcript_relay.telegram.gateway import STOP_CALLBACK_PREFIX, TelegramGateway
from transcript_relay.telegram.models import CallbackQuery, Message, Update

logger = get_logger(__name__)

START_REPLY = "Hello!"
TOO_LARGE_REPLY = "The file is too large to transcribe (limit: {limit} MB)."
STOPPING_ANSWER = "Stopping..."
NOTHING_TO_STOP_ANSWER = "Nothing to stop"
UNKNOWN_ACTION_ANSWER = "Unknown action"


class TranscriptBot:
    """Dispatches webhook updates as background asyncio tasks.

    The webhook handler acknowledges Telegram immediately; the actual work
    runs in tasks tracked here so shutdown can stop and await them.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: TelegramGateway,
        fetcher: MediaFetcher,
        session: TranscriptionSession,
        registry: CancellationRegistry,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.fetcher = fetcher
        self.session = session
        self.registry = registry
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def dispatch(self, update: Update) -> asyncio.Task[None]:
        """Schedule ``update`` for processing and return its task."""
        task = asyncio.create_task(self.handle_update(update))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_update(self, update: Update) -> None:
        try:
            if update.callback_query is not None:
                await self.handle_callback(update.callback_query)
            elif update.message is not None:
                await self.handle_message(update.message)
            else:
                logger.debug("update_ignored", update_id=update.update_id)
        except RelayError as e:
            logger.error(
                "update_handling_error",
                update_id=update.update_id,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def handle_message(self, message: Message) -> None:
        chat_id = message.chat.id
        if not self.settings.is_chat_allowed(chat_id):
            logger.warning(
                "chat_not_allowed",
                chat_id=chat_id,
                user_id=message.from_user.id if message.from_user else None,
            )
            return

        if message.command == "start":
            logger.info(
                "start_command_received",
                chat_id=chat_id,
                username=message.from_user.username if message.from_user else None,
            )
            await self.gateway.send_message(chat_id, START_REPLY)
            return

        media = message.media
        if media is None:
            logger.debug("message_without_media", chat_id=chat_id)
            return

        kind, attachment = media
        limit = self.settings.max_file_size_bytes
        if attachment.file_size is not None and attachment.file_size > limit:
            logger.info(
                "media_too_large",
                chat_id=chat_id,
                kind=kind,
                file_size=attachment.file_size,
                limit=limit,
            )
            await self.gateway.send_message(
                chat_id,
                TOO_LARGE_REPLY.format(limit=limit // (1024 * 1024)),
                reply_to_id=message.message_id,
            )
            return

        await self.session.run(message)

    async def handle_callback(self, query: CallbackQuery) -> None:
        data = query.data or ""
        if not data.startswith(STOP_CALLBACK_PREFIX):
            await self.gateway.answer_callback_query(query.id, UNKNOWN_ACTION_ANSWER)
            return

        if query.message is not None and not self.settings.is_chat_allowed(
            query.message.chat.id
        ):
            logger.warning("callback_chat_not_allowed", chat_id=query.message.chat.id)
            await self.gateway.answer_callback_query(query.id, NOTHING_TO_STOP_ANSWER)
            return

        token = data.removeprefix(STOP_CALLBACK_PREFIX)
        if self.registry.cancel(token):
            answer = STOPPING_ANSWER
        else:
            answer = NOTHING_TO_STOP_ANSWER
        await self.gateway.answer_callback_query(query.id, answer)

    async def shutdown(self) -> None:
        """Stop in-flight sessions, wait for them and close HTTP clients."""
        stopped = self.registry.cancel_all()
        logger.info(
            "bot_shutdown",
            stopped_sessions=stopped,
            pending_tasks=len(self._tasks),
        )
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.gateway.aclose()
        await self.fetcher.aclose()
