"""Cooperative cancellation for in-flight transcription sessions.

A CancellationHandle is owned by one session. Every await on an external
collaborator goes through ``guard`` (or ``iterate`` for delta streams), so a
stop request aborts whatever the session is currently waiting on. The
CancellationRegistry maps request tokens to handles so that an inbound stop
button can reach a session it does not own.
"""

import asyncio
import threading
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import Any, TypeVar

from transcript_relay.core.errors import DuplicateRequestError, TranscriptionCancelled
from transcript_relay.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_EXHAUSTED = object()


class CancellationHandle:
    """Signallable token for a single session (active -> cancelled only)."""

    def __init__(self, token: str) -> None:
        self.token = token
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Signal the handle.

        Returns:
            True if this call moved the handle to cancelled, False if it
            already was.
        """
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranscriptionCancelled(self.token)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the handle fires first.

        On cancellation the underlying operation is cancelled and awaited
        before TranscriptionCancelled is raised.
        """
        if self._event.is_set():
            # never started; close coroutine objects to avoid a warning
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise TranscriptionCancelled(self.token)

        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {operation, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not operation.done():
                operation.cancel()

        if not self._event.is_set() or (
            operation.done() and not operation.cancelled()
        ):
            return operation.result()

        # Collect the aborted operation so its outcome is not left unretrieved
        outcome = (await asyncio.gather(operation, return_exceptions=True))[0]
        logger.debug(
            "operation_aborted",
            token=self.token,
            outcome=type(outcome).__name__,
        )
        raise TranscriptionCancelled(self.token)

    async def iterate(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """Pull items from ``source`` with every ``await next`` guarded."""
        iterator = aiter(source)
        try:
            while True:
                item = await self.guard(_next_or_exhausted(iterator))
                if item is _EXHAUSTED:
                    return
                yield item
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()


async def _next_or_exhausted(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _EXHAUSTED


class CancellationRegistry:
    """Process-wide map from request token to cancellation handle.

    Shared between every running session and the stop-button handler, so
    all access goes through a lock.
    """

    def __init__(self) -> None:
        self._handles: dict[str, CancellationHandle] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._handles

    def register(self, token: str) -> CancellationHandle:
        """Create and store a handle for a new session.

        Raises:
            DuplicateRequestError: If the token is already in flight.
        """
        with self._lock:
            if token in self._handles:
                raise DuplicateRequestError(f"Request already in flight: {token}")
            handle = CancellationHandle(token)
            self._handles[token] = handle
        logger.debug("cancellation_registered", token=token)
        return handle

    def resolve(self, token: str) -> CancellationHandle | None:
        with self._lock:
            return self._handles.get(token)

    def cancel(self, token: str) -> bool:
        """Signal the handle for ``token``.

        Returns:
            True if the token is in flight (signalling twice is harmless),
            False if there is nothing to cancel.
        """
        handle = self.resolve(token)
        if handle is None:
            logger.info("cancellation_target_not_found", token=token)
            return False
        first = handle.cancel()
        logger.info("cancellation_requested", token=token, first_request=first)
        return True

    def unregister(self, token: str) -> None:
        with self._lock:
            removed = self._handles.pop(token, None)
        if removed is None:
            logger.warning("cancellation_unregister_unknown", token=token)
        else:
            logger.debug("cancellation_unregistered", token=token)

    def cancel_all(self) -> int:
        """Signal every in-flight handle (used at shutdown)."""
        with self._lock:
            handles = list(self._handles.values())
        return sum(1 for handle in handles if handle.cancel())
