"""Shared fakes for relay, session and dispatcher tests."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from transcript_relay.core.errors import TelegramAPIError
from transcript_relay.telegram.gateway import MessageRef


@dataclass
class GatewayCall:
    """One recorded send or edit."""

    method: str
    ref: MessageRef
    text: str
    parse_mode: str | None = None
    keyboard: dict[str, Any] | None = None
    reply_to_id: int | None = None
    at: float = 0.0


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


@dataclass
class FakeGateway:
    """In-memory stand-in for TelegramGateway."""

    clock: FakeClock = field(default_factory=FakeClock)
    calls: list[GatewayCall] = field(default_factory=list)
    texts: dict[int, str] = field(default_factory=dict)
    order: list[int] = field(default_factory=list)
    answers: list[tuple[str, str]] = field(default_factory=list)
    fail_suffixed_edits: bool = False
    closed: bool = False
    next_id: int = 100

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_id: int | None = None,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> MessageRef:
        self.next_id += 1
        ref = MessageRef(chat_id=chat_id, message_id=self.next_id)
        self.calls.append(
            GatewayCall(
                "send", ref, text, parse_mode, keyboard, reply_to_id, self.clock()
            )
        )
        await asyncio.sleep(0)
        self.texts[ref.message_id] = text
        self.order.append(ref.message_id)
        return ref

    async def edit_message_text(
        self,
        ref: MessageRef,
        text: str,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> MessageRef:
        if self.fail_suffixed_edits and text.endswith("<em>Generating...</em>"):
            raise TelegramAPIError("editMessageText", "Bad Gateway", 502)
        # recorded when the call starts, like a request leaving the process
        self.calls.append(
            GatewayCall("edit", ref, text, parse_mode, keyboard, None, self.clock())
        )
        await asyncio.sleep(0)
        self.texts[ref.message_id] = text
        return ref

    async def get_file(self, file_id: str) -> str:
        return f"voice/{file_id}.oga"

    def file_url(self, file_path: str) -> str:
        return f"https://files.example/{file_path}"

    async def answer_callback_query(self, callback_query_id: str, text: str) -> None:
        self.answers.append((callback_query_id, text))

    async def aclose(self) -> None:
        self.closed = True

    def edits(self) -> list[GatewayCall]:
        return [call for call in self.calls if call.method == "edit"]

    def final_texts(self) -> list[str]:
        """Current text of every message, in the order they were created."""
        return [self.texts[message_id] for message_id in self.order]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway(clock: FakeClock) -> FakeGateway:
    return FakeGateway(clock=clock)


@dataclass
class GatedGateway(FakeGateway):
    """FakeGateway whose edits block until ``release`` is set."""

    release: asyncio.Event = field(default_factory=asyncio.Event)
    in_flight: int = 0
    max_in_flight: int = 0

    async def edit_message_text(
        self,
        ref: MessageRef,
        text: str,
        parse_mode: str | None = None,
        keyboard: dict[str, Any] | None = None,
    ) -> MessageRef:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.release.wait()
            return await super().edit_message_text(
                ref, text, parse_mode=parse_mode, keyboard=keyboard
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def gated_gateway(clock: FakeClock) -> GatedGateway:
    return GatedGateway(clock=clock)
