"""Unit tests for the transcription session driver."""

import asyncio
from pathlib import Path

import httpx
import pytest

from transcript_relay.core.cancellation import CancellationHandle, CancellationRegistry
from transcript_relay.core.errors import ProviderError
from transcript_relay.media.fetcher import MediaFetcher
from transcript_relay.relay.engine import PLACEHOLDER_TEXT, STOPPED_SUFFIX
from transcript_relay.relay.session import TranscriptionSession, request_token
from transcript_relay.stt.base import (
    BaseTranscriber,
    BatchTranscript,
    StreamingTranscript,
    TranscriptDelta,
    TranscriptDone,
    TranscriptionResult,
)
from transcript_relay.telegram.gateway import HTML, stop_keyboard
from transcript_relay.telegram.models import Message

AUDIO_BYTES = b"OggS" + b"\x00" * 256


def make_message(
    message_id: int = 7, kind: str = "voice", chat_id: int = 42
) -> Message:
    return Message.model_validate(
        {
            "message_id": message_id,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": 5, "username": "alice"},
            kind: {"file_id": f"file-{message_id}", "file_size": len(AUDIO_BYTES)},
        }
    )


class FakeTranscriber(BaseTranscriber):
    """Returns a fixed result and records what it was given."""

    def __init__(self, result: TranscriptionResult | None = None, error=None) -> None:
        self.result = result
        self.error = error
        self.audio: list[bytes] = []
        self.paths: list[Path] = []

    async def transcribe(
        self, audio_path: Path, cancel: CancellationHandle
    ) -> TranscriptionResult:
        self.paths.append(audio_path)
        self.audio.append(audio_path.read_bytes())
        if self.error is not None:
            raise self.error
        return self.result


class StreamingFakeTranscriber(BaseTranscriber):
    """Streams the given deltas through the session's handle."""

    def __init__(self, texts: list[str]) -> None:
        self.texts = texts

    async def transcribe(
        self, audio_path: Path, cancel: CancellationHandle
    ) -> TranscriptionResult:
        async def events():
            for text in self.texts:
                await asyncio.sleep(0)
                yield TranscriptDelta(text=text)
            yield TranscriptDone(text="".join(self.texts))

        return StreamingTranscript(events=cancel.iterate(events()))


class BlockingTranscriber(BaseTranscriber):
    """Waits on the provider until the session is cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def transcribe(
        self, audio_path: Path, cancel: CancellationHandle
    ) -> TranscriptionResult:
        self.started.set()
        await cancel.guard(asyncio.Event().wait())
        raise AssertionError("provider call should have been aborted")


def media_client(status_code: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=AUDIO_BYTES)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def registry() -> CancellationRegistry:
    return CancellationRegistry()


@pytest.fixture
def fetcher(tmp_path: Path) -> MediaFetcher:
    return MediaFetcher(tmp_dir=tmp_path, client=media_client())


def make_session(
    gateway, clock, fetcher, transcriber, registry
) -> TranscriptionSession:
    return TranscriptionSession(
        gateway, fetcher, transcriber, registry, sleep=clock.sleep
    )


class TestRequestToken:
    """Tests for request_token."""

    def test_token_combines_chat_and_message(self) -> None:
        """Test the token is chat id and message id."""
        assert request_token(make_message(message_id=9, chat_id=-100)) == "-100:9"


class TestTranscriptionSession:
    """Tests for TranscriptionSession.run."""

    @pytest.mark.asyncio
    async def test_batch_success(
        self, gateway, clock, fetcher, registry, tmp_path: Path
    ) -> None:
        """Test a voice message ends as one plain message with its transcript."""
        transcriber = FakeTranscriber(BatchTranscript(text="hello world"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message())

        placeholder = gateway.calls[0]
        assert placeholder.method == "send"
        assert placeholder.text == PLACEHOLDER_TEXT
        assert placeholder.parse_mode == HTML
        assert placeholder.reply_to_id == 7
        assert placeholder.keyboard == stop_keyboard("42:7")

        assert gateway.final_texts() == ["hello world"]
        final = gateway.edits()[-1]
        assert final.parse_mode is None
        assert final.keyboard is None

        assert transcriber.audio == [AUDIO_BYTES]
        assert transcriber.paths[0].suffix == ".oga"
        assert list(tmp_path.iterdir()) == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_streaming_success(self, gateway, clock, fetcher, registry) -> None:
        """Test a streamed transcription ends with the full text."""
        transcriber = StreamingFakeTranscriber(["Hello", ", ", "world"])
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message())

        assert gateway.final_texts() == ["Hello, world"]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_download_failure_reports_error(
        self, gateway, clock, registry, tmp_path: Path
    ) -> None:
        """Test a failed download replaces the placeholder with the error."""
        fetcher = MediaFetcher(tmp_dir=tmp_path, client=media_client(404))
        transcriber = FakeTranscriber(BatchTranscript(text="unused"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message())

        assert transcriber.paths == []
        assert gateway.final_texts() == [
            "Error processing voice message: Download failed with HTTP status 404"
        ]
        assert list(tmp_path.iterdir()) == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_video_without_ffmpeg_reports_error(
        self, gateway, clock, registry, tmp_path: Path
    ) -> None:
        """Test a video note fails cleanly when ffmpeg cannot be started."""
        fetcher = MediaFetcher(
            tmp_dir=tmp_path,
            ffmpeg_binary=str(tmp_path / "missing-ffmpeg"),
            client=media_client(),
        )
        transcriber = FakeTranscriber(BatchTranscript(text="unused"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message(kind="video_note"))

        assert transcriber.paths == []
        [text] = gateway.final_texts()
        assert text.startswith("Error processing voice message: ")
        assert "missing-ffmpeg" in text
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_provider_error_reports_error(
        self, gateway, clock, fetcher, registry
    ) -> None:
        """Test a provider failure is shown to the user."""
        transcriber = FakeTranscriber(error=ProviderError("quota exceeded"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message())

        assert gateway.final_texts() == [
            "Error processing voice message: quota exceeded"
        ]
        assert gateway.edits()[-1].keyboard is None

    @pytest.mark.asyncio
    async def test_unexpected_error_reports_error(
        self, gateway, clock, fetcher, registry
    ) -> None:
        """Test an unexpected exception is reported like any other failure."""
        transcriber = FakeTranscriber(error=RuntimeError("unexpected"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message())

        assert gateway.final_texts() == ["Error processing voice message: unexpected"]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_provider(
        self, gateway, clock, fetcher, registry, tmp_path: Path
    ) -> None:
        """Test stop during the provider call ends with a single Stopped edit."""
        transcriber = BlockingTranscriber()
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        task = asyncio.create_task(session.run(make_message()))
        await transcriber.started.wait()
        assert registry.cancel("42:7")
        await task

        edits = gateway.edits()
        assert len(edits) == 1
        assert edits[0].text == PLACEHOLDER_TEXT + STOPPED_SUFFIX
        assert edits[0].parse_mode == HTML
        assert edits[0].keyboard is None
        assert list(tmp_path.iterdir()) == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_request_is_ignored(
        self, gateway, clock, fetcher, registry
    ) -> None:
        """Test a second session for an in-flight token does nothing."""
        registry.register("42:7")
        transcriber = FakeTranscriber(BatchTranscript(text="unused"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await session.run(make_message())

        assert gateway.calls == []
        assert transcriber.paths == []
        # the first session still owns its entry
        assert "42:7" in registry

    @pytest.mark.asyncio
    async def test_message_without_media_raises(
        self, gateway, clock, fetcher, registry
    ) -> None:
        """Test run rejects a message that carries nothing to transcribe."""
        session = make_session(gateway, clock, fetcher, FakeTranscriber(), registry)
        message = Message.model_validate(
            {"message_id": 1, "chat": {"id": 42}, "text": "hi"}
        )
        with pytest.raises(ValueError):
            await session.run(message)

    @pytest.mark.asyncio
    async def test_concurrent_sessions_clean_up(
        self, gateway, clock, fetcher, registry, tmp_path: Path
    ) -> None:
        """Test many sessions leave no registry entries or files behind."""
        transcriber = FakeTranscriber(BatchTranscript(text="ok"))
        session = make_session(gateway, clock, fetcher, transcriber, registry)

        await asyncio.gather(
            *(session.run(make_message(message_id=i)) for i in range(1, 6))
        )

        assert gateway.final_texts() == ["ok"] * 5
        assert len(registry) == 0
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancel_after_terminal_marker_is_ignored(
        self, gateway, fetcher, registry
    ) -> None:
        """Test a stop arriving during the final flush changes nothing."""

        async def cancel_during_final_wait(seconds: float) -> None:
            registry.cancel("42:7")

        transcriber = StreamingFakeTranscriber(["Hello"])
        session = TranscriptionSession(
            gateway, fetcher, transcriber, registry, sleep=cancel_during_final_wait
        )

        await session.run(make_message())

        assert gateway.final_texts() == ["Hello"]
        assert not any(call.text.endswith(STOPPED_SUFFIX) for call in gateway.calls)
        assert len(registry) == 0
