"""OpenAI speech-to-text transcription source."""

import os
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from openai import APIError, AsyncOpenAI

from transcript_relay.core.cancellation import CancellationHandle
from transcript_relay.core.errors import ProviderError
from transcript_relay.core.logging import get_logger
from transcript_relay.stt.base import (
    BaseTranscriber,
    BatchTranscript,
    StreamingTranscript,
    TranscriptDelta,
    TranscriptDone,
    TranscriptEvent,
    TranscriptionResult,
)

logger = get_logger(__name__)

# Models that only return a completed transcription
NON_STREAMING_MODELS = {"whisper-1"}

PUNCTUATION_PROMPT = "Add the necessary punctuation to the sentences."


def build_prompt(dictionary: str) -> str:
    """Build the provider prompt from an optional vocabulary list."""
    dictionary = dictionary.strip()
    if not dictionary:
        return PUNCTUATION_PROMPT
    return (
        f"Make sure the following words are spelled correctly: {dictionary}. "
        f"{PUNCTUATION_PROMPT}"
    )


class OpenAITranscriber(BaseTranscriber):
    """Transcription through the OpenAI audio API.

    Streams ``transcript.text.delta`` events when the model supports it and
    falls back to a single completed string otherwise.

    Example usage:
        transcriber = OpenAITranscriber(model="gpt-4o-mini-transcribe")
        result = await transcriber.transcribe(Path("/tmp/voice.ogg"), handle)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str = "gpt-4o-mini-transcribe",
        language: str | None = None,
        stream: bool = True,
        dictionary_path: Path | None = None,
    ) -> None:
        """Initialize the transcriber.

        Args:
            api_key: API key. Defaults to OPENAI_API_KEY env var.
            base_url: API base URL. Defaults to OPENAI_BASE_URL env var or OpenAI.
            model: Transcription model name.
            language: Optional ISO-639-1 language hint.
            stream: Request a delta stream when the model supports it.
            dictionary_path: Optional file with words the provider should
                spell correctly, read on every request.
        """
        self.model = model
        self.language = language
        self.dictionary_path = dictionary_path
        self.streaming = stream and model not in NON_STREAMING_MODELS

        self.client = AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY", "unset"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL"),
        )

        logger.info(
            "stt_client_initialized",
            model=model,
            streaming=self.streaming,
            language=language or "auto",
        )

    def _read_dictionary(self) -> str:
        if self.dictionary_path is None or not self.dictionary_path.exists():
            return ""
        return self.dictionary_path.read_text(encoding="utf-8")

    def _request_params(self, audio_path: Path) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.model,
            "file": audio_path,
            "prompt": build_prompt(self._read_dictionary()),
        }
        if self.language:
            params["language"] = self.language
        return params

    async def transcribe(
        self, audio_path: Path, cancel: CancellationHandle
    ) -> TranscriptionResult:
        """Transcribe ``audio_path`` with the configured model.

        Returns:
            StreamingTranscript when streaming is enabled, else BatchTranscript.
        """
        params = self._request_params(audio_path)
        start_time = time.perf_counter()
        logger.info(
            "stt_request_start",
            path=str(audio_path),
            model=self.model,
            streaming=self.streaming,
        )

        try:
            if self.streaming:
                stream = await cancel.guard(
                    self.client.audio.transcriptions.create(**params, stream=True)
                )
            else:
                transcription = await cancel.guard(
                    self.client.audio.transcriptions.create(**params)
                )
        except APIError as e:
            logger.error("stt_request_error", path=str(audio_path), error=str(e))
            raise ProviderError(str(e)) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        if not self.streaming:
            text = transcription.text or ""
            logger.info(
                "stt_completed",
                text_length=len(text),
                latency_ms=round(latency_ms, 2),
            )
            return BatchTranscript(text=text)

        logger.info("stt_stream_opened", latency_ms=round(latency_ms, 2))
        return StreamingTranscript(events=cancel.iterate(self._events(stream)))

    async def _events(self, stream: Any) -> AsyncIterator[TranscriptEvent]:
        """Translate provider stream events into transcript events."""
        try:
            async for event in stream:
                if event.type == "transcript.text.delta":
                    yield TranscriptDelta(text=event.delta)
                elif event.type == "transcript.text.done":
                    logger.info("stt_stream_done", text_length=len(event.text))
                    yield TranscriptDone(text=event.text)
                    return
                else:
                    logger.info("stt_unknown_event", event_type=event.type)
        except APIError as e:
            logger.error("stt_stream_error", error=str(e))
            raise ProviderError(str(e)) from e
        finally:
            await stream.close()
