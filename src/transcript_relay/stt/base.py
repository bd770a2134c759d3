"""Base classes for STT (Speech-to-Text) transcription sources."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

from transcript_relay.core.cancellation import CancellationHandle


@dataclass(frozen=True)
class TranscriptDelta:
    """Incremental fragment of transcribed text."""

    text: str


@dataclass(frozen=True)
class TranscriptDone:
    """Terminal marker of a transcript stream."""

    text: str | None = None


TranscriptEvent = TranscriptDelta | TranscriptDone


@dataclass
class BatchTranscript:
    """A transcription that arrived as one completed string."""

    text: str


@dataclass
class StreamingTranscript:
    """A transcription that arrives as a lazy sequence of events."""

    events: AsyncIterator[TranscriptEvent]


TranscriptionResult = BatchTranscript | StreamingTranscript


class BaseTranscriber(ABC):
    """Abstract base class for transcription sources."""

    @abstractmethod
    async def transcribe(
        self, audio_path: Path, cancel: CancellationHandle
    ) -> TranscriptionResult:
        """Transcribe an audio file.

        Args:
            audio_path: Local path of the audio file.
            cancel: Session cancellation handle. The provider call and every
                item of a streaming result are awaited through it.

        Returns:
            BatchTranscript or StreamingTranscript, depending on whether the
            provider can stream for the configured model.

        Raises:
            ProviderError: If the provider call fails.
            TranscriptionCancelled: If the handle fires while waiting.
        """
        pass
