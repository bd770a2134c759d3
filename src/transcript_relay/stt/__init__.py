"""STT (Speech-to-Text) module for transcript relay."""

from transcript_relay.stt.base import (
    BaseTranscriber,
    BatchTranscript,
    StreamingTranscript,
    TranscriptDelta,
    TranscriptDone,
    TranscriptEvent,
    TranscriptionResult,
)
from transcript_relay.stt.openai_transcriber import OpenAITranscriber

__all__ = [
    "BaseTranscriber",
    "BatchTranscript",
    "StreamingTranscript",
    "TranscriptDelta",
    "TranscriptDone",
    "TranscriptEvent",
    "TranscriptionResult",
    "OpenAITranscriber",
]
