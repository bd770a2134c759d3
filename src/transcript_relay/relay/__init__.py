"""Transcript relay: engine, session driver and update dispatcher."""

from transcript_relay.relay.dispatcher import TranscriptBot
from transcript_relay.relay.engine import (
    MAX_MESSAGE_LENGTH,
    RESERVED_SUFFIX_LENGTH,
    RelayResult,
    TranscriptRelay,
    chunk_text,
)
from transcript_relay.relay.session import TranscriptionSession, request_token

__all__ = [
    "MAX_MESSAGE_LENGTH",
    "RESERVED_SUFFIX_LENGTH",
    "RelayResult",
    "TranscriptBot",
    "TranscriptRelay",
    "TranscriptionSession",
    "chunk_text",
    "request_token",
]
