"""Core utilities for Transcript Relay"""

from transcript_relay.core.config import settings
from transcript_relay.core.logging import configure_logging

__all__ = ["settings", "configure_logging"]
