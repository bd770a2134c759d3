"""Relay of voice message transcripts from a speech-to-text provider to Telegram."""
