"""Telegram chat gateway and update models."""

from transcript_relay.telegram.gateway import (
    HTML,
    STOP_CALLBACK_PREFIX,
    MessageRef,
    TelegramGateway,
    stop_keyboard,
)
from transcript_relay.telegram.models import CallbackQuery, MediaFile, Message, Update

__all__ = [
    "HTML",
    "STOP_CALLBACK_PREFIX",
    "MessageRef",
    "TelegramGateway",
    "stop_keyboard",
    "CallbackQuery",
    "MediaFile",
    "Message",
    "Update",
]
