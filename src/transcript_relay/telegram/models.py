"""Pydantic models for the subset of Telegram Bot API updates the bot handles."""

from pydantic import BaseModel, ConfigDict, Field

# Media kinds that carry a video stream and need audio extraction
VIDEO_KINDS = {"video", "video_note"}


class TelegramModel(BaseModel):
    """Base model: unknown Bot API fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class User(TelegramModel):
    id: int
    username: str | None = None
    first_name: str | None = None


class Chat(TelegramModel):
    id: int
    type: str = "private"


class MediaFile(TelegramModel):
    """Voice, audio, video or video note attachment."""

    file_id: str
    file_unique_id: str | None = None
    file_size: int | None = None
    duration: int | None = None
    mime_type: str | None = None


class Message(TelegramModel):
    message_id: int
    chat: Chat
    from_user: User | None = Field(default=None, alias="from")
    text: str | None = None
    voice: MediaFile | None = None
    audio: MediaFile | None = None
    video: MediaFile | None = None
    video_note: MediaFile | None = None

    @property
    def media(self) -> tuple[str, MediaFile] | None:
        """The first transcribable attachment as ``(kind, file)``."""
        for kind in ("voice", "audio", "video", "video_note"):
            attachment = getattr(self, kind)
            if attachment is not None:
                return kind, attachment
        return None

    @property
    def command(self) -> str | None:
        """Bot command name without the slash or ``@botname`` suffix."""
        if not self.text or not self.text.startswith("/"):
            return None
        return self.text[1:].split(maxsplit=1)[0].split("@", 1)[0].lower()


class CallbackQuery(TelegramModel):
    id: str
    from_user: User | None = Field(default=None, alias="from")
    data: str | None = None
    message: Message | None = None


class Update(TelegramModel):
    update_id: int
    message: Message | None = None
    callback_query: CallbackQuery | None = None
