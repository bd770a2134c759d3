"""Exception hierarchy shared by the relay and its collaborators."""


class RelayError(Exception):
    """Base class for failures that abort a transcription session."""


class TransportError(RelayError):
    """A download or chat platform call failed."""


class TelegramAPIError(TransportError):
    """The Bot API answered with an error payload."""

    def __init__(
        self,
        method: str,
        description: str,
        error_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code
        self.retry_after = retry_after


class ExternalToolError(RelayError):
    """An external process (ffmpeg) exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int | None, stderr: str = "") -> None:
        super().__init__(f"{tool} exited with status {returncode}")
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr


class ProviderError(RelayError):
    """The speech-to-text provider call failed."""


class TranscriptionCancelled(Exception):
    """Raised at a suspension point once the user asked to stop.

    Not a RelayError: a cancelled session is not a failure.
    """

    def __init__(self, token: str) -> None:
        super().__init__(f"Transcription cancelled: {token}")
        self.token = token


class DuplicateRequestError(ValueError):
    """A request token is already registered."""
