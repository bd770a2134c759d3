"""Media download and audio extraction for inbound voice/video messages."""

import asyncio
import tempfile
import time
import uuid
from pathlib import Path

import httpx

from transcript_relay.core.cancellation import CancellationHandle
from transcript_relay.core.errors import (
    ExternalToolError,
    TranscriptionCancelled,
    TransportError,
)
from transcript_relay.core.logging import get_logger

logger = get_logger(__name__)

DOWNLOAD_TIMEOUT = 60.0  # seconds
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class MediaFetcher:
    """Fetches remote media into a temporary directory.

    Downloads are streamed to disk with httpx; video is converted to a
    mono 16 kHz Ogg/Opus file with ffmpeg. Every returned path belongs to
    the caller, who releases it with ``delete_file``.
    """

    def __init__(
        self,
        tmp_dir: str | Path | None = None,
        ffmpeg_binary: str = "ffmpeg",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.tmp_dir = Path(tmp_dir) if tmp_dir else Path(tempfile.gettempdir())
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        self.ffmpeg_binary = ffmpeg_binary
        self._client = client or httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT)

    def _temp_path(self, prefix: str, suffix: str) -> Path:
        return self.tmp_dir / f"{prefix}_{uuid.uuid4().hex}{suffix}"

    async def download(
        self, url: str, cancel: CancellationHandle, suffix: str = ".ogg"
    ) -> Path:
        """Download ``url`` into a new temporary file.

        Raises:
            TransportError: On a non-2xx response or a network failure.
            TranscriptionCancelled: If the handle fires mid-download.
        """
        path = self._temp_path("media", suffix)
        start_time = time.perf_counter()
        logger.info("download_start", path=str(path))

        try:
            size = await cancel.guard(self._stream_to_file(url, path))
        except BaseException:
            self.delete_file(path)
            raise

        logger.info(
            "download_completed",
            path=str(path),
            size_bytes=size,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return path

    async def _stream_to_file(self, url: str, path: Path) -> int:
        size = 0
        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise TransportError(
                        f"Download failed with HTTP status {response.status_code}"
                    )
                with path.open("wb") as handle:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        handle.write(chunk)
                        size += len(chunk)
        except httpx.HTTPError as e:
            logger.error("download_error", error=str(e))
            raise TransportError(f"Download failed: {e}") from e
        return size

    async def extract_audio(self, video_path: Path, cancel: CancellationHandle) -> Path:
        """Extract the audio track of ``video_path`` with ffmpeg.

        Raises:
            ExternalToolError: If ffmpeg is missing or exits non-zero.
            TranscriptionCancelled: If the handle fires; ffmpeg is killed.
        """
        audio_path = self._temp_path("audio", ".ogg")
        cmd = [
            self.ffmpeg_binary,
            "-y",
            "-i",
            str(video_path),
            "-vn",
            "-ac",
            "1",
            "-ar",
            "16000",
            "-c:a",
            "libopus",
            str(audio_path),
        ]
        start_time = time.perf_counter()
        logger.info("audio_extraction_start", path=str(video_path))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalToolError(self.ffmpeg_binary, None, str(e)) from e

        try:
            _, stderr = await cancel.guard(proc.communicate())
        except TranscriptionCancelled:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            self.delete_file(audio_path)
            raise

        if proc.returncode != 0:
            message = stderr.decode(errors="ignore")
            logger.error(
                "audio_extraction_error",
                returncode=proc.returncode,
                stderr=message[-500:],
            )
            self.delete_file(audio_path)
            raise ExternalToolError(self.ffmpeg_binary, proc.returncode, message)

        logger.info(
            "audio_extraction_completed",
            path=str(audio_path),
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return audio_path

    def delete_file(self, path: Path) -> None:
        """Delete ``path``; failures are logged, never raised."""
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("file_delete_error", path=str(path), error=str(e))
            return
        logger.debug("file_deleted", path=str(path))

    async def aclose(self) -> None:
        await self._client.aclose()
