"""Voice memo transcoding via ffmpeg.

Telegram voice notes arrive as Opus-in-Ogg, which many browsers and the
mobile dashboard can't play. They are re-encoded to MP3 through a scoped
temporary directory that is removed on every exit path.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import tempfile
from pathlib import Path

from src.config import settings

logger = logging.getLogger(__name__)

# Channel mime type → container extension ffmpeg can probe
_MIME_EXTENSIONS: dict[str, str] = {
    "audio/ogg": "ogg",
    "audio/opus": "opus",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aac": "aac",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
}

_STDERR_TAIL = 500


class TranscodeError(Exception):
    """ffmpeg missing, failed, timed out, or produced no output."""


def source_extension(mime_type: str | None) -> str:
    """Map a mime type to an input file extension (defaults to ogg)."""
    if not mime_type:
        return "ogg"
    return _MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower(), "ogg")


async def transcode_voice(data: bytes, source_format: str = "ogg") -> bytes:
    """Re-encode compressed audio to MP3 and return the encoded bytes.

    Raises:
        TranscodeError: On any ffmpeg failure. Temporary files are removed regardless.
    """
    if not data:
        msg = "Empty voice payload"
        raise TranscodeError(msg)

    with tempfile.TemporaryDirectory(prefix="voice-") as workdir:
        src = Path(workdir) / f"input.{source_format}"
        dst = Path(workdir) / "output.mp3"
        src.write_bytes(data)

        try:
            proc = await asyncio.create_subprocess_exec(
                settings.enrichment.ffmpeg_binary,
                "-hide_banner",
                "-loglevel", "error",
                "-y",
                "-i", str(src),
                "-vn",
                "-codec:a", "libmp3lame",
                "-q:a", "4",
                str(dst),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"Could not start ffmpeg: {exc}"
            raise TranscodeError(msg) from exc

        try:
            _, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=settings.enrichment.transcode_timeout_seconds,
            )
        except TimeoutError as exc:
            msg = "ffmpeg timed out"
            raise TranscodeError(msg) from exc
        finally:
            # Still running after a timeout or a cancelled task
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="replace")[-_STDERR_TAIL:]
            msg = f"ffmpeg exited with {proc.returncode}: {tail}"
            raise TranscodeError(msg)

        if not dst.exists() or dst.stat().st_size == 0:
            msg = "ffmpeg produced no output"
            raise TranscodeError(msg)

        output = dst.read_bytes()

    logger.debug("Transcoded voice memo %d → %d bytes", len(data), len(output))
    return output
