"""Media Store client: stores evidence files and returns public URLs.

Files are written under ``settings.media.media_root`` and served by the
FastAPI app at ``settings.media.media_base_url``.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from datetime import UTC, datetime
from pathlib import Path

from src.config import settings

logger = logging.getLogger(__name__)

IMAGE_FOLDER = "evidence/images"
VOICE_FOLDER = "evidence/voice"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class UploadError(Exception):
    """The Media Store could not persist a file."""


def evidence_path(folder: str, user_id: str, extension: str, now: datetime | None = None) -> str:
    """Build ``{folder}/{user_id}_{timestamp}_{rand}.{ext}``.

    The millisecond timestamp plus a short random suffix keeps two uploads
    from the same reporter in the same instant apart.
    """
    moment = now or datetime.now(UTC)
    safe_user = _UNSAFE_CHARS.sub("_", user_id) or "anonymous"
    stamp = int(moment.timestamp() * 1000)
    return f"{folder}/{safe_user}_{stamp}_{secrets.token_hex(3)}.{extension}"


class MediaUploader:
    """Filesystem-backed Media Store."""

    def __init__(self, root: str | Path | None = None, base_url: str | None = None) -> None:
        self._root = Path(root or settings.media.media_root).resolve()
        self._base_url = (base_url or settings.media.media_base_url).rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    async def upload(self, data: bytes, path: str, content_type: str | None = None) -> str:
        """Store ``data`` at ``path`` and return its public URL.

        Raises:
            UploadError: Empty payload, a path escaping the media root, or any I/O failure.
        """
        if not data:
            msg = f"Refusing to store empty file at {path}"
            raise UploadError(msg)

        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            msg = f"Upload path escapes media root: {path}"
            raise UploadError(msg)

        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            logger.exception("Media upload failed for %s", path)
            msg = f"Could not store {path}: {exc}"
            raise UploadError(msg) from exc

        logger.info("Stored %s (%d bytes, %s)", path, len(data), content_type or "unknown type")
        return f"{self._base_url}/{path}"

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a partial file
        partial = target.with_suffix(target.suffix + ".part")
        partial.write_bytes(data)
        partial.replace(target)


# Module-level singleton
media_uploader = MediaUploader()
