from __future__ import annotations

"""Upload intake: validate one multipart audio file and park it on disk.

The declared MIME type is only a gatekeeping heuristic; the speech-to-text
provider works out the real format from the bytes.
"""

import html
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from fastapi import UploadFile, status
from fastapi.concurrency import run_in_threadpool

from voicenotes.config.settings import UploadSettings
from voicenotes.services.logging import get_logger


_CHUNK = 1024 * 1024


class IntakeError(Exception):
    """Client-side upload problem; carries the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class UploadArtifact:
    """Transient audio file owned by a single in-flight request."""

    path: Path
    mime_type: str
    size: int
    original_name: str
    fields: dict[str, str] = field(default_factory=dict)

    async def discard(self) -> None:
        """Delete the backing file; safe to call more than once."""

        await run_in_threadpool(self.path.unlink, missing_ok=True)


def normalize_mime(content_type: str | None) -> str:
    """'audio/webm;codecs=opus' -> 'audio/webm'."""

    return (content_type or "").split(";")[0].strip().lower()


def is_allowed_mime(mime_type: str, settings: UploadSettings) -> bool:
    if not mime_type:
        return False
    if settings.mime_policy == "allowlist":
        return mime_type in {m.lower() for m in settings.allowed_mime}
    return mime_type.startswith("audio/")


def artifact_name(original_name: str | None) -> str:
    """recording-<epoch ms>-<random><ext>, unique across concurrent uploads."""

    suffix = Path(original_name or "").suffix.lower()
    if not suffix[1:].isalnum():
        suffix = ""
    return f"recording-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"


def clean_text(value: str, max_len: int) -> str:
    """Trim, cap and HTML-escape a companion text field."""

    return html.escape(value.strip()[:max_len], quote=True)


async def _read_capped(upload: UploadFile, max_bytes: int) -> bytes:
    # Stops reading one chunk past the cap so oversize bodies never hit the disk
    buf = bytearray()
    while True:
        chunk = await upload.read(_CHUNK)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise IntakeError(
                f"Audio file too large (limit {max_bytes} bytes)",
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
    return bytes(buf)


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as out:
        out.write(data)


async def accept_upload(
    upload: UploadFile | None,
    *,
    upload_dir: Path,
    settings: UploadSettings,
    text_fields: Mapping[str, str | None] | None = None,
) -> UploadArtifact:
    """Validate ``upload`` and store it under ``upload_dir``.

    Raises IntakeError for a missing file, an oversize payload (before anything
    is written) or a disallowed MIME type (after the written file is removed).
    """

    logger = get_logger()
    if upload is None:
        raise IntakeError("No audio file provided")

    if upload.size is not None and upload.size > settings.max_bytes:
        raise IntakeError(
            f"Audio file too large (limit {settings.max_bytes} bytes)",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        )
    data = await _read_capped(upload, settings.max_bytes)

    mime_type = normalize_mime(upload.content_type)
    path = upload_dir / artifact_name(upload.filename)
    try:
        await run_in_threadpool(_write, path, data)
    except OSError:
        await run_in_threadpool(path.unlink, missing_ok=True)
        raise
    artifact = UploadArtifact(
        path=path,
        mime_type=mime_type,
        size=len(data),
        original_name=upload.filename or "",
    )

    if not is_allowed_mime(mime_type, settings):
        await artifact.discard()
        logger.info("upload_rejected_mime", mime_type=mime_type or None, filename=upload.filename)
        raise IntakeError("Only audio files are allowed")

    for name, value in (text_fields or {}).items():
        if value is None:
            continue
        artifact.fields[name] = clean_text(value, settings.max_text_len) if settings.validate_text else value

    logger.info("upload_accepted", filename=path.name, size=artifact.size, mimetype=mime_type)
    return artifact
