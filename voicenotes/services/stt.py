from __future__ import annotations

"""Speech-to-text relay backed by the OpenAI transcription endpoint.

The provider infers the audio format from the bytes and the file name; the
declared MIME type is only logged.
"""

from time import perf_counter
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from voicenotes.config.settings import Settings
from voicenotes.services.intake import UploadArtifact
from voicenotes.services.logging import get_logger


class TranscriptionError(Exception):
    """The provider could not turn the artifact into text."""


class SpeechToText:
    def __init__(self, client: Any, *, model: str = "gpt-4o-transcribe") -> None:
        self._client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpeechToText":
        return cls(AsyncOpenAI(api_key=settings.openai_api_key), model=settings.relay.stt_model)

    async def transcribe(self, artifact: UploadArtifact) -> str:
        """Return the transcript text. Raises TranscriptionError; no retries."""

        logger = get_logger().bind(model=self.model)
        start = perf_counter()
        try:
            # the SDK reads a path with anyio, off the event loop
            result = await self._client.audio.transcriptions.create(
                model=self.model,
                file=(artifact.path.name, artifact.path, artifact.mime_type or "application/octet-stream"),
                response_format="json",
            )
        except (OpenAIError, OSError) as exc:
            logger.warning("stt_failed", error=str(exc), error_type=exc.__class__.__name__)
            raise TranscriptionError(f"Transcription failed: {exc}") from exc

        text = getattr(result, "text", None)
        if text is None and isinstance(result, dict):
            text = result.get("text")
        if text is None:
            raise TranscriptionError("Transcription failed: provider returned no text")

        elapsed_ms = int((perf_counter() - start) * 1000)
        logger.info("stt_ok", elapsed_ms=elapsed_ms, chars=len(text), mimetype=artifact.mime_type)
        return text

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
