from __future__ import annotations

"""Core transcribe flow: speech-to-text, n8n relay, ledger append, cleanup.

Within one request the steps run strictly in that order. The ledger append
is best-effort: a storage failure is logged and the caller still receives the
transcript and webhook reply.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from sqlalchemy.exc import SQLAlchemyError

from voicenotes.db.ledger import ConversationLedger
from voicenotes.services.intake import UploadArtifact
from voicenotes.services.logging import get_logger
from voicenotes.services.n8n_client import WebhookReply
from voicenotes.utils.time import iso_timestamp


class Transcriber(Protocol):
    async def transcribe(self, artifact: UploadArtifact) -> str: ...


class WorkflowRelay(Protocol):
    async def call(self, transcript: str, *, extra: Mapping[str, str] | None = None) -> WebhookReply: ...


@dataclass
class RelayResult:
    transcript: str
    n8n_response: Any
    record_id: int | None = None


class TranscriptionPipeline:
    def __init__(self, *, stt: Transcriber, webhook: WorkflowRelay, ledger: ConversationLedger) -> None:
        self.stt = stt
        self.webhook = webhook
        self.ledger = ledger

    async def run(self, artifact: UploadArtifact) -> RelayResult:
        """Process one accepted upload. The artifact is deleted on every path."""

        try:
            transcript = await self.stt.transcribe(artifact)
            return await self.relay_and_record(transcript, extra=artifact.fields)
        finally:
            await artifact.discard()

    async def relay_and_record(self, transcript: str, *, extra: Mapping[str, str] | None = None) -> RelayResult:
        reply = await self.webhook.call(transcript, extra=extra)

        logger = get_logger()
        record_id: int | None = None
        try:
            record_id = await self.ledger.append(
                timestamp=iso_timestamp(),
                transcript=transcript,
                n8n_response=reply.stored,
            )
        except (SQLAlchemyError, OSError):
            logger.exception("ledger_insert_failed")
        else:
            logger.info("ledger_insert_ok", record_id=record_id)
        return RelayResult(transcript=transcript, n8n_response=reply.data, record_id=record_id)
