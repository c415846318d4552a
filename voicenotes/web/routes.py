from __future__ import annotations

"""API routes: audio upload and conversation history."""

from pathlib import Path

from fastapi import APIRouter, File, Form, Request, UploadFile, status
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from voicenotes.config.settings import Settings
from voicenotes.schemas.api_io import ConversationOut, DisplayRecord, ErrorResponse, TranscribeResponse
from voicenotes.services.history import render, to_display
from voicenotes.services.intake import IntakeError, accept_upload
from voicenotes.services.logging import get_logger


router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post(
    "/api/transcribe",
    response_model=TranscribeResponse,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def transcribe(
    request: Request,
    audio: UploadFile | None = File(None, description="Recorded audio (≤10MB)"),
    note: str | None = Form(None, description="Optional text forwarded to the workflow"),
):
    settings: Settings = request.app.state.settings
    logger = get_logger()

    try:
        artifact = await accept_upload(
            audio,
            upload_dir=Path(settings.upload_dir),
            settings=settings.upload,
            text_fields={"note": note},
        )
    except IntakeError as exc:
        logger.info("upload_rejected", status=exc.status_code, reason=exc.message)
        return _error(exc.status_code, exc.message)

    logger.info(
        "processing_audio",
        filename=artifact.path.name,
        size=artifact.size,
        mimetype=artifact.mime_type,
    )
    try:
        result = await request.app.state.pipeline.run(artifact)
    except Exception as exc:
        logger.exception("processing_audio_failed", error=str(exc), error_type=exc.__class__.__name__)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Error processing audio" if settings.is_production else str(exc),
        )
    return TranscribeResponse(transcript=result.transcript, n8n_response=result.n8n_response)


@router.get("/api/conversations", response_model=list[ConversationOut])
async def list_conversations(request: Request):
    try:
        rows = await request.app.state.ledger.list_all()
    except SQLAlchemyError:
        get_logger().exception("conversations_fetch_failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error fetching conversations")
    return [row.to_dict() for row in rows]


@router.get("/api/conversations/display", response_model=list[DisplayRecord])
async def list_display_records(request: Request):
    try:
        rows = await request.app.state.ledger.list_all()
    except SQLAlchemyError:
        get_logger().exception("conversations_fetch_failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error fetching conversations")
    return [to_display(row) for row in rows]


@router.get("/conversations", response_class=HTMLResponse)
async def conversations_fragment(request: Request):
    try:
        rows = await request.app.state.ledger.list_all()
    except SQLAlchemyError:
        get_logger().exception("conversations_fetch_failed")
        return HTMLResponse("", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTMLResponse(render(to_display(row) for row in rows))
