from __future__ import annotations

"""FastAPI app factory: transcribe pipeline, history, health and liveness."""

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from time import monotonic

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from voicenotes.config.settings import Settings, get_settings
from voicenotes.db.base import build_engine, build_session_factory, check_connection, init_db
from voicenotes.db.ledger import ConversationLedger
from voicenotes.schemas.api_io import HealthStatus
from voicenotes.services.logging import configure_logging, get_logger
from voicenotes.services.n8n_client import N8nClient
from voicenotes.services.pipeline import Transcriber, TranscriptionPipeline, WorkflowRelay
from voicenotes.services.stt import SpeechToText
from voicenotes.utils.time import iso_timestamp
from voicenotes.web.routes import router as api_router


def create_app(
    settings: Settings | None = None,
    *,
    stt: Transcriber | None = None,
    webhook: WorkflowRelay | None = None,
    ledger: ConversationLedger | None = None,
) -> FastAPI:
    """Build the app. Collaborators not passed in are created at startup."""

    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.is_production, log_file=settings.log_file)
    logger = get_logger()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        app_ledger = ledger
        if app_ledger is None:
            engine = build_engine(settings.database_url)
            try:
                if settings.db_auto_create:
                    await init_db(engine)
                await check_connection(engine)
            except Exception:
                # no ledger, no traffic
                logger.exception("database_open_failed")
                await engine.dispose()
                raise
            app_ledger = ConversationLedger(build_session_factory(engine))
            logger.info("database_connected")

        owned_stt = SpeechToText.from_settings(settings) if stt is None else None
        owned_webhook = N8nClient.from_settings(settings) if webhook is None else None

        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
        app.state.settings = settings
        app.state.ledger = app_ledger
        app.state.pipeline = TranscriptionPipeline(
            stt=owned_stt or stt,
            webhook=owned_webhook or webhook,
            ledger=app_ledger,
        )
        logger.info(
            "startup",
            environment=settings.environment,
            port=settings.port,
            n8n_webhook_url=str(settings.n8n_webhook_url),
            webhook_policy=settings.relay.webhook_policy,
        )
        try:
            yield
        finally:
            if owned_stt is not None:
                await owned_stt.aclose()
            if owned_webhook is not None:
                await owned_webhook.aclose()
            if engine is not None:
                await engine.dispose()

    app = FastAPI(title="Voice Notes", lifespan=lifespan)
    app.state.settings = settings
    app.state.started_at = monotonic()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(trace_id=trace_id, path=request.url.path, method=request.method)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["X-Trace-Id"] = trace_id
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "Invalid request"
        if errors and not settings.is_production:
            first = errors[0]
            message = f"{'.'.join(str(p) for p in first.get('loc', ()))}: {first.get('msg', 'invalid')}"
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error" if settings.is_production else str(exc)},
        )

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Voice Notes is running!"

    @app.get("/health", response_model=HealthStatus)
    async def health(request: Request) -> JSONResponse:
        ok = await request.app.state.ledger.ping()
        body = HealthStatus(
            status="healthy" if ok else "unhealthy",
            timestamp=iso_timestamp(),
            uptime=round(monotonic() - request.app.state.started_at, 3),
            environment=settings.environment,
            database="connected" if ok else "error",
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK if ok else status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(),
        )

    return app


def run() -> None:
    """Console entry point: serve on the configured host and port."""

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_config=None,
    )


if __name__ == "__main__":
    run()
