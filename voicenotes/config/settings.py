from __future__ import annotations

"""Application settings using Pydantic Settings.

Loads configuration from environment variables and optional .env file.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def _get_csv_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return [x.strip().lower() for x in raw.split(",") if x.strip()]


class UploadSettings(BaseModel):
    max_bytes: int = 10 * 1024 * 1024
    # "prefix": any audio/* type; "allowlist": only allowed_mime
    mime_policy: Literal["prefix", "allowlist"] = "prefix"
    allowed_mime: list[str] = Field(
        default_factory=lambda: ["audio/wav", "audio/mpeg", "audio/mp4", "audio/webm"]
    )
    validate_text: bool = True
    max_text_len: int = 10_000


class RelaySettings(BaseModel):
    # "strict": non-2xx is a failure; "lenient": parse whatever comes back
    webhook_policy: Literal["strict", "lenient"] = "strict"
    webhook_timeout_seconds: float = 60.0
    stt_model: str = "gpt-4o-transcribe"


class Settings(BaseSettings):
    """Top-level application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Core
    openai_api_key: str
    n8n_webhook_url: AnyHttpUrl

    # App
    host: str = "0.0.0.0"
    port: int = 3000
    environment: Literal["development", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("environment", "app_env", "node_env"),
    )
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Storage
    db_path: str = "./data/conversations.db"
    db_dsn: Optional[str] = None
    db_auto_create: bool = True
    upload_dir: str = "./uploads"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Features
    upload: UploadSettings = Field(default_factory=UploadSettings)
    relay: RelaySettings = Field(default_factory=RelaySettings)

    @field_validator("log_level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in levels:
            raise ValueError("Invalid LOG_LEVEL")
        return v.upper()

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, v: object) -> object:
        # NODE_ENV-style values such as "test" or "staging" run as development
        if isinstance(v, str):
            v = v.strip().lower()
            return "production" if v in {"prod", "production"} else "development"
        return v

    def model_post_init(self, __context: dict[str, object]) -> None:  # type: ignore[override]
        """Map flat env vars into nested settings for convenience."""

        self.upload.max_bytes = _get_int_env("UPLOAD_MAX_BYTES", self.upload.max_bytes)
        policy = os.getenv("UPLOAD_MIME_POLICY")
        if policy and policy.strip().lower() in {"prefix", "allowlist"}:
            self.upload.mime_policy = policy.strip().lower()  # type: ignore[assignment]
        self.upload.allowed_mime = _get_csv_env("UPLOAD_ALLOWED_MIME", self.upload.allowed_mime)
        self.upload.validate_text = _get_bool_env("UPLOAD_VALIDATE_TEXT", self.upload.validate_text)
        self.upload.max_text_len = _get_int_env("UPLOAD_MAX_TEXT_LEN", self.upload.max_text_len)

        webhook_policy = os.getenv("N8N_WEBHOOK_POLICY")
        if webhook_policy and webhook_policy.strip().lower() in {"strict", "lenient"}:
            self.relay.webhook_policy = webhook_policy.strip().lower()  # type: ignore[assignment]
        raw_timeout = os.getenv("N8N_WEBHOOK_TIMEOUT_SECONDS")
        if raw_timeout:
            try:
                self.relay.webhook_timeout_seconds = float(raw_timeout)
            except ValueError:
                pass
        self.relay.stt_model = os.getenv("STT_MODEL", self.relay.stt_model)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL; DB_DSN wins over DB_PATH."""

        if self.db_dsn:
            return self.db_dsn
        return f"sqlite+aiosqlite:///{Path(self.db_path).expanduser()}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached Settings instance."""

    return Settings()  # type: ignore[call-arg]
