from __future__ import annotations

import pytest
from pydantic import ValidationError

from voicenotes.config.settings import Settings
from voicenotes.utils.time import iso_timestamp, parse_timestamp


BASE = {"openai_api_key": "sk-test", "n8n_webhook_url": "https://n8n.example.com/webhook/x", "_env_file": None}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("NODE_ENV", "APP_ENV", "ENVIRONMENT", "DB_PATH", "DB_DSN", "PORT", "LOG_LEVEL",
                 "UPLOAD_MAX_BYTES", "UPLOAD_MIME_POLICY", "N8N_WEBHOOK_POLICY"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    s = Settings(**BASE)
    assert s.port == 3000
    assert s.environment == "development"
    assert not s.is_production
    assert s.upload.max_bytes == 10 * 1024 * 1024
    assert s.upload.mime_policy == "prefix"
    assert s.relay.webhook_policy == "strict"
    assert s.relay.stt_model == "gpt-4o-transcribe"
    assert s.database_url == "sqlite+aiosqlite:///data/conversations.db"


def test_dsn_overrides_path():
    s = Settings(**BASE, db_path="/var/lib/vn/c.db")
    assert s.database_url == "sqlite+aiosqlite:////var/lib/vn/c.db"
    s = Settings(**BASE, db_dsn="postgresql+asyncpg://u:p@db/voicenotes")
    assert s.database_url == "postgresql+asyncpg://u:p@db/voicenotes"


def test_env_mapping(monkeypatch):
    monkeypatch.setenv("NODE_ENV", "production")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("UPLOAD_MAX_BYTES", "2048")
    monkeypatch.setenv("UPLOAD_MIME_POLICY", "allowlist")
    monkeypatch.setenv("N8N_WEBHOOK_POLICY", "lenient")

    s = Settings(**BASE)

    assert s.is_production
    assert s.port == 8080
    assert s.upload.max_bytes == 2048
    assert s.upload.mime_policy == "allowlist"
    assert s.relay.webhook_policy == "lenient"


def test_unknown_environment_runs_as_development(monkeypatch):
    monkeypatch.setenv("NODE_ENV", "test")
    assert Settings(**BASE).environment == "development"


def test_invalid_log_level():
    with pytest.raises(ValidationError):
        Settings(**BASE, log_level="loud")


def test_iso_timestamp_round_trip():
    stamp = iso_timestamp()
    assert stamp.endswith("Z") and len(stamp) == 24
    assert parse_timestamp(stamp) is not None
