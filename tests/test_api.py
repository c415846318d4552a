from __future__ import annotations

from pathlib import Path

import orjson
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from voicenotes.db.ledger import ConversationLedger
from voicenotes.main import create_app
from voicenotes.services.n8n_client import WebhookError


def _audio(name: str = "recording.webm", data: bytes = b"\x1aE\xdf\xa3fake-webm", mime: str = "audio/webm"):
    return {"audio": (name, data, mime)}


def _artifacts(settings) -> list[Path]:
    return list(Path(settings.upload_dir).iterdir())


class _DownRelay:
    async def call(self, transcript, *, extra=None):
        raise WebhookError("N8N webhook failed: Service Unavailable")


class _BrokenLedger(ConversationLedger):
    def __init__(self, *, ping_ok: bool = True) -> None:
        self.ping_ok = ping_ok

    async def append(self, **_: object) -> int:
        raise OperationalError("INSERT INTO conversations", {}, Exception("database is locked"))

    async def list_all(self):
        return []

    async def ping(self) -> bool:
        return self.ping_ok


def test_root_liveness(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "running" in resp.text


def test_transcribe_success_writes_one_row(client, stt, webhook_stub, settings):
    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 200
    body = resp.json()
    assert body == {"transcript": stt.text, "n8nResponse": webhook_stub.json_body}

    rows = client.get("/api/conversations").json()
    assert len(rows) == 1
    assert rows[0]["transcript"] == stt.text
    assert orjson.loads(rows[0]["n8n_response"]) == webhook_stub.json_body
    assert rows[0]["id"] >= 1
    assert rows[0]["timestamp"].endswith("Z")

    # artifact existed while transcribing and is gone afterwards
    assert stt.seen_on_disk == [True]
    assert not stt.calls[0].path.exists()
    assert _artifacts(settings) == []


def test_webhook_receives_transcript_json(client, stt, webhook_stub):
    client.post("/api/transcribe", files=_audio(), headers={"X-Trace-Id": "trace-123"})

    assert len(webhook_stub.requests) == 1
    sent = webhook_stub.requests[0]
    assert sent.method == "POST"
    assert orjson.loads(sent.content) == {"transcript": stt.text}
    assert sent.headers["content-type"] == "application/json"
    assert sent.headers["x-trace-id"] == "trace-123"


def test_note_field_is_escaped_and_forwarded(client, webhook_stub):
    note = "  <b>call</b> mum  "
    resp = client.post("/api/transcribe", files=_audio(), data={"note": note})

    assert resp.status_code == 200
    payload = orjson.loads(webhook_stub.requests[0].content)
    assert payload["note"] == "&lt;b&gt;call&lt;/b&gt; mum"


def test_missing_audio_field_is_rejected(client, stt, settings):
    resp = client.post("/api/transcribe", data={"note": "hello"})

    assert resp.status_code == 400
    assert resp.json() == {"error": "No audio file provided"}
    assert stt.calls == []
    assert client.get("/api/conversations").json() == []
    assert _artifacts(settings) == []


def test_oversize_upload_never_reaches_provider(make_client, settings, stt):
    settings.upload.max_bytes = 1024
    client = make_client()

    resp = client.post("/api/transcribe", files=_audio(data=b"\0" * 4096))

    assert resp.status_code == 413
    assert "error" in resp.json()
    assert stt.calls == []
    assert _artifacts(settings) == []


def test_non_audio_mime_is_rejected_and_cleaned_up(client, stt, settings):
    resp = client.post("/api/transcribe", files=_audio(name="notes.txt", data=b"hello", mime="text/plain"))

    assert resp.status_code == 400
    assert resp.json() == {"error": "Only audio files are allowed"}
    assert stt.calls == []
    assert _artifacts(settings) == []


def test_allowlist_policy_rejects_unlisted_audio(make_client, settings, stt):
    settings.upload.mime_policy = "allowlist"
    client = make_client()

    rejected = client.post("/api/transcribe", files=_audio(name="clip.ogg", mime="audio/ogg"))
    accepted = client.post("/api/transcribe", files=_audio(mime="audio/webm;codecs=opus"))

    assert rejected.status_code == 400
    assert accepted.status_code == 200
    assert len(stt.calls) == 1


def test_provider_error_is_verbatim_in_development(client, stt, settings):
    stt.error = ConnectionError("network down")

    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 500
    assert resp.json() == {"error": "network down"}
    assert client.get("/api/conversations").json() == []
    assert _artifacts(settings) == []


def test_provider_error_is_generic_in_production(make_client, settings, stt):
    prod = settings.model_copy(update={"environment": "production"})
    stt.error = ConnectionError("network down")
    client = make_client(settings=prod)

    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 500
    assert resp.json() == {"error": "Error processing audio"}
    assert client.get("/api/conversations").json() == []
    assert _artifacts(settings) == []


def test_webhook_non_2xx_fails_without_row(client, webhook_stub, settings):
    webhook_stub.status_code = 502
    webhook_stub.text_body = "Bad Gateway"

    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 500
    assert resp.json()["error"].startswith("N8N webhook failed: 502")
    assert client.get("/api/conversations").json() == []
    assert _artifacts(settings) == []


def test_lenient_policy_stores_raw_reply(make_client, settings, webhook_stub):
    settings.relay.webhook_policy = "lenient"
    webhook_stub.status_code = 500
    webhook_stub.text_body = "workflow crashed"
    client = make_client()

    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 200
    assert resp.json()["n8nResponse"] == "workflow crashed"
    rows = client.get("/api/conversations").json()
    assert [r["n8n_response"] for r in rows] == ["workflow crashed"]


def test_webhook_error_from_custom_relay(make_client, settings):
    client = make_client(webhook=_DownRelay())
    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 500
    assert resp.json() == {"error": "N8N webhook failed: Service Unavailable"}
    assert _artifacts(settings) == []


def test_insert_failure_still_returns_result(make_client, settings, stt):
    client = make_client(ledger=_BrokenLedger())

    resp = client.post("/api/transcribe", files=_audio())

    assert resp.status_code == 200
    assert resp.json()["transcript"] == stt.text
    assert _artifacts(settings) == []


def test_history_is_newest_first(client, stt):
    for text in ("first", "second", "third"):
        stt.text = text
        assert client.post("/api/transcribe", files=_audio()).status_code == 200

    rows = client.get("/api/conversations").json()

    assert [r["transcript"] for r in rows] == ["third", "second", "first"]
    assert set(rows[0]) == {"id", "timestamp", "transcript", "n8n_response"}


def test_display_endpoints_strip_markdown(client):
    client.post("/api/transcribe", files=_audio())

    display = client.get("/api/conversations/display").json()
    assert display[0]["counterpart"] == "Noted. Call the bank at 9."

    fragment = client.get("/conversations")
    assert fragment.status_code == 200
    assert fragment.headers["content-type"].startswith("text/html")
    assert '<div class="bubble n8n">Noted. Call the bank at 9.</div>' in fragment.text


def test_health_reports_connected_database(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["environment"] == "development"
    assert body["uptime"] >= 0
    assert "timestamp" in body


def test_health_reports_storage_failure(make_client):
    client = make_client(ledger=_BrokenLedger(ping_ok=False))

    resp = client.get("/health")

    assert resp.status_code == 500
    assert resp.json()["database"] == "error"
    assert resp.json()["status"] == "unhealthy"


def test_responses_carry_trace_id(client):
    resp = client.get("/", headers={"X-Trace-Id": "abc"})
    assert resp.headers["x-trace-id"] == "abc"
    assert client.get("/").headers["x-trace-id"]


def test_unknown_route_is_json_error(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert "error" in resp.json()


def test_unreachable_database_aborts_startup(settings, stt, tmp_path):
    # a directory cannot be opened as a SQLite file
    cfg = settings.model_copy(update={"db_path": str(tmp_path), "db_auto_create": False})
    app = create_app(cfg, stt=stt, webhook=_DownRelay())

    with pytest.raises(Exception):
        with TestClient(app):
            pass
