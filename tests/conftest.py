from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from voicenotes.config.settings import Settings
from voicenotes.main import create_app
from voicenotes.services.intake import UploadArtifact
from voicenotes.services.n8n_client import N8nClient


WEBHOOK_URL = "https://n8n.example.com/webhook/voice"


@dataclass
class FakeSTT:
    text: str = "remind me to call the bank"
    error: Exception | None = None
    calls: list[UploadArtifact] = field(default_factory=list)
    seen_on_disk: list[bool] = field(default_factory=list)

    async def transcribe(self, artifact: UploadArtifact) -> str:
        self.calls.append(artifact)
        self.seen_on_disk.append(artifact.path.exists())
        if self.error is not None:
            raise self.error
        return self.text


@dataclass
class WebhookStub:
    """httpx.MockTransport handler that records what n8n would receive."""

    status_code: int = 200
    json_body: Any = field(default_factory=lambda: {"output": "**Noted.** Call the bank at 9."})
    text_body: str | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text_body is not None:
            return httpx.Response(self.status_code, text=self.text_body)
        return httpx.Response(self.status_code, json=self.json_body)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        openai_api_key="sk-test",
        n8n_webhook_url=WEBHOOK_URL,
        environment="development",
        db_path=str(tmp_path / "data" / "conversations.db"),
        upload_dir=str(tmp_path / "uploads"),
        _env_file=None,
    )


@pytest.fixture
def stt() -> FakeSTT:
    return FakeSTT()


@pytest.fixture
def webhook_stub() -> WebhookStub:
    return WebhookStub()


@pytest.fixture
def make_client(settings: Settings, stt: FakeSTT, webhook_stub: WebhookStub) -> Iterator[Callable[..., TestClient]]:
    clients: list[TestClient] = []

    def _make(**overrides: Any) -> TestClient:
        cfg = overrides.pop("settings", settings)
        kwargs: dict[str, Any] = {
            "stt": stt,
            "webhook": N8nClient(
                str(cfg.n8n_webhook_url),
                policy=cfg.relay.webhook_policy,
                transport=httpx.MockTransport(webhook_stub),
            ),
        }
        kwargs.update(overrides)
        client = TestClient(create_app(cfg, **kwargs))
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
