from __future__ import annotations

"""HTTP client for the n8n workflow webhook."""

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Mapping

import httpx
import orjson
import structlog

from voicenotes.config.settings import Settings
from voicenotes.services.logging import get_logger


class WebhookError(Exception):
    """The webhook call failed or its reply was unusable under the strict policy."""


@dataclass
class WebhookReply:
    data: Any
    stored: str
    status_code: int


def _is_ascii(value: str) -> bool:
    try:
        value.encode("ascii")
        return True
    except UnicodeEncodeError:
        return False


class N8nClient:
    """POSTs ``{"transcript": ...}`` to n8n and normalises the reply.

    strict: a non-2xx status or a non-JSON body raises WebhookError.
    lenient: the body is parsed as JSON whatever the status; if that fails the
    raw text is both the returned data and the stored value.
    """

    def __init__(
        self,
        url: str,
        *,
        policy: Literal["strict", "lenient"] = "strict",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.policy = policy
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "N8nClient":
        return cls(
            str(settings.n8n_webhook_url),
            policy=settings.relay.webhook_policy,
            timeout=settings.relay.webhook_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        trace_id = structlog.contextvars.get_contextvars().get("trace_id")
        if trace_id:
            # ensure header value is ASCII-safe
            if _is_ascii(str(trace_id)):
                headers["X-Trace-Id"] = str(trace_id)
            else:
                get_logger().warning("skip_trace_id_non_ascii")
        return headers

    async def call(self, transcript: str, *, extra: Mapping[str, str] | None = None) -> WebhookReply:
        payload: dict[str, Any] = {"transcript": transcript}
        if extra:
            payload.update({k: v for k, v in extra.items() if k != "transcript"})

        logger = get_logger().bind(policy=self.policy)
        start = perf_counter()
        logger.info("n8n_request_start", url=self.url)
        try:
            resp = await self._client.post(self.url, content=orjson.dumps(payload), headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("n8n_transport_error", error=str(exc), error_type=exc.__class__.__name__)
            raise WebhookError(f"N8N webhook failed: {exc.__class__.__name__}: {exc}") from exc

        elapsed_ms = int((perf_counter() - start) * 1000)
        content_type = resp.headers.get("content-type", "")
        if self.policy == "strict" and not resp.is_success:
            logger.warning("n8n_bad_status", status=resp.status_code, elapsed_ms=elapsed_ms)
            raise WebhookError(f"N8N webhook failed: {resp.status_code} {resp.reason_phrase}")

        try:
            data = orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            # Log brief preview to help diagnostics
            logger.warning(
                "n8n_bad_json",
                status=resp.status_code,
                content_type=content_type,
                preview=resp.text[:200],
            )
            if self.policy == "strict":
                raise WebhookError("N8N webhook failed: response is not valid JSON") from exc
            return WebhookReply(data=resp.text, stored=resp.text, status_code=resp.status_code)

        try:
            stored = orjson.dumps(data).decode()
        except orjson.JSONEncodeError:
            # too deeply nested to re-serialize; the body itself is valid JSON
            stored = resp.text
        logger.info("n8n_request_ok", status=resp.status_code, elapsed_ms=elapsed_ms)
        return WebhookReply(data=data, stored=stored, status_code=resp.status_code)

    async def aclose(self) -> None:
        await self._client.aclose()
