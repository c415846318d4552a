from __future__ import annotations

"""Display helpers for the conversation history.

Everything here is presentational and tolerant of whatever text the ledger
holds; nothing raises on malformed rows.
"""

import html
import re
from typing import Iterable, Protocol

import orjson

from voicenotes.schemas.api_io import DisplayRecord
from voicenotes.utils.time import parse_timestamp


_MD_IMAGE = re.compile(r"!\[(.*?)\]\(.*?\)")
_MD_LINK = re.compile(r"\[(.*?)\]\(.*?\)")
_MD_MARKERS = re.compile(r"[*_~`>#-]")


class _Row(Protocol):
    id: int
    timestamp: str
    transcript: str
    n8n_response: str


def strip_markdown(md: str) -> str:
    """Drop emphasis/heading/quote markers, keep link and image text."""

    text = _MD_IMAGE.sub(r"\1", md)
    text = _MD_LINK.sub(r"\1", text)
    text = _MD_MARKERS.sub("", text)
    # n8n often double-escapes line breaks
    text = text.replace("\\n", "\n").replace("\\r", "")
    return text.strip()


def display_text(stored: str) -> str:
    """Counterpart text for one stored webhook reply.

    An object with a non-empty string ``output`` yields that output without
    Markdown; any other JSON value is pretty-printed; anything unparseable
    comes back verbatim.
    """

    try:
        parsed = orjson.loads(stored)
    except (TypeError, orjson.JSONDecodeError):
        return stored
    if parsed is None:
        return stored
    if isinstance(parsed, dict) and parsed.get("output"):
        output = parsed["output"]
        return strip_markdown(output) if isinstance(output, str) else stored
    try:
        return orjson.dumps(parsed, option=orjson.OPT_INDENT_2).decode()
    except orjson.JSONEncodeError:
        # orjson parses deeper nesting than it will serialize
        return stored


def time_label(timestamp: str) -> str:
    moment = parse_timestamp(timestamp)
    return moment.strftime("%H:%M:%S") if moment else timestamp


def to_display(row: _Row) -> DisplayRecord:
    return DisplayRecord(
        id=row.id,
        timestamp=row.timestamp,
        time_label=time_label(row.timestamp),
        transcript=row.transcript,
        counterpart=display_text(row.n8n_response),
    )


def render(records: Iterable[DisplayRecord]) -> str:
    """HTML fragment: counterpart bubble above the user's bubble, newest first."""

    items = []
    for rec in records:
        t = html.escape(rec.time_label)
        items.append(
            '<div class="conversation-item">'
            f'<div class="bubble n8n">{html.escape(rec.counterpart)}</div>'
            f'<div class="timestamp">{t}</div>'
            f'<div class="bubble user">{html.escape(rec.transcript)}</div>'
            f'<div class="timestamp">{t}</div>'
            "</div>"
        )
    return "\n".join(items)
