from __future__ import annotations

"""Time utilities: utcnow and ISO timestamps for ledger rows."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return current UTC datetime (timezone-aware)."""

    return datetime.now(timezone.utc)


def iso_timestamp(moment: datetime | None = None) -> str:
    """Return an ISO-8601 UTC string with millisecond precision and a Z suffix."""

    moment = (moment or utcnow()).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime | None:
    """Parse a stored ISO timestamp; None when the text is not a timestamp."""

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
