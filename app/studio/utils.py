from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime(timezone=False) columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_version(previous: datetime | None) -> datetime:
    """A fresh updated_at that is strictly later than the previous one."""
    now = utcnow()
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(raw: object) -> datetime | None:
    """Parse an ISO-8601 timestamp sent by a client. Raises ValueError on garbage."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", (text or "").strip().lower()).strip("-")
