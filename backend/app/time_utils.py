"""UTC helpers shared by the API layer and the match event log.

Columns are stored as naive UTC datetimes; event timestamps are ISO 8601
strings with a trailing ``Z``.
"""

from __future__ import annotations

from datetime import datetime, timezone


def require_utc(value: datetime | None, *, field_name: str = "timestamp") -> datetime | None:
    """Reject naive datetimes and normalize aware ones to UTC.

    Raises:
        ValueError: If ``value`` is timezone-naive.
    """

    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{field_name} must include a timezone offset")
    return value.astimezone(timezone.utc)


def coerce_utc(value: datetime | None) -> datetime | None:
    """Read a stored datetime back as aware UTC (naive means UTC)."""

    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime | None) -> datetime | None:
    value = coerce_utc(value)
    return value.replace(tzinfo=None) if value is not None else None


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_isoformat(value: datetime | None = None) -> str:
    """``2024-05-01T10:00:00.123456Z`` for ``value`` (default: now)."""

    moment = coerce_utc(value) or datetime.now(timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")
