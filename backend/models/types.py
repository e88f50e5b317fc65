from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timestamp stored as UTC and always read back timezone-aware.

    SQLite keeps only the wall-clock text, so values are converted to UTC
    before binding; that keeps ORDER BY on the column in absolute time.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)
