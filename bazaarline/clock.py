from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock that only moves when told to. Used by tests and seeding."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so stored and clock values compare."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
