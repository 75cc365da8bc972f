"""Injectable time source for period and day derivation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

from src.core.constants import DAY_FORMAT, PERIOD_FORMAT


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a given instant. ``advance`` moves it forward."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def advance(self, **kwargs: float) -> None:
        self._instant += timedelta(**kwargs)


def period_of(moment: datetime) -> str:
    """Billing period (``YYYY-MM``) containing ``moment``."""
    return moment.astimezone(timezone.utc).strftime(PERIOD_FORMAT)


def day_of(moment: datetime) -> str:
    """Calendar day (``YYYY-MM-DD``) containing ``moment``."""
    return moment.astimezone(timezone.utc).strftime(DAY_FORMAT)
