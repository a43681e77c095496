"""Clock sources supplying the current instant and the local calendar day."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class ClockSource(Protocol):
    """Supplies the current instant and the local day used for quota resets."""

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall clock bound to the user's local timezone."""

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self._tz = tz or timezone.utc

    @classmethod
    def for_zone(cls, name: str) -> "SystemClock":
        if name.upper() == "UTC":
            return cls(timezone.utc)
        return cls(ZoneInfo(name))

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().astimezone(self._tz).date()


class FixedClock:
    """Manually advanced clock for tests and deterministic replays."""

    def __init__(self, current: datetime, tz: Optional[tzinfo] = None) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current
        self._tz = tz or timezone.utc

    def now(self) -> datetime:
        return self._current

    def today(self) -> date:
        return self._current.astimezone(self._tz).date()

    def advance(self, **kwargs: float) -> datetime:
        self._current = self._current + timedelta(**kwargs)
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current
