"""Clock capability, so signing and verification never read ambient time directly."""

import datetime
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current UTC time."""

    def now(self) -> datetime.datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc)


class FixedClock:
    """A clock frozen at one instant. Naive datetimes are taken to be UTC."""

    def __init__(self, instant: datetime.datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=datetime.timezone.utc)
        self.instant = instant.astimezone(datetime.timezone.utc)

    def now(self) -> datetime.datetime:
        return self.instant

    def advance(self, delta: datetime.timedelta) -> None:
        self.instant = self.instant + delta


SYSTEM_CLOCK = SystemClock()
