"""
Clock -- the only source of "now" and "today".

Responsibility:
    Services read timestamps (``last_modified``, audit ``timestamp``,
    ``distributed_at``) and the current date for expiry checks from an
    injected Clock, never from ``datetime.now()``.  Engines go further and
    take ``as_of`` as a plain argument.

Architecture position:
    Kernel > Domain.  SystemClock is the single sanctioned read of the wall
    clock; the other clocks exist for tests and replays.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

DEFAULT_START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` is timezone-aware; ``today()`` is the UTC calendar date."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        # Expiration dates are UTC calendar dates
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``set_today`` moves to noon UTC of a given date, which is the usual way
    to stage "this Lot expired yesterday" situations.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._current = moment

    def set_today(self, day: date) -> None:
        self._current = datetime(day.year, day.month, day.day, 12, 0, 0, tzinfo=timezone.utc)

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current


class TickingClock(DeterministicClock):
    """
    Every read returns a distinct, later instant (one ``step`` apart).

    Keeps "newest first" listings deterministic when several writes happen
    in one test.  Safe to share between threads.
    """

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        super().__init__(start)
        self._step = step
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._current
            self._current = current + self._step
        return current
