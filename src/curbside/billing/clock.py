"""Clock port used by the billing services."""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime


class Clock(ABC):
    """Source of the current calendar date."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timestamp (timezone-aware)."""
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """Clock pinned to a moment; tests move it explicitly."""

    def __init__(self, moment: datetime | date) -> None:
        self.set(moment)

    def set(self, moment: datetime | date) -> None:
        if not isinstance(moment, datetime):
            moment = datetime(moment.year, moment.month, moment.day, 12, tzinfo=UTC)
        self._moment = moment

    def now(self) -> datetime:
        return self._moment
