"""
System clock with a virtual-time mode for tests and backfills.

All timestamps in the ledger are naive UTC.
"""
import calendar
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class Clock:
    """Singleton for managing system time."""

    _instance = None
    _virtual_time: Optional[datetime] = None
    _is_test_mode: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def now(self) -> datetime:
        """Get current system time (real or virtual)."""
        if self._is_test_mode and self._virtual_time:
            return self._virtual_time
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def set_time(self, new_time: datetime):
        """Set virtual time."""
        if new_time.tzinfo is not None:
            new_time = new_time.astimezone(timezone.utc).replace(tzinfo=None)
        self._is_test_mode = True
        self._virtual_time = new_time
        logger.info(f"Virtual time set to {new_time}")

    def advance(self, days: int = 0, hours: int = 0, minutes: int = 0, seconds: int = 0):
        """Advance virtual time forward."""
        if not self._is_test_mode:
            raise ValueError("Cannot advance time when not in test mode")

        self._virtual_time += timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
        logger.info(f"Time advanced to {self._virtual_time}")

    def reset(self):
        """Return to real time."""
        self._is_test_mode = False
        self._virtual_time = None


# Global instance
clock = Clock()


# ===========================================================
# CALENDAR HELPERS
# ===========================================================

def add_months(moment: datetime, months: int) -> datetime:
    """Same day-of-month `months` later, clamped to the month's last day."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def whole_months_between(start: datetime, end: datetime) -> int:
    """Calendar-month difference, ignoring the day of month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def month_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, add_months(start, 1)
