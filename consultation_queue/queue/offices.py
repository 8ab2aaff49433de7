"""Office availability windows and capacity for each queue."""
from dataclasses import dataclass
from datetime import datetime, time, tzinfo
from typing import Dict, FrozenSet, Optional
from zoneinfo import ZoneInfo

from consultation_queue import settings
from consultation_queue.queue.models import QueueType

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY = range(5)


def office_timezone() -> ZoneInfo:
    return ZoneInfo(settings.OFFICE_TIMEZONE)


def local_time(at: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Convert an aware datetime to office time; naive values are taken as office time already."""
    if at.tzinfo is None:
        return at
    return at.astimezone(tz or office_timezone())


@dataclass(frozen=True)
class Office:
    title: str
    days: FrozenSet[int]  # datetime.weekday() values
    opens: time
    closes: time
    max_persons: int
    session_minutes: int

    def is_open(self, at: datetime, tz: Optional[tzinfo] = None) -> bool:
        """Whether `at` falls inside the consultation window (close is exclusive)."""
        at = local_time(at, tz)
        return at.weekday() in self.days and self.opens <= at.time() < self.closes


OFFICES: Dict[QueueType, Office] = {
    QueueType.OVERSEER: Office(
        title="Overseer's Office",
        days=frozenset({MONDAY}),
        opens=time(14, 0),
        closes=time(16, 0),
        max_persons=12,
        session_minutes=10,
    ),
    QueueType.PASTOR: Office(
        title="Pastor's Office",
        days=frozenset({MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY}),
        opens=time(9, 0),
        closes=time(12, 0),
        max_persons=50,
        session_minutes=10,
    ),
}


def get_office(queue_type) -> Office:
    return OFFICES[QueueType(queue_type)]


def is_open(queue_type, at: datetime) -> bool:
    return get_office(queue_type).is_open(at)
