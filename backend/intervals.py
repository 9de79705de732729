"""Time intervals on a calendar date, and the parsing that builds them.

Times are minutes since midnight. An interval is half-open, so a task ending
at 11:00 and another starting at 11:00 do not overlap.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime

from errors import InvalidTimeFormat
from models import ExternalBlockedEvent, Task

MINUTES_PER_DAY = 24 * 60
LAST_MINUTE = MINUTES_PER_DAY - 1

# 14:00, 9:30, 14:00:00, 3pm, 9:30am, 12 a.m.
_TIME_RE = re.compile(
    r"^(\d{1,2})(?::(\d{2})(?::\d{2})?)?\s*(?:([ap])\.?m\.?)?$",
    re.IGNORECASE,
)
_ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ](.+)$")


@dataclass(frozen=True)
class TimeInterval:
    date: date
    start: int
    end: int

    def __post_init__(self):
        if not (0 <= self.start <= LAST_MINUTE and 0 <= self.end <= LAST_MINUTE):
            raise InvalidTimeFormat(
                f"Interval {self.start}-{self.end} is outside the day")
        if self.end <= self.start:
            raise InvalidTimeFormat(
                f"End time {format_minutes(self.end)} is not after start time {format_minutes(self.start)}")

    @property
    def duration(self) -> int:
        return self.end - self.start

    def label(self) -> str:
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """True if the intervals share any minute on the same date.

    Covers a starting inside b, a ending inside b, and a containing b.
    Back-to-back intervals do not overlap.
    """
    if a.date != b.date:
        return False
    return a.start < b.end and b.start < a.end


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(value: str) -> int:
    """Parse a time of day into minutes since midnight.

    Accepts 24-hour times, 12-hour times with am/pm, and ISO datetimes
    (only the time portion is used).
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidTimeFormat(f"Invalid time: {value!r}")

    text = value.strip()
    iso = _ISO_DATETIME_RE.match(text)
    if iso:
        text = iso.group(1)
        # Drop a trailing UTC offset or Z
        text = re.split(r"[Zz+]|-(?=\d{2}:?\d{2}$)", text)[0]

    match = _TIME_RE.match(text)
    if not match:
        raise InvalidTimeFormat(f"Invalid time: {value!r}")

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    period = (match.group(3) or "").lower()

    if minutes >= 60:
        raise InvalidTimeFormat(f"Invalid time: {value!r}")

    if period:
        if not 1 <= hours <= 12:
            raise InvalidTimeFormat(f"Invalid time: {value!r}")
        if period == "p" and hours != 12:
            hours += 12
        elif period == "a" and hours == 12:
            hours = 0
    elif hours > 23:
        raise InvalidTimeFormat(f"Invalid time: {value!r}")

    return hours * 60 + minutes


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD (or the date portion of an ISO datetime)."""
    if not isinstance(value, str):
        raise InvalidTimeFormat(f"Invalid date: {value!r}")
    text = value.strip()
    if len(text) > 10 and text[10] not in "T ":
        raise InvalidTimeFormat(f"Invalid date: {value!r}")
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except ValueError:
        raise InvalidTimeFormat(f"Invalid date: {value!r}") from None


def parse_slot(label: str, day: date) -> TimeInterval:
    """Parse an "HH:MM-HH:MM" slot label on the given date."""
    start, sep, end = label.partition("-")
    if not sep:
        raise InvalidTimeFormat(f"Invalid slot: {label!r}")
    return TimeInterval(day, parse_time(start), parse_time(end))


def task_interval(task: Task) -> TimeInterval:
    return TimeInterval(
        parse_date(task.date),
        parse_time(task.start_time),
        parse_time(task.end_time),
    )


def event_interval(event: ExternalBlockedEvent) -> TimeInterval:
    """An event without start/end time blocks the entire day."""
    day = parse_date(event.date)
    if event.all_day:
        return TimeInterval(day, 0, LAST_MINUTE)
    return TimeInterval(day, parse_time(event.start_time), parse_time(event.end_time))
