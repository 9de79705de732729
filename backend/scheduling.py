"""Priority ordering and free-slot search within the working day."""

from datetime import date
from typing import Iterable, Optional, Union

from errors import InvalidTimeFormat
from intervals import TimeInterval
from models import Priority

PRIORITY_LEVELS = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
}

# Working window in minutes since midnight: [09:00, 18:00)
WORK_DAY_START = 9 * 60
WORK_DAY_END = 18 * 60
MAX_SLOT_RESULTS = 3


def normalize_priority(value: Union[Priority, str, None]) -> Priority:
    """Map free-form priority text onto the enum. Unknown or missing is medium."""
    if isinstance(value, Priority):
        return value
    if isinstance(value, str):
        try:
            return Priority(value.strip().lower())
        except ValueError:
            pass
    return Priority.MEDIUM


def priority_level(value: Union[Priority, str, None]) -> int:
    return PRIORITY_LEVELS[normalize_priority(value)]


def yields_to(a: Union[Priority, str, None], b: Union[Priority, str, None]) -> bool:
    """True if a task of priority a gives way to one of priority b.

    Equal priorities never yield in either direction.
    """
    return priority_level(a) < priority_level(b)


def find_slots(
    day: date,
    duration: int,
    blocked: Iterable[TimeInterval],
    max_results: Optional[int] = MAX_SLOT_RESULTS,
) -> list[TimeInterval]:
    """
    Greedy first-fit search for free slots of `duration` minutes on `day`.
    Sweeps a cursor from the start of the working window past each blocked
    interval in start order, filling every gap with back-to-back candidates
    rather than offering one candidate per gap, so a free morning still
    yields several choices.
    Blocked intervals on other dates are ignored.
    Returns an empty list when the duration exceeds the working window.
    """
    if duration <= 0:
        raise InvalidTimeFormat(f"Duration must be positive, got {duration}")

    slots: list[TimeInterval] = []
    if max_results is not None and max_results <= 0:
        return slots
    if duration > WORK_DAY_END - WORK_DAY_START:
        return slots

    day_blocked = sorted(
        (b for b in blocked if b.date == day),
        key=lambda b: (b.start, b.end),
    )
    # The end of the working window acts as a final zero-length blocker
    boundaries = [(b.start, b.end) for b in day_blocked]
    boundaries.append((WORK_DAY_END, WORK_DAY_END))

    cursor = WORK_DAY_START
    for gap_end, blocked_until in boundaries:
        limit = min(gap_end, WORK_DAY_END)
        while cursor + duration <= limit:
            slots.append(TimeInterval(day, cursor, cursor + duration))
            if max_results is not None and len(slots) >= max_results:
                return slots
            cursor += duration
        cursor = max(cursor, blocked_until)
        if cursor + duration > WORK_DAY_END:
            break

    return slots
