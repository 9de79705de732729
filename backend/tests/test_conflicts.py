"""
Tests for conflicts.py - classifying a proposed task against the schedule.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conflicts import OutcomeKind, resolve
from errors import InvalidTimeFormat
from intervals import event_interval, overlaps
from models import ExternalBlockedEvent, Priority
from conftest import make_task


def event(name="Flight", date="2025-11-24", start=None, end=None):
    return ExternalBlockedEvent(name=name, date=date, start_time=start, end_time=end, source_id=f"g-{name}")


class TestAccepted:
    """Tests for proposals with no conflicts."""

    def test_empty_schedule(self):
        outcome = resolve(make_task("Gym"), [], [])
        assert outcome.kind == OutcomeKind.ACCEPTED
        assert outcome.alternatives == []

    def test_back_to_back_is_accepted(self):
        existing = [make_task("Standup", start="09:00", end="10:00")]
        outcome = resolve(make_task("Review", start="10:00", end="11:00"), existing, [])
        assert outcome.kind == OutcomeKind.ACCEPTED

    def test_other_day_is_accepted(self):
        existing = [make_task("Standup", date="2025-11-25")]
        assert resolve(make_task("Review"), existing, []).kind == OutcomeKind.ACCEPTED


class TestDisplaces:
    """Tests for higher-priority proposals."""

    def test_high_displaces_medium(self):
        """High at 20:00-21:00 displaces the medium task in the same slot."""
        existing = [make_task("Reading", start="20:00", end="21:00", priority=Priority.MEDIUM, id="t1")]
        proposed = make_task("Call mom", start="20:00", end="21:00", priority=Priority.HIGH)

        outcome = resolve(proposed, existing, [])

        assert outcome.kind == OutcomeKind.DISPLACES
        assert [d.task.name for d in outcome.displaced] == ["Reading"]
        options = outcome.displaced[0].options
        assert options
        for slot in options:
            assert not overlaps(slot, outcome.interval)
            assert slot.duration == 60

    def test_displaced_options_avoid_everything_else(self):
        existing = [
            make_task("Nap", start="09:00", end="10:00", priority=Priority.LOW, id="t1"),
            make_task("Lunch", start="10:00", end="11:00", priority=Priority.HIGH, id="t2"),
        ]
        events = [event("Dentist", start="11:00", end="12:00")]
        proposed = make_task("Deep work", start="09:00", end="10:00", priority=Priority.MEDIUM)

        outcome = resolve(proposed, existing, events)

        assert outcome.kind == OutcomeKind.DISPLACES
        assert [s.label() for s in outcome.displaced[0].options] == [
            "12:00-13:00", "13:00-14:00", "14:00-15:00"]

    def test_low_priority_never_displaces(self):
        """A low task cannot displace anything, even another low task."""
        existing = [make_task("Nap", priority=Priority.LOW)]
        outcome = resolve(make_task("Walk", priority=Priority.LOW), existing, [])
        assert outcome.kind == OutcomeKind.REJECTED


class TestRejected:
    """Tests for proposals that yield to existing tasks."""

    def test_equal_priority_rejected(self):
        """Medium at 14:00-15:00 against an existing medium in the same slot."""
        existing = [make_task("Sync", start="14:00", end="15:00", id="t1")]
        proposed = make_task("Planning", start="14:00", end="15:00")

        outcome = resolve(proposed, existing, [])

        assert outcome.kind == OutcomeKind.REJECTED
        assert outcome.displaced == []
        assert [t.name for t in outcome.conflicting] == ["Sync"]
        assert outcome.alternatives
        sync = outcome.conflicting[0]
        for slot in outcome.alternatives:
            assert slot.duration == 60
            assert slot.label() != sync.slot_label()
        assert existing[0].start_time == "14:00"

    def test_mixed_priorities_rejected(self):
        """One lower and one equal conflict: the proposal does not displace either."""
        existing = [
            make_task("Nap", start="14:00", end="14:30", priority=Priority.LOW, id="t1"),
            make_task("Sync", start="14:30", end="15:00", priority=Priority.HIGH, id="t2"),
        ]
        proposed = make_task("Launch", start="14:00", end="15:00", priority=Priority.HIGH)
        outcome = resolve(proposed, existing, [])
        assert outcome.kind == OutcomeKind.REJECTED
        assert {t.name for t in outcome.conflicting} == {"Nap", "Sync"}


class TestBlocked:
    """Tests for proposals overlapping external events."""

    def test_all_day_event_blocks_regardless_of_priority(self):
        events = [event("Thanksgiving trip", date="2025-11-25")]
        for priority in Priority:
            for start, end in (("00:00", "01:00"), ("12:00", "13:00"), ("22:00", "23:00")):
                proposed = make_task("Work", date="2025-11-25", start=start, end=end, priority=priority)
                outcome = resolve(proposed, [], events)
                assert outcome.kind == OutcomeKind.BLOCKED
                assert outcome.blocking_events == ["Thanksgiving trip"]
                assert outcome.alternatives == []

    def test_timed_event_blocks_and_suggests_alternatives(self):
        events = [event("Dentist", start="09:00", end="10:00")]
        existing = [make_task("Standup", start="10:00", end="10:30")]
        proposed = make_task("Emails", start="09:30", end="10:00", priority=Priority.HIGH)

        outcome = resolve(proposed, existing, events)

        assert outcome.kind == OutcomeKind.BLOCKED
        assert [s.label() for s in outcome.alternatives] == ["10:30-11:00", "11:00-11:30", "11:30-12:00"]
        dentist = event_interval(events[0])
        assert all(not overlaps(s, dentist) for s in outcome.alternatives)

    def test_blocked_wins_over_displacement(self):
        """Overlapping both an event and a lower-priority task is Blocked, never Displaces."""
        events = [event("Flight", start="13:00", end="15:00")]
        existing = [make_task("Nap", start="13:00", end="14:00", priority=Priority.LOW)]
        proposed = make_task("Launch", start="13:00", end="14:00", priority=Priority.HIGH)
        assert resolve(proposed, existing, events).kind == OutcomeKind.BLOCKED


class TestInvalidInput:
    """Tests for unparseable schedule data."""

    def test_invalid_proposed_time(self):
        with pytest.raises(InvalidTimeFormat):
            resolve(make_task("Bad", start="25:00", end="26:00"), [], [])
