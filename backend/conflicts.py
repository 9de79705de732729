"""Classify a proposed task against the user's tasks and external events."""

from dataclasses import dataclass, field
from enum import Enum

from intervals import TimeInterval, event_interval, overlaps, task_interval
from logger import get_logger
from models import ExternalBlockedEvent, Priority, Task
from scheduling import find_slots, priority_level, yields_to

log = get_logger("conflicts")


class OutcomeKind(str, Enum):
    ACCEPTED = "accepted"
    BLOCKED = "blocked"  # overlaps an immutable external event
    DISPLACES = "displaces"  # accepted; lower-priority tasks must move
    REJECTED = "rejected"  # yields to an existing task


@dataclass
class Displacement:
    """A lower-priority task pushed out by the proposal, with slots it could move to."""
    task: Task
    options: list[TimeInterval] = field(default_factory=list)


@dataclass
class ConflictOutcome:
    kind: OutcomeKind
    task: Task
    interval: TimeInterval
    blocking_events: list[str] = field(default_factory=list)
    conflicting: list[Task] = field(default_factory=list)
    displaced: list[Displacement] = field(default_factory=list)
    alternatives: list[TimeInterval] = field(default_factory=list)


def resolve(
    proposed: Task,
    existing_tasks: list[Task],
    external_events: list[ExternalBlockedEvent],
) -> ConflictOutcome:
    """
    Decide what happens to `proposed`. The first matching rule wins:
    1. Overlaps an external event: Blocked, with alternatives for the proposal.
    2. Overlaps no local task: Accepted.
    3. Every overlapping task yields to it (and it is at least medium):
       Displaces, with alternatives for each displaced task.
    4. Otherwise: Rejected, with alternatives for the proposal.

    Raises InvalidTimeFormat if any date or time involved cannot be parsed.
    """
    interval = task_interval(proposed)
    day = interval.date

    local = [(task, task_interval(task)) for task in existing_tasks]
    local = [(task, iv) for task, iv in local if iv.date == day]
    events = [(event, event_interval(event)) for event in external_events]
    events = [(event, iv) for event, iv in events if iv.date == day]
    event_blockers = [iv for _, iv in events]

    blocking = [event.name for event, iv in events if overlaps(interval, iv)]
    if blocking:
        blockers = [iv for _, iv in local] + event_blockers
        outcome = ConflictOutcome(
            OutcomeKind.BLOCKED,
            proposed,
            interval,
            blocking_events=blocking,
            alternatives=find_slots(day, interval.duration, blockers),
        )
        _log_outcome(outcome)
        return outcome

    overlapping = [(i, task) for i, (task, iv) in enumerate(local) if overlaps(interval, iv)]
    if not overlapping:
        outcome = ConflictOutcome(OutcomeKind.ACCEPTED, proposed, interval)
        _log_outcome(outcome)
        return outcome

    conflicting = [task for _, task in overlapping]
    can_displace = (
        priority_level(proposed.priority) > priority_level(Priority.LOW)
        and all(yields_to(task.priority, proposed.priority) for task in conflicting)
    )

    if can_displace:
        displaced = []
        for index, task in overlapping:
            # Everything else stays put, including the proposal in its new slot
            blockers = [iv for j, (_, iv) in enumerate(local) if j != index]
            blockers += event_blockers
            blockers.append(interval)
            displaced.append(Displacement(
                task=task,
                options=find_slots(day, local[index][1].duration, blockers),
            ))
        outcome = ConflictOutcome(
            OutcomeKind.DISPLACES,
            proposed,
            interval,
            conflicting=conflicting,
            displaced=displaced,
        )
        _log_outcome(outcome)
        return outcome

    blockers = [iv for _, iv in local] + event_blockers
    outcome = ConflictOutcome(
        OutcomeKind.REJECTED,
        proposed,
        interval,
        conflicting=conflicting,
        alternatives=find_slots(day, interval.duration, blockers),
    )
    _log_outcome(outcome)
    return outcome


def _log_outcome(outcome: ConflictOutcome) -> None:
    log.debug(
        "conflict_resolved",
        kind=outcome.kind.value,
        task=outcome.task.name,
        date=outcome.task.date,
        slot=outcome.interval.label(),
        conflicting=[task.name for task in outcome.conflicting],
        blocking_events=outcome.blocking_events,
    )
