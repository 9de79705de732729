"""
Single entry point for a user turn: answer a pending confirmation, or
interpret the request and either commit it or hold it for confirmation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import config
import database
from assistant import TextCompleter, extract, fallback_proposal, recheck_pending, resolve_timezone
from confirmation import TurnKind, cancelled_proposal, classify_turn, defer, requires_confirmation
from errors import CalendarUnavailable, ExternalMirrorFailure, InvalidTimeFormat, RepositoryFailure
from google_calendar import CalendarSource
from intervals import TimeInterval, format_minutes, overlaps, parse_date, parse_slot, task_interval
from logger import get_logger
from models import Message, PendingBatch, PlannedMove, ProposalStatus, ScheduleProposal, Task

log = get_logger("turns")

GENERIC_ERROR_MESSAGE = "Something went wrong while handling your request. Please try again."
CALENDAR_ERROR_MESSAGE = "I couldn't read your calendar right now. Please try again in a moment."


@dataclass
class CommitResult:
    created: list[Task] = field(default_factory=list)
    moved: list[Task] = field(default_factory=list)
    deleted: list[Task] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _mirror(calendar: CalendarSource, user_id: int, task: Task, timezone_name: str) -> Task:
    """Best-effort copy of a committed task to the external calendar."""
    try:
        event_id = calendar.mirror_task(user_id, task, timezone_name)
    except ExternalMirrorFailure as e:
        log.warning("calendar_mirror_failed", task_id=task.id, error=str(e))
        return task
    if not event_id:
        return task
    try:
        return database.update_task_db(task.id, external_link_id=event_id) or task
    except RepositoryFailure as e:
        log.warning("calendar_link_not_saved", task_id=task.id, error=str(e))
        return task


def _remove_mirror(calendar: CalendarSource, user_id: int, task: Task) -> None:
    if not task.external_link_id:
        return
    try:
        calendar.remove_mirror(user_id, task.external_link_id)
    except ExternalMirrorFailure as e:
        log.warning("calendar_mirror_failed", task_id=task.id, error=str(e))


def _first_free_slot(move: PlannedMove, claimed: list[TimeInterval]) -> Optional[TimeInterval]:
    day = parse_date(move.date)
    for option in move.options:
        slot = parse_slot(option, day)
        if not any(overlaps(slot, other) for other in claimed):
            return slot
    return None


def commit_batch(
    batch: PendingBatch,
    user_id: int,
    timezone_name: str,
    calendar: CalendarSource,
) -> CommitResult:
    """
    Apply a batch to the repository: deletions, then moves, then creations.
    Each operation stands alone; a failed one is reported and the rest continue.
    Tasks already present with the same name, date and times are not created again.
    """
    result = CommitResult()
    owned = {task.id for task in database.list_tasks(user_id)}

    for task_id in batch.delete_ids:
        if task_id not in owned:
            log.warning("task_not_owned", op="delete", task_id=task_id, user_id=user_id)
            continue
        try:
            deleted = database.delete_task_db(task_id)
        except RepositoryFailure as e:
            log.error("task_commit_failed", op="delete", task_id=task_id, error=str(e))
            result.errors.append(str(e))
            continue
        if deleted is None:
            continue
        log.info("task_deleted", task_id=task_id, name=deleted.name)
        result.deleted.append(deleted)
        _remove_mirror(calendar, user_id, deleted)

    # New tasks keep their slots; displaced tasks take the first option nobody else claimed
    claimed = []
    for task in batch.tasks:
        try:
            claimed.append(task_interval(task))
        except InvalidTimeFormat:
            continue

    for move in batch.moves:
        if move.task_id not in owned:
            log.warning("task_not_owned", op="move", task_id=move.task_id, user_id=user_id)
            continue
        try:
            current = database.get_task_db(move.task_id)
            if current is None:
                continue
            slot = _first_free_slot(move, claimed)
            if slot is None:
                database.delete_task_db(move.task_id)
                log.info("task_deleted", task_id=move.task_id, name=move.name, reason="no_free_slot")
                result.deleted.append(current)
                _remove_mirror(calendar, user_id, current)
                continue
            moved = database.update_task_db(
                move.task_id,
                start_time=format_minutes(slot.start),
                end_time=format_minutes(slot.end),
            )
        except (RepositoryFailure, InvalidTimeFormat) as e:
            log.error("task_commit_failed", op="move", task_id=move.task_id, error=str(e))
            result.errors.append(f'Could not move "{move.name}": {e}')
            continue
        if moved is None:
            continue
        claimed.append(slot)
        log.info("task_moved", task_id=move.task_id, name=move.name, slot=slot.label())
        if moved.external_link_id:
            _remove_mirror(calendar, user_id, moved)
            moved = _mirror(calendar, user_id, moved, timezone_name)
        result.moved.append(moved)

    existing_keys = {task.identity() for task in database.list_tasks(user_id)}
    for task in batch.tasks:
        if task.identity() in existing_keys:
            log.info("task_skipped_duplicate", name=task.name, date=task.date)
            continue
        try:
            created = database.create_task_db(task.model_copy(update={"id": None, "user_id": user_id}))
        except (RepositoryFailure, InvalidTimeFormat) as e:
            log.error("task_commit_failed", op="create", name=task.name, error=str(e))
            result.errors.append(f'Could not create "{task.name}": {e}')
            continue
        existing_keys.add(created.identity())
        log.info("task_created", task_id=created.id, name=created.name, date=created.date)
        result.created.append(_mirror(calendar, user_id, created, timezone_name))

    return result


def summarize_commit(result: CommitResult) -> str:
    parts = []
    if result.created:
        parts.append(f"created {len(result.created)} task{'s' if len(result.created) != 1 else ''}")
    if result.moved:
        parts.append("moved " + ", ".join(f'"{t.name}" to {t.slot_label()}' for t in result.moved))
    if result.deleted:
        parts.append("deleted " + ", ".join(f'"{t.name}"' for t in result.deleted))
    if not parts:
        return "Nothing to change; your schedule is already up to date."
    text = "Done! I " + "; ".join(parts) + "."
    if result.errors:
        text += " Some changes could not be saved."
    return text


def _apply_commit(proposal: ScheduleProposal, result: CommitResult) -> ScheduleProposal:
    proposal.tasks = result.created
    proposal.tasks_created = len(result.created)
    proposal.errors.extend(result.errors)
    proposal.pending = None
    return proposal


def confirm_pending(
    pending: ScheduleProposal,
    user_id: int,
    timezone_name: str,
    calendar: CalendarSource,
) -> ScheduleProposal:
    """
    Commit the batch held by a pending proposal after the user said yes.
    The batch is resolved again against the current schedule first; tasks
    whose slot is no longer free are reported instead of created.
    """
    batch = pending.pending or PendingBatch()
    existing = database.list_tasks(user_id)
    events = []
    if batch.tasks:
        dates = sorted(parse_date(task.date) for task in batch.tasks)
        try:
            events = calendar.list_blocked_events(user_id, dates[0], dates[-1], timezone_name)
        except CalendarUnavailable as e:
            log.error("calendar_unavailable", user_id=user_id, error=str(e))
            return fallback_proposal(CALENDAR_ERROR_MESSAGE, f"Calendar error: {e}")

    batch, report = recheck_pending(batch, existing, events)
    result = commit_batch(batch, user_id, timezone_name, calendar)

    message = summarize_commit(result)
    status = ProposalStatus.COMPLETE
    if report.status is ProposalStatus.NEEDS_CONFIRMATION:
        message += " Some tasks were not added because their time is no longer free."
        status = ProposalStatus.NEEDS_CONFIRMATION
    proposal = ScheduleProposal(
        message=message,
        tasks_to_delete=[task.name for task in result.deleted],
        tasks_to_reschedule=[task.name for task in result.moved],
        conflicts=report.conflicts,
        suggested_alternatives=report.suggested_alternatives,
        errors=report.errors,
        status=status,
    )
    return _apply_commit(proposal, result)


async def _propose(
    user_input: str,
    user_id: int,
    user_timezone: Optional[str],
    history: list[Message],
    completer: TextCompleter,
    calendar: CalendarSource,
    now: Optional[datetime],
) -> ScheduleProposal:
    tz, timezone_name = resolve_timezone(user_timezone)
    now = now.astimezone(tz) if now else datetime.now(tz)

    existing = database.list_tasks(user_id)
    try:
        events = calendar.list_blocked_events(
            user_id, now.date(), now.date() + timedelta(days=config.CONTEXT_DAYS), timezone_name)
    except CalendarUnavailable as e:
        log.error("calendar_unavailable", user_id=user_id, error=str(e))
        return fallback_proposal(CALENDAR_ERROR_MESSAGE, f"Calendar error: {e}")

    proposal = await extract(
        user_input, existing, events, history, timezone_name, completer, now=now)

    if proposal.status is None:
        return proposal
    if requires_confirmation(proposal):
        log.info("proposal_deferred", user_id=user_id, status=proposal.status.value)
        return defer(proposal)

    result = commit_batch(proposal.pending or PendingBatch(), user_id, timezone_name, calendar)
    return _apply_commit(proposal, result)


async def process_turn(
    user_input: str,
    user_id: int,
    user_timezone: Optional[str] = None,
    conversation_history: Optional[list[Message]] = None,
    *,
    completer: TextCompleter,
    calendar: CalendarSource,
    now: Optional[datetime] = None,
) -> ScheduleProposal:
    """
    Handle one natural-language turn and return the resulting proposal.
    Never raises: every failure becomes a fallback proposal.
    """
    history = conversation_history or []
    try:
        kind, pending = classify_turn(user_input, history)
        if kind is TurnKind.CANCEL:
            log.info("pending_cancelled", user_id=user_id)
            return cancelled_proposal()
        if kind is TurnKind.CONFIRM:
            log.info("pending_confirmed", user_id=user_id)
            _, timezone_name = resolve_timezone(user_timezone)
            return confirm_pending(pending, user_id, timezone_name, calendar)
        return await _propose(user_input, user_id, user_timezone, history, completer, calendar, now)
    except Exception:
        log.exception("turn_failed", user_id=user_id)
        return fallback_proposal(GENERIC_ERROR_MESSAGE, "Internal error")
