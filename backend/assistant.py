"""
Intent extraction: prompt Claude with the user's schedule, then validate
whatever comes back before anything is treated as committable.

The completion output is never trusted. Every proposed task is re-checked
here (required fields, time formats, duplicates) and run through the
conflict resolver, whose verdict overrides the model's own status.
"""

import asyncio
import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import anthropic

import config
from conflicts import ConflictOutcome, OutcomeKind, resolve
from errors import CompletionUnavailable, InvalidTimeFormat, MissingRequiredField
from intervals import TimeInterval, format_minutes, parse_date, parse_time, task_interval
from logger import get_logger
from models import (
    ExternalBlockedEvent,
    Message,
    PendingBatch,
    PlannedMove,
    ProposalStatus,
    ScheduleProposal,
    Task,
    upgrade_status,
)
from prompts import build_system_prompt
from scheduling import normalize_priority

log = get_logger("assistant")

# Last 3 exchanges; older turns are dropped
HISTORY_MESSAGE_LIMIT = 6
DEFAULT_DURATION_MINUTES = 60
DEFAULT_START_HOUR = 9

API_ERROR_MESSAGE = (
    "I encountered an issue with the AI service: {error}. "
    "Please check your API key and try again."
)
TIMEOUT_MESSAGE = "The AI service took too long to respond. Please try again."
EMPTY_MESSAGE = "I received an empty response. Could you please rephrase your request?"
PARSE_MESSAGE = (
    "I had trouble understanding that. Could you please rephrase your request? "
    "Include the event name, date, and time."
)


class TextCompleter(Protocol):
    async def complete(self, system: str, messages: list[dict]) -> str:
        ...


class AnthropicCompleter:
    """Text completion backed by the Claude messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = api_key if api_key is not None else config.ANTHROPIC_API_KEY
        self.model = model or config.CLAUDE_MODEL
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, system: str, messages: list[dict]) -> str:
        if not self.api_key or self.api_key == "your-api-key-here":
            raise CompletionUnavailable("API key not configured")

        try:
            response = await self._get_client().messages.create(
                model=self.model,
                max_tokens=config.COMPLETION_MAX_TOKENS,
                temperature=config.COMPLETION_TEMPERATURE,
                system=system,
                messages=messages,
            )
        except anthropic.APIError as e:
            raise CompletionUnavailable(str(e)) from e

        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )


@dataclass
class TaskPatterns:
    average_duration: int = DEFAULT_DURATION_MINUTES
    common_start_hour: int = DEFAULT_START_HOUR


def analyze_task_patterns(tasks: list[Task]) -> TaskPatterns:
    """Average duration and most common start hour of the user's tasks."""
    durations = []
    start_hours = []
    for task in tasks:
        try:
            interval = task_interval(task)
        except InvalidTimeFormat:
            continue
        durations.append(interval.duration)
        start_hours.append(interval.start // 60)

    if not durations:
        return TaskPatterns()

    return TaskPatterns(
        average_duration=round(sum(durations) / len(durations)),
        common_start_hour=Counter(start_hours).most_common(1)[0][0],
    )


def resolve_timezone(name: Optional[str]) -> tuple[ZoneInfo, str]:
    """Load the user's timezone, falling back to the configured default."""
    if name:
        try:
            return ZoneInfo(name), name
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("unknown_timezone", timezone=name, fallback=config.DEFAULT_TIMEZONE)
    return ZoneInfo(config.DEFAULT_TIMEZONE), config.DEFAULT_TIMEZONE


def bound_history(history: Optional[list[Message]]) -> list[dict]:
    """Keep the last HISTORY_MESSAGE_LIMIT messages, starting on a user turn."""
    recent = (history or [])[-HISTORY_MESSAGE_LIMIT:]
    messages = [
        {"role": m.role, "content": m.content}
        for m in recent
        if m.role in ("user", "assistant") and m.content.strip()
    ]
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    return messages


def strip_code_fence(text: str) -> str:
    """Remove a ```json ... ``` wrapper if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]  # Remove first line (```json)
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]  # Remove last line (```)
        text = "\n".join(lines).strip()
    if text.endswith("```"):
        text = text[:-3].strip()
    return text


def parse_completion(text: str) -> dict:
    """Parse the completion text into a JSON object.

    Raises CompletionUnavailable if no JSON object can be recovered.
    """
    cleaned = strip_code_fence(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Tolerate prose around the object
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise CompletionUnavailable("Unable to parse request") from None
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError:
            raise CompletionUnavailable("Unable to parse request") from None

    if not isinstance(parsed, dict):
        raise CompletionUnavailable("Unable to parse request")
    return parsed


def fallback_proposal(message: str, reason: str) -> ScheduleProposal:
    """Terminal response for a failed turn: no tasks, no status."""
    return ScheduleProposal(message=message, missing_info=[reason])


def _string_list(value) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def validate_task(raw: dict, today: str, default_duration: int) -> Task:
    """
    Turn one raw task object from the completion into a Task.
    - missing name or start time: MissingRequiredField
    - missing date: today
    - missing end time: start + default_duration
    - unparseable date/time, or an interval that leaves the day: InvalidTimeFormat
    """
    if not isinstance(raw, dict):
        raise MissingRequiredField("name", "Task name is required")

    name = str(raw.get("name") or "").strip()
    if not name:
        raise MissingRequiredField("name", "Task name is required")

    start_raw = raw.get("startTime") or raw.get("start_time")
    try:
        day = parse_date(str(raw.get("date") or today))
        if not start_raw:
            raise MissingRequiredField("startTime", f'Start time missing for "{name}"')
        start = parse_time(str(start_raw))
        end_raw = raw.get("endTime") or raw.get("end_time")
        end = parse_time(str(end_raw)) if end_raw else start + default_duration
        interval = TimeInterval(day, start, end)
    except InvalidTimeFormat as e:
        raise InvalidTimeFormat(f'Invalid time for "{name}": {e}') from e

    description = raw.get("description")
    return Task(
        name=name,
        description=str(description) if description else None,
        date=interval.date.isoformat(),
        start_time=format_minutes(interval.start),
        end_time=format_minutes(interval.end),
        priority=normalize_priority(raw.get("priority")),
        color_tag=raw.get("colorTag") or raw.get("colour") or raw.get("color"),
        recurrence_rule=_string_list(raw.get("recurrence") or raw.get("recurrenceRule")) or None,
        depends_on=_string_list(raw.get("dependsOn")) or None,
    )


def match_tasks_by_name(name: str, tasks: list[Task]) -> list[Task]:
    """Exact case-insensitive matches, else partial matches."""
    needle = name.strip().lower()
    exact = [task for task in tasks if task.name.strip().lower() == needle]
    if exact:
        return exact
    return [task for task in tasks if needle in task.name.lower()]


def _merge_outcome(
    proposal: ScheduleProposal,
    outcome: ConflictOutcome,
    moves: dict[str, PlannedMove],
) -> bool:
    """Fold one resolver outcome into the proposal. Returns True if committable."""
    task = outcome.task

    if outcome.kind is OutcomeKind.ACCEPTED:
        return True

    if outcome.kind is OutcomeKind.DISPLACES:
        for displacement in outcome.displaced:
            moved = displacement.task
            options = [slot.label() for slot in displacement.options]
            if moved.name not in proposal.tasks_to_reschedule:
                proposal.tasks_to_reschedule.append(moved.name)
            proposal.rescheduling_options[moved.name] = options
            if moved.id and moved.id not in moves:
                moves[moved.id] = PlannedMove(
                    task_id=moved.id, name=moved.name, date=moved.date, options=options)
            proposal.conflicts.append(
                f'"{task.name}" ({task.priority.value}) takes {task.slot_label()}; '
                f'"{moved.name}" ({moved.priority.value}) needs a new time'
            )
        proposal.status = upgrade_status(proposal.status, ProposalStatus.RESCHEDULE_CONFIRMATION)
        return True

    if outcome.kind is OutcomeKind.BLOCKED:
        proposal.conflicts.append(
            f'"{task.name}" at {task.start_time} overlaps calendar event '
            + " and ".join(f'"{name}"' for name in outcome.blocking_events)
        )
    else:
        proposal.conflicts.append(
            f'"{task.name}" at {task.start_time} conflicts with '
            + " and ".join(f'"{other.name}"' for other in outcome.conflicting)
        )
    for slot in outcome.alternatives:
        if slot.label() not in proposal.suggested_alternatives:
            proposal.suggested_alternatives.append(slot.label())
    proposal.status = upgrade_status(proposal.status, ProposalStatus.NEEDS_CONFIRMATION)
    return False


def _check_prerequisites(proposal: ScheduleProposal, batch: list[Task], existing: list[Task]) -> None:
    """Advisory only: note tasks scheduled before one of their prerequisites."""
    for task in batch:
        if not task.depends_on:
            continue
        start = task_interval(task)
        for prereq_name in task.depends_on:
            for prereq in match_tasks_by_name(prereq_name, batch + existing):
                if prereq is task:
                    continue
                try:
                    prereq_start = task_interval(prereq)
                except InvalidTimeFormat:
                    continue
                if (prereq_start.date, prereq_start.start) > (start.date, start.start):
                    proposal.conflicts.append(
                        f'"{task.name}" is scheduled before its prerequisite "{prereq.name}"'
                    )
                    break


def build_proposal(
    parsed: dict,
    existing_tasks: list[Task],
    external_events: list[ExternalBlockedEvent],
    today: str,
    patterns: Optional[TaskPatterns] = None,
) -> ScheduleProposal:
    """Validate a parsed completion against the user's schedule."""
    patterns = patterns or analyze_task_patterns(existing_tasks)

    # Only a request for more information is taken from the model;
    # conflict and deletion statuses are recomputed here
    status = ProposalStatus.COMPLETE
    if parsed.get("status") == ProposalStatus.NEEDS_CONFIRMATION.value:
        status = ProposalStatus.NEEDS_CONFIRMATION

    proposal = ScheduleProposal(message=str(parsed.get("message") or ""), status=status)

    # Deletions (also the first half of a move or split)
    to_delete: dict[str, Task] = {}
    for name in _string_list(parsed.get("tasksToDelete")):
        matches = match_tasks_by_name(name, existing_tasks)
        if not matches:
            proposal.missing_info.append(f"Could not find task matching '{name}'")
            continue
        for task in matches:
            if task.id:
                to_delete[task.id] = task
    remaining = [task for task in existing_tasks if task.id not in to_delete]

    raw_tasks = parsed.get("tasks")
    if isinstance(raw_tasks, dict):
        raw_tasks = [raw_tasks]
    elif not isinstance(raw_tasks, list):
        raw_tasks = []

    existing_keys = {task.identity() for task in remaining}
    batch_keys: set[tuple[str, str, str, str]] = set()
    committable: list[Task] = []
    moves: dict[str, PlannedMove] = {}

    for raw in raw_tasks:
        try:
            task = validate_task(raw, today, patterns.average_duration)
        except (MissingRequiredField, InvalidTimeFormat) as e:
            log.info("task_dropped", reason=str(e))
            proposal.missing_info.append(str(e))
            continue

        key = task.identity()
        if key in existing_keys:
            proposal.missing_info.append(
                f'"{task.name}" is already scheduled at {task.date} {task.slot_label()}')
            continue
        if key in batch_keys:
            continue
        batch_keys.add(key)

        try:
            outcome = resolve(task, remaining, external_events)
        except InvalidTimeFormat as e:
            log.info("task_dropped", task=task.name, reason=str(e))
            proposal.missing_info.append(f'Invalid time for "{task.name}": {e}')
            continue

        if _merge_outcome(proposal, outcome, moves):
            committable.append(task)

    _check_prerequisites(proposal, committable, remaining)

    if to_delete:
        proposal.tasks_to_delete = list(dict.fromkeys(task.name for task in to_delete.values()))
        proposal.status = upgrade_status(proposal.status, ProposalStatus.DELETION_CONFIRMATION)

    proposal.tasks = committable
    proposal.pending = PendingBatch(
        tasks=committable,
        delete_ids=list(to_delete),
        delete_names=proposal.tasks_to_delete,
        moves=list(moves.values()),
    )

    if proposal.missing_info and not committable and not to_delete:
        proposal.message = f"I need more information: {', '.join(proposal.missing_info)}."
    elif not proposal.message:
        proposal.message = "Here's what I found."

    return proposal


def recheck_pending(
    batch: PendingBatch,
    existing_tasks: list[Task],
    external_events: list[ExternalBlockedEvent],
) -> tuple[PendingBatch, ScheduleProposal]:
    """
    Resolve a held batch again against the schedule as it is now.

    Deletions and moves are kept only for tasks in `existing_tasks`.
    Tasks that now overlap a calendar event or a task they yield to are
    dropped, with their conflicts and alternatives on the returned proposal.
    Displaced-task options are recomputed.
    """
    owned = {task.id for task in existing_tasks if task.id}
    delete_ids = [task_id for task_id in batch.delete_ids if task_id in owned]
    remaining = [task for task in existing_tasks if task.id not in delete_ids]
    existing_keys = {task.identity() for task in remaining}

    report = ScheduleProposal(message="", status=ProposalStatus.COMPLETE)
    committable: list[Task] = []
    moves: dict[str, PlannedMove] = {}
    dropped = False
    for task in batch.tasks:
        # Already created by an earlier confirmation
        if task.identity() in existing_keys:
            continue
        try:
            outcome = resolve(task, remaining, external_events)
        except InvalidTimeFormat as e:
            report.errors.append(f'Invalid time for "{task.name}": {e}')
            continue
        if _merge_outcome(report, outcome, moves):
            committable.append(task)
        else:
            dropped = True
            log.info("pending_task_dropped", name=task.name, date=task.date, outcome=outcome.kind.value)

    report.status = ProposalStatus.NEEDS_CONFIRMATION if dropped else ProposalStatus.COMPLETE

    rechecked = PendingBatch(
        tasks=committable,
        delete_ids=delete_ids,
        delete_names=batch.delete_names,
        moves=[move for move in moves.values() if move.task_id in owned],
    )
    return rechecked, report


async def extract(
    user_text: str,
    existing_tasks: list[Task],
    external_events: list[ExternalBlockedEvent],
    conversation_history: Optional[list[Message]],
    user_timezone: Optional[str],
    completer: TextCompleter,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> ScheduleProposal:
    """
    Interpret one user turn. Makes a single completion call with no retries;
    any failure of that call yields a fallback proposal rather than an error.
    """
    tz, tz_name = resolve_timezone(user_timezone)
    now = now.astimezone(tz) if now else datetime.now(tz)
    today = now.strftime("%Y-%m-%d")

    patterns = analyze_task_patterns(existing_tasks)
    durations = []
    for task in existing_tasks:
        try:
            durations.append(task_interval(task).duration)
        except InvalidTimeFormat:
            durations.append(None)

    system = build_system_prompt(
        existing_tasks,
        durations,
        external_events,
        now,
        tz_name,
        patterns.average_duration,
        patterns.common_start_hour,
    )
    messages = bound_history(conversation_history)
    messages.append({"role": "user", "content": user_text})

    timeout = config.COMPLETION_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        raw = await asyncio.wait_for(completer.complete(system, messages), timeout)
    except asyncio.TimeoutError:
        log.warning("completion_timeout", timeout=timeout)
        return fallback_proposal(TIMEOUT_MESSAGE, "Completion timed out")
    except Exception as e:
        # Auth, network and API errors all end the turn the same way
        log.error("completion_failed", error=str(e), error_type=type(e).__name__)
        return fallback_proposal(API_ERROR_MESSAGE.format(error=e), f"API error: {e}")

    if not raw or not raw.strip():
        log.warning("completion_empty")
        return fallback_proposal(EMPTY_MESSAGE, "Empty API response")

    try:
        parsed = parse_completion(raw)
    except CompletionUnavailable:
        log.warning("completion_unparseable", text=raw[:500])
        return fallback_proposal(PARSE_MESSAGE, "Unable to parse request")

    proposal = build_proposal(parsed, existing_tasks, external_events, today, patterns)
    log.info(
        "proposal_built",
        status=proposal.status.value if proposal.status else None,
        tasks=len(proposal.tasks),
        deletions=len(proposal.tasks_to_delete),
        conflicts=len(proposal.conflicts),
    )
    return proposal
