# System prompt for schedule extraction
# Tasks carry a date (YYYY-MM-DD), 24-hour start/end times and a priority
# External calendar events are immutable and always win over local tasks
# Moves and splits are expressed as tasksToDelete plus replacement tasks
from datetime import datetime
from typing import Optional

from models import COLOR_PALETTE, ExternalBlockedEvent, Task

SYSTEM_PROMPT = """You are a task scheduling assistant. Parse the user's request and respond with JSON only.

Current context:
- Timezone: {timezone}
- Today's date is: {today} ({weekday})
- Current time: {current_time}
- User's average task duration: {average_duration} minutes
- User's preferred start time: {common_start_hour:02d}:00

Existing tasks:
{task_list}

External calendar events (IMMUTABLE - never move, delete or overlap these):
{event_list}

Supported operations:
- create: add tasks to "tasks"
- delete: list the exact names of existing tasks in "tasksToDelete"
- move: delete the existing task and add it again at the new time in "tasks"
- split: delete the existing task and add each part as a separate task in "tasks"
- bulk: list every matching existing task name in "tasksToDelete" (e.g. all meetings on a day)

Task fields:
- "name": required
- "date": YYYY-MM-DD; convert "today", "tomorrow", "next Monday" relative to today
- "startTime" / "endTime": 24-hour HH:MM, e.g. "3pm" -> "15:00", "9:30am" -> "09:30"
- If no duration is given, assume {average_duration} minutes
- "priority": "low" | "medium" | "high" (default "medium")
  - high: urgent, important, critical, deadline, ASAP
  - low: maybe, whenever, optional, if time, break
- "colorTag": one of {palette} (optional)
- "recurrence": array of RRULE strings, e.g. ["RRULE:FREQ=WEEKLY;BYDAY=MO,WE"] (optional)
- "dependsOn": names of tasks that must happen first (optional)

Conflicts:
- A new task with higher priority than every overlapping task takes the slot; list the overlapped tasks in "tasksToReschedule"
- A new task with equal or lower priority does not take the slot; suggest other times
- A task overlapping an external event is never scheduled at that time
- Alternatives use "HH:MM-HH:MM" format between 09:00 and 18:00

Respond with this exact JSON format:
{{
    "message": "friendly response to user",
    "tasks": [
        {{
            "name": "task name",
            "description": "optional details",
            "date": "YYYY-MM-DD",
            "startTime": "HH:MM",
            "endTime": "HH:MM",
            "priority": "low" | "medium" | "high",
            "colorTag": "blue",
            "recurrence": ["RRULE:FREQ=DAILY"],
            "dependsOn": []
        }}
    ],
    "tasksToDelete": ["existing task name"],
    "tasksToReschedule": ["existing task name"],
    "reschedulingOptions": {{"existing task name": ["HH:MM-HH:MM"]}},
    "suggestedAlternatives": ["HH:MM-HH:MM"],
    "conflicts": ["description of any conflict"],
    "status": "complete" | "needs_confirmation" | "reschedule_confirmation" | "deletion_confirmation"
}}

Use "deletion_confirmation" whenever tasksToDelete is not empty.
Use "needs_confirmation" when information is missing, and ask only about the missing fields.

Only respond with valid JSON, no other text."""

_WEEKDAY_NAMES = {
    "MO": "Mon", "TU": "Tue", "WE": "Wed", "TH": "Thu",
    "FR": "Fri", "SA": "Sat", "SU": "Sun",
}


def parse_recurrence(rules: Optional[list[str]]) -> tuple[Optional[str], list[str]]:
    """
    Read FREQ and BYDAY from RRULE strings.
    Other keys (COUNT, UNTIL, INTERVAL) are ignored.
    Returns (freq, by_day), e.g. ("WEEKLY", ["MO", "WE"]).
    """
    freq = None
    by_day: list[str] = []
    for rule in rules or []:
        body = rule.strip()
        if body.upper().startswith("RRULE:"):
            body = body[6:]
        for part in body.split(";"):
            key, _, value = part.partition("=")
            key = key.strip().upper()
            if key == "FREQ" and value:
                freq = value.strip().upper()
            elif key == "BYDAY" and value:
                by_day = [day.strip().upper() for day in value.split(",") if day.strip()]
    return freq, by_day


def describe_recurrence(rules: Optional[list[str]]) -> Optional[str]:
    freq, by_day = parse_recurrence(rules)
    if not freq:
        return None
    text = f"repeats {freq.lower()}"
    if by_day:
        text += " on " + ",".join(_WEEKDAY_NAMES.get(day[-2:], day) for day in by_day)
    return text


def format_task_line(task: Task, duration: Optional[int]) -> str:
    details = []
    if duration is not None:
        details.append(f"{duration} min")
    details.append(f"priority {task.priority.value}")
    recurrence = describe_recurrence(task.recurrence_rule)
    if recurrence:
        details.append(recurrence)
    if task.depends_on:
        details.append("after " + ", ".join(task.depends_on))
    return f"- {task.name}: {task.date} {task.start_time}-{task.end_time} ({', '.join(details)})"


def format_event_line(event: ExternalBlockedEvent) -> str:
    if event.all_day:
        return f"- {event.name}: {event.date} all day [IMMUTABLE]"
    return f"- {event.name}: {event.date} {event.start_time}-{event.end_time} [IMMUTABLE]"


def build_system_prompt(
    tasks: list[Task],
    durations: list[Optional[int]],
    events: list[ExternalBlockedEvent],
    now: datetime,
    timezone_name: str,
    average_duration: int,
    common_start_hour: int,
) -> str:
    """Fill SYSTEM_PROMPT with the user's schedule. `durations` parallels `tasks`."""
    task_list = "\n".join(
        format_task_line(task, duration) for task, duration in zip(tasks, durations)
    )
    event_list = "\n".join(format_event_line(event) for event in events)
    return SYSTEM_PROMPT.format(
        timezone=timezone_name,
        today=now.strftime("%Y-%m-%d"),
        weekday=now.strftime("%A"),
        current_time=now.strftime("%H:%M"),
        average_duration=average_duration,
        common_start_hour=common_start_hour,
        task_list=task_list or "(none)",
        event_list=event_list or "(none)",
        palette=", ".join(COLOR_PALETTE),
    )
