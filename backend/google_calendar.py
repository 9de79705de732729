"""
External calendar access.

Events read from the external calendar are immutable blockers for the
scheduler. Committed tasks may be mirrored back as events; mirroring is
best-effort and never affects the local commit.
"""

import json
import pathlib
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional, Protocol
from zoneinfo import ZoneInfo

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

import config
from errors import CalendarUnavailable, ExternalMirrorFailure
from intervals import format_minutes
from logger import get_logger
from models import ExternalBlockedEvent, Task

log = get_logger("google_calendar")

_GOOGLE_ERRORS = (HttpError, GoogleAuthError, OSError)


class CalendarSource(Protocol):
    def list_blocked_events(
        self, user_id: int, start: date, end: date, timezone_name: str
    ) -> list[ExternalBlockedEvent]:
        ...

    def mirror_task(self, user_id: int, task: Task, timezone_name: str) -> Optional[str]:
        ...

    def remove_mirror(self, user_id: int, event_id: str) -> None:
        ...


class NullCalendarSource:
    """No external calendar: nothing blocks, nothing is mirrored."""

    def list_blocked_events(self, user_id, start, end, timezone_name):
        return []

    def mirror_task(self, user_id, task, timezone_name):
        return None

    def remove_mirror(self, user_id, event_id):
        return None


def _minute_of(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def split_timed_event(
    name: str, source_id: str, start_dt: datetime, end_dt: datetime
) -> list[ExternalBlockedEvent]:
    """One blocked event per calendar date the timed event touches."""
    events = []
    day = start_dt.date()
    while day <= end_dt.date():
        seg_start = _minute_of(start_dt) if day == start_dt.date() else 0
        seg_end = _minute_of(end_dt) if day == end_dt.date() else 23 * 60 + 59
        if seg_end > seg_start:
            events.append(ExternalBlockedEvent(
                name=name,
                date=day.isoformat(),
                start_time=format_minutes(seg_start),
                end_time=format_minutes(seg_end),
                source_id=source_id,
            ))
        day += timedelta(days=1)
    return events


def convert_google_event(item: dict, tz: ZoneInfo) -> list[ExternalBlockedEvent]:
    """
    Convert one Google Calendar event resource.
    - timed events: converted to the user's timezone, split at midnight
    - date-only events: all-day, one entry per covered date (end date is exclusive)
    - cancelled events: skipped
    """
    if item.get("status") == "cancelled":
        return []

    name = item.get("summary") or "(busy)"
    source_id = item.get("id") or ""
    start_raw = item.get("start") or {}
    end_raw = item.get("end") or {}

    if start_raw.get("dateTime"):
        start_dt = datetime.fromisoformat(start_raw["dateTime"].replace("Z", "+00:00")).astimezone(tz)
        end_value = end_raw.get("dateTime")
        if end_value:
            end_dt = datetime.fromisoformat(end_value.replace("Z", "+00:00")).astimezone(tz)
        else:
            end_dt = start_dt + timedelta(hours=1)
        return split_timed_event(name, source_id, start_dt, end_dt)

    if start_raw.get("date"):
        first = date.fromisoformat(start_raw["date"])
        last = date.fromisoformat(end_raw["date"]) - timedelta(days=1) if end_raw.get("date") else first
        last = max(first, last)
        events = []
        day = first
        while day <= last:
            events.append(ExternalBlockedEvent(name=name, date=day.isoformat(), source_id=source_id))
            day += timedelta(days=1)
        return events

    return []


def _build_service(credentials: Credentials):
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


class GoogleCalendarSource:
    """Google Calendar, authorised per user with a stored token file."""

    def __init__(
        self,
        token_dir: Optional[pathlib.Path] = None,
        calendar_id: Optional[str] = None,
        service_factory: Callable[[Credentials], object] = _build_service,
    ):
        self.token_dir = pathlib.Path(token_dir or config.GOOGLE_TOKEN_DIR)
        self.calendar_id = calendar_id or config.GOOGLE_CALENDAR_ID
        self._service_factory = service_factory

    def _token_path(self, user_id: int) -> pathlib.Path:
        return self.token_dir / f"user_{user_id}.json"

    def _load_token(self, user_id: int) -> Optional[dict]:
        path = self._token_path(user_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _service(self, user_id: int):
        """Calendar service for the user, or None if they have not connected Google."""
        token_data = self._load_token(user_id)
        if not token_data:
            return None

        creds = Credentials.from_authorized_user_info(token_data, config.GCAL_SCOPES)
        if creds.expired and creds.refresh_token:
            creds.refresh(GoogleRequest())
            self._token_path(user_id).write_text(creds.to_json(), encoding="utf-8")

        return self._service_factory(creds)

    def list_blocked_events(
        self, user_id: int, start: date, end: date, timezone_name: str
    ) -> list[ExternalBlockedEvent]:
        """Events between `start` and `end` (inclusive). Raises CalendarUnavailable."""
        tz = ZoneInfo(timezone_name)
        try:
            service = self._service(user_id)
            if service is None:
                return []

            time_min = datetime.combine(start, time.min, tzinfo=tz)
            time_max = datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz)
            items = []
            page_token = None
            while True:
                response = service.events().list(
                    calendarId=self.calendar_id,
                    singleEvents=True,
                    orderBy="startTime",
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    pageToken=page_token,
                ).execute()
                items.extend(response.get("items", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except (*_GOOGLE_ERRORS, ValueError) as e:
            log.error("calendar_list_failed", user_id=user_id, error=str(e))
            raise CalendarUnavailable(f"Could not read Google Calendar: {e}") from e

        events = []
        for item in items:
            for event in convert_google_event(item, tz):
                if start.isoformat() <= event.date <= end.isoformat():
                    events.append(event)
        log.debug("calendar_events_loaded", user_id=user_id, count=len(events))
        return events

    def mirror_task(self, user_id: int, task: Task, timezone_name: str) -> Optional[str]:
        """Create an event for the task. Returns its id, or None if not connected."""
        body = {
            "summary": task.name,
            "start": {"dateTime": f"{task.date}T{task.start_time}:00", "timeZone": timezone_name},
            "end": {"dateTime": f"{task.date}T{task.end_time}:00", "timeZone": timezone_name},
        }
        if task.description:
            body["description"] = task.description
        if task.recurrence_rule:
            body["recurrence"] = task.recurrence_rule

        try:
            service = self._service(user_id)
            if service is None:
                return None
            created = service.events().insert(calendarId=self.calendar_id, body=body).execute()
        except (*_GOOGLE_ERRORS, ValueError) as e:
            raise ExternalMirrorFailure(f"Could not mirror '{task.name}': {e}") from e
        return created.get("id")

    def remove_mirror(self, user_id: int, event_id: str) -> None:
        try:
            service = self._service(user_id)
            if service is None:
                return
            service.events().delete(calendarId=self.calendar_id, eventId=event_id).execute()
        except (*_GOOGLE_ERRORS, ValueError) as e:
            raise ExternalMirrorFailure(f"Could not remove event {event_id}: {e}") from e


def build_calendar_source() -> CalendarSource:
    if config.ENABLE_GCAL:
        return GoogleCalendarSource()
    return NullCalendarSource()
