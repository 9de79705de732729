"""
Shared pytest fixtures for backend tests.
Uses a temp-file SQLite database per test for isolation.
"""
import json
import pytest
import sqlite3
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from google_calendar import NullCalendarSource
from models import Priority, Task


class FakeCompleter:
    """Scripted completion service: returns queued replies in order, or raises them."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, system, messages):
        self.calls.append({"system": system, "messages": messages})
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class RecordingCalendar(NullCalendarSource):
    """Calendar source with fixed events that records mirroring calls."""

    def __init__(self, events=None, event_id="evt-1", fail_mirror=False):
        self.events = events or []
        self.event_id = event_id
        self.fail_mirror = fail_mirror
        self.mirrored = []
        self.removed = []

    def list_blocked_events(self, user_id, start, end, timezone_name):
        return list(self.events)

    def mirror_task(self, user_id, task, timezone_name):
        from errors import ExternalMirrorFailure
        if self.fail_mirror:
            raise ExternalMirrorFailure("calendar offline")
        self.mirrored.append(task.name)
        return self.event_id

    def remove_mirror(self, user_id, event_id):
        self.removed.append(event_id)


def make_task(name="Task", date="2025-11-24", start="10:00", end="11:00",
              priority=Priority.MEDIUM, **extra) -> Task:
    """Build a Task without touching the database."""
    return Task(name=name, date=date, start_time=start, end_time=end,
                priority=priority, **extra)


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            start_at TEXT NOT NULL,
            end_at TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium',
            color_tag TEXT,
            recurrence_rule TEXT,
            external_link_id TEXT,
            depends_on TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE conversations (
            user_id INTEGER PRIMARY KEY,
            messages TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def store_task(test_db):
    """Insert a task for user 1 (or the given user) and return it."""
    def _store(name="Task", date="2025-11-24", start="10:00", end="11:00",
               priority=Priority.MEDIUM, user_id=1, **extra):
        task = make_task(name, date, start, end, priority, user_id=user_id, **extra)
        return database.create_task_db(task)
    return _store


@pytest.fixture
def app_client(test_db, monkeypatch):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations and swaps in fake collaborators.
    """
    from fastapi.testclient import TestClient
    import main

    # Skip alembic in tests - tables already created by test_db fixture
    monkeypatch.setattr(main, "init_db", lambda: None)
    monkeypatch.setattr(main, "completer", FakeCompleter())
    monkeypatch.setattr(main, "calendar_source", RecordingCalendar())

    with TestClient(main.app) as client:
        yield client
