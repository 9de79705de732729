import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import config
from errors import RepositoryFailure
from intervals import format_minutes, task_interval
from logger import get_logger
from models import Message, Task

log = get_logger("database")

DATABASE_PATH = config.DATABASE_PATH

# Task fields stored as JSON lists
_JSON_FIELDS = ("recurrence_rule", "depends_on")
_TIME_FIELDS = ("date", "start_time", "end_time")


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess
    import os

    # Run alembic upgrade from the backend directory
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        check=True
    )


def _timestamps(task: Task) -> tuple[str, str]:
    """
    Start/end timestamps for storage, as local wall-clock time in the
    user's timezone with no UTC offset. Raises InvalidTimeFormat.
    """
    interval = task_interval(task)
    day = interval.date.isoformat()
    return (
        f"{day}T{format_minutes(interval.start)}:00",
        f"{day}T{format_minutes(interval.end)}:00",
    )


def _load_list(value: Optional[str]) -> Optional[list[str]]:
    # Treat empty string as None
    if not value:
        return None
    return json.loads(value)


def _dump_list(value: Optional[list[str]]) -> Optional[str]:
    return json.dumps(value) if value else None


def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        date=row["start_at"][:10],
        start_time=row["start_at"][11:16],
        end_time=row["end_at"][11:16],
        priority=row["priority"],
        color_tag=row["color_tag"],
        recurrence_rule=_load_list(row["recurrence_rule"]),
        external_link_id=row["external_link_id"],
        depends_on=_load_list(row["depends_on"]),
    )


def list_tasks(user_id: int) -> list[Task]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM tasks WHERE user_id = ? ORDER BY start_at, name",
            (user_id,)
        ).fetchall()
        return [_row_to_task(row) for row in rows]


def get_task_db(task_id: str) -> Optional[Task]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row:
            return _row_to_task(row)
    return None


def find_duplicate_db(task: Task) -> Optional[Task]:
    """Find a task of the same user with the same name, date and times."""
    start_at, end_at = _timestamps(task)
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM tasks WHERE user_id = ? AND name = ? AND start_at = ? AND end_at = ?",
            (task.user_id, task.name.strip(), start_at, end_at)
        ).fetchone()
        if row:
            return _row_to_task(row)
    return None


def create_task_db(task: Task) -> Task:
    """Insert a task under a fresh id and return the stored task.

    Raises InvalidTimeFormat for unparseable times and RepositoryFailure
    if the insert fails.
    """
    start_at, end_at = _timestamps(task)
    task_id = str(uuid.uuid4())
    created_at = datetime.now().isoformat()

    try:
        with get_db() as conn:
            conn.execute(
                """INSERT INTO tasks
                   (id, user_id, name, description, start_at, end_at, priority, color_tag,
                    recurrence_rule, external_link_id, depends_on, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    task_id, task.user_id, task.name.strip(), task.description,
                    start_at, end_at, task.priority.value, task.color_tag,
                    _dump_list(task.recurrence_rule), task.external_link_id,
                    _dump_list(task.depends_on), created_at,
                )
            )
            conn.commit()
    except sqlite3.Error as e:
        raise RepositoryFailure(f"Could not create task '{task.name}': {e}") from e

    return task.model_copy(update={
        "id": task_id,
        "name": task.name.strip(),
        "date": start_at[:10],
        "start_time": start_at[11:16],
        "end_time": end_at[11:16],
    })


def update_task_db(task_id: str, **updates) -> Optional[Task]:
    """
    Update a task with any fields provided.
    Only updates fields that differ from current values.

    Args:
        task_id: Task ID to update
        **updates: Task field names and values (name, date, start_time, priority, ...)

    Returns None if the task does not exist. Raises InvalidTimeFormat if the
    new date/times are invalid and RepositoryFailure if the update fails.
    """
    current = get_task_db(task_id)
    if current is None:
        return None

    data = current.model_dump()
    data.update({k: v for k, v in updates.items() if k in Task.model_fields})
    updated = Task.model_validate(data)

    # Compare stored columns, not model fields
    changes = {}
    if any(field in updates for field in _TIME_FIELDS):
        start_at, end_at = _timestamps(updated)
        changes["start_at"] = start_at
        changes["end_at"] = end_at
    for field in ("name", "description", "priority", "color_tag", "external_link_id"):
        if field in updates and getattr(updated, field) != getattr(current, field):
            value = getattr(updated, field)
            changes[field] = value.value if hasattr(value, "value") else value
    for field in _JSON_FIELDS:
        if field in updates and getattr(updated, field) != getattr(current, field):
            changes[field] = _dump_list(getattr(updated, field))

    # Execute UPDATE only if there are actual changes
    if changes:
        set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
        values = list(changes.values()) + [task_id]
        try:
            with get_db() as conn:
                conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ?", values)
                conn.commit()
        except sqlite3.Error as e:
            raise RepositoryFailure(f"Could not update task {task_id}: {e}") from e

    # Return updated task (re-fetch to get current state)
    return get_task_db(task_id)


def delete_task_db(task_id: str) -> Optional[Task]:
    """Delete a task. Returns the deleted task, or None if it did not exist."""
    existing = get_task_db(task_id)
    if existing is None:
        return None
    try:
        with get_db() as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
    except sqlite3.Error as e:
        raise RepositoryFailure(f"Could not delete task {task_id}: {e}") from e
    return existing


# Conversation operations
def get_conversation(user_id: int) -> list[Message]:
    """Stored messages for the user, oldest first."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT messages FROM conversations WHERE user_id = ?", (user_id,)
        ).fetchone()
    if not row:
        return []
    return [Message.model_validate(m) for m in json.loads(row["messages"])]


def save_conversation(user_id: int, messages: list[Message]):
    """Replace the user's stored conversation."""
    now = datetime.now().isoformat()
    messages_json = json.dumps([m.model_dump(mode="json", by_alias=True) for m in messages])
    with get_db() as conn:
        conn.execute(
            """INSERT INTO conversations (user_id, messages, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET messages = excluded.messages,
               updated_at = excluded.updated_at""",
            (user_id, messages_json, now)
        )
        conn.commit()


def clear_conversation(user_id: int):
    with get_db() as conn:
        conn.execute("DELETE FROM conversations WHERE user_id = ?", (user_id,))
        conn.commit()
