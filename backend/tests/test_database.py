"""
Tests for database.py - task CRUD and conversation storage.
"""
import pytest
import sqlite3
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from database import (
    clear_conversation,
    create_task_db,
    delete_task_db,
    find_duplicate_db,
    get_conversation,
    get_task_db,
    list_tasks,
    save_conversation,
    update_task_db,
)
from errors import InvalidTimeFormat, RepositoryFailure
from models import Message, PendingBatch, Priority, ProposalStatus, ScheduleProposal
from conftest import make_task


class TestTaskCRUD:
    """Tests for basic task create/read/update/delete operations."""

    def test_create_task_basic(self, test_db):
        """Create a task and get it back with an id."""
        task = create_task_db(make_task("Buy groceries", user_id=1))

        assert task.id
        assert task.name == "Buy groceries"
        assert task.priority == Priority.MEDIUM
        assert get_task_db(task.id) == task

    def test_stored_as_local_wall_clock_timestamps(self, test_db):
        """start_at/end_at hold the local date and time with no UTC offset."""
        task = create_task_db(make_task("Doctor", start="9:05am", end="10:00", user_id=1))

        conn = sqlite3.connect(test_db)
        row = conn.execute("SELECT start_at, end_at FROM tasks WHERE id = ?", (task.id,)).fetchone()
        conn.close()

        assert row == ("2025-11-24T09:05:00", "2025-11-24T10:00:00")
        assert get_task_db(task.id).start_time == "09:05"

    def test_create_task_with_lists(self, test_db):
        task = create_task_db(make_task(
            "Standup", user_id=1, recurrence_rule=["RRULE:FREQ=WEEKLY;BYDAY=MO"],
            depends_on=["Coffee"], color_tag="green"))

        stored = get_task_db(task.id)
        assert stored.recurrence_rule == ["RRULE:FREQ=WEEKLY;BYDAY=MO"]
        assert stored.depends_on == ["Coffee"]
        assert stored.color_tag == "green"

    def test_create_invalid_times(self, test_db):
        with pytest.raises(InvalidTimeFormat):
            create_task_db(make_task("Bad", start="11:00", end="10:00", user_id=1))

    def test_create_failure_raises_repository_failure(self, test_db):
        conn = sqlite3.connect(test_db)
        conn.execute("DROP TABLE tasks")
        conn.commit()
        conn.close()

        with pytest.raises(RepositoryFailure):
            create_task_db(make_task("Anything", user_id=1))

    def test_list_tasks_per_user_in_time_order(self, test_db):
        create_task_db(make_task("Late", start="15:00", end="16:00", user_id=1))
        create_task_db(make_task("Early", start="08:00", end="09:00", user_id=1))
        create_task_db(make_task("Tomorrow", date="2025-11-25", start="07:00", end="08:00", user_id=1))
        create_task_db(make_task("Someone else", user_id=2))

        assert [t.name for t in list_tasks(1)] == ["Early", "Late", "Tomorrow"]
        assert [t.name for t in list_tasks(2)] == ["Someone else"]

    def test_update_task_times(self, test_db):
        task = create_task_db(make_task("Gym", user_id=1))

        updated = update_task_db(task.id, start_time="14:00", end_time="15:30", priority="high")

        assert updated.start_time == "14:00"
        assert updated.end_time == "15:30"
        assert updated.priority == Priority.HIGH
        assert updated.date == "2025-11-24"

    def test_update_task_date_keeps_times(self, test_db):
        task = create_task_db(make_task("Gym", start="07:00", end="08:00", user_id=1))
        updated = update_task_db(task.id, date="2025-12-01")
        assert (updated.date, updated.start_time, updated.end_time) == ("2025-12-01", "07:00", "08:00")

    def test_update_ignores_unknown_fields(self, test_db):
        task = create_task_db(make_task("Gym", user_id=1))
        assert update_task_db(task.id, completed=True).name == "Gym"

    def test_update_invalid_times(self, test_db):
        task = create_task_db(make_task("Gym", user_id=1))
        with pytest.raises(InvalidTimeFormat):
            update_task_db(task.id, end_time="09:00")

    def test_update_task_not_found(self, test_db):
        """Update nonexistent task returns None."""
        assert update_task_db("nonexistent", name="New name") is None

    def test_delete_task(self, test_db):
        task = create_task_db(make_task("Delete me", user_id=1))

        deleted = delete_task_db(task.id)

        assert deleted.name == "Delete me"
        assert list_tasks(1) == []

    def test_delete_task_not_found(self, test_db):
        """Delete nonexistent task returns None."""
        assert delete_task_db("nonexistent") is None

    def test_find_duplicate(self, test_db):
        create_task_db(make_task("Gym", user_id=1))

        assert find_duplicate_db(make_task("Gym", user_id=1)) is not None
        assert find_duplicate_db(make_task("Gym", start="10:30", end="11:00", user_id=1)) is None
        assert find_duplicate_db(make_task("Gym", user_id=2)) is None


class TestConversation:
    """Tests for per-user conversation storage."""

    def test_get_conversation_empty(self, test_db):
        assert get_conversation(1) == []

    def test_save_and_load(self, test_db):
        proposal = ScheduleProposal(
            message="Delete Lunch?",
            status=ProposalStatus.DELETION_CONFIRMATION,
            pending=PendingBatch(delete_ids=["t1"], delete_names=["Lunch"]),
        )
        messages = [
            Message(role="user", content="delete lunch"),
            Message(role="assistant", content="Delete Lunch?", proposal=proposal),
        ]

        save_conversation(1, messages)
        loaded = get_conversation(1)

        assert [m.content for m in loaded] == ["delete lunch", "Delete Lunch?"]
        assert loaded[1].proposal.status == ProposalStatus.DELETION_CONFIRMATION
        assert loaded[1].proposal.pending.delete_ids == ["t1"]

    def test_save_replaces_previous(self, test_db):
        save_conversation(1, [Message(role="user", content="first")])
        save_conversation(1, [Message(role="user", content="second")])
        assert [m.content for m in get_conversation(1)] == ["second"]

    def test_conversations_are_per_user(self, test_db):
        save_conversation(1, [Message(role="user", content="mine")])
        assert get_conversation(2) == []

    def test_clear_conversation(self, test_db):
        save_conversation(1, [Message(role="user", content="hello")])
        clear_conversation(1)
        assert get_conversation(1) == []
