"""Initial schema - tasks with absolute start/end timestamps, per-user conversations

Revision ID: 001
Revises: None
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    # recurrence_rule and depends_on hold JSON lists
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
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
        )
    """))
    conn.execute(text(
        "CREATE INDEX IF NOT EXISTS ix_tasks_user_start ON tasks (user_id, start_at)"
    ))

    # One running conversation per user
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS conversations (
            user_id INTEGER PRIMARY KEY,
            messages TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL
        )
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS conversations"))
    conn.execute(text("DROP INDEX IF EXISTS ix_tasks_user_start"))
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
