"""Add task comments and the comment, archive and time-edit activity types.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NEW_ACTIVITY_TYPES = (
    'comment_added',
    'comment_updated',
    'comment_deleted',
    'time_updated',
    'time_deleted',
    'task_archived',
    'task_unarchived',
)


def upgrade() -> None:
    # Non-native enums (SQLite) are plain strings and need no change
    if op.get_bind().dialect.name == 'postgresql':
        for value in NEW_ACTIVITY_TYPES:
            op.execute(f"ALTER TYPE taskactivitytype ADD VALUE IF NOT EXISTS '{value}'")

    op.create_table(
        'task_comments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('task_id', sa.String(36), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.String(36), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('mentions', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])
    op.create_index('ix_task_comments_author_id', 'task_comments', ['author_id'])
    op.create_index('ix_task_comments_created_at', 'task_comments', ['created_at'])


def downgrade() -> None:
    # PostgreSQL cannot drop enum values; only the rows using them are removed
    op.execute(
        "DELETE FROM task_activities WHERE action IN ("
        + ", ".join(f"'{value}'" for value in NEW_ACTIVITY_TYPES)
        + ")"
    )
    op.drop_table('task_comments')
