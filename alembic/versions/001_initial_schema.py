"""Initial task board schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MEMBER_PERMISSION = sa.Enum('owner', 'admin', 'write', 'read', name='memberpermission')
TASK_STATUS = sa.Enum(
    'backlog', 'todo', 'in_progress', 'in_review', 'testing', 'done', 'cancelled', name='taskstatus'
)
TASK_PRIORITY = sa.Enum('urgent', 'high', 'medium', 'low', name='taskpriority')
TASK_TYPE = sa.Enum(
    'feature', 'bug', 'task', 'story', 'epic', 'subtask', 'documentation', 'research', name='tasktype'
)
DEPENDENCY_TYPE = sa.Enum(
    'finish_to_start', 'start_to_start', 'finish_to_finish', 'start_to_finish', name='dependencytype'
)
TASK_ACTIVITY_TYPE = sa.Enum(
    'task_created', 'task_updated', 'task_moved', 'dependency_added', 'dependency_removed',
    'checklist_added', 'checklist_updated', 'checklist_removed',
    'time_started', 'time_stopped', 'time_logged',
    'requirement_linked', 'requirement_unlinked',
    name='taskactivitytype',
)
REQUIREMENT_TYPE = sa.Enum(
    'functional', 'non_functional', 'technical', 'business_rule', 'constraint', name='requirementtype'
)
REQUIREMENT_STATUS = sa.Enum(
    'draft', 'under_review', 'approved', 'implemented', 'rejected', 'deprecated', name='requirementstatus'
)
REQUIREMENT_PRIORITY = sa.Enum(
    'must_have', 'should_have', 'could_have', 'wont_have', name='requirementpriority'
)


def _id() -> sa.Column:
    return sa.Column('id', sa.String(36), primary_key=True)


def _fk(name: str, target: str, ondelete: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.String(36), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    # Tenancy
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255)),
        sa.Column('avatar_url', sa.String(500)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'workspaces',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_workspaces_slug', 'workspaces', ['slug'], unique=True)
    op.create_index('ix_workspaces_created_at', 'workspaces', ['created_at'])

    op.create_table(
        'workspace_members',
        _id(),
        _fk('workspace_id', 'workspaces.id', 'CASCADE', nullable=False),
        _fk('user_id', 'users.id', 'CASCADE', nullable=False),
        sa.Column('permission', MEMBER_PERMISSION, nullable=False, server_default='read'),
        sa.Column('joined_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('workspace_id', 'user_id', name='unique_workspace_user'),
    )
    op.create_index('ix_workspace_members_workspace_id', 'workspace_members', ['workspace_id'])
    op.create_index('ix_workspace_members_user_id', 'workspace_members', ['user_id'])

    op.create_table(
        'projects',
        _id(),
        _fk('workspace_id', 'workspaces.id', 'CASCADE', nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('key', sa.String(10), nullable=False),
        sa.Column('description', sa.Text),
        _fk('created_by', 'users.id', 'SET NULL'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('workspace_id', 'key', name='unique_workspace_project_key'),
    )
    op.create_index('ix_projects_workspace_id', 'projects', ['workspace_id'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    op.create_table(
        'project_sequences',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE', nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('next_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('project_id', 'name', name='unique_project_sequence'),
        sa.CheckConstraint('next_number > 0', name='chk_next_number_positive'),
    )
    op.create_index('ix_project_sequences_project_id', 'project_sequences', ['project_id'])

    # Board
    op.create_table(
        'task_lists',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE', nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('color', sa.String(20)),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_task_lists_project_id', 'task_lists', ['project_id'])

    op.create_table(
        'tasks',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE', nullable=False),
        _fk('list_id', 'task_lists.id', 'SET NULL'),
        _fk('parent_id', 'tasks.id', 'CASCADE'),
        sa.Column('number', sa.Integer, nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', TASK_STATUS, nullable=False, server_default='todo'),
        sa.Column('priority', TASK_PRIORITY, nullable=False, server_default='medium'),
        sa.Column('type', TASK_TYPE, nullable=False, server_default='task'),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        _fk('assignee_id', 'users.id', 'SET NULL'),
        _fk('reporter_id', 'users.id', 'SET NULL'),
        sa.Column('due_date', sa.DateTime),
        sa.Column('estimated_hours', sa.Integer),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('project_id', 'number', name='unique_project_task_number'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_list_id', 'tasks', ['list_id'])
    op.create_index('ix_tasks_parent_id', 'tasks', ['parent_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_priority', 'tasks', ['priority'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    op.create_table(
        'task_dependencies',
        _id(),
        _fk('dependent_id', 'tasks.id', 'CASCADE', nullable=False),
        _fk('depends_on_id', 'tasks.id', 'CASCADE', nullable=False),
        sa.Column('type', DEPENDENCY_TYPE, nullable=False, server_default='finish_to_start'),
        _fk('created_by', 'users.id', 'SET NULL'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('dependent_id', 'depends_on_id', name='unique_task_dependency'),
        sa.CheckConstraint('dependent_id != depends_on_id', name='no_self_dependency'),
    )
    op.create_index('ix_task_dependencies_dependent_id', 'task_dependencies', ['dependent_id'])
    op.create_index('ix_task_dependencies_depends_on_id', 'task_dependencies', ['depends_on_id'])

    op.create_table(
        'task_activities',
        _id(),
        _fk('task_id', 'tasks.id', 'CASCADE', nullable=False),
        _fk('user_id', 'users.id', 'SET NULL'),
        sa.Column('action', TASK_ACTIVITY_TYPE, nullable=False),
        sa.Column('message', sa.Text),
        sa.Column('details', sa.JSON),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_task_activities_task_id', 'task_activities', ['task_id'])
    op.create_index('ix_task_activities_user_id', 'task_activities', ['user_id'])
    op.create_index('ix_task_activities_created_at', 'task_activities', ['created_at'])

    op.create_table(
        'checklists',
        _id(),
        _fk('task_id', 'tasks.id', 'CASCADE', nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_checklists_task_id', 'checklists', ['task_id'])

    op.create_table(
        'checklist_items',
        _id(),
        _fk('checklist_id', 'checklists.id', 'CASCADE', nullable=False),
        sa.Column('content', sa.String(500), nullable=False),
        sa.Column('is_completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_checklist_items_checklist_id', 'checklist_items', ['checklist_id'])

    op.create_table(
        'time_entries',
        _id(),
        _fk('task_id', 'tasks.id', 'CASCADE', nullable=False),
        _fk('user_id', 'users.id', 'CASCADE', nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('started_at', sa.DateTime, nullable=False),
        sa.Column('ended_at', sa.DateTime),
        sa.Column('duration_seconds', sa.Integer),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_time_entries_task_id', 'time_entries', ['task_id'])
    op.create_index('ix_time_entries_user_id', 'time_entries', ['user_id'])

    # Requirements
    op.create_table(
        'requirements',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE', nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('type', REQUIREMENT_TYPE, nullable=False, server_default='functional'),
        sa.Column('status', REQUIREMENT_STATUS, nullable=False, server_default='draft'),
        sa.Column('priority', REQUIREMENT_PRIORITY, nullable=False, server_default='should_have'),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('quality_score', sa.Integer),
        sa.Column('acceptance_criteria', sa.JSON, nullable=False),
        sa.Column('dependencies', sa.JSON, nullable=False),
        sa.Column('tags', sa.JSON, nullable=False),
        sa.Column('test_cases', sa.JSON, nullable=False),
        _fk('author_id', 'users.id', 'SET NULL'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('project_id', 'code', name='unique_project_requirement_code'),
        sa.CheckConstraint('version > 0', name='chk_version_positive'),
        sa.CheckConstraint(
            'quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)',
            name='chk_quality_score_range',
        ),
    )
    op.create_index('ix_requirements_project_id', 'requirements', ['project_id'])
    op.create_index('ix_requirements_code', 'requirements', ['code'])
    op.create_index('ix_requirements_type', 'requirements', ['type'])
    op.create_index('ix_requirements_status', 'requirements', ['status'])
    op.create_index('ix_requirements_created_at', 'requirements', ['created_at'])

    op.create_table(
        'requirement_history',
        _id(),
        _fk('requirement_id', 'requirements.id', 'CASCADE', nullable=False),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('changes', sa.JSON, nullable=False),
        _fk('changed_by_user_id', 'users.id', 'SET NULL'),
        sa.Column('changed_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_requirement_history_requirement_id', 'requirement_history', ['requirement_id'])
    op.create_index('ix_requirement_history_changed_by_user_id', 'requirement_history', ['changed_by_user_id'])
    op.create_index('ix_requirement_history_changed_at', 'requirement_history', ['changed_at'])

    op.create_table(
        'task_links',
        _id(),
        _fk('requirement_id', 'requirements.id', 'CASCADE', nullable=False),
        _fk('task_id', 'tasks.id', 'CASCADE', nullable=False),
        sa.Column('link_type', sa.String(50), nullable=False, server_default='implements'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('requirement_id', 'task_id', name='unique_requirement_task_link'),
    )
    op.create_index('ix_task_links_requirement_id', 'task_links', ['requirement_id'])
    op.create_index('ix_task_links_task_id', 'task_links', ['task_id'])


def downgrade() -> None:
    for table in (
        'task_links',
        'requirement_history',
        'requirements',
        'time_entries',
        'checklist_items',
        'checklists',
        'task_activities',
        'task_dependencies',
        'tasks',
        'task_lists',
        'project_sequences',
        'projects',
        'workspace_members',
        'workspaces',
        'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (
        REQUIREMENT_PRIORITY,
        REQUIREMENT_STATUS,
        REQUIREMENT_TYPE,
        TASK_ACTIVITY_TYPE,
        DEPENDENCY_TYPE,
        TASK_TYPE,
        TASK_PRIORITY,
        TASK_STATUS,
        MEMBER_PERMISSION,
    ):
        enum_type.drop(bind, checkfirst=True)
