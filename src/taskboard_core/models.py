"""SQLAlchemy database models."""
from datetime import datetime
from uuid import uuid4
import enum

from sqlalchemy import (
    JSON,
    Column,
    String,
    Text,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, declarative_base

# Base class for all models
Base = declarative_base()


def generate_id() -> str:
    """Opaque string identifier for new rows."""
    return str(uuid4())


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# ============================================================================
# Enums
# ============================================================================

class MemberPermission(str, enum.Enum):
    """Workspace membership permission level.

    Levels are checked by set membership, never by comparing rank.
    """

    OWNER = "owner"
    ADMIN = "admin"
    WRITE = "write"
    READ = "read"


class TaskStatus(str, enum.Enum):
    """Task status enum."""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    TESTING = "testing"
    DONE = "done"
    CANCELLED = "cancelled"


# Statuses after which a task no longer blocks its dependents
TERMINAL_TASK_STATUSES = (TaskStatus.DONE, TaskStatus.CANCELLED)


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskType(str, enum.Enum):
    """Task type enum."""

    FEATURE = "feature"
    BUG = "bug"
    TASK = "task"
    STORY = "story"
    EPIC = "epic"
    SUBTASK = "subtask"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"


class DependencyType(str, enum.Enum):
    """Scheduling relation carried by a dependency edge."""

    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"


class TaskActivityType(str, enum.Enum):
    """Activity log entry types for tasks."""

    CREATED = "task_created"
    UPDATED = "task_updated"
    MOVED = "task_moved"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    CHECKLIST_ADDED = "checklist_added"
    CHECKLIST_UPDATED = "checklist_updated"
    CHECKLIST_REMOVED = "checklist_removed"
    TIME_STARTED = "time_started"
    TIME_STOPPED = "time_stopped"
    TIME_LOGGED = "time_logged"
    REQUIREMENT_LINKED = "requirement_linked"
    REQUIREMENT_UNLINKED = "requirement_unlinked"
    COMMENT_ADDED = "comment_added"
    COMMENT_UPDATED = "comment_updated"
    COMMENT_DELETED = "comment_deleted"
    TIME_UPDATED = "time_updated"
    TIME_DELETED = "time_deleted"
    ARCHIVED = "task_archived"
    UNARCHIVED = "task_unarchived"


class RequirementType(str, enum.Enum):
    """Requirement type enum."""

    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non_functional"
    TECHNICAL = "technical"
    BUSINESS_RULE = "business_rule"
    CONSTRAINT = "constraint"


class RequirementStatus(str, enum.Enum):
    """Requirement lifecycle status enum."""

    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    IMPLEMENTED = "implemented"
    REJECTED = "rejected"
    DEPRECATED = "deprecated"


class RequirementPriority(str, enum.Enum):
    """MoSCoW priority for requirements."""

    MUST_HAVE = "must_have"
    SHOULD_HAVE = "should_have"
    COULD_HAVE = "could_have"
    WONT_HAVE = "wont_have"


# ============================================================================
# Workspaces, users, projects
# ============================================================================

class User(Base):
    """
    User model.

    Authentication happens upstream; the API only receives the user id.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255))
    avatar_url = Column(String(500))
    is_active = Column(Boolean, nullable=False, default=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    memberships = relationship("WorkspaceMember", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Workspace(Base):
    """
    Workspace model: the tenant boundary.

    Every project, and through it every task, list and requirement,
    belongs to exactly one workspace.
    """

    __tablename__ = "workspaces"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    members = relationship("WorkspaceMember", back_populates="workspace", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="workspace", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Workspace {self.slug}: {self.name}>"


class WorkspaceMember(Base):
    """
    Junction table linking users to workspaces with a permission level.
    """

    __tablename__ = "workspace_members"

    id = Column(String(36), primary_key=True, default=generate_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permission = Column(
        Enum(MemberPermission, values_callable=_enum_values),
        nullable=False,
        default=MemberPermission.READ,
    )
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", back_populates="memberships")

    # Constraints
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="unique_workspace_user"),
    )

    def __repr__(self) -> str:
        return f"<WorkspaceMember {self.user_id} {self.permission.value}>"


class Project(Base):
    """
    Project model. Owns its lists, tasks and requirements.

    The short ``key`` prefixes requirement codes (e.g. PROJ-FR-001).
    """

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    key = Column(String(10), nullable=False)
    description = Column(Text)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    workspace = relationship("Workspace", back_populates="projects")
    lists = relationship(
        "TaskList", back_populates="project", cascade="all, delete-orphan", order_by="TaskList.position"
    )
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")
    requirements = relationship("Requirement", back_populates="project", cascade="all, delete-orphan")
    sequences = relationship("ProjectSequence", back_populates="project", cascade="all, delete-orphan")

    # Constraints
    __table_args__ = (
        UniqueConstraint("workspace_id", "key", name="unique_workspace_project_key"),
    )

    def __repr__(self) -> str:
        return f"<Project {self.key}: {self.name}>"


class ProjectSequence(Base):
    """
    Per-project counter for task numbers and requirement codes.

    ``name`` is ``"task"`` or ``"requirement:<type>"``. Rows are locked
    while incremented so concurrent creators never share a value.
    """

    __tablename__ = "project_sequences"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    next_number = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="sequences")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="unique_project_sequence"),
        CheckConstraint("next_number > 0", name="chk_next_number_positive"),
    )

    def __repr__(self) -> str:
        return f"<ProjectSequence {self.project_id}:{self.name} next={self.next_number}>"


# ============================================================================
# Tasks
# ============================================================================

class TaskList(Base):
    """An ordered column of tasks within a project."""

    __tablename__ = "task_lists"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    color = Column(String(20))
    position = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="lists")
    tasks = relationship("Task", back_populates="task_list", order_by="Task.position")

    def __repr__(self) -> str:
        return f"<TaskList {self.name} @{self.position}>"


class Task(Base):
    """
    Task model: a unit of work on the board.

    ``number`` is assigned once from the project's task counter.
    ``position`` is dense within the task's list.
    """

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    list_id = Column(String(36), ForeignKey("task_lists.id", ondelete="SET NULL"), index=True)
    parent_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True)
    number = Column(Integer, nullable=False)

    title = Column(String(500), nullable=False)
    description = Column(Text)
    status = Column(
        Enum(TaskStatus, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.TODO,
        index=True,
    )
    priority = Column(
        Enum(TaskPriority, values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
        index=True,
    )
    type = Column(
        Enum(TaskType, values_callable=_enum_values),
        nullable=False,
        default=TaskType.TASK,
    )
    position = Column(Integer, nullable=False, default=0)

    assignee_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    reporter_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    due_date = Column(DateTime)
    estimated_hours = Column(Integer)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    task_list = relationship("TaskList", back_populates="tasks")
    parent = relationship("Task", remote_side=[id], back_populates="subtasks")
    subtasks = relationship("Task", back_populates="parent")
    assignee = relationship("User", foreign_keys=[assignee_id])
    reporter = relationship("User", foreign_keys=[reporter_id])

    # Edges where this task is the dependent (it waits on depends_on)
    dependency_edges = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.dependent_id",
        back_populates="dependent",
        cascade="all, delete-orphan",
    )
    # Edges where other tasks wait on this one
    dependent_edges = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.depends_on_id",
        back_populates="depends_on",
        cascade="all, delete-orphan",
    )
    activities = relationship("TaskActivity", back_populates="task", cascade="all, delete-orphan")
    checklists = relationship("Checklist", back_populates="task", cascade="all, delete-orphan")
    time_entries = relationship("TimeEntry", back_populates="task", cascade="all, delete-orphan")
    requirement_links = relationship("TaskLink", back_populates="task", cascade="all, delete-orphan")
    comments = relationship(
        "TaskComment", back_populates="task", cascade="all, delete-orphan", order_by="TaskComment.created_at"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "number", name="unique_project_task_number"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    def __repr__(self) -> str:
        return f"<Task #{self.number}: {self.title}>"


class TaskDependency(Base):
    """
    Directed edge: ``dependent`` waits on ``depends_on``.

    The edge set must stay acyclic; see ``dependencies.add_dependency``.
    """

    __tablename__ = "task_dependencies"

    id = Column(String(36), primary_key=True, default=generate_id)
    dependent_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    depends_on_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        Enum(DependencyType, values_callable=_enum_values),
        nullable=False,
        default=DependencyType.FINISH_TO_START,
    )
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    dependent = relationship("Task", foreign_keys=[dependent_id], back_populates="dependency_edges")
    depends_on = relationship("Task", foreign_keys=[depends_on_id], back_populates="dependent_edges")

    # Constraints
    __table_args__ = (
        UniqueConstraint("dependent_id", "depends_on_id", name="unique_task_dependency"),
        CheckConstraint("dependent_id != depends_on_id", name="no_self_dependency"),
    )

    def __repr__(self) -> str:
        return f"<TaskDependency {self.dependent_id} -> {self.depends_on_id} ({self.type.value})>"


class TaskActivity(Base):
    """Append-only activity log for a task."""

    __tablename__ = "task_activities"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    action = Column(Enum(TaskActivityType, values_callable=_enum_values), nullable=False)
    message = Column(Text)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    task = relationship("Task", back_populates="activities")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<TaskActivity {self.action.value} on {self.task_id}>"


class TaskComment(Base):
    """A comment on a task. Only its author may edit or delete it."""

    __tablename__ = "task_comments"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    content = Column(Text, nullable=False)
    mentions = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    task = relationship("Task", back_populates="comments")
    author = relationship("User")

    def __repr__(self) -> str:
        return f"<TaskComment by {self.author_id} on {self.task_id}>"


class Checklist(Base):
    """A named checklist attached to a task."""

    __tablename__ = "checklists"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="checklists")
    items = relationship(
        "ChecklistItem",
        back_populates="checklist",
        cascade="all, delete-orphan",
        order_by="ChecklistItem.position",
    )

    def __repr__(self) -> str:
        return f"<Checklist {self.title}>"


class ChecklistItem(Base):
    """Checklist entry; ``position`` is dense within its checklist."""

    __tablename__ = "checklist_items"

    id = Column(String(36), primary_key=True, default=generate_id)
    checklist_id = Column(String(36), ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(String(500), nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    checklist = relationship("Checklist", back_populates="items")

    def __repr__(self) -> str:
        return f"<ChecklistItem {self.content[:30]} done={self.is_completed}>"


class TimeEntry(Base):
    """Tracked time on a task. An entry with no ``ended_at`` is running."""

    __tablename__ = "time_entries"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    ended_at = Column(DateTime)
    duration_seconds = Column(Integer)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="time_entries")
    user = relationship("User")

    @property
    def is_running(self) -> bool:
        return self.ended_at is None

    def __repr__(self) -> str:
        return f"<TimeEntry {self.task_id} by {self.user_id} {self.duration_seconds}s>"


# ============================================================================
# Requirements
# ============================================================================

class Requirement(Base):
    """
    Versioned requirement.

    ``version`` moves only on significant field changes; every change,
    significant or not, is audited in ``RequirementHistory``.
    """

    __tablename__ = "requirements"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(50), nullable=False, index=True)

    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(
        Enum(RequirementType, values_callable=_enum_values),
        nullable=False,
        default=RequirementType.FUNCTIONAL,
        index=True,
    )
    status = Column(
        Enum(RequirementStatus, values_callable=_enum_values),
        nullable=False,
        default=RequirementStatus.DRAFT,
        index=True,
    )
    priority = Column(
        Enum(RequirementPriority, values_callable=_enum_values),
        nullable=False,
        default=RequirementPriority.SHOULD_HAVE,
    )
    version = Column(Integer, nullable=False, default=1)
    quality_score = Column(Integer)

    acceptance_criteria = Column(JSON, nullable=False, default=list)
    dependencies = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    test_cases = Column(JSON, nullable=False, default=list)

    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="requirements")
    author = relationship("User", foreign_keys=[author_id])
    history = relationship(
        "RequirementHistory",
        back_populates="requirement",
        cascade="all, delete-orphan",
        order_by="RequirementHistory.changed_at",
    )
    task_links = relationship("TaskLink", back_populates="requirement", cascade="all, delete-orphan")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "code", name="unique_project_requirement_code"),
        CheckConstraint("version > 0", name="chk_version_positive"),
        CheckConstraint(
            "quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)",
            name="chk_quality_score_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<Requirement {self.code} v{self.version}: {self.title}>"


class RequirementHistory(Base):
    """Immutable audit entry for one requirement change.

    ``changes`` holds an ``action`` tag plus per-field ``{from, to}`` diffs.
    """

    __tablename__ = "requirement_history"

    id = Column(String(36), primary_key=True, default=generate_id)
    requirement_id = Column(
        String(36),
        ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = Column(Integer, nullable=False)
    changes = Column(JSON, nullable=False)
    changed_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    requirement = relationship("Requirement", back_populates="history")
    changed_by_user = relationship("User", foreign_keys=[changed_by_user_id])

    def __repr__(self) -> str:
        return f"<RequirementHistory v{self.version} {self.changes.get('action')} at {self.changed_at}>"


class TaskLink(Base):
    """Links a requirement to a task that implements (or otherwise relates to) it."""

    __tablename__ = "task_links"

    id = Column(String(36), primary_key=True, default=generate_id)
    requirement_id = Column(String(36), ForeignKey("requirements.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    link_type = Column(String(50), nullable=False, default="implements")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    requirement = relationship("Requirement", back_populates="task_links")
    task = relationship("Task", back_populates="requirement_links")

    __table_args__ = (
        UniqueConstraint("requirement_id", "task_id", name="unique_requirement_task_link"),
    )

    def __repr__(self) -> str:
        return f"<TaskLink {self.requirement_id} {self.link_type} {self.task_id}>"
