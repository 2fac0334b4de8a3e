"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from .models import (
    MemberPermission,
    TaskStatus,
    TaskPriority,
    TaskType,
    DependencyType,
    TaskActivityType,
    RequirementType,
    RequirementStatus,
    RequirementPriority,
)


class PatchModel(BaseModel):
    """Partial update: only fields the client sent are applied.

    Fields listed in ``non_nullable`` may be omitted but not sent as null.
    """

    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_explicit_nulls(self):
        for name in self.non_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"Field '{name}' cannot be null")
        return self

    def to_patch(self, exclude: tuple = ()) -> dict:
        return self.model_dump(exclude_unset=True, exclude=set(exclude))


# User / Workspace Schemas

class UserCreate(BaseModel):
    """Schema for registering a user."""

    email: str = Field(..., min_length=3, max_length=255)
    full_name: Optional[str] = Field(None, max_length=255)


class UserSummary(BaseModel):
    """Compact user reference embedded in task payloads."""

    id: str
    email: str
    full_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserSummary):
    created_at: datetime


class WorkspaceCreate(BaseModel):
    """Schema for creating a workspace. The caller becomes its owner."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None


class WorkspaceResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkspaceMemberAdd(BaseModel):
    user_id: str
    permission: MemberPermission = MemberPermission.READ


class WorkspaceMemberUpdate(BaseModel):
    permission: MemberPermission


class WorkspaceMemberResponse(BaseModel):
    id: str
    workspace_id: str
    user_id: str
    permission: MemberPermission
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# Project / List Schemas

class ProjectCreate(BaseModel):
    """Schema for creating a project. Default lists are created with it."""

    workspace_id: str
    name: str = Field(..., min_length=1, max_length=255)
    key: str = Field(..., pattern=r"^[A-Z][A-Z0-9]{1,9}$", description="Short uppercase key, e.g. PROJ")
    description: Optional[str] = None


class ProjectResponse(BaseModel):
    id: str
    workspace_id: str
    name: str
    key: str
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskListCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    color: Optional[str] = Field(None, max_length=20)


class TaskListUpdate(PatchModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("name",)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    color: Optional[str] = Field(None, max_length=20)


class TaskListResponse(BaseModel):
    id: str
    project_id: str
    name: str
    color: Optional[str] = None
    position: int

    model_config = ConfigDict(from_attributes=True)


class ReorderRequest(BaseModel):
    """Complete new ordering of a scope's members."""

    ordered_ids: list[str] = Field(..., description="Every member id of the scope, in the desired order")


# Task Schemas

class TaskCreate(BaseModel):
    """Schema for creating a task. It is appended to the end of its list."""

    project_id: str
    list_id: Optional[str] = None
    parent_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    type: TaskType = TaskType.TASK
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[int] = Field(None, ge=0)


class TaskUpdate(PatchModel):
    """Schema for updating a task. ``number`` and ``reporter_id`` are immutable."""

    non_nullable: ClassVar[tuple[str, ...]] = ("title", "status", "priority", "type")

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    type: Optional[TaskType] = None
    list_id: Optional[str] = None
    parent_id: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[int] = Field(None, ge=0)


class TaskMove(BaseModel):
    """Move a task into a list; without ``position`` it is appended."""

    list_id: Optional[str] = None
    position: Optional[int] = Field(None, ge=0)


class BulkTaskUpdate(BaseModel):
    task_ids: list[str] = Field(..., min_length=1)
    updates: TaskUpdate


class TaskDuplicate(BaseModel):
    """Options for copying a task. Edges, links and time entries are never copied."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    list_id: Optional[str] = None
    assignee_id: Optional[str] = None
    include_checklists: bool = False
    include_comments: bool = False


class TaskSummary(BaseModel):
    """Lightweight task reference with assignee."""

    id: str
    number: int
    title: str
    status: TaskStatus
    priority: TaskPriority
    assignee: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskResponse(BaseModel):
    """Schema for full task response."""

    id: str
    project_id: str
    list_id: Optional[str] = None
    parent_id: Optional[str] = None
    number: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    type: TaskType
    position: int
    assignee_id: Optional[str] = None
    reporter_id: Optional[str] = None
    assignee: Optional[UserSummary] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskPageResponse(BaseModel):
    items: list[TaskResponse]
    total: int
    skip: int
    limit: int


class BulkTaskFailure(BaseModel):
    task_id: str
    error: str


class BulkTaskUpdateResult(BaseModel):
    successful: list[TaskResponse]
    failed: list[BulkTaskFailure]


class TaskActivityResponse(BaseModel):
    id: str
    task_id: str
    user_id: Optional[str] = None
    action: TaskActivityType
    message: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# Dependency Schemas

class DependencyCreate(BaseModel):
    """Add an edge: the path task depends on ``depends_on_id``."""

    depends_on_id: str
    type: DependencyType = DependencyType.FINISH_TO_START


class DependencyPair(BaseModel):
    dependent_id: str
    depends_on_id: str
    type: DependencyType = DependencyType.FINISH_TO_START


class BulkDependencyRequest(BaseModel):
    pairs: list[DependencyPair] = Field(..., min_length=1)


class DependencyResponse(BaseModel):
    id: str
    dependent_id: str
    depends_on_id: str
    type: DependencyType
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class BlockingDependencyResponse(DependencyResponse):
    depends_on: TaskSummary


class TaskDependenciesResponse(BaseModel):
    depends_on: list[TaskSummary]
    dependents: list[TaskSummary]


class DependencyChainEntry(BaseModel):
    task: TaskSummary
    depth: int


class BlockedTaskResponse(BaseModel):
    task: TaskSummary
    blocking: list[BlockingDependencyResponse]


class CircularDependencyCheck(BaseModel):
    dependent_id: str
    depends_on_id: str
    would_create_cycle: bool


class BulkDependencyFailure(BaseModel):
    pair: dict[str, Any]
    error: str


class BulkAddDependenciesResult(BaseModel):
    successful: list[DependencyResponse]
    failed: list[BulkDependencyFailure]


class BulkRemoveDependenciesResult(BaseModel):
    successful: list[dict[str, Any]]
    failed: list[BulkDependencyFailure]


# Checklist / Time Tracking Schemas

class ChecklistCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    items: list[str] = Field(default_factory=list)


class ChecklistItemCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)


class ChecklistItemUpdate(PatchModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("content", "is_completed")

    content: Optional[str] = Field(None, min_length=1, max_length=500)
    is_completed: Optional[bool] = None


class ChecklistItemResponse(BaseModel):
    id: str
    checklist_id: str
    content: str
    is_completed: bool
    position: int
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChecklistResponse(BaseModel):
    id: str
    task_id: str
    title: str
    items: list[ChecklistItemResponse]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TimeEntryStart(BaseModel):
    description: Optional[str] = None


class TimeEntryLog(BaseModel):
    started_at: datetime
    ended_at: datetime
    description: Optional[str] = None


class TimeEntryResponse(BaseModel):
    id: str
    task_id: str
    user_id: str
    description: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class TimeEntryUpdate(PatchModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("started_at",)

    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    description: Optional[str] = None


class TimeSummaryResponse(BaseModel):
    task_id: str
    total_seconds: int
    formatted: str
    entry_count: int
    active_entries: int


# Requirement Schemas

class RequirementCreate(BaseModel):
    """Schema for creating a requirement. The code is generated."""

    project_id: str
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    type: RequirementType = RequirementType.FUNCTIONAL
    priority: RequirementPriority = RequirementPriority.SHOULD_HAVE
    acceptance_criteria: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class RequirementUpdate(PatchModel):
    """Partial update.

    ``expected_version`` is the version the client read; when given, the
    update is rejected if the requirement has moved on since.
    """

    non_nullable: ClassVar[tuple[str, ...]] = (
        "title", "description", "type", "status", "priority",
        "acceptance_criteria", "dependencies", "tags",
    )

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    type: Optional[RequirementType] = None
    status: Optional[RequirementStatus] = None
    priority: Optional[RequirementPriority] = None
    acceptance_criteria: Optional[list[str]] = None
    dependencies: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    expected_version: Optional[int] = Field(None, ge=1)


class RequirementResponse(BaseModel):
    id: str
    project_id: str
    code: str
    title: str
    description: str
    type: RequirementType
    status: RequirementStatus
    priority: RequirementPriority
    version: int
    quality_score: Optional[int] = None
    acceptance_criteria: list[str]
    dependencies: list[str]
    tags: list[str]
    test_cases: list[str]
    author_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class RequirementListResponse(BaseModel):
    items: list[RequirementResponse]
    total: int
    skip: int
    limit: int


class RequirementHistoryResponse(BaseModel):
    id: str
    requirement_id: str
    version: int
    changes: dict[str, Any]
    changed_by_user_id: Optional[str] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QualityCompleteness(BaseModel):
    has_title: bool
    has_description: bool
    has_acceptance_criteria: bool
    is_testable: bool


class QualityAnalysisResponse(BaseModel):
    quality_score: int = Field(..., ge=0, le=100)
    suggestions: list[str]
    completeness: QualityCompleteness
    potential_issues: list[str]


class GeneratedTestCase(BaseModel):
    id: str
    title: str
    description: str
    steps: list[str]
    expected_result: str
    priority: str
    type: str


class DuplicateCheckRequest(BaseModel):
    project_id: str
    title: str
    description: str = ""


class DuplicateCandidate(BaseModel):
    id: str
    code: str
    title: str
    description: str

    model_config = ConfigDict(from_attributes=True)


class CoverageResponse(BaseModel):
    total: int
    implemented: int
    tested: int
    implementation_coverage: float
    test_coverage: float


class TaskLinkCreate(BaseModel):
    task_id: str
    link_type: str = Field("implements", max_length=50)


class TaskLinkResponse(BaseModel):
    id: str
    requirement_id: str
    task_id: str
    link_type: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Comment Schemas

class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    mentions: list[str] = Field(default_factory=list, description="Ids of mentioned users")


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1)


class CommentResponse(BaseModel):
    id: str
    task_id: str
    author_id: Optional[str] = None
    author: Optional[UserSummary] = None
    content: str
    mentions: list[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Report Schemas

class GroupCount(BaseModel):
    """Number of tasks sharing one value of the grouped field."""

    key: Optional[str] = None
    count: int


class RequirementGroupCount(BaseModel):
    type: RequirementType
    status: RequirementStatus
    count: int

    model_config = ConfigDict(use_enum_values=True)


class ProjectStatsResponse(BaseModel):
    project_id: str
    total_tasks: int
    completed_tasks: int
    completion_rate: int
    tasks_by_status: list[GroupCount]
    requirements: list[RequirementGroupCount]
    recent_activity: list[TaskActivityResponse]


class TaskMetricCounts(BaseModel):
    comments: int
    checklists: int
    time_entries: int
    depends_on: int
    dependents: int
    subtasks: int


class TaskMetricsResponse(BaseModel):
    task_id: str
    counts: TaskMetricCounts
    checklist_completion: int = Field(..., ge=0, le=100)
    subtask_completion: int = Field(..., ge=0, le=100)
    time_spent_seconds: int
    time_spent: str
    created_at: datetime
    updated_at: datetime
