"""Project and task models for the taskboard client."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ProjectStatus(str, Enum):
    active = "active"
    completed = "completed"
    archived = "archived"


class TaskStatus(str, Enum):
    todo = "todo"
    in_progress = "in_progress"
    done = "done"


class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _reject_null(value):
    if value is None:
        raise ValueError("Field cannot be null")
    return value


# -- read shapes ---------------------------------------------------------------


class ProjectRef(BaseModel):
    """Denormalized parent project reference carried by a task."""
    id: str
    name: str


class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    project_id: str
    assignee_id: Optional[str] = None
    due_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime
    project: Optional[ProjectRef] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class TaskList(BaseModel):
    """Embedded task rows of a project detail read."""
    kind: Literal["list"] = "list"
    tasks: list[Task] = Field(default_factory=list)


class TaskCount(BaseModel):
    """Embedded ``count`` aggregate of a project list read."""
    kind: Literal["count"] = "count"
    count: int = 0


ProjectTasksView = Annotated[Union[TaskList, TaskCount], Field(discriminator="kind")]


class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.active
    owner_id: str
    created_at: datetime
    updated_at: datetime
    tasks: Optional[ProjectTasksView] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @computed_field
    @property
    def task_count(self) -> int:
        """Number of tasks, whichever embed populated ``tasks``."""
        if self.tasks is None:
            return 0
        if isinstance(self.tasks, TaskCount):
            return self.tasks.count
        return len(self.tasks.tasks)


class TaskStats(BaseModel):
    """Aggregates recomputed from a task set on every request."""
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    todo: int = 0
    overdue: int = 0
    due_today: int = 0
    high_priority: int = 0


# -- input shapes --------------------------------------------------------------


class _InputModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class ProjectCreate(_InputModel):
    """Fields a user supplies when creating a project. The owner comes from the session."""
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: ProjectStatus = ProjectStatus.active

    _blank_description = field_validator("description", mode="before")(_blank_to_none)


class ProjectUpdate(_InputModel):
    """Partial project update. Only fields explicitly set are sent."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[ProjectStatus] = None

    _name_not_null = field_validator("name", "status", mode="before")(_reject_null)
    _blank_description = field_validator("description", mode="before")(_blank_to_none)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class TaskCreate(_InputModel):
    """Fields for a new task. Status and priority default to todo/medium."""
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    project_id: str = Field(min_length=1)
    assignee_id: Optional[str] = None
    due_date: Optional[date] = None

    _blank_optional = field_validator(
        "description", "assignee_id", "due_date", mode="before"
    )(_blank_to_none)


class TaskUpdate(_InputModel):
    """Partial task update. The owning project is immutable."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = None
    due_date: Optional[date] = None

    _not_null = field_validator("title", "status", "priority", mode="before")(_reject_null)
    _blank_optional = field_validator(
        "description", "assignee_id", "due_date", mode="before"
    )(_blank_to_none)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)
