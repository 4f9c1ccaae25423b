"""SQLModel tables for the local Entity Store."""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from taskboard.models import ProjectStatus, TaskPriority, TaskStatus, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class ProjectRecord(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: ProjectStatus = Field(default=ProjectStatus.active)
    owner_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TaskRecord(SQLModel, table=True):
    """Task row. Deleting the parent project deletes it too."""
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: TaskStatus = Field(default=TaskStatus.todo)
    priority: TaskPriority = Field(default=TaskPriority.medium)
    project_id: str = Field(foreign_key="projects.id", index=True)
    assignee_id: Optional[str] = Field(default=None, index=True)
    due_date: Optional[date] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


TABLES = {"projects": ProjectRecord, "tasks": TaskRecord}
