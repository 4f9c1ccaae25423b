"""Task reads and writes against the Entity Store."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from taskboard.filters import (
    MOST_RECENTLY_CREATED,
    Embed,
    Eq,
    Gte,
    Query,
    TaskFilter,
    translate_task_filter,
)
from taskboard.models import Task, TaskCreate, TaskStats, TaskStatus, TaskUpdate
from taskboard.shaping import shape_task_row, shape_task_rows
from taskboard.stats import compute_stats
from taskboard.store.base import EntityStore

STATS_COLUMNS = ("status", "priority", "due_date", "created_at")


class TasksApi:
    """Every task response, list or single, carries the project reference."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def get_all(self, filters: Optional[TaskFilter] = None) -> list[Task]:
        rows = await self._store.list("tasks", translate_task_filter(filters))
        return shape_task_rows(rows)

    async def get_by_id(self, task_id: str) -> Task:
        row = await self._store.get("tasks", task_id, embed=Embed.project_ref)
        return shape_task_row(row)

    async def get_by_project(self, project_id: str) -> list[Task]:
        query = Query(
            kind="tasks",
            predicates=(Eq("project_id", project_id),),
            order=MOST_RECENTLY_CREATED,
        )
        return shape_task_rows(await self._store.list("tasks", query))

    async def create(self, data: TaskCreate) -> Task:
        row = await self._store.insert(
            "tasks", data.model_dump(mode="json"), embed=Embed.project_ref
        )
        return shape_task_row(row)

    async def update(self, task_id: str, data: TaskUpdate) -> Task:
        row = await self._store.update(
            "tasks",
            task_id,
            data.model_dump(mode="json", exclude_unset=True),
            embed=Embed.project_ref,
        )
        return shape_task_row(row)

    async def update_status(self, task_id: str, status: TaskStatus) -> Task:
        """Quick status change, e.g. from a drag-and-drop board."""
        row = await self._store.update(
            "tasks", task_id, {"status": TaskStatus(status).value}, embed=Embed.project_ref
        )
        return shape_task_row(row)

    async def delete(self, task_id: str) -> None:
        await self._store.delete("tasks", task_id)

    async def get_dashboard_stats(self, since: datetime, today: date) -> TaskStats:
        """Aggregate over tasks created at or after ``since``."""
        query = Query(
            kind="tasks",
            predicates=(Gte("created_at", since),),
            columns=STATS_COLUMNS,
        )
        rows = await self._store.list("tasks", query)
        return compute_stats(rows, today)
