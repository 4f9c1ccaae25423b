"""Project reads and writes against the Entity Store."""

from __future__ import annotations

from datetime import date
from typing import Optional

from taskboard.filters import Embed, Eq, ProjectFilter, Query, translate_project_filter
from taskboard.models import Project, ProjectCreate, ProjectUpdate, TaskStats
from taskboard.shaping import shape_project_row, shape_project_rows
from taskboard.stats import compute_stats
from taskboard.store.base import EntityStore

STATS_COLUMNS = ("status", "priority", "due_date")


class ProjectsApi:
    """Lists embed a task count; detail, create and update embed the task list."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def get_all(self, filters: Optional[ProjectFilter] = None) -> list[Project]:
        query = translate_project_filter(filters)
        rows = await self._store.list("projects", query)
        return shape_project_rows(rows, query.embed)

    async def get_by_id(self, project_id: str) -> Project:
        row = await self._store.get("projects", project_id, embed=Embed.task_list)
        return shape_project_row(row, Embed.task_list)

    async def create(self, data: ProjectCreate, owner_id: str) -> Project:
        fields = {**data.model_dump(mode="json"), "owner_id": owner_id}
        row = await self._store.insert("projects", fields, embed=Embed.task_list)
        return shape_project_row(row, Embed.task_list)

    async def update(self, project_id: str, data: ProjectUpdate) -> Project:
        row = await self._store.update(
            "projects",
            project_id,
            data.model_dump(mode="json", exclude_unset=True),
            embed=Embed.task_list,
        )
        return shape_project_row(row, Embed.task_list)

    async def delete(self, project_id: str) -> None:
        await self._store.delete("projects", project_id)

    async def get_stats(self, project_id: str, today: date) -> TaskStats:
        query = Query(
            kind="tasks",
            predicates=(Eq("project_id", project_id),),
            columns=STATS_COLUMNS,
        )
        rows = await self._store.list("tasks", query)
        return compute_stats(rows, today)
