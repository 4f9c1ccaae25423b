"""Task read accessors and mutations.

Every task mutation invalidates all cached task lists (a list cannot know
whether a change affects its filter), the scoped list and statistics of the
task's project, and the dashboard aggregate.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional, Union

from taskboard.api.tasks import TasksApi
from taskboard.cache import QueryCache, QueryResult
from taskboard.config import StaleTimes
from taskboard.filters import TaskFilter
from taskboard.keys import ProjectKeys, TaskKeys
from taskboard.models import Task, TaskCreate, TaskList, TaskStatus, TaskUpdate, utcnow
from taskboard.mutations import MutationHandle, run_optimistic
from taskboard.notify import LogNotifier, Notifier
from taskboard.services.common import Clock, Today, coerce, merged, without
from taskboard.stats import DASHBOARD_WINDOW_DAYS

logger = logging.getLogger(__name__)


class TaskService:
    def __init__(
        self,
        api: TasksApi,
        cache: QueryCache,
        *,
        notifier: Optional[Notifier] = None,
        stale_times: Optional[StaleTimes] = None,
        now: Clock = utcnow,
        today: Optional[Today] = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._notifier = notifier or LogNotifier()
        self._stale = stale_times or StaleTimes()
        self._now = now
        self._today = today or (lambda: self._now().date())

    # -- reads ---------------------------------------------------------------

    async def list(self, filters: Optional[TaskFilter] = None) -> QueryResult:
        return await self._cache.fetch(
            TaskKeys.list(filters),
            lambda: self._api.get_all(filters),
            self._stale.task_list,
        )

    async def get(self, task_id: str) -> QueryResult:
        if not task_id:
            return QueryResult()
        return await self._cache.fetch(
            TaskKeys.detail(task_id),
            lambda: self._api.get_by_id(task_id),
            self._stale.task_detail,
        )

    async def by_project(self, project_id: str) -> QueryResult:
        if not project_id:
            return QueryResult()
        return await self._cache.fetch(
            TaskKeys.by_project(project_id),
            lambda: self._api.get_by_project(project_id),
            self._stale.task_by_project,
        )

    async def dashboard_stats(self) -> QueryResult:
        """Aggregates over tasks created in the last 30 days."""
        return await self._cache.fetch(
            TaskKeys.dashboard_stats(),
            self._fetch_dashboard_stats,
            self._stale.dashboard_stats,
        )

    async def _fetch_dashboard_stats(self):
        since = self._now() - timedelta(days=DASHBOARD_WINDOW_DAYS)
        return await self._api.get_dashboard_stats(since, self._today())

    # -- mutations -----------------------------------------------------------

    def create(self, data: Union[TaskCreate, dict]) -> MutationHandle:
        payload = coerce(TaskCreate, data)
        return MutationHandle(
            run_optimistic(
                self._cache,
                write=lambda: self._api.create(payload),
                commit=lambda task: self._committed(task, created=True),
            ),
            notifier=self._notifier,
            success_message="Task created successfully",
            failure_message="Failed to create task",
        )

    def update(self, task_id: str, data: Union[TaskUpdate, dict]) -> MutationHandle:
        payload = coerce(TaskUpdate, data)
        return self._patch(
            task_id,
            payload.changes(),
            write=lambda: self._api.update(task_id, payload),
            success_message="Task updated successfully",
            failure_message="Failed to update task",
        )

    def set_status(self, task_id: str, status: Union[TaskStatus, str]) -> MutationHandle:
        """Quick status change. Only the status and timestamp are patched."""
        status = TaskStatus(status)
        return self._patch(
            task_id,
            {"status": status},
            write=lambda: self._api.update_status(task_id, status),
            success_message="Task status updated",
            failure_message="Failed to update task status",
        )

    def delete(self, task_id: str) -> MutationHandle:
        return MutationHandle(
            self._delete(task_id),
            notifier=self._notifier,
            success_message="Task deleted successfully",
            failure_message="Failed to delete task",
        )

    def _patch(self, task_id, changes, *, write, success_message, failure_message):
        detail = TaskKeys.detail(task_id)

        def apply() -> None:
            self._cache.update_data(detail, lambda task: merged(task, changes, self._now()))

        return MutationHandle(
            run_optimistic(
                self._cache,
                write=write,
                lock_key=detail,
                touched=[detail],
                apply=apply,
                commit=self._committed,
            ),
            notifier=self._notifier,
            success_message=success_message,
            failure_message=failure_message,
        )

    async def _delete(self, task_id: str) -> None:
        detail = TaskKeys.detail(task_id)
        project_id = self.cached_project_id(task_id)

        touched = [detail]
        if project_id:
            touched += [TaskKeys.by_project(project_id), ProjectKeys.detail(project_id)]
        else:
            logger.debug("Project of task %s not cached, skipping scoped list", task_id)

        def apply() -> None:
            self._cache.update_all(TaskKeys.lists(), lambda tasks: without(tasks, task_id))
            if project_id:
                self._cache.update_data(
                    TaskKeys.by_project(project_id), lambda tasks: without(tasks, task_id)
                )
                self._cache.update_data(
                    ProjectKeys.detail(project_id), lambda p: _drop_embedded(p, task_id)
                )

        def commit(_: Any) -> None:
            self._cache.remove(detail)
            self._invalidate(project_id, count_changed=True)

        await run_optimistic(
            self._cache,
            write=lambda: self._api.delete(task_id),
            lock_key=detail,
            touched=touched,
            families=[TaskKeys.lists()],
            apply=apply,
            commit=commit,
        )

    def cached_project_id(self, task_id: str) -> Optional[str]:
        """Project of ``task_id`` as far as the cache knows, else None."""
        task = self._cache.get_data(TaskKeys.detail(task_id))
        if task is not None:
            return task.project_id
        for prefix in (TaskKeys.lists(), TaskKeys.by_projects()):
            for key in self._cache.keys(prefix):
                for cached in self._cache.get_data(key, []):
                    if cached.id == task_id:
                        return cached.project_id
        return None

    def _committed(self, task: Task, created: bool = False) -> None:
        self._cache.set_data(TaskKeys.detail(task.id), task)
        self._invalidate(task.project_id, count_changed=created)

    def _invalidate(self, project_id: Optional[str], count_changed: bool) -> None:
        self._cache.invalidate(TaskKeys.lists())
        self._cache.invalidate(TaskKeys.dashboard_stats())
        if project_id:
            self._cache.invalidate(TaskKeys.by_project(project_id))
            self._cache.invalidate(ProjectKeys.stats(project_id))
            self._cache.invalidate(ProjectKeys.detail(project_id))
        if count_changed:
            self._cache.invalidate(ProjectKeys.lists())


def _drop_embedded(project, task_id: str):
    if isinstance(project.tasks, TaskList):
        return project.model_copy(
            update={"tasks": TaskList(tasks=without(project.tasks.tasks, task_id))}
        )
    return project
