"""Project read accessors and mutations."""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from taskboard.api.projects import ProjectsApi
from taskboard.auth import PrincipalStore
from taskboard.cache import QueryCache, QueryResult
from taskboard.config import StaleTimes
from taskboard.filters import ProjectFilter
from taskboard.keys import ProjectKeys, TaskKeys
from taskboard.models import Project, ProjectCreate, ProjectUpdate, utcnow
from taskboard.mutations import MutationHandle, run_optimistic
from taskboard.notify import LogNotifier, Notifier
from taskboard.services.common import Clock, Today, coerce, merged, without

logger = logging.getLogger(__name__)


class ProjectService:
    """Reads and writes projects through the shared cache.

    Args:
        api: Project calls against the Entity Store.
        cache: The client's query cache.
        principals: Source of the owner for new projects.
        notifier: Receives success and failure notifications.
        stale_times: Freshness windows per key class.
        now: Timestamp source for optimistic ``updated_at`` stamps.
        today: Current date used for due-date statistics.
    """

    def __init__(
        self,
        api: ProjectsApi,
        cache: QueryCache,
        principals: PrincipalStore,
        *,
        notifier: Optional[Notifier] = None,
        stale_times: Optional[StaleTimes] = None,
        now: Clock = utcnow,
        today: Optional[Today] = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._principals = principals
        self._notifier = notifier or LogNotifier()
        self._stale = stale_times or StaleTimes()
        self._now = now
        self._today = today or (lambda: self._now().date())

    async def list(self, filters: Optional[ProjectFilter] = None) -> QueryResult:
        return await self._cache.fetch(
            ProjectKeys.list(filters),
            lambda: self._api.get_all(filters),
            self._stale.project_list,
        )

    async def get(self, project_id: str) -> QueryResult:
        if not project_id:
            return QueryResult()
        return await self._cache.fetch(
            ProjectKeys.detail(project_id),
            lambda: self._api.get_by_id(project_id),
            self._stale.project_detail,
        )

    async def stats(self, project_id: str) -> QueryResult:
        if not project_id:
            return QueryResult()
        return await self._cache.fetch(
            ProjectKeys.stats(project_id),
            lambda: self._api.get_stats(project_id, self._today()),
            self._stale.project_stats,
        )

    def create(self, data: Union[ProjectCreate, dict]) -> MutationHandle:
        payload = coerce(ProjectCreate, data)
        return MutationHandle(
            self._create(payload),
            notifier=self._notifier,
            success_message="Project created successfully",
            failure_message="Failed to create project",
        )

    async def _create(self, payload: ProjectCreate) -> Project:
        owner = self._principals.require()
        return await run_optimistic(
            self._cache,
            write=lambda: self._api.create(payload, owner.id),
            commit=self._committed,
        )

    def update(self, project_id: str, data: Union[ProjectUpdate, dict]) -> MutationHandle:
        payload = coerce(ProjectUpdate, data)
        changes = payload.changes()
        detail = ProjectKeys.detail(project_id)

        def apply() -> None:
            self._cache.update_data(detail, lambda p: merged(p, changes, self._now()))

        return MutationHandle(
            run_optimistic(
                self._cache,
                write=lambda: self._api.update(project_id, payload),
                lock_key=detail,
                touched=[detail],
                apply=apply,
                commit=self._committed,
            ),
            notifier=self._notifier,
            success_message="Project updated successfully",
            failure_message="Failed to update project",
        )

    def delete(self, project_id: str) -> MutationHandle:
        """Delete a project. The store removes its tasks with it."""
        detail = ProjectKeys.detail(project_id)

        def apply() -> None:
            self._cache.update_all(
                ProjectKeys.lists(), lambda projects: without(projects, project_id)
            )

        def commit(_: Any) -> None:
            self._cache.remove(detail)
            self._cache.remove(ProjectKeys.stats(project_id))
            orphaned = [
                key
                for key in self._cache.keys(TaskKeys.details())
                if self._cache.get_data(key).project_id == project_id
            ]
            for key in orphaned:
                self._cache.remove(key)
            logger.debug(
                "Project %s deleted, dropped %d cached task(s)", project_id, len(orphaned)
            )
            self._cache.invalidate(ProjectKeys.lists())
            self._cache.invalidate(TaskKeys.lists())
            self._cache.invalidate(TaskKeys.by_project(project_id))
            self._cache.invalidate(TaskKeys.dashboard_stats())

        return MutationHandle(
            run_optimistic(
                self._cache,
                write=lambda: self._api.delete(project_id),
                lock_key=detail,
                touched=[detail, ProjectKeys.stats(project_id)],
                families=[ProjectKeys.lists()],
                apply=apply,
                commit=commit,
            ),
            notifier=self._notifier,
            success_message="Project deleted successfully",
            failure_message="Failed to delete project",
        )

    def _committed(self, project: Project) -> None:
        self._cache.set_data(ProjectKeys.detail(project.id), project)
        self._cache.invalidate(ProjectKeys.lists())
