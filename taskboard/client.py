"""Composition root tying the store, cache, principal store and services together.

The client is built explicitly and handed to whatever needs it; there is no
module-level instance. ``start()`` subscribes to auth changes and loads the
current user, ``close()`` tears everything down again::

    async with TaskboardClient.from_settings(Settings.from_env()) as client:
        projects = await client.list("projects")
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Any, Callable, Optional, Union

from taskboard.api import ProjectsApi, TasksApi
from taskboard.auth import AuthProvider, LocalAuthProvider, PrincipalStore
from taskboard.cache import QueryCache, QueryResult
from taskboard.config import Settings
from taskboard.debounce import DebouncedSearch
from taskboard.filters import ProjectFilter, TaskFilter
from taskboard.models import TaskStatus, utcnow
from taskboard.mutations import MutationHandle
from taskboard.notify import LogNotifier, Notifier
from taskboard.services import ProjectService, TaskService
from taskboard.store import EntityStore, RestAuthProvider, RestEntityStore, SqlEntityStore

logger = logging.getLogger(__name__)


class TaskboardClient:
    """Cached, optimistic access to projects and tasks.

    Args:
        store: Entity Store for rows.
        auth: Identity provider feeding the principal store.
        settings: Freshness windows and read retry policy.
        notifier: Receives mutation success and failure notifications.
        clock: Monotonic time source for freshness windows.
        now: Wall-clock source for optimistic timestamps and the dashboard window.
        today: Current date for due-date statistics (defaults to the UTC date).
    """

    def __init__(
        self,
        store: EntityStore,
        auth: AuthProvider,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store
        self.auth = auth
        self.notifier = notifier or LogNotifier()
        self.cache = QueryCache(
            clock=clock,
            retries=self.settings.read_retries,
            retry_delay=self.settings.retry_delay,
        )
        self.principals = PrincipalStore(auth, on_signed_out=self.cache.clear)
        self.projects = ProjectService(
            ProjectsApi(store),
            self.cache,
            self.principals,
            notifier=self.notifier,
            stale_times=self.settings.stale_times,
            now=now,
            today=today,
        )
        self.tasks = TaskService(
            TasksApi(store),
            self.cache,
            notifier=self.notifier,
            stale_times=self.settings.stale_times,
            now=now,
            today=today,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "TaskboardClient":
        """Use the managed backend when a URL is configured, else the local SQL store."""
        if settings.uses_remote_backend:
            auth = RestAuthProvider(
                settings.backend_url, settings.anon_key, timeout=settings.request_timeout
            )
            store = RestEntityStore(
                settings.backend_url,
                settings.anon_key,
                token_provider=lambda: auth.access_token,
                timeout=settings.request_timeout,
            )
            logger.info("Using managed backend at %s", settings.backend_url)
        else:
            store = SqlEntityStore.from_url(settings.database_url)
            auth = LocalAuthProvider()
            logger.info("Using local store at %s", settings.database_url)
        return cls(store, auth, settings=settings, **kwargs)

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        await self.principals.start()

    async def close(self) -> None:
        await self.principals.close()
        await self.cache.close()
        await self.store.aclose()
        aclose = getattr(self.auth, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "TaskboardClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -- read accessors ------------------------------------------------------

    async def list(
        self, kind: str, filters: Union[TaskFilter, ProjectFilter, dict, None] = None
    ) -> QueryResult:
        if kind == "projects":
            return await self.projects.list(_as_filter(ProjectFilter, filters))
        if kind == "tasks":
            return await self.tasks.list(_as_filter(TaskFilter, filters))
        raise ValueError(f"Unknown entity kind: {kind}")

    async def get(self, kind: str, entity_id: str) -> QueryResult:
        return await self._service(kind).get(entity_id)

    async def get_stats(self, project_id: str) -> QueryResult:
        return await self.projects.stats(project_id)

    async def get_dashboard_stats(self) -> QueryResult:
        return await self.tasks.dashboard_stats()

    # -- mutation accessors --------------------------------------------------

    def create(self, kind: str, data: Any) -> MutationHandle:
        return self._service(kind).create(data)

    def update(self, kind: str, entity_id: str, data: Any) -> MutationHandle:
        return self._service(kind).update(entity_id, data)

    def delete(self, kind: str, entity_id: str) -> MutationHandle:
        return self._service(kind).delete(entity_id)

    def set_status(self, task_id: str, status: Union[TaskStatus, str]) -> MutationHandle:
        return self.tasks.set_status(task_id, status)

    # -- input helpers -------------------------------------------------------

    def search(
        self,
        on_change: Callable[[TaskFilter], None],
        filters: Optional[TaskFilter] = None,
    ) -> DebouncedSearch:
        """Debounced task search using the configured quiescence delay."""
        return DebouncedSearch(on_change, filters, delay=self.settings.search_debounce)

    def _service(self, kind: str) -> Union[ProjectService, TaskService]:
        if kind == "projects":
            return self.projects
        if kind == "tasks":
            return self.tasks
        raise ValueError(f"Unknown entity kind: {kind}")


def _as_filter(model, filters):
    if filters is None or isinstance(filters, model):
        return filters
    return model.model_validate(filters)
