"""Task and project management client: query translation, caching and optimistic writes."""

from taskboard.client import TaskboardClient
from taskboard.errors import (
    EntityStoreError,
    NotAuthenticatedError,
    NotFoundError,
    TaskboardError,
)

__all__ = [
    "EntityStoreError",
    "NotAuthenticatedError",
    "NotFoundError",
    "TaskboardClient",
    "TaskboardError",
]
