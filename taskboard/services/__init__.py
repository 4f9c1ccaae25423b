"""Cache-bound read and mutation accessors exposed to view-state controllers."""

from taskboard.services.projects import ProjectService
from taskboard.services.tasks import TaskService

__all__ = ["ProjectService", "TaskService"]
