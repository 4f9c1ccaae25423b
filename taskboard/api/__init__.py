"""Shapes Entity Store calls into client models."""

from taskboard.api.projects import ProjectsApi
from taskboard.api.tasks import TasksApi

__all__ = ["ProjectsApi", "TasksApi"]
