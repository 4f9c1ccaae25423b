"""Hierarchical cache keys.

Keys are tuples so any leading slice is a prefix that addresses a whole
family, e.g. ``("tasks", "list")`` matches every filtered task list.
"""

from __future__ import annotations

from typing import Optional

from taskboard.filters import ProjectFilter, TaskFilter, filter_signature

Key = tuple


class ProjectKeys:
    all: Key = ("projects",)

    @staticmethod
    def lists() -> Key:
        return ("projects", "list")

    @staticmethod
    def list(filters: Optional[ProjectFilter] = None) -> Key:
        return ("projects", "list", filter_signature(filters))

    @staticmethod
    def details() -> Key:
        return ("projects", "detail")

    @staticmethod
    def detail(project_id: str) -> Key:
        return ("projects", "detail", project_id)

    @staticmethod
    def stats(project_id: str) -> Key:
        return ("projects", "stats", project_id)


class TaskKeys:
    all: Key = ("tasks",)

    @staticmethod
    def lists() -> Key:
        return ("tasks", "list")

    @staticmethod
    def list(filters: Optional[TaskFilter] = None) -> Key:
        return ("tasks", "list", filter_signature(filters))

    @staticmethod
    def details() -> Key:
        return ("tasks", "detail")

    @staticmethod
    def detail(task_id: str) -> Key:
        return ("tasks", "detail", task_id)

    @staticmethod
    def by_projects() -> Key:
        return ("tasks", "byProject")

    @staticmethod
    def by_project(project_id: str) -> Key:
        return ("tasks", "byProject", project_id)

    @staticmethod
    def dashboard_stats() -> Key:
        return ("tasks", "dashboardStats")


def format_key(key: Key) -> str:
    return ".".join(str(part) for part in key)


def matches(key: Key, prefix: Key) -> bool:
    return key[: len(prefix)] == prefix
