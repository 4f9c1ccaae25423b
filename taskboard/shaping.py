"""Shape raw Entity Store rows into client models.

Every task read path (list, detail, create response, update response) goes
through :func:`shape_task_row` so cache writes are structurally identical
whichever call produced them.
"""

from __future__ import annotations

from typing import Any, Iterable

from taskboard.errors import EntityStoreError
from taskboard.filters import Embed
from taskboard.models import Project, Task


def normalize_project_ref(value: Any) -> Any:
    """Collapse a joined parent project into a single nullable object.

    The store returns the join as a singleton collection; an already
    collapsed value (mapping, model or None) is returned unchanged.
    """
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def normalize_task_row(row: dict) -> dict:
    data = dict(row)
    if "project" in data:
        data["project"] = normalize_project_ref(data["project"])
    return data


def shape_task_row(row: dict) -> Task:
    return Task.model_validate(normalize_task_row(row))


def shape_task_rows(rows: Iterable[dict]) -> list[Task]:
    return [shape_task_row(row) for row in rows]


def _embedded_count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, (list, tuple)):
        if not value:
            return 0
        first = value[0]
        if isinstance(first, dict) and "count" in first:
            return int(first["count"])
    raise EntityStoreError(f"Unexpected task count shape: {value!r}")


def shape_project_row(row: dict, embed: Embed) -> Project:
    """Resolve the embedded ``tasks`` value into its tagged variant."""
    data = dict(row)
    embedded = data.pop("tasks", None)
    if embed is Embed.task_count:
        data["tasks"] = {"kind": "count", "count": _embedded_count(embedded)}
    elif embed is Embed.task_list:
        data["tasks"] = {"kind": "list", "tasks": shape_task_rows(embedded or [])}
    return Project.model_validate(data)


def shape_project_rows(rows: Iterable[dict], embed: Embed) -> list[Project]:
    return [shape_project_row(row, embed) for row in rows]
