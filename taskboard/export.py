"""CSV export of projects and tasks.

Every field is double-quoted, the header names each attribute in canonical
order and the file name carries the current date.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Sequence, Union

from pydantic import BaseModel

from taskboard.models import Project, Task

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = (
    "id",
    "name",
    "description",
    "status",
    "owner_id",
    "created_at",
    "updated_at",
    "task_count",
)
TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "project_id",
    "assignee_id",
    "due_date",
    "created_at",
    "updated_at",
)


def export_filename(kind: str, today: date) -> str:
    return f"{kind}-{today.isoformat()}.csv"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def to_csv(rows: Iterable[BaseModel], columns: Sequence[str]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(getattr(row, name)) for name in columns])
    return buffer.getvalue()


def export_projects(projects: Iterable[Project]) -> str:
    return to_csv(projects, PROJECT_COLUMNS)


def export_tasks(tasks: Iterable[Task]) -> str:
    return to_csv(tasks, TASK_COLUMNS)


def write_export(
    kind: str,
    rows: Iterable[Union[Project, Task]],
    directory: Union[str, Path],
    today: date,
) -> Path:
    """Write ``rows`` to ``<directory>/<kind>-<date>.csv`` and return the path."""
    if kind == "projects":
        content = export_projects(rows)
    elif kind == "tasks":
        content = export_tasks(rows)
    else:
        raise ValueError(f"Unknown entity kind: {kind}")
    path = Path(directory) / export_filename(kind, today)
    path.write_text(content, encoding="utf-8")
    logger.info("Exported %s to %s", kind, path)
    return path
