"""Derived task statistics."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Union

from taskboard.models import Task, TaskStats

DASHBOARD_WINDOW_DAYS = 30


def _field(task: Union[Task, Mapping[str, Any]], name: str) -> Any:
    if isinstance(task, Mapping):
        value = task.get(name)
    else:
        value = getattr(task, name)
    return getattr(value, "value", value)


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def compute_stats(tasks: Iterable[Union[Task, Mapping[str, Any]]], today: date) -> TaskStats:
    """Count tasks by status, priority and due date relative to ``today``.

    Overdue means a due date before today on a task that is not done;
    due today counts every task whose due date is today.
    """
    stats = {
        "total": 0,
        "completed": 0,
        "in_progress": 0,
        "todo": 0,
        "overdue": 0,
        "due_today": 0,
        "high_priority": 0,
    }
    for task in tasks:
        status = _field(task, "status")
        due = _as_date(_field(task, "due_date"))
        stats["total"] += 1
        if status == "done":
            stats["completed"] += 1
        elif status == "in_progress":
            stats["in_progress"] += 1
        elif status == "todo":
            stats["todo"] += 1
        if due is not None and due < today and status != "done":
            stats["overdue"] += 1
        if due is not None and due == today:
            stats["due_today"] += 1
        if _field(task, "priority") == "high" and status != "done":
            stats["high_priority"] += 1
    return TaskStats(**stats)
