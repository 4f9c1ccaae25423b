"""Task and project filters and their translation into store queries.

A filter is a transient client-side value. Every field is optional and the
provided ones combine with AND. The translators turn a filter into a
backend-neutral :class:`Query` that each Entity Store renders in its own
dialect (SQL for the local store, PostgREST parameters for the remote one).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator

from taskboard.models import ProjectStatus, TaskPriority, TaskStatus


class TaskFilter(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Optional[list[TaskStatus]] = None
    priority: Optional[list[TaskPriority]] = None
    project_id: Optional[str] = None
    assignee_id: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @field_validator("project_id", "assignee_id", "search", mode="before")
    @classmethod
    def _blank_is_absent(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class ProjectFilter(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Optional[list[ProjectStatus]] = None
    owner_id: Optional[str] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    @field_validator("owner_id", "search", mode="before")
    @classmethod
    def _blank_is_absent(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


def filter_signature(filters: Union[TaskFilter, ProjectFilter, None]) -> str:
    """Canonical serialization of a filter, used as a cache key segment.

    Absent fields and empty sets are dropped and set members are sorted,
    so two filters describing the same constraint share a signature.
    """
    if filters is None:
        return "{}"
    canonical: dict[str, Any] = {}
    for name, value in filters.model_dump(mode="json", exclude_none=True).items():
        if isinstance(value, list):
            if not value:
                continue
            value = sorted(set(value))
        canonical[name] = value
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"))


# -- query description ---------------------------------------------------------


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: tuple


@dataclass(frozen=True)
class Search:
    """Case-insensitive substring match on any of ``fields``."""
    fields: tuple[str, ...]
    term: str


@dataclass(frozen=True)
class Gte:
    field: str
    value: Any


@dataclass(frozen=True)
class Lte:
    field: str
    value: Any


Predicate = Union[Eq, In, Search, Gte, Lte]


@dataclass(frozen=True)
class Order:
    field: str
    descending: bool = True


class Embed(str, Enum):
    """Related rows a read pulls in alongside the main entity."""
    none = "none"
    project_ref = "project_ref"
    task_count = "task_count"
    task_list = "task_list"


@dataclass(frozen=True)
class Query:
    kind: str
    predicates: tuple[Predicate, ...] = ()
    order: Optional[Order] = None
    embed: Embed = Embed.none
    columns: Optional[tuple[str, ...]] = None


MOST_RECENTLY_UPDATED = Order("updated_at", descending=True)
MOST_RECENTLY_CREATED = Order("created_at", descending=True)


def _enum_values(members) -> tuple:
    return tuple(sorted({m.value if isinstance(m, Enum) else m for m in members}))


def translate_task_filter(filters: Optional[TaskFilter] = None) -> Query:
    """Map a task filter to the conjunction of its predicates."""
    f = filters or TaskFilter()
    predicates: list[Predicate] = []
    if f.project_id:
        predicates.append(Eq("project_id", f.project_id))
    if f.status:
        predicates.append(In("status", _enum_values(f.status)))
    if f.priority:
        predicates.append(In("priority", _enum_values(f.priority)))
    if f.assignee_id:
        predicates.append(Eq("assignee_id", f.assignee_id))
    if f.search:
        predicates.append(Search(("title", "description"), f.search))
    if f.date_from is not None:
        predicates.append(Gte("due_date", f.date_from))
    if f.date_to is not None:
        predicates.append(Lte("due_date", f.date_to))
    return Query(
        kind="tasks",
        predicates=tuple(predicates),
        order=MOST_RECENTLY_UPDATED,
        embed=Embed.project_ref,
    )


def translate_project_filter(filters: Optional[ProjectFilter] = None) -> Query:
    f = filters or ProjectFilter()
    predicates: list[Predicate] = []
    if f.status:
        predicates.append(In("status", _enum_values(f.status)))
    if f.owner_id:
        predicates.append(Eq("owner_id", f.owner_id))
    if f.search:
        predicates.append(Search(("name", "description"), f.search))
    if f.created_from is not None:
        predicates.append(Gte("created_at", f.created_from))
    if f.created_to is not None:
        predicates.append(Lte("created_at", f.created_to))
    return Query(
        kind="projects",
        predicates=tuple(predicates),
        order=MOST_RECENTLY_UPDATED,
        embed=Embed.task_count,
    )
