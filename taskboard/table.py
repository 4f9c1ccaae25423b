"""Client-side table shaping: search, column filters, sorting and paging.

Operates on already-fetched rows, so none of this touches the cache.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel


@dataclass(frozen=True)
class SortConfig:
    key: str
    direction: str = "asc"  # "asc" or "desc"


def next_sort(current: Optional[SortConfig], key: str) -> Optional[SortConfig]:
    """Cycle a column through ascending, descending and unsorted."""
    if current is None or current.key != key:
        return SortConfig(key, "asc")
    if current.direction == "asc":
        return SortConfig(key, "desc")
    return None


def _value(row: Any, key: str) -> Any:
    value = row.get(key) if isinstance(row, Mapping) else getattr(row, key, None)
    if isinstance(value, Enum):
        return value.value
    return value


def _values(row: Any) -> Iterable[Any]:
    if isinstance(row, BaseModel):
        return row.model_dump().values()
    if isinstance(row, Mapping):
        return row.values()
    return vars(row).values()


def search_rows(rows: Sequence[Any], term: str) -> list:
    """Rows where any attribute contains ``term``, ignoring case."""
    if not term:
        return list(rows)
    needle = term.lower()
    return [
        row
        for row in rows
        if any(
            needle in str(getattr(v, "value", v)).lower()
            for v in _values(row)
            if v is not None
        )
    ]


def filter_rows(rows: Sequence[Any], filters: Mapping[str, str]) -> list:
    result = list(rows)
    for key, wanted in filters.items():
        if wanted:
            result = [row for row in result if str(_value(row, key)) == wanted]
    return result


def filter_options(rows: Iterable[Any], key: str) -> list[str]:
    """Distinct non-empty values of a column, sorted."""
    return sorted({str(v) for v in (_value(row, key) for row in rows) if v})


def sort_rows(rows: Sequence[Any], sort: Optional[SortConfig]) -> list:
    """Stable sort by one column. Missing values always go last."""
    if sort is None:
        return list(rows)
    present = [row for row in rows if _value(row, sort.key) is not None]
    missing = [row for row in rows if _value(row, sort.key) is None]
    present.sort(key=lambda row: _value(row, sort.key), reverse=sort.direction == "desc")
    return present + missing


@dataclass(frozen=True)
class Page:
    rows: list
    number: int
    size: int
    total_rows: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_rows / self.size) if self.size else 0

    @property
    def has_next(self) -> bool:
        return self.number < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.number > 1


def paginate(rows: Sequence[Any], number: int = 1, size: int = 10) -> Page:
    """Slice out 1-based page ``number``; out-of-range pages are clamped."""
    if size < 1:
        raise ValueError("Page size must be positive")
    total_pages = max(1, math.ceil(len(rows) / size))
    number = min(max(number, 1), total_pages)
    start = (number - 1) * size
    return Page(list(rows[start:start + size]), number, size, len(rows))
