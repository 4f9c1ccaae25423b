"""Helpers shared by the project and task services."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)

Clock = Callable[[], datetime]
Today = Callable[[], date]


def coerce(model: type[M], data: Any) -> M:
    """Validate raw input at the accessor boundary.

    Raises ``pydantic.ValidationError`` before anything reaches the store.
    """
    if isinstance(data, model):
        return data
    return model.model_validate(data)


def merged(entity: M, changes: dict, stamp: datetime) -> M:
    """Copy of ``entity`` with ``changes`` applied and a new ``updated_at``."""
    return entity.model_copy(update={**changes, "updated_at": stamp})


def without(entities: list, entity_id: str) -> list:
    return [entity for entity in entities if entity.id != entity_id]
