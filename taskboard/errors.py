"""Error taxonomy shared by the store, cache and mutation layers."""

from __future__ import annotations


class TaskboardError(Exception):
    """Base class for all taskboard errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EntityStoreError(TaskboardError):
    """A call to the Entity Store failed (network, authorization, constraint)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(EntityStoreError):
    """A detail read targeted an identifier that does not exist."""


class NotAuthenticatedError(TaskboardError):
    """The operation needs a signed-in principal and there is none."""

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message)
