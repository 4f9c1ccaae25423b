"""Contract every Entity Store satisfies.

Rows cross this boundary as plain dicts in the store's raw shape: joined
parent projects arrive as singleton collections and embedded task counts as
``[{"count": n}]``. Shaping into client models happens in
:mod:`taskboard.shaping`. Failures raise :class:`~taskboard.errors.EntityStoreError`
(or :class:`~taskboard.errors.NotFoundError` for a missing row) carrying one
human-readable message.
"""

from __future__ import annotations

from typing import Protocol

from taskboard.filters import Embed, Query


class EntityStore(Protocol):
    async def list(self, kind: str, query: Query) -> list[dict]:
        """Rows matching every predicate of ``query``, in its order."""
        ...

    async def get(self, kind: str, entity_id: str, *, embed: Embed = Embed.none) -> dict:
        ...

    async def insert(self, kind: str, fields: dict, *, embed: Embed = Embed.none) -> dict:
        """Create a row. The store assigns the identifier and timestamps."""
        ...

    async def update(
        self, kind: str, entity_id: str, fields: dict, *, embed: Embed = Embed.none
    ) -> dict:
        """Change only the provided fields and refresh ``updated_at``."""
        ...

    async def delete(self, kind: str, entity_id: str) -> None:
        ...

    async def aclose(self) -> None:
        ...
