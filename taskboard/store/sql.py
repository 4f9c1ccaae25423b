"""Local Entity Store over SQLite (or any SQLAlchemy URL) using SQLModel.

Mirrors the managed backend closely enough to develop and test against:
server-assigned ids and timestamps, a foreign-key check on task insert,
cascading project deletes, and raw row shapes with joined references as
singleton collections.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select
from sqlmodel.pool import StaticPool

from taskboard.errors import EntityStoreError, NotFoundError
from taskboard.filters import Embed, Eq, Gte, In, Lte, Query, Search
from taskboard.store.tables import TABLES, ProjectRecord, TaskRecord, utcnow

logger = logging.getLogger(__name__)

_LABELS = {"projects": "Project", "tasks": "Task"}
_SERVER_ASSIGNED = frozenset({"id", "created_at", "updated_at"})
_IMMUTABLE = frozenset({"id", "owner_id", "project_id", "created_at", "updated_at"})


def create_store_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


def _clause(model, predicate):
    """Translate one query predicate into a SQL expression on ``model``."""
    if isinstance(predicate, Search):
        return or_(
            *(
                getattr(model, name).icontains(predicate.term, autoescape=True)
                for name in predicate.fields
            )
        )
    column = getattr(model, predicate.field)
    if isinstance(predicate, Eq):
        return column == predicate.value
    if isinstance(predicate, In):
        return column.in_(predicate.values)
    if isinstance(predicate, Gte):
        return column >= predicate.value
    if isinstance(predicate, Lte):
        return column <= predicate.value
    raise TypeError(f"Unsupported predicate: {predicate!r}")


class SqlEntityStore:
    """Entity Store backed by a SQL database.

    Session work is blocking, so each call runs in a worker thread. A lock
    serializes those calls, which lets in-memory SQLite share its single
    connection safely.

    Args:
        engine: SQLAlchemy engine whose schema already exists.
        now: Timestamp source for ``created_at``/``updated_at``.
    """

    def __init__(self, engine: Engine, now: Optional[Callable[[], datetime]] = None) -> None:
        self._engine = engine
        self._now = now or utcnow
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "SqlEntityStore":
        engine = create_store_engine(url)
        SQLModel.metadata.create_all(engine)
        return cls(engine, **kwargs)

    @classmethod
    def in_memory(cls, **kwargs) -> "SqlEntityStore":
        return cls.from_url("sqlite://", **kwargs)

    # -- EntityStore ---------------------------------------------------------

    async def list(self, kind: str, query: Query) -> list[dict]:
        return await self._call(self._list, kind, query)

    async def get(self, kind: str, entity_id: str, *, embed: Embed = Embed.none) -> dict:
        return await self._call(self._get, kind, entity_id, embed)

    async def insert(self, kind: str, fields: dict, *, embed: Embed = Embed.none) -> dict:
        return await self._call(self._insert, kind, fields, embed)

    async def update(
        self, kind: str, entity_id: str, fields: dict, *, embed: Embed = Embed.none
    ) -> dict:
        return await self._call(self._update, kind, entity_id, fields, embed)

    async def delete(self, kind: str, entity_id: str) -> None:
        await self._call(self._delete, kind, entity_id)

    async def aclose(self) -> None:
        await asyncio.to_thread(self._engine.dispose)

    # -- private helpers -----------------------------------------------------

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except SQLAlchemyError as exc:
            logger.error("Store call %s failed: %s", fn.__name__, exc)
            raise EntityStoreError(str(getattr(exc, "orig", None) or exc)) from exc
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise EntityStoreError(f"Invalid row: {errors}", 400) from exc

    def _locked(self, fn, *args):
        with self._lock:
            return fn(*args)

    @staticmethod
    def _model(kind: str):
        try:
            return TABLES[kind]
        except KeyError:
            raise EntityStoreError(f"Unknown entity kind: {kind}") from None

    def _require(self, session: Session, kind: str, entity_id: str):
        record = session.get(self._model(kind), entity_id)
        if record is None:
            raise NotFoundError(f"{_LABELS[kind]} not found", 404)
        return record

    def _row(self, session: Session, record, embed: Embed, columns=None) -> dict:
        row = record.model_dump(mode="json")
        if columns:
            row = {name: row[name] for name in columns}
        if embed is Embed.project_ref:
            project = session.get(ProjectRecord, record.project_id)
            row["project"] = [{"id": project.id, "name": project.name}] if project else []
        elif embed is Embed.task_count:
            count = session.exec(
                select(func.count()).select_from(TaskRecord).where(TaskRecord.project_id == record.id)
            ).one()
            row["tasks"] = [{"count": count}]
        elif embed is Embed.task_list:
            tasks = session.exec(
                select(TaskRecord)
                .where(TaskRecord.project_id == record.id)
                .order_by(TaskRecord.created_at.desc())
            ).all()
            row["tasks"] = [task.model_dump(mode="json") for task in tasks]
        return row

    def _list(self, kind: str, query: Query) -> list[dict]:
        model = self._model(kind)
        statement = select(model)
        for predicate in query.predicates:
            statement = statement.where(_clause(model, predicate))
        if query.order is not None:
            column = getattr(model, query.order.field)
            statement = statement.order_by(
                column.desc() if query.order.descending else column.asc()
            )
        with Session(self._engine) as session:
            records = session.exec(statement).all()
            return [self._row(session, r, query.embed, query.columns) for r in records]

    def _get(self, kind: str, entity_id: str, embed: Embed) -> dict:
        with Session(self._engine) as session:
            return self._row(session, self._require(session, kind, entity_id), embed)

    def _insert(self, kind: str, fields: dict, embed: Embed) -> dict:
        model = self._model(kind)
        data = {k: v for k, v in fields.items() if k not in _SERVER_ASSIGNED}
        record = model.model_validate(data)
        now = self._now()
        record.created_at = now
        record.updated_at = now
        with Session(self._engine) as session:
            if kind == "tasks" and session.get(ProjectRecord, record.project_id) is None:
                raise EntityStoreError(
                    f"Project {record.project_id} does not exist", 409
                )
            session.add(record)
            session.commit()
            session.refresh(record)
            logger.debug("Inserted %s %s", kind, record.id)
            return self._row(session, record, embed)

    def _update(self, kind: str, entity_id: str, fields: dict, embed: Embed) -> dict:
        immutable = _IMMUTABLE & fields.keys()
        if immutable:
            raise EntityStoreError(f"Cannot update {', '.join(sorted(immutable))}", 400)
        model = self._model(kind)
        with Session(self._engine) as session:
            record = self._require(session, kind, entity_id)
            merged = model.model_validate({**record.model_dump(), **fields})
            for key in fields:
                setattr(record, key, getattr(merged, key))
            record.updated_at = self._now()
            session.add(record)
            session.commit()
            session.refresh(record)
            return self._row(session, record, embed)

    def _delete(self, kind: str, entity_id: str) -> None:
        with Session(self._engine) as session:
            record = self._require(session, kind, entity_id)
            if kind == "projects":
                tasks = session.exec(
                    select(TaskRecord).where(TaskRecord.project_id == entity_id)
                ).all()
                for task in tasks:
                    session.delete(task)
                logger.debug("Cascading delete of project %s to %d task(s)", entity_id, len(tasks))
            session.delete(record)
            session.commit()
