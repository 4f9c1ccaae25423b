"""Entity Store implementations."""

from taskboard.store.base import EntityStore
from taskboard.store.rest import RestAuthProvider, RestEntityStore
from taskboard.store.sql import SqlEntityStore

__all__ = ["EntityStore", "RestAuthProvider", "RestEntityStore", "SqlEntityStore"]
