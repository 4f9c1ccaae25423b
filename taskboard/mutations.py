"""Optimistic mutation protocol.

A mutation runs four steps against the cache:

1. issue: snapshot every key the write may touch,
2. apply: patch the cache to the intended post-write state,
3. commit: on success, write the server's entity and invalidate dependents,
4. rollback: on failure, restore the snapshots verbatim and invalidate nothing.

Mutations on the same entity queue behind each other on the entity's detail
key, so a snapshot is never taken of another mutation's optimistic value.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from taskboard.cache import QueryCache, consume_exception
from taskboard.errors import TaskboardError
from taskboard.keys import Key, format_key
from taskboard.notify import Notifier

logger = logging.getLogger(__name__)


async def run_optimistic(
    cache: QueryCache,
    *,
    write: Callable[[], Awaitable[Any]],
    lock_key: Optional[Key] = None,
    touched: Iterable[Key] = (),
    families: Iterable[Key] = (),
    apply: Optional[Callable[[], None]] = None,
    commit: Optional[Callable[[Any], None]] = None,
) -> Any:
    """Run one write through snapshot, apply, commit or rollback.

    Args:
        cache: The shared query cache.
        write: Coroutine factory performing the store call.
        lock_key: Detail key that serializes mutations on one entity.
        touched: Exact keys the optimistic apply may change.
        families: Key prefixes whose currently cached entries the apply
            may change (e.g. every filtered list).
        apply: Synchronous optimistic cache patch.
        commit: Called with the server result after a successful write.

    Returns:
        Whatever ``write`` returned.
    """
    async with cache.lock(lock_key):
        keys = list(dict.fromkeys(
            [*touched, *(key for prefix in families for key in cache.keys(prefix))]
        ))
        cache.cancel(keys)
        snapshots = [cache.snapshot(key) for key in keys]
        with cache.hold(keys):
            if apply is not None:
                apply()
            try:
                result = await write()
            except (Exception, asyncio.CancelledError):
                for snapshot in snapshots:
                    cache.restore(snapshot)
                if snapshots:
                    logger.warning(
                        "Write failed, restored %d cache entr%s%s",
                        len(snapshots),
                        "y" if len(snapshots) == 1 else "ies",
                        f" for {format_key(lock_key)}" if lock_key else "",
                    )
                raise
            if commit is not None:
                commit(result)
        return result


class MutationHandle:
    """Status of one mutation: ``pending``, then ``success`` or ``error``.

    The operation starts as soon as the handle is created. Await the handle
    to get the server result; a failed mutation re-raises its error.
    """

    def __init__(
        self,
        operation: Awaitable[Any],
        *,
        notifier: Notifier,
        success_message: str,
        failure_message: str,
    ) -> None:
        self.status = "pending"
        self.data: Any = None
        self.error: Optional[BaseException] = None
        self._notifier = notifier
        self._success_message = success_message
        self._failure_message = failure_message
        self._task = asyncio.ensure_future(self._run(operation))
        self._task.add_done_callback(consume_exception)

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def done(self) -> bool:
        return self._task.done()

    def __await__(self):
        return self._task.__await__()

    async def _run(self, operation: Awaitable[Any]) -> Any:
        try:
            result = await operation
        except TaskboardError as exc:
            self.status = "error"
            self.error = exc
            self._notifier.error(exc.message or self._failure_message)
            raise
        except Exception as exc:
            self.status = "error"
            self.error = exc
            logger.exception("Mutation failed unexpectedly")
            self._notifier.error(self._failure_message)
            raise
        self.status = "success"
        self.data = result
        self._notifier.success(self._success_message)
        return result
