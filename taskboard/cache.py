"""Process-wide query cache.

Entries are addressed by the tuple keys in :mod:`taskboard.keys`. Each read
names its own freshness window: inside the window the cached value is served
without contacting the store, after it the stale value is returned at once
while a background refresh runs.

Every write to an entry bumps its generation. A fetch only commits its result
if the generation it started under is still current, so responses that were
superseded by a newer read, an invalidation, or an optimistic write are
dropped instead of overwriting newer state.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Iterator, Optional

from taskboard.errors import EntityStoreError, NotFoundError
from taskboard.keys import Key, format_key, matches

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class QueryResult:
    """What a read accessor hands back to the UI layer.

    ``status`` is ``idle``, ``loading``, ``success`` or ``error``.
    ``is_fetching`` is true while any request for the key is outstanding,
    including a background revalidation of data that is already shown.
    """
    data: Any = None
    status: str = "idle"
    is_fetching: bool = False
    is_stale: bool = False
    error: Optional[Exception] = None

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"


@dataclass(frozen=True)
class Snapshot:
    """Verbatim copy of one entry taken before an optimistic write."""
    key: Key
    data: Any
    updated_at: Optional[float]
    invalidated: bool
    invalidations: int = 0

    @property
    def present(self) -> bool:
        return self.data is not MISSING


@dataclass
class _Entry:
    data: Any = MISSING
    updated_at: Optional[float] = None
    invalidated: bool = False
    invalidations: int = 0
    error: Optional[Exception] = None
    generation: int = 0
    fetch: Optional[asyncio.Task] = None
    fetch_generation: int = -1
    holders: int = 0

    @property
    def has_data(self) -> bool:
        return self.data is not MISSING

    @property
    def fetching(self) -> bool:
        return self.fetch is not None and not self.fetch.done()


def consume_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class QueryCache:
    """Keyed in-memory store of fetched lists, details and aggregates.

    Args:
        clock: Monotonic time source in seconds.
        retries: Extra attempts for a failed read. Not-found errors are
            never retried.
        retry_delay: Seconds to wait before retrying a read.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        retries: int = 1,
        retry_delay: float = 1.0,
    ) -> None:
        self._clock = clock
        self._retries = retries
        self._retry_delay = retry_delay
        self._entries: dict[Key, _Entry] = {}
        self._locks: dict[Key, asyncio.Lock] = {}
        self._lock_users: dict[Key, int] = {}
        self._tasks: set[asyncio.Task] = set()

    # -- reads ---------------------------------------------------------------

    def get_data(self, key: Key, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return default
        return entry.data

    def has_data(self, key: Key) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.has_data

    def keys(self, prefix: Key = ()) -> list[Key]:
        """Return the keys of entries holding data under ``prefix``."""
        return [
            key
            for key, entry in self._entries.items()
            if entry.has_data and matches(key, prefix)
        ]

    def is_fresh(self, key: Key, stale_time: float) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._fresh(entry, stale_time)

    def peek(self, key: Key, stale_time: Optional[float] = None) -> QueryResult:
        """Report the current state of ``key`` without fetching."""
        entry = self._entries.get(key)
        if entry is None:
            return QueryResult()
        return self._result(entry, stale_time)

    async def fetch(self, key: Key, fetcher: Fetcher, stale_time: float) -> QueryResult:
        """Serve ``key`` from cache when fresh, otherwise fetch it.

        Stale data is returned immediately while a refresh runs in the
        background. With no data at all the caller waits for the request
        and any store error propagates to it.
        """
        entry = self._entry(key)
        if entry.has_data:
            if entry.holders:
                logger.debug("Serving %s during optimistic write", format_key(key))
            elif self._fresh(entry, stale_time):
                logger.debug("Cache hit for %s", format_key(key))
            else:
                logger.debug("Revalidating stale %s", format_key(key))
                self._start_fetch(key, entry, fetcher)
            return self._result(entry, stale_time)

        logger.debug("Cache miss for %s", format_key(key))
        task = self._start_fetch(key, entry, fetcher)
        data = await asyncio.shield(task)
        current = self._entries.get(key)
        if current is not None and current.has_data:
            data = current.data
        return QueryResult(data=data, status="success", is_fetching=bool(current and current.fetching))

    async def refetch(self, key: Key, fetcher: Fetcher) -> QueryResult:
        """Fetch ``key`` regardless of freshness and wait for the result."""
        entry = self._entry(key)
        entry.generation += 1
        data = await asyncio.shield(self._start_fetch(key, entry, fetcher))
        return QueryResult(data=data, status="success")

    # -- writes --------------------------------------------------------------

    def set_data(self, key: Key, value: Any) -> None:
        """Store ``value`` as the fresh, authoritative value of ``key``."""
        entry = self._entry(key)
        entry.data = value
        entry.updated_at = self._clock()
        entry.invalidated = False
        entry.error = None
        entry.generation += 1

    def update_data(self, key: Key, updater: Callable[[Any], Any]) -> bool:
        """Replace the cached value of ``key`` with ``updater(old)``.

        Does nothing when the key holds no data. The freshness timestamp is
        left alone.
        """
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return False
        entry.data = updater(entry.data)
        entry.generation += 1
        return True

    def update_all(self, prefix: Key, updater: Callable[[Any], Any]) -> int:
        return sum(self.update_data(key, updater) for key in self.keys(prefix))

    def invalidate(self, prefix: Key) -> int:
        """Mark every entry under ``prefix`` stale and drop in-flight results."""
        count = 0
        for key, entry in self._entries.items():
            if matches(key, prefix):
                entry.invalidated = True
                entry.invalidations += 1
                entry.generation += 1
                count += 1
        if count:
            logger.debug("Invalidated %d entr%s under %s", count, "y" if count == 1 else "ies", format_key(prefix))
        return count

    def cancel(self, keys: Iterable[Key]) -> None:
        """Discard the results of reads currently in flight for ``keys``."""
        for key in keys:
            entry = self._entries.get(key)
            if entry is not None:
                entry.generation += 1

    def remove(self, prefix: Key) -> int:
        doomed = [key for key in self._entries if matches(key, prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        logger.debug("Clearing %d cache entries", len(self._entries))
        self._entries.clear()

    # -- optimistic writes ---------------------------------------------------

    def snapshot(self, key: Key) -> Snapshot:
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return Snapshot(key, MISSING, None, False, entry.invalidations if entry is not None else 0)
        return Snapshot(
            key,
            copy.deepcopy(entry.data),
            entry.updated_at,
            entry.invalidated,
            entry.invalidations,
        )

    def restore(self, snapshot: Snapshot) -> None:
        """Put an entry back as ``snapshot`` recorded it.

        An entry invalidated after the snapshot was taken (by another
        mutation's commit) gets its data back but stays invalidated.
        """
        if not snapshot.present:
            self._entries.pop(snapshot.key, None)
            return
        entry = self._entries.get(snapshot.key)
        invalidated_since = entry is not None and entry.invalidations != snapshot.invalidations
        if entry is None:
            entry = self._entry(snapshot.key)
            entry.invalidations = snapshot.invalidations
        entry.data = snapshot.data
        entry.updated_at = snapshot.updated_at
        entry.invalidated = snapshot.invalidated or invalidated_since
        entry.generation += 1
        if invalidated_since:
            logger.debug("Restored %s stays invalidated", format_key(snapshot.key))

    @asynccontextmanager
    async def lock(self, key: Optional[Key]):
        """Serialize mutations on one key. ``None`` means no serialization."""
        if key is None:
            yield
            return
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        if lock.locked():
            logger.debug("Waiting for in-flight mutation on %s", format_key(key))
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users.get(key, 1) - 1
            if users:
                self._lock_users[key] = users
            else:
                # nobody holds or waits on it any more
                self._lock_users.pop(key, None)
                self._locks.pop(key, None)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, keys: Iterable[Key]) -> Iterator[None]:
        """Mark ``keys`` as carrying an optimistic value.

        While held, reads serve the cached value without revalidating and
        fetch results are not committed.
        """
        entries = [self._entry(key) for key in keys]
        for entry in entries:
            entry.holders += 1
        try:
            yield
        finally:
            for entry in entries:
                entry.holders -= 1

    def is_held(self, key: Key) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.holders > 0

    # -- lifecycle -----------------------------------------------------------

    async def drain(self) -> None:
        """Wait for every outstanding fetch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._entries.clear()
        self._locks.clear()
        self._lock_users.clear()

    # -- private helpers -----------------------------------------------------

    def _entry(self, key: Key) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        return entry

    def _fresh(self, entry: _Entry, stale_time: float) -> bool:
        if not entry.has_data or entry.invalidated or entry.updated_at is None:
            return False
        return self._clock() - entry.updated_at < stale_time

    def _result(self, entry: _Entry, stale_time: Optional[float]) -> QueryResult:
        if not entry.has_data:
            if entry.fetching:
                return QueryResult(status="loading", is_fetching=True)
            if entry.error is not None:
                return QueryResult(status="error", error=entry.error)
            return QueryResult()
        if stale_time is None:
            stale = entry.invalidated
        else:
            stale = not self._fresh(entry, stale_time)
        return QueryResult(
            data=entry.data,
            status="success",
            is_fetching=entry.fetching,
            is_stale=stale,
            error=entry.error,
        )

    def _start_fetch(self, key: Key, entry: _Entry, fetcher: Fetcher) -> asyncio.Task:
        if entry.fetching and entry.fetch_generation == entry.generation:
            return entry.fetch
        generation = entry.generation
        task = asyncio.create_task(self._run_fetch(key, entry, generation, fetcher))
        task.add_done_callback(consume_exception)
        task.add_done_callback(self._tasks.discard)
        self._tasks.add(task)
        entry.fetch = task
        entry.fetch_generation = generation
        return task

    def _is_current(self, key: Key, entry: _Entry, generation: int) -> bool:
        return self._entries.get(key) is entry and entry.generation == generation

    async def _run_fetch(self, key: Key, entry: _Entry, generation: int, fetcher: Fetcher) -> Any:
        attempt = 0
        while True:
            try:
                data = await fetcher()
                break
            except NotFoundError as exc:
                if self._is_current(key, entry, generation):
                    entry.error = exc
                raise
            except EntityStoreError as exc:
                if attempt >= self._retries:
                    logger.warning("Read of %s failed: %s", format_key(key), exc.message)
                    if self._is_current(key, entry, generation):
                        entry.error = exc
                    raise
                attempt += 1
                logger.warning(
                    "Read of %s failed (%s), retrying", format_key(key), exc.message
                )
                await asyncio.sleep(self._retry_delay)

        if self._is_current(key, entry, generation) and not entry.holders:
            entry.data = data
            entry.updated_at = self._clock()
            entry.invalidated = False
            entry.error = None
        else:
            logger.debug("Discarding superseded response for %s", format_key(key))
        return data
