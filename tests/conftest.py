"""Shared fixtures: in-memory store, controllable clocks and a recording notifier."""

import asyncio
import itertools
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone

import pytest

from taskboard.auth import LocalAuthProvider, Principal
from taskboard.client import TaskboardClient
from taskboard.config import Settings
from taskboard.store.sql import SqlEntityStore

TODAY = date(2025, 1, 15)
START = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TickingNow:
    """Wall clock that moves one second per reading, so timestamps never tie."""

    def __init__(self, start: datetime = START) -> None:
        self._start = start
        self._ticks = itertools.count()

    def __call__(self) -> datetime:
        return self._start + timedelta(seconds=next(self._ticks))


class RecordingNotifier:
    def __init__(self) -> None:
        self.successes: list[str] = []
        self.errors: list[str] = []

    def success(self, message: str) -> None:
        self.successes.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)


class ControlledStore:
    """Wraps a real store, counting calls and optionally delaying or failing them.

    ``delay(method)`` holds back the next response of ``method`` until the
    returned event is set; the underlying call has already run by then.
    ``fail_next(method, exc)`` makes the next call raise ``exc`` without
    touching the underlying store.
    """

    def __init__(self, inner) -> None:
        self.inner = inner
        self.calls = Counter()
        self._gates: dict[str, asyncio.Event] = {}
        self._failures = defaultdict(list)

    def delay(self, method: str) -> asyncio.Event:
        gate = self._gates[method] = asyncio.Event()
        return gate

    def fail_next(self, method: str, exc: Exception) -> None:
        self._failures[method].append(exc)

    async def _call(self, method, *args, **kwargs):
        self.calls[method] += 1
        failure = self._failures[method].pop(0) if self._failures[method] else None
        result = None
        if failure is None:
            result = await getattr(self.inner, method)(*args, **kwargs)
        gate = self._gates.pop(method, None)
        if gate is not None:
            await gate.wait()
        if failure is not None:
            raise failure
        return result

    async def list(self, kind, query):
        return await self._call("list", kind, query)

    async def get(self, kind, entity_id, **kwargs):
        return await self._call("get", kind, entity_id, **kwargs)

    async def insert(self, kind, fields, **kwargs):
        return await self._call("insert", kind, fields, **kwargs)

    async def update(self, kind, entity_id, fields, **kwargs):
        return await self._call("update", kind, entity_id, fields, **kwargs)

    async def delete(self, kind, entity_id):
        return await self._call("delete", kind, entity_id)

    async def aclose(self):
        await self.inner.aclose()


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and freshly started tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def principal():
    return Principal(id="user-1", email="ada@example.com", full_name="Ada Lovelace")


@pytest.fixture
def sql_store():
    """Fresh in-memory database for each test."""
    return SqlEntityStore.in_memory(now=TickingNow())


@pytest.fixture
def store(sql_store):
    return ControlledStore(sql_store)


@pytest.fixture
async def client(store, principal, clock, notifier):
    client = TaskboardClient(
        store,
        LocalAuthProvider(principal),
        settings=Settings(retry_delay=0.0),
        notifier=notifier,
        clock=clock,
        now=TickingNow(START + timedelta(hours=1)),
        today=lambda: TODAY,
    )
    await client.start()
    yield client
    await client.close()


@pytest.fixture
async def project(client):
    """A project owned by the signed-in principal."""
    return await client.create("projects", {"name": "Website relaunch"})
