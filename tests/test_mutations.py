"""Tests for the optimistic mutation protocol and mutation handles."""

import asyncio

import pytest

from taskboard.cache import QueryCache
from taskboard.errors import EntityStoreError
from taskboard.mutations import MutationHandle, run_optimistic

from conftest import FakeClock, RecordingNotifier, settle

DETAIL = ("tasks", "detail", "t1")
LIST_A = ("tasks", "list", "a")
LIST_B = ("tasks", "list", "b")


@pytest.fixture
def cache():
    return QueryCache(clock=FakeClock(), retry_delay=0)


def controlled_write(result=None, error=None):
    """Write coroutine factory that waits on ``gate`` before finishing."""
    gate = asyncio.Event()

    async def write():
        await gate.wait()
        if error is not None:
            raise error
        return result

    return write, gate


class TestRunOptimistic:
    @pytest.mark.asyncio
    async def test_commit_replaces_optimistic_value(self, cache):
        cache.set_data(DETAIL, {"status": "todo"})
        write, gate = controlled_write(result={"status": "done", "server": True})
        pending = asyncio.ensure_future(
            run_optimistic(
                cache,
                write=write,
                lock_key=DETAIL,
                touched=[DETAIL],
                apply=lambda: cache.update_data(DETAIL, lambda t: {**t, "status": "done"}),
                commit=lambda server: cache.set_data(DETAIL, server),
            )
        )
        await settle()
        assert cache.get_data(DETAIL) == {"status": "done"}
        assert cache.is_held(DETAIL)
        gate.set()
        assert await pending == {"status": "done", "server": True}
        assert cache.get_data(DETAIL) == {"status": "done", "server": True}
        assert not cache.is_held(DETAIL)

    @pytest.mark.asyncio
    async def test_failure_restores_every_touched_key(self, cache):
        cache.set_data(DETAIL, {"id": "t1"})
        cache.set_data(LIST_A, [{"id": "t1"}, {"id": "t2"}])
        cache.set_data(LIST_B, [{"id": "t1"}])
        before = {key: cache.snapshot(key) for key in (DETAIL, LIST_A, LIST_B)}

        def apply():
            cache.update_all(("tasks", "list"), lambda xs: [x for x in xs if x["id"] != "t1"])
            cache.remove(DETAIL)

        write, gate = controlled_write(error=EntityStoreError("permission denied"))
        gate.set()
        with pytest.raises(EntityStoreError):
            await run_optimistic(
                cache,
                write=write,
                lock_key=DETAIL,
                touched=[DETAIL],
                families=[("tasks", "list")],
                apply=apply,
            )
        assert {key: cache.snapshot(key) for key in before} == before

    @pytest.mark.asyncio
    async def test_failure_removes_entries_that_did_not_exist(self, cache):
        write, gate = controlled_write(error=EntityStoreError("nope"))
        gate.set()
        with pytest.raises(EntityStoreError):
            await run_optimistic(
                cache,
                write=write,
                touched=[DETAIL],
                apply=lambda: cache.set_data(DETAIL, "guess"),
            )
        assert cache.has_data(DETAIL) is False

    @pytest.mark.asyncio
    async def test_same_key_mutations_are_serialized(self, cache):
        """The second mutation snapshots ground truth, not the first one's guess."""
        cache.set_data(DETAIL, 1)
        first_write, first_gate = controlled_write(error=EntityStoreError("first failed"))
        second_write, second_gate = controlled_write(error=EntityStoreError("second failed"))

        def mutation(write, value):
            return asyncio.ensure_future(
                run_optimistic(
                    cache,
                    write=write,
                    lock_key=DETAIL,
                    touched=[DETAIL],
                    apply=lambda: cache.set_data(DETAIL, value),
                )
            )

        first = mutation(first_write, 2)
        await settle()
        second = mutation(second_write, 3)
        await settle()
        assert cache.get_data(DETAIL) == 2

        first_gate.set()
        with pytest.raises(EntityStoreError):
            await first
        await settle()
        assert cache.get_data(DETAIL) == 3

        second_gate.set()
        with pytest.raises(EntityStoreError):
            await second
        assert cache.get_data(DETAIL) == 1

    @pytest.mark.asyncio
    async def test_rollback_keeps_invalidation_from_other_commit(self, cache):
        """A list invalidated by another entity's commit is restored but stays stale."""
        other = ("tasks", "detail", "t2")
        cache.set_data(LIST_A, [{"id": "t1"}, {"id": "t2"}])

        def dropping(task_id):
            return lambda: cache.update_all(
                ("tasks", "list"), lambda xs: [x for x in xs if x["id"] != task_id]
            )

        failing, failing_gate = controlled_write(error=EntityStoreError("timeout"))
        first = asyncio.ensure_future(
            run_optimistic(
                cache,
                write=failing,
                lock_key=DETAIL,
                touched=[DETAIL],
                families=[("tasks", "list")],
                apply=dropping("t1"),
            )
        )
        await settle()

        succeeding, succeeding_gate = controlled_write(result=None)
        succeeding_gate.set()
        await run_optimistic(
            cache,
            write=succeeding,
            lock_key=other,
            touched=[other],
            families=[("tasks", "list")],
            apply=dropping("t2"),
            commit=lambda _: cache.invalidate(("tasks", "list")),
        )

        failing_gate.set()
        with pytest.raises(EntityStoreError):
            await first
        assert cache.get_data(LIST_A) == [{"id": "t1"}, {"id": "t2"}]
        assert cache.peek(LIST_A).is_stale
        assert not cache.is_fresh(LIST_A, 120)

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self, cache):
        write, gate = controlled_write(result="ok")
        pending = asyncio.ensure_future(
            run_optimistic(cache, write=write, lock_key=DETAIL, touched=[DETAIL])
        )
        waiting = asyncio.ensure_future(
            run_optimistic(cache, write=write, lock_key=DETAIL, touched=[DETAIL])
        )
        await settle()
        assert cache.lock_count == 1
        gate.set()
        assert await pending == "ok"
        assert await waiting == "ok"
        assert cache.lock_count == 0

    @pytest.mark.asyncio
    async def test_in_flight_read_cannot_overwrite_commit(self):
        clock = FakeClock()
        cache = QueryCache(clock=clock, retry_delay=0)
        read_gate = asyncio.Event()

        async def slow_read():
            await read_gate.wait()
            return "before write"

        cache.set_data(DETAIL, "before write")
        clock.advance(1000)
        await cache.fetch(DETAIL, slow_read, stale_time=300)

        write, gate = controlled_write(result="server value")
        gate.set()
        await run_optimistic(
            cache,
            write=write,
            lock_key=DETAIL,
            touched=[DETAIL],
            apply=lambda: cache.set_data(DETAIL, "optimistic"),
            commit=lambda value: cache.set_data(DETAIL, value),
        )
        read_gate.set()
        await cache.drain()
        assert cache.get_data(DETAIL) == "server value"


class TestMutationHandle:
    @pytest.mark.asyncio
    async def test_success(self):
        notifier = RecordingNotifier()

        async def op():
            return "row"

        handle = MutationHandle(
            op(), notifier=notifier, success_message="Saved", failure_message="Failed"
        )
        assert handle.is_pending
        assert await handle == "row"
        assert handle.status == "success"
        assert handle.data == "row"
        assert notifier.successes == ["Saved"]

    @pytest.mark.asyncio
    async def test_store_error_message_is_surfaced(self):
        notifier = RecordingNotifier()

        async def op():
            raise EntityStoreError("duplicate key value")

        handle = MutationHandle(
            op(), notifier=notifier, success_message="Saved", failure_message="Failed"
        )
        with pytest.raises(EntityStoreError):
            await handle
        assert handle.status == "error"
        assert isinstance(handle.error, EntityStoreError)
        assert notifier.errors == ["duplicate key value"]

    @pytest.mark.asyncio
    async def test_empty_message_falls_back(self):
        notifier = RecordingNotifier()

        async def op():
            raise EntityStoreError("")

        handle = MutationHandle(
            op(), notifier=notifier, success_message="Saved", failure_message="Failed"
        )
        with pytest.raises(EntityStoreError):
            await handle
        assert notifier.errors == ["Failed"]

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_generic_message(self):
        notifier = RecordingNotifier()

        async def op():
            raise KeyError("boom")

        handle = MutationHandle(
            op(), notifier=notifier, success_message="Saved", failure_message="Failed"
        )
        with pytest.raises(KeyError):
            await handle
        assert notifier.errors == ["Failed"]
        assert handle.done()
