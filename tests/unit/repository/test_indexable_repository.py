"""Unit tests for IndexableRepository."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from laakhay.cache import (
    EvictedWhileWaitingError,
    FetchError,
    IdentityMismatchError,
    IndexableRepository,
    RequestStatus,
    ResetWhileWaitingError,
)


@dataclass
class Item:
    id: str
    value: str = ""
    tags: list[str] = field(default_factory=list)


class ItemRepository(IndexableRepository[Item, str]):
    """In-memory repository recording every fetch."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.calls: list[str] = []
        self.responses: dict[str, Any] = {}
        self.gate: asyncio.Event | None = None

    async def fetch_by_id(self, id_: str) -> Item | None:
        self.calls.append(id_)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(id_, Item(id=id_, value=f"value-{id_}"))
        if isinstance(response, Exception):
            raise response
        return response

    def extract_id(self, entity: Item) -> str:
        return entity.id


async def run_pending() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


class TestLoading:
    """Test by_id and by_id_async."""

    @pytest.mark.asyncio
    async def test_by_id_async_fetches_once(self):
        """Test an entity is fetched once and then served from the cache."""
        repository = ItemRepository()
        first = await repository.by_id_async("a")
        second = await repository.by_id_async("a")

        assert first == Item(id="a", value="value-a")
        assert second is first
        assert repository.calls == ["a"]
        assert repository.status_of("a") is RequestStatus.DONE
        assert repository.is_loaded("a")
        assert repository.entities == {"a": first}

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self):
        """Test concurrent requests for one id run a single fetch."""
        repository = ItemRepository()
        repository.gate = asyncio.Event()
        tasks = [asyncio.create_task(repository.by_id_async("a")) for _ in range(5)]
        await run_pending()

        assert repository.calls == ["a"]
        assert repository.status_of("a") is RequestStatus.IN_PROGRESS

        repository.gate.set()
        results = await asyncio.gather(*tasks)
        assert all(result is results[0] for result in results)
        assert repository.calls == ["a"]

    @pytest.mark.asyncio
    async def test_by_id_loads_in_background(self):
        """Test by_id returns None at first and starts a single load."""
        repository = ItemRepository()
        assert repository.by_id("a") is None
        assert repository.by_id("a") is None
        assert repository.in_flight == 1

        await repository.wait_for_idle()
        assert repository.by_id("a") == Item(id="a", value="value-a")
        assert repository.calls == ["a"]
        assert repository.in_flight == 0

    def test_by_id_without_event_loop(self):
        """Test by_id only reads the cache when no loop is running."""
        repository = ItemRepository()
        assert repository.by_id("a") is None
        assert repository.calls == []
        assert not repository.is_known("a")

    @pytest.mark.asyncio
    async def test_not_found(self):
        """Test a missing entity is remembered as NOT_FOUND."""
        repository = ItemRepository()
        repository.responses["a"] = None

        assert await repository.by_id_async("a") is None
        assert await repository.by_id_async("a") is None
        assert repository.status_of("a") is RequestStatus.NOT_FOUND
        assert repository.is_known("a")
        assert not repository.is_loaded("a")
        assert repository.calls == ["a"]

    @pytest.mark.asyncio
    async def test_add_populates_cache(self):
        """Test entities added directly are served without a fetch."""
        repository = ItemRepository()
        repository.add(Item(id="a", value="manual"))
        assert repository.is_loaded("a")
        assert len(repository) == 1
        assert repository.status_of("a") is RequestStatus.DONE

        assert await repository.by_id_async("a") == Item(id="a", value="manual")
        assert repository.by_id("a") == Item(id="a", value="manual")
        await repository.wait_for_idle()
        assert repository.calls == []

    @pytest.mark.asyncio
    async def test_add_settles_running_fetch(self):
        """Test adding an entity resolves waiters and the running fetch is dropped."""
        repository = ItemRepository()
        repository.gate = asyncio.Event()
        task = asyncio.create_task(repository.by_id_async("a"))
        await run_pending()

        repository.add(Item(id="a", value="manual"))
        assert await task == Item(id="a", value="manual")

        repository.gate.set()
        await repository.wait_for_idle()
        assert repository.by_id("a") == Item(id="a", value="manual")
        assert repository.calls == ["a"]


class TestErrors:
    """Test fetch failures."""

    @pytest.mark.asyncio
    async def test_failure_rejects_and_notifies(self):
        """Test a failing fetch raises FetchError and notifies listeners with the raw error."""
        repository = ItemRepository()
        cause = ConnectionError("down")
        repository.responses["a"] = cause
        received: list[BaseException] = []
        repository.add_error_listener(received.append)

        with pytest.raises(FetchError) as exc_info:
            await repository.by_id_async("a")

        assert exc_info.value.error is cause
        assert exc_info.value.key == "a"
        assert received == [cause]
        assert repository.status_of("a") is RequestStatus.ERROR

    @pytest.mark.asyncio
    async def test_error_is_sticky(self):
        """Test ERROR is kept without refetching until evicted."""
        repository = ItemRepository()
        repository.responses["a"] = ConnectionError("down")

        for _ in range(2):
            with pytest.raises(FetchError):
                await repository.by_id_async("a")
        assert repository.by_id("a") is None
        assert repository.calls == ["a"]

        del repository.responses["a"]
        repository.evict("a")
        assert await repository.by_id_async("a") == Item(id="a", value="value-a")
        assert repository.calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_identity_mismatch(self):
        """Test an entity with another id is rejected and not cached."""
        repository = ItemRepository()
        repository.responses["a"] = Item(id="b")
        received: list[BaseException] = []
        repository.add_error_listener(received.append)

        with pytest.raises(IdentityMismatchError):
            await repository.by_id_async("a")

        assert not repository.is_loaded("a")
        assert not repository.is_loaded("b")
        assert len(received) == 1
        assert isinstance(received[0], IdentityMismatchError)

    @pytest.mark.asyncio
    async def test_unreadable_entity_fails_attempt(self):
        """Test an entity whose id cannot be extracted puts the id in ERROR."""
        repository = ItemRepository()
        repository.responses["a"] = object()
        received: list[BaseException] = []
        repository.add_error_listener(received.append)

        with pytest.raises(FetchError) as exc_info:
            await asyncio.wait_for(repository.by_id_async("a"), timeout=1)

        assert isinstance(exc_info.value.error, AttributeError)
        assert received == [exc_info.value.error]
        assert repository.status_of("a") is RequestStatus.ERROR
        assert repository.in_flight == 0

    @pytest.mark.asyncio
    async def test_awaitable_callable_listener(self):
        """Test listener objects with an async __call__ are awaited."""
        repository = ItemRepository()
        repository.responses["a"] = ValueError("bad")

        class Recorder:
            def __init__(self) -> None:
                self.seen: list[str] = []

            async def __call__(self, error: BaseException) -> None:
                self.seen.append(str(error))

        recorder = Recorder()
        repository.add_error_listener(recorder)
        with pytest.raises(FetchError):
            await repository.by_id_async("a")
        await run_pending()
        assert recorder.seen == ["bad"]

    @pytest.mark.asyncio
    async def test_async_listener_and_removal(self):
        """Test coroutine listeners run and removed listeners do not."""
        repository = ItemRepository()
        repository.responses["a"] = ValueError("bad")
        repository.responses["b"] = ValueError("worse")
        seen: list[str] = []

        async def listener(error: BaseException) -> None:
            seen.append(str(error))

        repository.add_error_listener(listener)
        repository.add_error_listener(listener)
        with pytest.raises(FetchError):
            await repository.by_id_async("a")
        await run_pending()
        assert seen == ["bad"]

        repository.remove_error_listener(listener)
        with pytest.raises(FetchError):
            await repository.by_id_async("b")
        await run_pending()
        assert seen == ["bad"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_loading(self):
        """Test exceptions raised by listeners are swallowed."""
        repository = ItemRepository()
        repository.responses["a"] = ValueError("bad")

        def listener(error: BaseException) -> None:
            raise RuntimeError("listener failed")

        repository.add_error_listener(listener)
        with pytest.raises(FetchError):
            await repository.by_id_async("a")


class TestWaiters:
    """Test wait_for_id."""

    @pytest.mark.asyncio
    async def test_wait_for_id_does_not_load(self):
        """Test waiting alone starts no fetch and resolves on the next load."""
        repository = ItemRepository()
        waiter = repository.wait_for_id("a")
        await run_pending()
        assert repository.calls == []
        assert not waiter.done()

        await repository.by_id_async("a")
        assert waiter.done()
        assert waiter.result() is None

    @pytest.mark.asyncio
    async def test_waiter_rejected_on_failure(self):
        """Test waiters receive the FetchError."""
        repository = ItemRepository()
        repository.responses["a"] = ValueError("bad")
        waiter = repository.wait_for_id("a")
        repository.by_id("a")

        with pytest.raises(FetchError):
            await waiter

    @pytest.mark.asyncio
    async def test_waiter_resolved_on_not_found(self):
        """Test NOT_FOUND resolves waiters."""
        repository = ItemRepository()
        repository.responses["a"] = None
        waiter = repository.wait_for_id("a")
        repository.by_id("a")
        await waiter


class TestInvalidation:
    """Test evict, reset and reload_id."""

    @pytest.mark.asyncio
    async def test_evict_forgets_entity(self):
        """Test evicted entities are fetched again."""
        repository = ItemRepository()
        await repository.by_id_async("a")
        repository.evict("a")

        assert not repository.is_loaded("a")
        assert repository.status_of("a") is RequestStatus.NONE
        await repository.by_id_async("a")
        assert repository.calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_evict_rejects_waiters_and_discards_late_result(self):
        """Test eviction during a fetch rejects waiters and drops the result."""
        repository = ItemRepository()
        repository.gate = asyncio.Event()
        waiter = repository.wait_for_id("a")
        repository.by_id("a")
        await run_pending()

        repository.evict("a")
        with pytest.raises(EvictedWhileWaitingError):
            await waiter

        repository.gate.set()
        await repository.wait_for_idle()
        assert not repository.is_loaded("a")
        assert repository.status_of("a") is RequestStatus.NONE

    @pytest.mark.asyncio
    async def test_reset_rejects_waiters_then_fetches_fresh(self):
        """Test reset rejects waiters and a later by_id starts a new fetch."""
        repository = ItemRepository()
        repository.gate = asyncio.Event()
        repository.by_id("a")
        waiter = repository.wait_for_id("a")
        await run_pending()

        repository.reset()
        with pytest.raises(ResetWhileWaitingError):
            await waiter

        assert repository.by_id("a") is None
        await run_pending()
        assert repository.calls == ["a", "a"]

        repository.gate.set()
        await repository.wait_for_idle()
        assert repository.is_loaded("a")
        assert repository.status_of("a") is RequestStatus.DONE

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self):
        """Test reset drops entities, states and mutable copies but keeps listeners."""
        repository = ItemRepository()
        received: list[BaseException] = []
        repository.add_error_listener(received.append)
        await repository.by_id_async("a")
        await repository.mutable_copy_by_id_async("batch", "a")

        repository.reset()
        assert len(repository) == 0
        assert not repository.is_known("a")
        assert repository.mutable_copies("batch") == {}

        repository.responses["b"] = ValueError("bad")
        with pytest.raises(FetchError):
            await repository.by_id_async("b")
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_reload_id(self):
        """Test reload_id fetches the current version."""
        repository = ItemRepository()
        await repository.by_id_async("a")
        repository.responses["a"] = Item(id="a", value="updated")

        reloaded = await repository.reload_id("a")
        assert reloaded == Item(id="a", value="updated")
        assert repository.by_id("a") is reloaded
        assert repository.calls == ["a", "a"]


class TestMutableCopies:
    """Test mutable copy batches."""

    @pytest.mark.asyncio
    async def test_copy_is_independent(self):
        """Test editing a copy leaves the canonical entity untouched."""
        repository = ItemRepository()
        repository.responses["a"] = Item(id="a", value="original", tags=["x"])

        copy = await repository.mutable_copy_by_id_async("edit", "a")
        assert copy is not None
        copy.value = "edited"
        copy.tags.append("y")

        canonical = repository.by_id("a")
        assert canonical == Item(id="a", value="original", tags=["x"])
        assert await repository.mutable_copy_by_id_async("edit", "a") is copy
        assert repository.mutable_copy_by_id("edit", "a") is copy

    @pytest.mark.asyncio
    async def test_batches_are_separate(self):
        """Test each batch holds its own copy."""
        repository = ItemRepository()
        first = await repository.mutable_copy_by_id_async("one", "a")
        second = await repository.mutable_copy_by_id_async("two", "a")
        assert first == second
        assert first is not second
        assert repository.calls == ["a"]

    @pytest.mark.asyncio
    async def test_sync_copy_loads_in_background(self):
        """Test the synchronous accessor returns None until loaded."""
        repository = ItemRepository()
        assert repository.mutable_copy_by_id("edit", "a") is None
        await repository.wait_for_idle()
        assert repository.mutable_copy_by_id("edit", "a") == Item(id="a", value="value-a")

    @pytest.mark.asyncio
    async def test_set_and_discard(self):
        """Test replacing and discarding copies."""
        repository = ItemRepository()
        await repository.by_id_async("a")
        replacement = Item(id="a", value="draft")
        repository.set_mutable_copy("edit", "a", replacement)
        assert repository.mutable_copy_by_id("edit", "a") is replacement
        assert dict(repository.mutable_copies("edit")) == {"a": replacement}

        repository.discard_mutable_copy("edit", "a")
        fresh = repository.mutable_copy_by_id("edit", "a")
        assert fresh == Item(id="a", value="value-a")

        repository.discard_mutable_copies("edit")
        assert repository.mutable_copies("edit") == {}

    @pytest.mark.asyncio
    async def test_copies_survive_eviction(self):
        """Test evicting an entity keeps existing copies."""
        repository = ItemRepository()
        copy = await repository.mutable_copy_by_id_async("edit", "a")
        repository.evict("a")
        assert repository.mutable_copies("edit")["a"] is copy


class TestIdle:
    """Test in-flight accounting."""

    @pytest.mark.asyncio
    async def test_wait_for_idle_when_idle(self):
        """Test waiting with nothing in flight returns immediately."""
        repository = ItemRepository()
        await asyncio.wait_for(repository.wait_for_idle(), timeout=1)

    @pytest.mark.asyncio
    async def test_wait_for_idle_waits_for_all_loads(self):
        """Test idle is reached only after every load settles."""
        repository = ItemRepository()
        repository.gate = asyncio.Event()
        repository.by_id("a")
        repository.by_id("b")
        assert repository.in_flight == 2

        idle = asyncio.create_task(repository.wait_for_idle())
        await run_pending()
        assert not idle.done()

        repository.gate.set()
        await asyncio.wait_for(idle, timeout=1)
        assert repository.is_loaded("a") and repository.is_loaded("b")
