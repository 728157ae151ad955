"""Tests for agentwire.waiters -- one-shot waits on the event bus."""

import asyncio
import gc

import pytest

from agentwire.errors import WaitTimeoutError
from agentwire.events import EventBus
from agentwire.waiters import WaiterRegistry


class TestWaiter:

    @pytest.mark.asyncio
    async def test_resolves_with_first_matching_payload(self):
        bus = EventBus()
        registry = WaiterRegistry(bus)

        waiter = registry.register("x", predicate=lambda p: p > 1, timeout=1.0)
        bus.emit("x", 1)
        bus.emit("x", 2)
        bus.emit("x", 3)

        assert await waiter == 2
        assert len(registry) == 0
        assert bus.listener_count("x") == 0

    @pytest.mark.asyncio
    async def test_transform_result(self):
        bus = EventBus()
        waiter = WaiterRegistry(bus).register("x", transform=lambda p: p * 10)

        bus.emit("x", 4)

        assert await waiter.future == 40

    @pytest.mark.asyncio
    async def test_transform_exception_rejects(self):
        bus = EventBus()

        def explode(payload):
            raise ValueError(f"bad {payload}")

        waiter = WaiterRegistry(bus).register("x", transform=explode)
        bus.emit("x", 1)

        with pytest.raises(ValueError, match="bad 1"):
            await waiter

    @pytest.mark.asyncio
    async def test_predicate_exception_rejects(self):
        bus = EventBus()
        waiter = WaiterRegistry(bus).register("x", predicate=lambda p: p["missing"])

        bus.emit("x", {})

        with pytest.raises(KeyError):
            await waiter

    @pytest.mark.asyncio
    async def test_timeout_rejects_and_unsubscribes(self):
        bus = EventBus()
        registry = WaiterRegistry(bus)

        waiter = registry.register("x", timeout=0.01)

        with pytest.raises(WaitTimeoutError, match="x"):
            await waiter
        assert bus.listener_count() == 0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_caller_cancellation_releases_subscription(self):
        bus = EventBus()
        registry = WaiterRegistry(bus)
        waiter = registry.register("x")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(waiter.future, timeout=0.01)
        await asyncio.sleep(0)

        assert bus.listener_count() == 0
        assert len(registry) == 0


class TestWaiterRegistry:

    @pytest.mark.asyncio
    async def test_cancel_all_with_error(self):
        bus = EventBus()
        registry = WaiterRegistry(bus)
        first = registry.register("x")
        second = registry.register("y")

        assert registry.cancel_all(RuntimeError("closed")) == 2

        for waiter in (first, second):
            with pytest.raises(RuntimeError, match="closed"):
                await waiter
        assert bus.listener_count() == 0

    @pytest.mark.asyncio
    async def test_cancel_all_without_error_cancels(self):
        bus = EventBus()
        registry = WaiterRegistry(bus)
        waiter = registry.register("x")

        registry.cancel_all()

        assert waiter.future.cancelled()

    @pytest.mark.asyncio
    async def test_settled_waiters_are_not_cancelled_again(self):
        bus = EventBus()
        registry = WaiterRegistry(bus)
        waiter = registry.register("x")
        bus.emit("x", "done")

        assert registry.cancel_all(RuntimeError("late")) == 0
        assert await waiter == "done"

    @pytest.mark.asyncio
    async def test_abandoned_rejection_is_not_reported_as_unretrieved(self):
        loop = asyncio.get_running_loop()
        reports = []
        loop.set_exception_handler(lambda _loop, context: reports.append(context))
        try:
            registry = WaiterRegistry(EventBus())
            registry.register("x")
            registry.cancel_all(RuntimeError("closed"))
            await asyncio.sleep(0)
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reports == []

    @pytest.mark.asyncio
    async def test_rejection_still_raises_when_awaited(self):
        registry = WaiterRegistry(EventBus())
        waiter = registry.register("x")

        registry.cancel_all(RuntimeError("closed"))

        with pytest.raises(RuntimeError, match="closed"):
            await waiter
