"""Unit tests for the session registry."""
import asyncio

import pytest

from voice_server.services.call_session.models import CallSession
from voice_server.services.call_session.registry import SessionRegistry


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class StubHandle:
    """Minimal session owner: close removes itself like a real agent."""

    def __init__(self, session_id, registry=None, clock=None):
        self.session = CallSession(session_id, session_id, clock=clock or Clock())
        self.registry = registry
        self.closed_with = []

    async def close(self, reason="hangup"):
        self.closed_with.append(reason)
        if self.registry is not None:
            await self.registry.remove(self.session.session_id)


class TestSessionRegistry:
    """Test registry operations."""

    @pytest.mark.asyncio
    async def test_add_get_remove(self):
        registry = SessionRegistry()
        handle = StubHandle("call-CA1")

        assert await registry.add(handle) is True
        assert registry.get("call-CA1") is handle
        assert registry.contains("call-CA1")
        assert registry.count() == 1
        assert registry.list() == [handle]

        assert await registry.remove("call-CA1") is handle
        assert registry.get("call-CA1") is None
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_add_duplicate_rejected(self):
        registry = SessionRegistry()
        first = StubHandle("call-CA1")
        assert await registry.add(first)
        assert await registry.add(StubHandle("call-CA1")) is False
        assert registry.get("call-CA1") is first

    @pytest.mark.asyncio
    async def test_lookup_after_removal_is_not_found(self):
        """A removed session is never handed out again."""
        registry = SessionRegistry()
        await registry.add(StubHandle("call-CA1"))
        await registry.remove("call-CA1")
        assert registry.get("call-CA1") is None
        assert await registry.remove("call-CA1") is None

    @pytest.mark.asyncio
    async def test_get_or_create_runs_factory_once(self):
        """Concurrent creates for one id collapse into one."""
        registry = SessionRegistry()
        created = []

        async def factory():
            await asyncio.sleep(0.01)
            handle = StubHandle("call-CA1")
            created.append(handle)
            return handle

        results = await asyncio.gather(
            *[registry.get_or_create("call-CA1", factory) for _ in range(5)]
        )

        assert len(created) == 1
        assert {id(handle) for handle, _ in results} == {id(created[0])}
        assert [flag for _, flag in results].count(True) == 1

    @pytest.mark.asyncio
    async def test_get_or_create_factory_failure_creates_nothing(self):
        registry = SessionRegistry()

        async def factory():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await registry.get_or_create("call-CA1", factory)
        assert registry.count() == 0


class TestSweep:
    """Test idle and duration sweeping."""

    @pytest.mark.asyncio
    async def test_idle_sessions_swept(self):
        clock = Clock(0.0)
        registry = SessionRegistry(idle_timeout=10.0, max_duration=100.0, clock=clock)
        idle = StubHandle("call-idle", registry, clock)
        active = StubHandle("call-active", registry, clock)
        await registry.add(idle)
        await registry.add(active)

        clock.now = 11.0
        active.session.touch(9.0)

        assert await registry.sweep() == 1
        assert idle.closed_with == ["idle_timeout"]
        assert active.closed_with == []
        assert registry.get("call-idle") is None
        assert registry.get("call-active") is active

    @pytest.mark.asyncio
    async def test_long_sessions_swept(self):
        clock = Clock(0.0)
        registry = SessionRegistry(idle_timeout=10.0, max_duration=100.0, clock=clock)
        handle = StubHandle("call-long", registry, clock)
        await registry.add(handle)

        handle.session.touch(100.0)
        assert await registry.sweep(now=100.0) == 1
        assert handle.closed_with == ["max_duration"]

    @pytest.mark.asyncio
    async def test_sweep_removes_even_if_close_fails(self):
        clock = Clock(0.0)
        registry = SessionRegistry(idle_timeout=1.0, clock=clock)

        class Broken(StubHandle):
            async def close(self, reason="hangup"):
                raise RuntimeError("boom")

        await registry.add(Broken("call-broken", clock=clock))
        assert await registry.sweep(now=5.0) == 1
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_close_all(self):
        registry = SessionRegistry()
        handles = [StubHandle(f"call-{i}", registry) for i in range(3)]
        for handle in handles:
            await registry.add(handle)

        await registry.close_all()

        assert registry.count() == 0
        assert all(h.closed_with == ["shutdown"] for h in handles)

    @pytest.mark.asyncio
    async def test_failed_create_keeps_later_callers_serialized(self):
        """After a failed factory, a waiter and a newcomer still build one session."""
        registry = SessionRegistry()
        release_first = asyncio.Event()
        attempts = []
        active = 0
        peak = 0

        async def factory():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            attempts.append(active)
            try:
                if len(attempts) == 1:
                    await release_first.wait()
                    raise RuntimeError("boom")
                await asyncio.sleep(0.01)
                return StubHandle("call-CA1")
            finally:
                active -= 1

        first = asyncio.create_task(registry.get_or_create("call-CA1", factory))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(registry.get_or_create("call-CA1", factory))
        await asyncio.sleep(0)

        release_first.set()
        with pytest.raises(RuntimeError):
            await first
        newcomer = asyncio.create_task(registry.get_or_create("call-CA1", factory))
        (waiter_handle, waiter_created), (newcomer_handle, newcomer_created) = (
            await asyncio.gather(waiter, newcomer)
        )

        assert peak == 1
        assert len(attempts) == 2
        assert waiter_handle is newcomer_handle
        assert sorted([waiter_created, newcomer_created]) == [False, True]
        assert registry.count() == 1
