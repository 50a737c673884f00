import asyncio

import pytest
from unittest.mock import AsyncMock
from avacall.reaper import IdleReaper


@pytest.fixture
def reaper(registry):
    return IdleReaper(registry, interval=0.01, idle_timeout=900)


class TestSweep:
    @pytest.mark.asyncio
    async def test_idle_session_removed_and_peer_closed_once(self, registry, reaper):
        session = await registry.create("CA1", "+15125551234")
        session.peer = AsyncMock()
        session.touch(now=0.0)

        assert await reaper.sweep(now=1000.0) == ["CA1"]
        assert "CA1" not in registry
        # The relay's own teardown then runs and must not close again
        assert await session.close_peer() is False
        session.peer.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_active_session_kept(self, registry, reaper):
        session = await registry.create("CA1", "+15125551234")
        session.touch(now=500.0)
        assert await reaper.sweep(now=1000.0) == []
        assert "CA1" in registry

    @pytest.mark.asyncio
    async def test_in_flight_session_kept(self, registry, reaper):
        session = await registry.create("CA1", "+15125551234")
        session.touch(now=0.0)
        with session.activity():
            assert await reaper.sweep(now=5000.0) == []
        assert "CA1" in registry

    @pytest.mark.asyncio
    async def test_only_idle_sessions_evicted(self, registry, reaper):
        idle = await registry.create("CA1", "+15125551234")
        busy = await registry.create("CA2", "+15125559999")
        idle.touch(now=0.0)
        busy.touch(now=990.0)
        assert await reaper.sweep(now=1000.0) == ["CA1"]
        assert "CA2" in registry


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_sweeps_until_stopped(self, registry):
        reaper = IdleReaper(registry, interval=0.01, idle_timeout=0)
        session = await registry.create("CA1", "+15125551234")
        session.touch(now=0.0)

        reaper.start()
        for _ in range(50):
            if "CA1" not in registry:
                break
            await asyncio.sleep(0.01)
        await reaper.stop()

        assert "CA1" not in registry

    @pytest.mark.asyncio
    async def test_stop_without_start(self, reaper):
        await reaper.stop()
