"""
Tests for SessionPool.
"""

import asyncio

import pytest

from lanbridge.relay.pool import SessionPool


class TestSessionPool:
    """Tests for SessionPool"""

    def test_rejects_negative_capacity(self):
        with pytest.raises(ValueError):
            SessionPool(-1)

    @pytest.mark.asyncio
    async def test_unbounded_runs_everything_at_once(self):
        pool = SessionPool()
        running = 0
        peak = 0

        async def session():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1

        for _ in range(20):
            pool.spawn(session())
        await pool.join()

        assert peak == 20
        assert pool.started == 20
        assert pool.active == 0

    @pytest.mark.asyncio
    async def test_capacity_limits_concurrency(self):
        pool = SessionPool(capacity=3)
        running = 0
        peak = 0

        async def session():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        for _ in range(10):
            pool.spawn(session())
        await pool.join()

        assert peak == 3
        assert pool.get_stats()['capacity'] == 3

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, caplog):
        pool = SessionPool(name='test')

        async def broken():
            raise RuntimeError("boom")

        task = pool.spawn(broken())
        await task

        assert pool.failed == 1
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_close_cancels_sessions(self):
        pool = SessionPool(capacity=1)
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.sleep(3600)

        first = pool.spawn(forever())
        waiting = pool.spawn(forever())
        await started.wait()

        await pool.close()

        assert first.cancelled()
        assert waiting.cancelled()
        assert pool.active == 0

    @pytest.mark.asyncio
    async def test_cleanup_runs_for_cancelled_sessions(self):
        """Cleanup fires even for a session that never got a slot"""
        pool = SessionPool(capacity=1)
        started = asyncio.Event()
        cleaned = []

        async def forever():
            started.set()
            await asyncio.sleep(3600)

        async def quick():
            pass

        pool.spawn(forever(), cleanup=lambda: cleaned.append('running'))
        pool.spawn(forever(), cleanup=lambda: cleaned.append('queued'))
        await started.wait()

        await pool.close()
        await asyncio.sleep(0)

        assert sorted(cleaned) == ['queued', 'running']

        done = SessionPool()
        await done.spawn(quick(), cleanup=lambda: cleaned.append('finished'))
        await asyncio.sleep(0)
        assert 'finished' not in cleaned
