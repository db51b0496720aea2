"""
Rate Limited Queue Tests

Tests for concurrency/rate caps, pause/start, clear and timeouts.
"""
import asyncio
import pytest

from airsync.services.sync.errors import TaskTimeoutError
from airsync.services.sync.rate_limited_queue import RateLimitedQueue


class TestRateLimitedQueue:
    """Tests for RateLimitedQueue."""

    def test_invalid_limits(self):
        """Test zero concurrency or interval is rejected."""
        with pytest.raises(ValueError):
            RateLimitedQueue(concurrency=0)
        with pytest.raises(ValueError):
            RateLimitedQueue(interval=0)

    @pytest.mark.asyncio
    async def test_results_resolve_futures(self):
        """Test each task's result lands on its own future."""
        queue = RateLimitedQueue()

        async def work(value):
            await asyncio.sleep(0)
            return value * 2

        futures = [queue.add(lambda v=v: work(v)) for v in range(5)]
        await queue.on_idle()

        assert [f.result() for f in futures] == [0, 2, 4, 6, 8]
        assert queue.get_stats()['completed'] == 5

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        """Test no more than `concurrency` tasks run at once."""
        queue = RateLimitedQueue(concurrency=2, interval_cap=100, interval=1.0)
        running = {'now': 0, 'max': 0}

        async def work():
            running['now'] += 1
            running['max'] = max(running['max'], running['now'])
            await asyncio.sleep(0.01)
            running['now'] -= 1

        for _ in range(6):
            queue.add(work)
        await queue.on_idle()

        assert running['max'] == 2

    @pytest.mark.asyncio
    async def test_interval_cap(self):
        """Test no more than interval_cap starts inside any rolling interval."""
        loop = asyncio.get_running_loop()
        queue = RateLimitedQueue(concurrency=10, interval_cap=3, interval=0.1)
        starts = []

        async def work():
            starts.append(loop.time())

        for _ in range(7):
            queue.add(work)
        await queue.on_idle()

        assert len(starts) == 7
        for i in range(len(starts) - 3):
            # the 4th start after any start must be at least one interval later
            assert starts[i + 3] - starts[i] >= 0.09

    @pytest.mark.asyncio
    async def test_pause_and_start(self):
        """Test a paused queue holds tasks until started."""
        queue = RateLimitedQueue()
        done = []

        async def work():
            done.append(True)

        queue.pause()
        queue.add(work)
        await asyncio.sleep(0.02)
        assert done == []
        assert queue.size == 1

        queue.start()
        await queue.on_idle()

        assert done == [True]
        assert not queue.is_paused

    @pytest.mark.asyncio
    async def test_clear_cancels_queued(self):
        """Test clear drops queued tasks and cancels their futures."""
        queue = RateLimitedQueue()

        async def work():
            return 'ran'

        queue.pause()
        futures = [queue.add(work) for _ in range(3)]
        dropped = queue.clear()
        queue.start()
        await queue.on_idle()

        assert dropped == 3
        assert all(f.cancelled() for f in futures)
        assert queue.size == 0
        assert queue.get_stats()['dropped'] == 3

    @pytest.mark.asyncio
    async def test_on_idle_waits_for_tasks_added_while_running(self):
        """Test on_idle also waits for tasks queued by running tasks."""
        queue = RateLimitedQueue()
        order = []

        async def child():
            await asyncio.sleep(0.01)
            order.append('child')

        async def parent():
            order.append('parent')
            queue.add(child)

        queue.add(parent)
        await queue.on_idle()
        order.append('idle')

        assert order == ['parent', 'child', 'idle']

    @pytest.mark.asyncio
    async def test_on_idle_returns_when_empty(self):
        """Test on_idle returns at once on an empty queue."""
        queue = RateLimitedQueue()
        await asyncio.wait_for(queue.on_idle(), 1)

    @pytest.mark.asyncio
    async def test_failure_only_fails_its_future(self):
        """Test a failing task leaves other tasks alone."""
        queue = RateLimitedQueue()

        async def boom():
            raise RuntimeError('boom')

        async def ok():
            return 'ok'

        bad = queue.add(boom)
        good = queue.add(ok)
        await queue.on_idle()

        assert isinstance(bad.exception(), RuntimeError)
        assert good.result() == 'ok'
        assert queue.get_stats()['failed'] == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a task over the timeout fails with TaskTimeoutError."""
        queue = RateLimitedQueue(timeout=0.02)

        async def slow():
            await asyncio.sleep(1)

        future = queue.add(slow, name='Widgets#1')
        await queue.on_idle()

        err = future.exception()
        assert isinstance(err, TaskTimeoutError)
        assert 'Widgets#1' in str(err)

    def test_reusable_across_event_loops(self):
        """Test one queue serves successive asyncio.run() calls."""
        queue = RateLimitedQueue(concurrency=1, interval_cap=1, interval=0.05)

        async def work():
            return 1

        async def scenario():
            futures = [queue.add(work) for _ in range(2)]
            await queue.on_idle()
            return sum(f.result() for f in futures)

        assert asyncio.run(scenario()) == 2
        assert asyncio.run(scenario()) == 2
