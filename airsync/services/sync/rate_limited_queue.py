"""
Rate Limited Queue - bounded-concurrency, bounded-rate asyncio task queue

Tasks are zero-argument callables returning an awaitable. The queue starts
at most `interval_cap` tasks in any rolling `interval` window and keeps at
most `concurrency` tasks in flight. Every task runs under a fixed timeout.

A failing task only fails its own future: clearing or pausing the queue in
response is the caller's decision.
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from ...utils.logger import get_logger
from .errors import TaskTimeoutError

logger = get_logger('rate_limited_queue')

TaskFn = Callable[[], Awaitable[Any]]


@dataclass
class _QueuedTask:
    fn: TaskFn
    future: asyncio.Future
    name: Optional[str] = None


class RateLimitedQueue:
    """Async task queue with a rolling start-rate limit.

    Holds no loop-bound primitive between runs, so one instance can serve
    cycles driven by successive asyncio.run() calls.

    Example:
        >>> queue = RateLimitedQueue(concurrency=5, interval_cap=5, interval=1.0)
        >>> future = queue.add(fetch_something)
        >>> await queue.on_idle()
        >>> future.result()
    """

    # Reference limits: 15 starts/s (the documented API limit is 5, 15 holds up)
    MAX_REQUESTS_PER_SEC = 15
    TASK_TIMEOUT = 60.0

    def __init__(
        self,
        concurrency: int = MAX_REQUESTS_PER_SEC,
        interval_cap: int = MAX_REQUESTS_PER_SEC,
        interval: float = 1.0,
        timeout: Optional[float] = TASK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize the queue.

        Args:
            concurrency: Max tasks in flight
            interval_cap: Max task starts per rolling interval
            interval: Length of the rolling window in seconds
            timeout: Per-task timeout in seconds, None disables it
            clock: Monotonic clock, injectable for tests
        """
        if concurrency < 1 or interval_cap < 1:
            raise ValueError("concurrency and interval_cap must be >= 1")
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self.concurrency = concurrency
        self.interval_cap = interval_cap
        self.interval = interval
        self.timeout = timeout
        self._clock = clock

        self._queue: Deque[_QueuedTask] = deque()
        self._starts: Deque[float] = deque()
        self._running = 0
        self._paused = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timer_loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()
        self._idle_waiters: List[asyncio.Future] = []
        self._stats = {'submitted': 0, 'completed': 0, 'failed': 0, 'dropped': 0}

    @property
    def size(self) -> int:
        """Number of queued, not yet started tasks."""
        return len(self._queue)

    @property
    def pending(self) -> int:
        """Number of tasks currently running."""
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def add(self, fn: TaskFn, name: Optional[str] = None) -> asyncio.Future:
        """Queue a task. Must be called from a running event loop.

        Returns:
            Future resolved with the task's result (or its exception)
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedTask(fn=fn, future=future, name=name))
        self._stats['submitted'] += 1
        self._dispatch()
        return future

    def pause(self) -> None:
        """Stop starting new tasks. Queued tasks are kept."""
        if not self._paused:
            logger.info("[RateLimitedQueue] Paused")
        self._paused = True

    def start(self) -> None:
        """Resume starting tasks after pause()."""
        if not self._paused:
            return
        self._paused = False
        logger.info(f"[RateLimitedQueue] Resumed with {len(self._queue)} queued tasks")
        self._dispatch()

    def clear(self) -> int:
        """Drop every queued task that has not started yet.

        Returns:
            Number of dropped tasks
        """
        dropped = len(self._queue)
        while self._queue:
            self._queue.popleft().future.cancel()
        self._stats['dropped'] += dropped
        if dropped:
            logger.debug(f"[RateLimitedQueue] Cleared {dropped} queued tasks")
        self._settle_idle()
        return dropped

    async def on_idle(self) -> None:
        """Wait until nothing is queued and nothing is running.

        Tasks added while waiting (including by running tasks) are waited for
        as well.
        """
        if self._is_idle():
            return
        waiter = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(waiter)
        await waiter

    def get_stats(self) -> Dict:
        """Get queue statistics.

        Returns:
            Dictionary with submitted, completed, failed, dropped, queued and running counts
        """
        return {
            **self._stats,
            'queued': len(self._queue),
            'running': self._running,
            'paused': self._paused,
        }

    def _is_idle(self) -> bool:
        return not self._queue and self._running == 0

    def _dispatch(self) -> None:
        while self._queue and not self._paused and self._running < self.concurrency:
            now = self._clock()
            while self._starts and now - self._starts[0] >= self.interval:
                self._starts.popleft()
            if len(self._starts) >= self.interval_cap:
                self._schedule_wakeup(self._starts[0] + self.interval - now)
                return

            item = self._queue.popleft()
            if item.future.cancelled():
                continue
            self._starts.append(now)
            self._running += 1
            task = asyncio.ensure_future(self._run(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _schedule_wakeup(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        # A timer left behind by a finished event loop never fires
        if self._timer is not None and self._timer_loop is loop:
            return
        self._timer_loop = loop
        self._timer = loop.call_later(max(delay, 0.0), self._on_wakeup)

    def _on_wakeup(self) -> None:
        self._timer = None
        self._dispatch()

    async def _run(self, item: _QueuedTask) -> None:
        try:
            if self.timeout is None:
                result = await item.fn()
            else:
                result = await asyncio.wait_for(item.fn(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._stats['failed'] += 1
            logger.warning(f"[RateLimitedQueue] Task {item.name or '?'} timed out after {self.timeout}s")
            if not item.future.done():
                item.future.set_exception(TaskTimeoutError(self.timeout, item.name))
        except asyncio.CancelledError:
            item.future.cancel()
            raise
        except Exception as e:
            self._stats['failed'] += 1
            if not item.future.done():
                item.future.set_exception(e)
        else:
            self._stats['completed'] += 1
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()
            self._settle_idle()

    def _settle_idle(self) -> None:
        if not self._is_idle():
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        waiters, self._idle_waiters = self._idle_waiters, []
        for waiter in waiters:
            if not waiter.done() and not waiter.get_loop().is_closed():
                waiter.set_result(None)
