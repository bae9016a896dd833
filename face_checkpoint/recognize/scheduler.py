"""
Timer abstraction for the detection loop.

The loop only ever talks to a `Scheduler`: a clock in milliseconds, periodic
and one-shot timers returning cancellable handles, and `spawn` for the
asynchronous extraction call. `AsyncioScheduler` runs on a real event loop;
`VirtualScheduler` runs on virtual time and is driven by `advance()`, which
makes every timing rule of the loop reproducible.
"""

from __future__ import annotations
import asyncio
import heapq
import itertools
import logging
from typing import Any, Callable, Coroutine, List, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class Handle:
    """Cancellable timer handle."""

    def __init__(self):
        self.cancelled = False
        self._on_cancel: Optional[Callable[[], None]] = None

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class Scheduler:
    def now(self) -> float:
        raise NotImplementedError

    def schedule(self, period_ms: float, callback: Callback) -> Handle:
        """Run `callback` every `period_ms`, first run one period from now."""
        raise NotImplementedError

    def call_later(self, delay_ms: float, callback: Callback) -> Handle:
        raise NotImplementedError

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time() * 1000.0

    def schedule(self, period_ms: float, callback: Callback) -> Handle:
        handle = Handle()
        period = period_ms / 1000.0
        start = self.loop.time()

        def fire(k: int):
            if handle.cancelled:
                return
            # next deadline is computed from the start so ticks do not drift
            arm(k + 1)
            callback()

        def arm(k: int):
            timer = self.loop.call_at(start + k * period, fire, k)
            handle._on_cancel = timer.cancel

        arm(1)
        return handle

    def call_later(self, delay_ms: float, callback: Callback) -> Handle:
        handle = Handle()

        def fire():
            if not handle.cancelled:
                handle.cancelled = True
                callback()

        timer = self.loop.call_later(delay_ms / 1000.0, fire)
        handle._on_cancel = timer.cancel
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    def cancel_tasks(self):
        for task in list(self._tasks):
            task.cancel()


class _VirtualTimer:
    def __init__(self, when: float, period: Optional[float], callback: Callback, handle: Handle):
        self.when = when
        self.period = period
        self.callback = callback
        self.handle = handle


class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler on virtual milliseconds.

    Spawned coroutines are stepped after every timer callback and on
    `run_pending()`. A coroutine that awaits something not yet resolved
    stays pending and is stepped again on the next pass.
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)
        self._seq = itertools.count()
        self._heap: List[tuple] = []
        self._tasks: List[Coroutine[Any, Any, Any]] = []

    def now(self) -> float:
        return self._now

    def _push(self, timer: _VirtualTimer):
        heapq.heappush(self._heap, (timer.when, next(self._seq), timer))

    def schedule(self, period_ms: float, callback: Callback) -> Handle:
        handle = Handle()
        self._push(_VirtualTimer(self._now + period_ms, float(period_ms), callback, handle))
        return handle

    def call_later(self, delay_ms: float, callback: Callback) -> Handle:
        handle = Handle()
        self._push(_VirtualTimer(self._now + delay_ms, None, callback, handle))
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self._tasks.append(coro)

    @property
    def active_timers(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.handle.cancelled)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def run_pending(self):
        """Step every spawned coroutine once, including ones spawned meanwhile."""
        stepped: Set[Coroutine[Any, Any, Any]] = set()
        while True:
            fresh = [c for c in self._tasks if c not in stepped]
            if not fresh:
                return
            for coro in fresh:
                stepped.add(coro)
                try:
                    coro.send(None)
                except StopIteration:
                    self._tasks.remove(coro)
                except Exception:
                    logger.exception("Background task failed")
                    self._tasks.remove(coro)

    def advance(self, ms: float):
        self.advance_to(self._now + ms)

    def advance_to(self, target_ms: float):
        self.run_pending()
        while self._heap and self._heap[0][0] <= target_ms:
            when, _, timer = heapq.heappop(self._heap)
            if timer.handle.cancelled:
                continue
            self._now = when
            if timer.period is not None:
                timer.when = when + timer.period
                self._push(timer)
            else:
                timer.handle.cancelled = True
            timer.callback()
            self.run_pending()
        self._now = max(self._now, target_ms)
        self.run_pending()
