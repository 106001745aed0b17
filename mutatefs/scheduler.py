"""
Completion Schedulers

Callback-form operations never complete synchronously; their
completions are submitted to a scheduler. A scheduler is a
run-to-completion task queue with a clock and a blocking sleep.

- TaskQueueScheduler: real monotonic clock, drained with ``run()``.
- VirtualScheduler: virtual clock for deterministic tests.
- AsyncioScheduler: hands tasks to an asyncio event loop.
"""

import asyncio
import heapq
import itertools
import time
from typing import Any, Callable, Protocol


class Scheduler(Protocol):
    """What the interceptors need from a scheduler."""

    def now(self) -> float:
        """Current time in seconds."""
        ...

    def call_soon(self, fn: Callable, *args: Any) -> None:
        """Run ``fn(*args)`` on a later tick."""
        ...

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        """Run ``fn(*args)`` no earlier than ``delay`` seconds from now."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block the caller for ``seconds``."""
        ...


class TaskQueueScheduler:
    """
    Single-threaded task queue ordered by due time.

    Tasks due at the same time run in submission order. Nothing runs
    until the owner calls ``run()`` or ``run_once()``.

    Usage:
        scheduler = TaskQueueScheduler()
        fs = CallbackFS(scheduler=scheduler)
        fs.stat("setup.py", on_stat)
        scheduler.run()
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._sleeper = sleeper
        self._queue: list[tuple[float, int, Callable, tuple]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._clock()

    def call_soon(self, fn: Callable, *args: Any) -> None:
        self._push(self.now(), fn, args)

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        self._push(self.now() + max(0.0, delay), fn, args)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._sleeper(seconds)

    @property
    def pending(self) -> int:
        """Number of tasks waiting to run."""
        return len(self._queue)

    def run_once(self) -> bool:
        """
        Run the earliest task, waiting until it is due.

        Returns:
            False if the queue was empty.
        """
        if not self._queue:
            return False

        due, _, fn, args = heapq.heappop(self._queue)
        self._wait_until(due)
        fn(*args)
        return True

    def run(self) -> int:
        """
        Drain the queue, including tasks submitted while draining.

        Returns:
            Number of tasks run.
        """
        count = 0
        while self.run_once():
            count += 1
        return count

    def _wait_until(self, due: float) -> None:
        remaining = due - self.now()
        if remaining > 0:
            self.sleep(remaining)

    def _push(self, due: float, fn: Callable, args: tuple) -> None:
        heapq.heappush(self._queue, (due, next(self._counter), fn, args))


class VirtualScheduler(TaskQueueScheduler):
    """
    Task queue on a virtual clock.

    ``sleep`` and ``run`` move the clock forward instantly, so tests can
    exercise delays of any length without waiting on real timers.
    """

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start

    def now(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._now += seconds

    def _wait_until(self, due: float) -> None:
        self._now = max(self._now, due)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, running every task that falls due.

        Returns:
            Number of tasks run.
        """
        target = self._now + seconds
        count = 0
        while self._queue and self._queue[0][0] <= target:
            self.run_once()
            count += 1
        self._now = max(self._now, target)
        return count


class AsyncioScheduler:
    """
    Scheduler backed by an asyncio event loop.

    Uses the running loop when none is given. The blocking sleep is a
    real ``time.sleep`` because blocking forms run outside the loop's
    control.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_soon(self, fn: Callable, *args: Any) -> None:
        self.loop.call_soon(fn, *args)

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        self.loop.call_later(max(0.0, delay), fn, *args)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
