from __future__ import annotations

import heapq
import itertools
from collections.abc import Callable

from .clock import Clock


class TimerHandle:
    """One-shot timer registered with a TimerQueue."""

    __slots__ = ("_deadline_s", "_callback", "_cancelled", "_fired")

    def __init__(self, deadline_s: float, callback: Callable[[], None]) -> None:
        self._deadline_s = float(deadline_s)
        self._callback = callback
        self._cancelled = False
        self._fired = False

    @property
    def deadline_s(self) -> float:
        return self._deadline_s

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        self._cancelled = True


class TimerQueue:
    """Single-threaded timer queue polled by the host loop.

    Nothing runs in the background: ``run_due()`` fires every timer whose
    deadline has passed, in deadline order. Callbacks may schedule further
    timers; those fire on this call only if they are already due.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        if delay_s < 0.0:
            raise ValueError("delay_s must be >= 0")
        handle = TimerHandle(self._clock.now() + float(delay_s), callback)
        heapq.heappush(self._heap, (handle.deadline_s, next(self._counter), handle))
        return handle

    def pending_count(self) -> int:
        return sum(1 for _, _, h in self._heap if h.pending)

    def next_deadline_s(self) -> float | None:
        self._drop_cancelled()
        return None if not self._heap else self._heap[0][0]

    def run_due(self) -> int:
        """Fire all due timers. Returns the number of callbacks run."""

        fired = 0
        while True:
            self._drop_cancelled()
            if not self._heap:
                return fired
            deadline_s, _, handle = self._heap[0]
            if deadline_s > self._clock.now():
                return fired
            heapq.heappop(self._heap)
            handle._fired = True
            handle._callback()
            fired += 1

    def _drop_cancelled(self) -> None:
        while self._heap and not self._heap[0][2].pending:
            heapq.heappop(self._heap)
