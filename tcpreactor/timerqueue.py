"""A best-effort timer queue driven by an event loop."""

from __future__ import annotations

import heapq
import logging
from typing import Any, Callable, Optional

from tcpreactor.timer import Timer, TimerId

_log = logging.getLogger(__name__)

_Entry = tuple  # (expiration, sequence, timer)


class TimerQueue:
    """Keeps timers ordered by expiration and runs the ones that are due.

    No guarantee is made that a callback runs on time. The owner loop must
    provide ``run_in_loop(callback)`` and ``assert_in_loop_thread()``; it
    asks ``next_expiration()`` how long it may wait and calls
    ``handle_expired(now)`` after every wake-up.
    """

    def __init__(self, loop: Any) -> None:
        self._loop = loop
        self._heap: list[_Entry] = []
        self._active: dict[int, _Entry] = {}
        self._calling_expired = False
        self._canceling: set[int] = set()

    def __enter__(self) -> TimerQueue:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._active)

    def add_timer(self, callback: Callable[[], None], when: float,
                  interval: float = 0.0) -> TimerId:
        """Schedule ``callback`` at ``when``; repeat every ``interval`` if positive.

        Safe to call from any thread.
        """
        timer = Timer(callback, when, interval)
        self._loop.run_in_loop(lambda: self._add_timer_in_loop(timer))
        return TimerId(timer, timer.sequence())

    def cancel(self, timer_id: TimerId) -> None:
        """Cancel a timer; unknown or already finished timers are ignored."""
        self._loop.run_in_loop(lambda: self._cancel_in_loop(timer_id))

    def next_expiration(self) -> Optional[float]:
        """Expiration time of the earliest pending timer, or None if there is none."""
        return self._heap[0][0] if self._heap else None

    def handle_expired(self, now: float) -> int:
        """Run every timer due at or before ``now``; return how many ran."""
        self._loop.assert_in_loop_thread()
        expired = self._take_expired(now)
        self._calling_expired = True
        self._canceling.clear()
        try:
            for timer in expired:
                timer.run()
        finally:
            self._calling_expired = False
            self._reset(expired, now)
        return len(expired)

    def close(self) -> None:
        """Drop every pending timer."""
        self._heap.clear()
        self._active.clear()
        self._canceling.clear()

    def _add_timer_in_loop(self, timer: Timer) -> None:
        self._loop.assert_in_loop_thread()
        self._insert(timer)

    def _cancel_in_loop(self, timer_id: TimerId) -> None:
        self._loop.assert_in_loop_thread()
        entry = self._active.get(timer_id.sequence)
        if entry is not None and entry[2] is timer_id.timer:
            del self._active[timer_id.sequence]
            self._heap.remove(entry)
            heapq.heapify(self._heap)
        elif self._calling_expired:
            self._canceling.add(timer_id.sequence)

    def _take_expired(self, now: float) -> list[Timer]:
        expired = []
        while self._heap and self._heap[0][0] <= now:
            _, sequence, timer = heapq.heappop(self._heap)
            del self._active[sequence]
            expired.append(timer)
        return expired

    def _reset(self, expired: list[Timer], now: float) -> None:
        for timer in expired:
            if timer.repeat() and timer.sequence() not in self._canceling:
                timer.restart(now)
                self._insert(timer)

    def _insert(self, timer: Timer) -> bool:
        """Add a timer; return True if it became the earliest one."""
        when = timer.expiration()
        if when is None:
            raise ValueError("cannot schedule a timer without an expiration")
        earliest_changed = not self._heap or when < self._heap[0][0]
        entry = (when, timer.sequence(), timer)
        self._active[timer.sequence()] = entry
        heapq.heappush(self._heap, entry)
        return earliest_changed