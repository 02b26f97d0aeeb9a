"""A pool of event loop threads with round-robin and hash-based selection."""

from __future__ import annotations

from typing import Any, Callable, Optional

from tcpreactor.eventloop import EventLoop
from tcpreactor.eventloopthread import EventLoopThread

ThreadInitCallback = Callable[[EventLoop], None]


class EventLoopThreadPool:
    """Runs a number of EventLoopThreads beside a base loop.

    With no threads every request is served by the base loop.
    """

    def __init__(self, base_loop: Any, name: str = "") -> None:
        self._base_loop = base_loop
        self._name = name
        self._started = False
        self._num_threads = 0
        self._next = 0
        self._threads: list[EventLoopThread] = []
        self._loops: list[EventLoop] = []

    def __enter__(self) -> EventLoopThreadPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def name(self) -> str:
        return self._name

    def set_thread_num(self, num_threads: int) -> None:
        if num_threads < 0:
            raise ValueError("num_threads must not be negative")
        self._num_threads = num_threads

    def start(self, callback: Optional[ThreadInitCallback] = None) -> None:
        """Start the threads; ``callback`` runs once in each new loop's thread."""
        if self._started:
            raise RuntimeError("the pool was already started")
        self._base_loop.assert_in_loop_thread()
        self._started = True
        for i in range(self._num_threads):
            thread = EventLoopThread(callback, f"{self._name}{i}")
            self._threads.append(thread)
            self._loops.append(thread.start_loop())
        if self._num_threads == 0 and callback is not None:
            callback(self._base_loop)

    def get_next_loop(self) -> Any:
        """Pick the next loop round-robin; the base loop if there are no threads."""
        self._base_loop.assert_in_loop_thread()
        self._require_started()
        if not self._loops:
            return self._base_loop
        loop = self._loops[self._next]
        self._next = (self._next + 1) % len(self._loops)
        return loop

    def get_loop_for_hash(self, hash_code: int) -> Any:
        """The same hash code always selects the same loop."""
        self._base_loop.assert_in_loop_thread()
        if not self._loops:
            return self._base_loop
        return self._loops[hash_code % len(self._loops)]

    def get_all_loops(self) -> list:
        self._base_loop.assert_in_loop_thread()
        self._require_started()
        if not self._loops:
            return [self._base_loop]
        return list(self._loops)

    def started(self) -> bool:
        return self._started

    def close(self) -> None:
        """Stop every thread's loop and wait for the threads."""
        for thread in self._threads:
            thread.close()
        self._threads.clear()
        self._loops.clear()

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("the pool has not been started")