"""A thread that runs its own event loop."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from tcpreactor.eventloop import EventLoop

ThreadInitCallback = Callable[[EventLoop], None]


class EventLoopThread:
    """Starts a thread, creates an EventLoop in it and runs it until closed."""

    def __init__(self, callback: Optional[ThreadInitCallback] = None, name: str = "") -> None:
        self._callback = callback
        self._cond = threading.Condition()
        self._loop: Optional[EventLoop] = None
        self._ready = False
        self._error: Optional[BaseException] = None
        self._exiting = False
        self._started = False
        self._thread = threading.Thread(
            target=self._thread_func, name=name or None, daemon=True
        )

    def __enter__(self) -> EventLoopThread:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def name(self) -> str:
        return self._thread.name

    def start_loop(self) -> EventLoop:
        """Start the thread and return its loop once it is ready to run."""
        if self._started:
            raise RuntimeError("the event loop thread was already started")
        self._started = True
        self._thread.start()
        with self._cond:
            self._cond.wait_for(lambda: self._ready)
            if self._error is not None:
                raise self._error
            return self._loop

    def close(self) -> None:
        """Stop the loop and wait for the thread to finish."""
        self._exiting = True
        with self._cond:
            if self._loop is not None:
                self._loop.quit()
        if self._started:
            self._thread.join()

    def _signal_ready(self, loop: Optional[EventLoop], error: Optional[BaseException]) -> None:
        with self._cond:
            self._loop = loop
            self._error = error
            self._ready = True
            self._cond.notify_all()

    def _thread_func(self) -> None:
        try:
            loop = EventLoop()
        except BaseException as exc:
            self._signal_ready(None, exc)
            return
        try:
            if self._callback is not None:
                self._callback(loop)
        except BaseException as exc:
            loop.close()
            self._signal_ready(None, exc)
            return
        self._signal_ready(loop, None)
        try:
            loop.loop()
        finally:
            with self._cond:
                self._loop = None
            loop.close()