"""The reactor: at most one event loop per thread."""

from __future__ import annotations

import logging
import math
import os
import threading
import time
from typing import Any, Callable, Optional

from tcpreactor.channel import Channel
from tcpreactor.poller import new_default_poller
from tcpreactor.timer import TimerId
from tcpreactor.timerqueue import TimerQueue

_log = logging.getLogger(__name__)

POLL_TIME_MS = 10000

_local = threading.local()

Functor = Callable[[], None]


def current_loop() -> Optional[EventLoop]:
    """The event loop created in the calling thread, if any."""
    return getattr(_local, "loop", None)


class LoopThreadError(RuntimeError):
    """An event loop was used from the wrong thread."""


class EventLoop:
    """Waits for I/O events and timers and dispatches them, in one thread."""

    def __init__(self) -> None:
        self._thread_id = threading.get_ident()
        existing = current_loop()
        if existing is not None:
            raise LoopThreadError(
                f"another EventLoop {existing!r} exists in thread {self._thread_id}"
            )
        self._looping = False
        self._quit = False
        self._event_handling = False
        self._calling_pending = False
        self._closed = False
        self._iteration = 0
        self._poll_return_time = 0.0
        self._lock = threading.Lock()
        self._pending: list[Functor] = []
        self._active_channels: list[Channel] = []
        self._current_active: Optional[Channel] = None
        self.context: Any = None

        self._poller = new_default_poller(self)
        self._timer_queue = TimerQueue(self)
        self._wakeup_read, self._wakeup_write = os.pipe()
        os.set_blocking(self._wakeup_read, False)
        os.set_blocking(self._wakeup_write, False)
        _local.loop = self
        _log.debug("EventLoop created %r in thread %s", self, self._thread_id)
        self._wakeup_channel = Channel(self, self._wakeup_read)
        self._wakeup_channel.read_callback = self._handle_read
        self._wakeup_channel.enable_reading()

    def __enter__(self) -> EventLoop:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"EventLoop(thread={self._thread_id}, iteration={self._iteration})"

    def loop(self) -> None:
        """Dispatch events until quit(); must run in the creating thread."""
        if self._looping:
            raise RuntimeError("the loop is already running")
        self.assert_in_loop_thread()
        if self._closed:
            raise RuntimeError("the loop is closed")
        self._looping = True
        _log.debug("EventLoop %r start looping", self)
        try:
            while not self._quit:
                self._poll_return_time, self._active_channels = self._poller.poll(
                    self._poll_timeout_ms()
                )
                self._iteration += 1
                if _log.isEnabledFor(logging.DEBUG):
                    self._log_active_channels()
                self._event_handling = True
                try:
                    for channel in self._active_channels:
                        self._current_active = channel
                        channel.handle_event(self._poll_return_time)
                finally:
                    self._current_active = None
                    self._event_handling = False
                self._timer_queue.handle_expired(time.time())
                self._do_pending_functors()
        finally:
            _log.debug("EventLoop %r stop looping", self)
            self._looping = False
            self._quit = False

    def quit(self) -> None:
        """Ask the loop to stop after the current iteration."""
        self._quit = True
        if not self.is_in_loop_thread():
            self.wakeup()

    def poll_return_time(self) -> float:
        """Time at which the last poll returned, usually when data arrived."""
        return self._poll_return_time

    def iteration(self) -> int:
        return self._iteration

    def run_in_loop(self, callback: Functor) -> None:
        """Run now if in the loop thread, otherwise queue it. Thread safe."""
        if self.is_in_loop_thread():
            callback()
        else:
            self.queue_in_loop(callback)

    def queue_in_loop(self, callback: Functor) -> None:
        """Run after the current round of event handling. Thread safe."""
        with self._lock:
            self._pending.append(callback)
        if not self.is_in_loop_thread() or self._calling_pending:
            self.wakeup()

    def queue_size(self) -> int:
        with self._lock:
            return len(self._pending)

    def run_at(self, when: float, callback: Functor) -> TimerId:
        """Run ``callback`` at epoch time ``when``. Thread safe."""
        return self._timer_queue.add_timer(callback, when, 0.0)

    def run_after(self, delay: float, callback: Functor) -> TimerId:
        """Run ``callback`` after ``delay`` seconds. Thread safe."""
        return self.run_at(time.time() + delay, callback)

    def run_every(self, interval: float, callback: Functor) -> TimerId:
        """Run ``callback`` every ``interval`` seconds. Thread safe."""
        return self._timer_queue.add_timer(callback, time.time() + interval, interval)

    def cancel(self, timer_id: TimerId) -> None:
        """Cancel a timer. Thread safe."""
        self._timer_queue.cancel(timer_id)

    def wakeup(self) -> None:
        """Interrupt a poll that is waiting."""
        if self._closed:
            return
        try:
            os.write(self._wakeup_write, b"\x01")
        except BlockingIOError:
            pass  # the pipe is full, so the loop is already awake
        except OSError:
            _log.error("EventLoop.wakeup() failed", exc_info=True)

    def update_channel(self, channel: Channel) -> None:
        self._check_owner(channel)
        self.assert_in_loop_thread()
        self._poller.update_channel(channel)

    def remove_channel(self, channel: Channel) -> None:
        self._check_owner(channel)
        self.assert_in_loop_thread()
        if (
            self._event_handling
            and channel is not self._current_active
            and any(active is channel for active in self._active_channels)
        ):
            raise RuntimeError("cannot remove a channel still waiting to be handled")
        self._poller.remove_channel(channel)

    def has_channel(self, channel: Channel) -> bool:
        self._check_owner(channel)
        self.assert_in_loop_thread()
        return self._poller.has_channel(channel)

    def assert_in_loop_thread(self) -> None:
        if not self.is_in_loop_thread():
            raise LoopThreadError(
                f"EventLoop {self!r} was created in thread {self._thread_id}, "
                f"current thread is {threading.get_ident()}"
            )

    def is_in_loop_thread(self) -> bool:
        return self._thread_id == threading.get_ident()

    def event_handling(self) -> bool:
        return self._event_handling

    def close(self) -> None:
        """Release the loop's resources; it cannot run afterwards."""
        if self._closed:
            return
        self.assert_in_loop_thread()
        _log.debug("EventLoop %r closes", self)
        self._wakeup_channel.disable_all()
        self._wakeup_channel.remove()
        self._closed = True
        os.close(self._wakeup_read)
        os.close(self._wakeup_write)
        self._timer_queue.close()
        self._poller.close()
        if current_loop() is self:
            _local.loop = None

    def _check_owner(self, channel: Channel) -> None:
        if channel.loop is not self:
            raise ValueError("channel belongs to another loop")

    def _poll_timeout_ms(self) -> int:
        expiration = self._timer_queue.next_expiration()
        if expiration is None:
            return POLL_TIME_MS
        delay_ms = math.ceil((expiration - time.time()) * 1000.0)
        return max(0, min(POLL_TIME_MS, delay_ms))

    def _handle_read(self, receive_time: float) -> None:
        while True:
            try:
                if not os.read(self._wakeup_read, 4096):
                    return
            except BlockingIOError:
                return
            except OSError:
                _log.error("EventLoop wakeup read failed", exc_info=True)
                return

    def _do_pending_functors(self) -> None:
        self._calling_pending = True
        try:
            with self._lock:
                functors, self._pending = self._pending, []
            for functor in functors:
                functor()
        finally:
            self._calling_pending = False

    def _log_active_channels(self) -> None:
        for channel in self._active_channels:
            _log.debug("{%s} ", channel.revents_to_string())