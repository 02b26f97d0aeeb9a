"""A selectable I/O channel: one file descriptor and its event callbacks."""

from __future__ import annotations

import enum
import logging
import select
import weakref
from typing import Any, Callable, Optional

_log = logging.getLogger(__name__)


class PollEvent(enum.IntFlag):
    """poll(2)/epoll(7) event bits; the two share values on Linux."""

    NONE = 0
    IN = getattr(select, "POLLIN", 0x001)
    PRI = getattr(select, "POLLPRI", 0x002)
    OUT = getattr(select, "POLLOUT", 0x004)
    ERR = getattr(select, "POLLERR", 0x008)
    HUP = getattr(select, "POLLHUP", 0x010)
    NVAL = getattr(select, "POLLNVAL", 0x020)
    RDHUP = getattr(select, "POLLRDHUP", 0x2000)


_EVENT_NAMES = (
    (PollEvent.IN, "IN"),
    (PollEvent.PRI, "PRI"),
    (PollEvent.OUT, "OUT"),
    (PollEvent.HUP, "HUP"),
    (PollEvent.RDHUP, "RDHUP"),
    (PollEvent.ERR, "ERR"),
    (PollEvent.NVAL, "NVAL"),
)


def events_to_string(fd: int, events: int) -> str:
    """Render an event mask as "fd: IN OUT " for debugging."""
    return f"{fd}: " + "".join(f"{name} " for flag, name in _EVENT_NAMES if events & flag)


class Channel:
    """Dispatches the events of one file descriptor to its callbacks.

    The channel does not own the descriptor. Its loop must provide
    ``update_channel(channel)`` and ``remove_channel(channel)``.
    """

    NONE_EVENT = PollEvent.NONE
    READ_EVENT = PollEvent.IN | PollEvent.PRI
    WRITE_EVENT = PollEvent.OUT

    def __init__(self, loop: Any, fd: int) -> None:
        self._loop = loop
        self._fd = fd
        self._events = 0
        self.revents = 0
        self.index = -1
        self._log_hup = True
        self._tie: Optional[weakref.ref] = None
        self._event_handling = False
        self._added_to_loop = False
        self.read_callback: Optional[Callable[[float], None]] = None
        self.write_callback: Optional[Callable[[], None]] = None
        self.close_callback: Optional[Callable[[], None]] = None
        self.error_callback: Optional[Callable[[], None]] = None

    def __repr__(self) -> str:
        return f"Channel({self.events_to_string()!r})"

    @property
    def loop(self) -> Any:
        return self._loop

    @property
    def fd(self) -> int:
        return self._fd

    @property
    def events(self) -> int:
        return self._events

    @property
    def added_to_loop(self) -> bool:
        return self._added_to_loop

    def tie(self, obj: Any) -> None:
        """Handle events only while ``obj`` is alive, and keep it alive meanwhile."""
        self._tie = weakref.ref(obj)

    def handle_event(self, receive_time: float) -> None:
        if self._tie is not None:
            guard = self._tie()
            if guard is None:
                return
            self._handle_event_with_guard(receive_time)
            del guard
        else:
            self._handle_event_with_guard(receive_time)

    def _handle_event_with_guard(self, receive_time: float) -> None:
        self._event_handling = True
        try:
            revents = self.revents
            _log.debug("%s", events_to_string(self._fd, revents))
            if revents & PollEvent.HUP and not revents & PollEvent.IN:
                if self._log_hup:
                    _log.warning("fd = %s Channel.handle_event() POLLHUP", self._fd)
                if self.close_callback:
                    self.close_callback()
            if revents & PollEvent.NVAL:
                _log.warning("fd = %s Channel.handle_event() POLLNVAL", self._fd)
            if revents & (PollEvent.ERR | PollEvent.NVAL):
                if self.error_callback:
                    self.error_callback()
            if revents & (PollEvent.IN | PollEvent.PRI | PollEvent.RDHUP):
                if self.read_callback:
                    self.read_callback(receive_time)
            if revents & PollEvent.OUT:
                if self.write_callback:
                    self.write_callback()
        finally:
            self._event_handling = False

    def is_none_event(self) -> bool:
        return self._events == self.NONE_EVENT

    def enable_reading(self) -> None:
        self._events |= self.READ_EVENT
        self._update()

    def disable_reading(self) -> None:
        self._events &= ~self.READ_EVENT
        self._update()

    def enable_writing(self) -> None:
        self._events |= self.WRITE_EVENT
        self._update()

    def disable_writing(self) -> None:
        self._events &= ~self.WRITE_EVENT
        self._update()

    def disable_all(self) -> None:
        self._events = self.NONE_EVENT
        self._update()

    def is_writing(self) -> bool:
        return bool(self._events & self.WRITE_EVENT)

    def is_reading(self) -> bool:
        return bool(self._events & self.READ_EVENT)

    def revents_to_string(self) -> str:
        return events_to_string(self._fd, self.revents)

    def events_to_string(self) -> str:
        return events_to_string(self._fd, self._events)

    def do_not_log_hup(self) -> None:
        self._log_hup = False

    def remove(self) -> None:
        """Detach from the loop; all events must have been disabled first."""
        if not self.is_none_event():
            raise RuntimeError("cannot remove a channel that still has events enabled")
        self._added_to_loop = False
        self._loop.remove_channel(self)

    def _update(self) -> None:
        self._added_to_loop = True
        self._loop.update_channel(self)