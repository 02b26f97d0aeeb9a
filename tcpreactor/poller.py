"""I/O multiplexing over poll(2) and epoll(7) for an event loop."""

from __future__ import annotations

import abc
import logging
import os
import select
import time
from typing import Any, Optional

from tcpreactor.channel import Channel, events_to_string

_log = logging.getLogger(__name__)

# Channel.index values used by the pollers.
_NEW = -1
_ADDED = 1
_DELETED = 2

USE_POLL_ENV = "TCPREACTOR_USE_POLL"


class Poller(abc.ABC):
    """Base class for I/O multiplexing; it does not own the channels.

    The owner loop must provide ``assert_in_loop_thread()``.
    """

    def __init__(self, loop: Any) -> None:
        self._owner_loop = loop
        self._channels: dict[int, Channel] = {}

    def __enter__(self) -> Poller:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @abc.abstractmethod
    def poll(self, timeout_ms: Optional[int]) -> tuple[float, list[Channel]]:
        """Wait for events; return the wake-up time and the active channels."""

    @abc.abstractmethod
    def update_channel(self, channel: Channel) -> None:
        """Register the channel or change the events it is interested in."""

    @abc.abstractmethod
    def remove_channel(self, channel: Channel) -> None:
        """Forget a channel whose events have all been disabled."""

    def has_channel(self, channel: Channel) -> bool:
        self.assert_in_loop_thread()
        return self._channels.get(channel.fd) is channel

    def assert_in_loop_thread(self) -> None:
        self._owner_loop.assert_in_loop_thread()

    def close(self) -> None:
        """Release operating-system resources held by the poller."""

    def _check_registered(self, channel: Channel) -> None:
        if self._channels.get(channel.fd) is not channel:
            raise RuntimeError(f"channel for fd {channel.fd} is not registered here")

    def _check_removable(self, channel: Channel) -> None:
        self._check_registered(channel)
        if not channel.is_none_event():
            raise RuntimeError(
                f"cannot remove fd {channel.fd} with events {channel.events_to_string()!r}"
            )


class PollPoller(Poller):
    """I/O multiplexing with poll(2)."""

    def __init__(self, loop: Any) -> None:
        super().__init__(loop)
        self._poll = select.poll()
        self._registered: set[int] = set()

    def poll(self, timeout_ms: Optional[int]) -> tuple[float, list[Channel]]:
        try:
            ready = self._poll.poll(timeout_ms)
        except InterruptedError:
            ready = []
        except OSError:
            _log.error("PollPoller.poll()", exc_info=True)
            ready = []
        now = time.time()
        if ready:
            _log.debug("%d events happened", len(ready))
        else:
            _log.debug("nothing happened")
        active = []
        for fd, revents in ready:
            channel = self._channels[fd]
            channel.revents = revents
            active.append(channel)
        return now, active

    def update_channel(self, channel: Channel) -> None:
        self.assert_in_loop_thread()
        fd = channel.fd
        _log.debug("fd = %s events = %s", fd, int(channel.events))
        if channel.index < 0:
            if fd in self._channels:
                raise RuntimeError(f"fd {fd} is already registered")
            self._channels[fd] = channel
            channel.index = _ADDED
        else:
            self._check_registered(channel)
        events = int(channel.events)
        if channel.is_none_event():
            if fd in self._registered:
                self._poll.unregister(fd)
                self._registered.discard(fd)
        elif fd in self._registered:
            self._poll.modify(fd, events)
        else:
            self._poll.register(fd, events)
            self._registered.add(fd)

    def remove_channel(self, channel: Channel) -> None:
        self.assert_in_loop_thread()
        _log.debug("fd = %s", channel.fd)
        self._check_removable(channel)
        fd = channel.fd
        del self._channels[fd]
        if fd in self._registered:
            self._poll.unregister(fd)
            self._registered.discard(fd)
        channel.index = _NEW


class EPollPoller(Poller):
    """I/O multiplexing with epoll(7)."""

    _INIT_EVENT_LIST_SIZE = 16

    _ADD = "ADD"
    _MOD = "MOD"
    _DEL = "DEL"

    def __init__(self, loop: Any) -> None:
        super().__init__(loop)
        try:
            self._epoll = select.epoll()
        except OSError:
            _log.critical("EPollPoller.__init__", exc_info=True)
            raise
        self._max_events = self._INIT_EVENT_LIST_SIZE

    def poll(self, timeout_ms: Optional[int]) -> tuple[float, list[Channel]]:
        _log.debug("fd total count %d", len(self._channels))
        timeout = -1 if timeout_ms is None or timeout_ms < 0 else timeout_ms / 1000.0
        try:
            ready = self._epoll.poll(timeout, self._max_events)
        except InterruptedError:
            ready = []
        except OSError:
            _log.error("EPollPoller.poll()", exc_info=True)
            ready = []
        now = time.time()
        active = []
        if ready:
            _log.debug("%d events happened", len(ready))
            for fd, revents in ready:
                channel = self._channels[fd]
                channel.revents = revents
                active.append(channel)
            if len(ready) == self._max_events:
                self._max_events *= 2
        else:
            _log.debug("nothing happened")
        return now, active

    def update_channel(self, channel: Channel) -> None:
        self.assert_in_loop_thread()
        index = channel.index
        fd = channel.fd
        _log.debug("fd = %s events = %s index = %s", fd, int(channel.events), index)
        if index in (_NEW, _DELETED):
            if index == _NEW:
                if fd in self._channels:
                    raise RuntimeError(f"fd {fd} is already registered")
                self._channels[fd] = channel
            else:
                self._check_registered(channel)
            channel.index = _ADDED
            self._update(self._ADD, channel)
        else:
            self._check_registered(channel)
            if index != _ADDED:
                raise RuntimeError(f"fd {fd} has unexpected poller index {index}")
            if channel.is_none_event():
                self._update(self._DEL, channel)
                channel.index = _DELETED
            else:
                self._update(self._MOD, channel)

    def remove_channel(self, channel: Channel) -> None:
        self.assert_in_loop_thread()
        fd = channel.fd
        _log.debug("fd = %s", fd)
        self._check_removable(channel)
        index = channel.index
        if index not in (_ADDED, _DELETED):
            raise RuntimeError(f"fd {fd} has unexpected poller index {index}")
        del self._channels[fd]
        if index == _ADDED:
            self._update(self._DEL, channel)
        channel.index = _NEW

    def close(self) -> None:
        self._epoll.close()

    def _update(self, operation: str, channel: Channel) -> None:
        fd = channel.fd
        events = int(channel.events)
        _log.debug(
            "epoll_ctl op = %s fd = %s event = { %s }",
            operation, fd, events_to_string(fd, events),
        )
        try:
            if operation == self._ADD:
                self._epoll.register(fd, events)
            elif operation == self._MOD:
                self._epoll.modify(fd, events)
            else:
                self._epoll.unregister(fd)
        except OSError:
            if operation == self._DEL:
                _log.error("epoll_ctl op = %s fd = %s", operation, fd, exc_info=True)
            else:
                _log.critical("epoll_ctl op = %s fd = %s", operation, fd, exc_info=True)
                raise


def new_default_poller(loop: Any) -> Poller:
    """epoll where available, unless TCPREACTOR_USE_POLL is set; poll otherwise."""
    if USE_POLL_ENV in os.environ or not hasattr(select, "epoll"):
        return PollPoller(loop)
    return EPollPoller(loop)