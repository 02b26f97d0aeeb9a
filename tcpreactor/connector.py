"""Active connector that opens a TCP connection and retries on failure."""

from __future__ import annotations

import enum
import errno
import logging
import os
import socket
from typing import Any, Callable, Optional

from tcpreactor import sockets
from tcpreactor.channel import Channel
from tcpreactor.inetaddress import InetAddress

_log = logging.getLogger(__name__)

NewConnectionCallback = Callable[[socket.socket], None]

_IN_PROGRESS_ERRORS = frozenset({0, errno.EINPROGRESS, errno.EINTR, errno.EISCONN})
_RETRY_ERRORS = frozenset(
    {
        errno.EAGAIN,
        errno.EADDRINUSE,
        errno.EADDRNOTAVAIL,
        errno.ECONNREFUSED,
        errno.ENETUNREACH,
    }
)
_FATAL_ERRORS = frozenset(
    {
        errno.EACCES,
        errno.EPERM,
        errno.EAFNOSUPPORT,
        errno.EALREADY,
        errno.EBADF,
        errno.EFAULT,
        errno.ENOTSOCK,
    }
)


class _State(enum.Enum):
    DISCONNECTED = "kDisconnected"
    CONNECTING = "kConnecting"
    CONNECTED = "kConnected"


class Connector:
    """Connects to a server address and hands the connected socket to a callback.

    Failed attempts are retried with a delay that doubles up to a limit.
    """

    INIT_RETRY_DELAY_MS = 500
    MAX_RETRY_DELAY_MS = 30 * 1000

    def __init__(self, loop: Any, server_addr: InetAddress) -> None:
        self._loop = loop
        self._server_addr = server_addr
        self._connect = False
        self._state = _State.DISCONNECTED
        self._channel: Optional[Channel] = None
        self._sock: Optional[socket.socket] = None
        self._retry_delay_ms = self.INIT_RETRY_DELAY_MS
        self.new_connection_callback: Optional[NewConnectionCallback] = None
        _log.debug("Connector created for %s", server_addr.to_ip_port())

    def __repr__(self) -> str:
        return f"Connector({self._server_addr.to_ip_port()!r}, state={self._state.value})"

    @property
    def server_address(self) -> InetAddress:
        return self._server_addr

    @property
    def retry_delay_ms(self) -> int:
        """Delay before the next retry, in milliseconds."""
        return self._retry_delay_ms

    def start(self) -> None:
        """Begin connecting. Can be called from any thread."""
        self._connect = True
        self._loop.run_in_loop(self._start_in_loop)

    def restart(self) -> None:
        """Connect again with the initial retry delay. Must run in the loop thread."""
        self._loop.assert_in_loop_thread()
        self._state = _State.DISCONNECTED
        self._retry_delay_ms = self.INIT_RETRY_DELAY_MS
        self._connect = True
        self._start_in_loop()

    def stop(self) -> None:
        """Stop connecting. Can be called from any thread."""
        self._connect = False
        self._loop.queue_in_loop(self._stop_in_loop)

    def _start_in_loop(self) -> None:
        self._loop.assert_in_loop_thread()
        if self._state is not _State.DISCONNECTED:
            raise RuntimeError(f"cannot start connecting in state {self._state.value}")
        if self._connect:
            self._do_connect()
        else:
            _log.debug("do not connect")

    def _stop_in_loop(self) -> None:
        self._loop.assert_in_loop_thread()
        if self._state is _State.CONNECTING:
            self._state = _State.DISCONNECTED
            sock = self._remove_and_reset_channel()
            self._retry(sock)

    def _do_connect(self) -> None:
        sock = sockets.create_nonblocking_or_die(self._server_addr.family())
        saved_errno = sockets.connect(sock, self._server_addr)
        if saved_errno in _IN_PROGRESS_ERRORS:
            self._connecting(sock)
        elif saved_errno in _RETRY_ERRORS:
            self._retry(sock)
        elif saved_errno in _FATAL_ERRORS:
            _log.error("connect error in Connector: %s %s",
                       saved_errno, os.strerror(saved_errno))
            sockets.close(sock)
        else:
            _log.error("Unexpected error in Connector: %s %s",
                       saved_errno, os.strerror(saved_errno))
            sockets.close(sock)

    def _connecting(self, sock: socket.socket) -> None:
        self._state = _State.CONNECTING
        if self._channel is not None:
            raise RuntimeError("a connection attempt is already in progress")
        self._sock = sock
        channel = Channel(self._loop, sock.fileno())
        channel.write_callback = self._handle_write
        channel.error_callback = self._handle_error
        self._channel = channel
        channel.enable_writing()

    def _remove_and_reset_channel(self) -> socket.socket:
        channel = self._channel
        channel.disable_all()
        channel.remove()
        sock = self._sock
        self._sock = None
        # The channel may be handling an event right now; drop it later.
        self._loop.queue_in_loop(self._reset_channel)
        return sock

    def _reset_channel(self) -> None:
        self._channel = None

    def _handle_write(self) -> None:
        _log.debug("Connector._handle_write %s", self._state.value)
        if self._state is not _State.CONNECTING:
            return
        sock = self._remove_and_reset_channel()
        err = sockets.get_socket_error(sock)
        if err:
            _log.warning("Connector._handle_write - SO_ERROR = %s %s", err, os.strerror(err))
            self._retry(sock)
        elif sockets.is_self_connect(sock):
            _log.warning("Connector._handle_write - Self connect")
            self._retry(sock)
        else:
            self._state = _State.CONNECTED
            if self._connect and self.new_connection_callback is not None:
                self.new_connection_callback(sock)
            else:
                sockets.close(sock)

    def _handle_error(self) -> None:
        _log.error("Connector._handle_error state=%s", self._state.value)
        if self._state is _State.CONNECTING:
            sock = self._remove_and_reset_channel()
            err = sockets.get_socket_error(sock)
            _log.debug("SO_ERROR = %s %s", err, os.strerror(err))
            self._retry(sock)

    def _retry(self, sock: socket.socket) -> None:
        sockets.close(sock)
        self._state = _State.DISCONNECTED
        if self._connect:
            _log.info(
                "Connector - Retry connecting to %s in %s milliseconds.",
                self._server_addr.to_ip_port(), self._retry_delay_ms,
            )
            self._loop.run_after(self._retry_delay_ms / 1000.0, self._start_in_loop)
            self._retry_delay_ms = min(self._retry_delay_ms * 2, self.MAX_RETRY_DELAY_MS)
        else:
            _log.debug("do not connect")