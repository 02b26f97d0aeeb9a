"""A TCP connection served by an event loop, for both servers and clients."""

from __future__ import annotations

import enum
import errno
import functools
import logging
import os
import socket
import weakref
from typing import Any, Callable, Optional

from tcpreactor import sockets
from tcpreactor.buffer import Buffer
from tcpreactor.channel import Channel
from tcpreactor.inetaddress import InetAddress
from tcpreactor.sockets import Socket

_log = logging.getLogger(__name__)

DEFAULT_HIGH_WATER_MARK = 64 * 1024 * 1024

ConnectionCallback = Callable[["TcpConnection"], None]
CloseCallback = Callable[["TcpConnection"], None]
WriteCompleteCallback = Callable[["TcpConnection"], None]
HighWaterMarkCallback = Callable[["TcpConnection", int], None]
MessageCallback = Callable[["TcpConnection", Buffer, float], None]


class ConnectionState(enum.Enum):
    DISCONNECTED = "kDisconnected"
    CONNECTING = "kConnecting"
    CONNECTED = "kConnected"
    DISCONNECTING = "kDisconnecting"


def default_connection_callback(conn: TcpConnection) -> None:
    """Log the connection going up or down."""
    _log.debug(
        "%s -> %s is %s",
        conn.local_address.to_ip_port(),
        conn.peer_address.to_ip_port(),
        "UP" if conn.connected() else "DOWN",
    )


def default_message_callback(conn: TcpConnection, buf: Buffer, receive_time: float) -> None:
    """Discard everything received."""
    buf.retrieve_all()


def _byte_view(data) -> memoryview:
    if isinstance(data, str):
        data = data.encode("utf-8")
    view = memoryview(data)
    if view.format != "B" or view.ndim != 1:
        view = view.cast("B")
    return view


class TcpConnection:
    """One connected TCP socket, its buffers and the user's callbacks.

    Created by a server or client for an already connected socket; call
    ``connect_established()`` once in the loop thread to start it and
    ``connect_destroyed()`` once when it is dropped.
    """

    def __init__(self, loop: Any, name: str, sock: socket.socket,
                 local_addr: InetAddress, peer_addr: InetAddress) -> None:
        if loop is None:
            raise ValueError("loop must not be None")
        self._loop = loop
        self._name = name
        self._state = ConnectionState.CONNECTING
        self._reading = True
        self._destroyed = False
        self._socket = Socket(sock)
        self._channel = Channel(loop, sock.fileno())
        self._local_addr = local_addr
        self._peer_addr = peer_addr
        self._high_water_mark = DEFAULT_HIGH_WATER_MARK
        self.input_buffer = Buffer()
        self.output_buffer = Buffer()
        self.context: Any = None
        self.connection_callback: ConnectionCallback = default_connection_callback
        self.message_callback: MessageCallback = default_message_callback
        self.write_complete_callback: Optional[WriteCompleteCallback] = None
        self.high_water_mark_callback: Optional[HighWaterMarkCallback] = None
        self.close_callback: Optional[CloseCallback] = None

        self._channel.read_callback = self._handle_read
        self._channel.write_callback = self._handle_write
        self._channel.close_callback = self._handle_close
        self._channel.error_callback = self._handle_error
        _log.debug("TcpConnection[%s] created fd=%s", name, self._channel.fd)
        self._socket.set_keep_alive(True)

    def __repr__(self) -> str:
        return f"TcpConnection({self._name!r}, state={self._state.value})"

    @property
    def loop(self) -> Any:
        return self._loop

    @property
    def name(self) -> str:
        return self._name

    @property
    def local_address(self) -> InetAddress:
        return self._local_addr

    @property
    def peer_address(self) -> InetAddress:
        return self._peer_addr

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def disconnected(self) -> bool:
        return self._state is ConnectionState.DISCONNECTED

    def get_tcp_info_string(self) -> str:
        """Kernel TCP statistics as text, or "" when they cannot be read."""
        try:
            return self._socket.get_tcp_info_string()
        except OSError:
            return ""

    def send(self, data) -> None:
        """Send bytes, text or the readable content of a Buffer. Thread safe.

        Nothing is sent unless the connection is connected.
        """
        if self._state is not ConnectionState.CONNECTED:
            return
        if isinstance(data, Buffer):
            if self._loop.is_in_loop_thread():
                self._send_in_loop(data.peek())
                data.retrieve_all()
            else:
                payload = data.retrieve_all_as_bytes()
                self._loop.run_in_loop(lambda: self._send_in_loop(payload))
        elif self._loop.is_in_loop_thread():
            self._send_in_loop(data)
        else:
            payload = bytes(_byte_view(data))
            self._loop.run_in_loop(lambda: self._send_in_loop(payload))

    def shutdown(self) -> None:
        """Close the writing half once pending output has been sent."""
        if self._state is ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTING
            self._loop.run_in_loop(self._shutdown_in_loop)

    def force_close(self) -> None:
        if self._state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            self._state = ConnectionState.DISCONNECTING
            self._loop.queue_in_loop(self._force_close_in_loop)

    def force_close_with_delay(self, seconds: float) -> None:
        """Force the close after ``seconds`` unless the connection is gone by then."""
        if self._state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            self._state = ConnectionState.DISCONNECTING
            method = weakref.WeakMethod(self.force_close)

            def fire() -> None:
                bound = method()
                if bound is not None:
                    bound()

            self._loop.run_after(seconds, fire)

    def set_tcp_no_delay(self, on: bool) -> None:
        self._socket.set_tcp_no_delay(on)

    def start_read(self) -> None:
        self._loop.run_in_loop(self._start_read_in_loop)

    def stop_read(self) -> None:
        self._loop.run_in_loop(self._stop_read_in_loop)

    def is_reading(self) -> bool:
        return self._reading

    def set_high_water_mark_callback(self, callback: Optional[HighWaterMarkCallback],
                                     high_water_mark: int) -> None:
        """Call ``callback`` when queued output first reaches ``high_water_mark`` bytes."""
        self.high_water_mark_callback = callback
        self._high_water_mark = high_water_mark

    def connect_established(self) -> None:
        """Start reading and report the connection up; call once, in the loop thread."""
        self._loop.assert_in_loop_thread()
        if self._state is not ConnectionState.CONNECTING:
            raise RuntimeError(f"cannot establish a connection in state {self._state.value}")
        self._state = ConnectionState.CONNECTED
        self._channel.tie(self)
        self._channel.enable_reading()
        self.connection_callback(self)

    def connect_destroyed(self) -> None:
        """Detach from the loop and release the socket; later calls do nothing."""
        self._loop.assert_in_loop_thread()
        if self._destroyed:
            return
        if self._state is ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED
            self._channel.disable_all()
            self.connection_callback(self)
        if self._channel.added_to_loop:
            self._channel.remove()
        self._destroyed = True
        self._socket.close()

    def _send_in_loop(self, data) -> None:
        self._loop.assert_in_loop_thread()
        view = _byte_view(data)
        length = view.nbytes
        if self._state is ConnectionState.DISCONNECTED:
            _log.warning("disconnected, give up writing")
            return
        nwrote = 0
        remaining = length
        fault_error = False
        if not self._channel.is_writing() and self.output_buffer.readable_bytes() == 0:
            try:
                nwrote = self._socket.sock.send(view)
            except BlockingIOError:
                nwrote = 0
            except OSError as exc:
                nwrote = 0
                _log.error("TcpConnection._send_in_loop: %s", exc)
                if exc.errno in (errno.EPIPE, errno.ECONNRESET):
                    fault_error = True
            else:
                remaining = length - nwrote
                if remaining == 0 and self.write_complete_callback is not None:
                    self._loop.queue_in_loop(
                        functools.partial(self.write_complete_callback, self)
                    )
        if not fault_error and remaining > 0:
            old_len = self.output_buffer.readable_bytes()
            if (
                old_len + remaining >= self._high_water_mark
                and old_len < self._high_water_mark
                and self.high_water_mark_callback is not None
            ):
                self._loop.queue_in_loop(
                    functools.partial(self.high_water_mark_callback, self, old_len + remaining)
                )
            self.output_buffer.append(view[nwrote:])
            if not self._channel.is_writing():
                self._channel.enable_writing()

    def _shutdown_in_loop(self) -> None:
        self._loop.assert_in_loop_thread()
        if not self._channel.is_writing():
            self._socket.shutdown_write()

    def _force_close_in_loop(self) -> None:
        self._loop.assert_in_loop_thread()
        if self._state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            self._handle_close()

    def _start_read_in_loop(self) -> None:
        self._loop.assert_in_loop_thread()
        if not self._reading or not self._channel.is_reading():
            self._channel.enable_reading()
            self._reading = True

    def _stop_read_in_loop(self) -> None:
        self._loop.assert_in_loop_thread()
        if self._reading or self._channel.is_reading():
            self._channel.disable_reading()
            self._reading = False

    def _handle_read(self, receive_time: float) -> None:
        self._loop.assert_in_loop_thread()
        try:
            n = self.input_buffer.read_fd(self._channel.fd)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as exc:
            _log.error("TcpConnection._handle_read: %s", exc)
            self._handle_error()
            return
        if n > 0:
            self.message_callback(self, self.input_buffer, receive_time)
        else:
            self._handle_close()

    def _handle_write(self) -> None:
        self._loop.assert_in_loop_thread()
        if not self._channel.is_writing():
            _log.debug("Connection fd = %s is down, no more writing", self._channel.fd)
            return
        try:
            n = self._socket.sock.send(self.output_buffer.peek())
        except OSError as exc:
            _log.error("TcpConnection._handle_write: %s", exc)
            return
        if n > 0:
            self.output_buffer.retrieve(n)
            if self.output_buffer.readable_bytes() == 0:
                self._channel.disable_writing()
                if self.write_complete_callback is not None:
                    self._loop.queue_in_loop(
                        functools.partial(self.write_complete_callback, self)
                    )
                if self._state is ConnectionState.DISCONNECTING:
                    self._shutdown_in_loop()

    def _handle_close(self) -> None:
        self._loop.assert_in_loop_thread()
        _log.debug("fd = %s state = %s", self._channel.fd, self._state.value)
        if self._state not in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            raise RuntimeError(f"cannot close a connection in state {self._state.value}")
        self._state = ConnectionState.DISCONNECTED
        self._channel.disable_all()
        self.connection_callback(self)
        if self.close_callback is not None:
            self.close_callback(self)

    def _handle_error(self) -> None:
        err = sockets.get_socket_error(self._socket.sock)
        _log.error(
            "TcpConnection._handle_error [%s] - SO_ERROR = %s %s",
            self._name, err, os.strerror(err),
        )