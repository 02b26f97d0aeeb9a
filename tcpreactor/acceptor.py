"""Acceptor of incoming TCP connections."""

from __future__ import annotations

import errno
import logging
import os
import socket
from typing import Any, Callable, Optional

from tcpreactor import sockets
from tcpreactor.channel import Channel
from tcpreactor.inetaddress import InetAddress
from tcpreactor.sockets import Socket

_log = logging.getLogger(__name__)

NewConnectionCallback = Callable[[socket.socket, InetAddress], None]


def _open_idle_fd() -> int:
    return os.open(os.devnull, os.O_RDONLY)


class Acceptor:
    """Listens on an address and hands each accepted socket to a callback.

    Without ``new_connection_callback`` accepted sockets are closed at once.
    """

    def __init__(self, loop: Any, listen_addr: InetAddress, reuseport: bool = False) -> None:
        self._loop = loop
        self._accept_socket = Socket(sockets.create_nonblocking_or_die(listen_addr.family()))
        self._idle_fd = _open_idle_fd()
        try:
            self._accept_socket.set_reuse_addr(True)
            self._accept_socket.set_reuse_port(reuseport)
            self._accept_socket.bind_address(listen_addr)
        except OSError:
            os.close(self._idle_fd)
            self._accept_socket.close()
            raise
        self._accept_channel = Channel(loop, self._accept_socket.fd())
        self._accept_channel.read_callback = self._handle_read
        self._listening = False
        self.new_connection_callback: Optional[NewConnectionCallback] = None

    def __enter__(self) -> Acceptor:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def listening(self) -> bool:
        return self._listening

    def listen(self) -> None:
        self._loop.assert_in_loop_thread()
        self._listening = True
        self._accept_socket.listen()
        self._accept_channel.enable_reading()

    def close(self) -> None:
        """Stop watching the listening socket and release it."""
        self._accept_channel.disable_all()
        self._accept_channel.remove()
        os.close(self._idle_fd)
        self._accept_socket.close()

    def _handle_read(self, receive_time: float) -> None:
        self._loop.assert_in_loop_thread()
        try:
            conn, peer_addr = self._accept_socket.accept()
        except OSError as exc:
            _log.error("in Acceptor._handle_read: %s", exc)
            if exc.errno == errno.EMFILE:
                # Free a descriptor to accept and drop the pending connection.
                os.close(self._idle_fd)
                try:
                    dropped, _ = self._accept_socket.sock.accept()
                    dropped.close()
                except OSError:
                    pass
                self._idle_fd = _open_idle_fd()
            return
        if self.new_connection_callback is not None:
            self.new_connection_callback(conn, peer_addr)
        else:
            sockets.close(conn)