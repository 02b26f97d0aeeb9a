"""TCP server supporting single-threaded and thread-pool models."""

from __future__ import annotations

import enum
import logging
import socket
import threading
from typing import Any, Callable, Optional

from tcpreactor import sockets
from tcpreactor.acceptor import Acceptor
from tcpreactor.eventloopthreadpool import EventLoopThreadPool
from tcpreactor.inetaddress import InetAddress
from tcpreactor.tcpconnection import (
    ConnectionCallback,
    MessageCallback,
    TcpConnection,
    WriteCompleteCallback,
    default_connection_callback,
    default_message_callback,
)

_log = logging.getLogger(__name__)

ThreadInitCallback = Callable[[Any], None]


class Option(enum.Enum):
    NO_REUSE_PORT = 0
    REUSE_PORT = 1


class TcpServer:
    """Accepts connections in its loop and serves each in a loop of its pool."""

    def __init__(self, loop: Any, listen_addr: InetAddress, name: str,
                 option: Option = Option.NO_REUSE_PORT) -> None:
        if loop is None:
            raise ValueError("loop must not be None")
        self._loop = loop
        self._ip_port = listen_addr.to_ip_port()
        self._name = name
        self._acceptor = Acceptor(loop, listen_addr, option is Option.REUSE_PORT)
        self._thread_pool = EventLoopThreadPool(loop, name)
        self.connection_callback: ConnectionCallback = default_connection_callback
        self.message_callback: MessageCallback = default_message_callback
        self.write_complete_callback: Optional[WriteCompleteCallback] = None
        self.thread_init_callback: Optional[ThreadInitCallback] = None
        self._started = False
        self._start_lock = threading.Lock()
        self._next_conn_id = 1
        self._connections: dict[str, TcpConnection] = {}
        self._acceptor.new_connection_callback = self._new_connection

    def __enter__(self) -> TcpServer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"TcpServer({self._name!r}, {self._ip_port!r})"

    @property
    def ip_port(self) -> str:
        return self._ip_port

    @property
    def name(self) -> str:
        return self._name

    @property
    def loop(self) -> Any:
        return self._loop

    @property
    def connections(self) -> dict[str, TcpConnection]:
        """A snapshot of the live connections by name."""
        return dict(self._connections)

    def set_thread_num(self, num_threads: int) -> None:
        """Number of I/O threads; 0 serves everything in the server's loop."""
        if num_threads < 0:
            raise ValueError("num_threads must not be negative")
        self._thread_pool.set_thread_num(num_threads)

    def thread_pool(self) -> EventLoopThreadPool:
        return self._thread_pool

    def start(self) -> None:
        """Start listening; calling it again does nothing. Thread safe."""
        with self._start_lock:
            if self._started:
                return
            self._started = True
        self._thread_pool.start(self.thread_init_callback)
        if self._acceptor.listening():
            raise RuntimeError("the acceptor is already listening")
        self._loop.run_in_loop(self._acceptor.listen)

    def close(self) -> None:
        """Destroy every connection, stop listening and stop the pool."""
        self._loop.assert_in_loop_thread()
        _log.debug("TcpServer [%s] closing", self._name)
        connections = list(self._connections.values())
        self._connections.clear()
        for conn in connections:
            conn.loop.run_in_loop(conn.connect_destroyed)
        self._acceptor.close()
        self._thread_pool.close()

    def _new_connection(self, sock: socket.socket, peer_addr: InetAddress) -> None:
        self._loop.assert_in_loop_thread()
        io_loop = self._thread_pool.get_next_loop()
        conn_name = f"{self._name}-{self._ip_port}#{self._next_conn_id}"
        self._next_conn_id += 1
        _log.info("TcpServer [%s] - new connection [%s] from %s",
                  self._name, conn_name, peer_addr.to_ip_port())
        try:
            local_addr = sockets.get_local_addr(sock)
        except OSError:
            sockets.close(sock)
            return
        conn = TcpConnection(io_loop, conn_name, sock, local_addr, peer_addr)
        self._connections[conn_name] = conn
        conn.connection_callback = self.connection_callback
        conn.message_callback = self.message_callback
        conn.write_complete_callback = self.write_complete_callback
        conn.close_callback = self._remove_connection
        io_loop.run_in_loop(conn.connect_established)

    def _remove_connection(self, conn: TcpConnection) -> None:
        self._loop.run_in_loop(lambda: self._remove_connection_in_loop(conn))

    def _remove_connection_in_loop(self, conn: TcpConnection) -> None:
        self._loop.assert_in_loop_thread()
        _log.info("TcpServer [%s] - removing connection %s", self._name, conn.name)
        if self._connections.pop(conn.name, None) is None:
            raise RuntimeError(f"unknown connection {conn.name}")
        conn.loop.queue_in_loop(conn.connect_destroyed)