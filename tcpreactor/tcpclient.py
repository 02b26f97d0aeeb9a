"""TCP client holding at most one connection, with optional reconnect."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any, Optional

from tcpreactor import sockets
from tcpreactor.connector import Connector
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


class TcpClient:
    """Connects to a server and serves the connection in the given loop."""

    def __init__(self, loop: Any, server_addr: InetAddress, name: str) -> None:
        if loop is None:
            raise ValueError("loop must not be None")
        self._loop = loop
        self._connector = Connector(loop, server_addr)
        self._name = name
        self.connection_callback: ConnectionCallback = default_connection_callback
        self.message_callback: MessageCallback = default_message_callback
        self.write_complete_callback: Optional[WriteCompleteCallback] = None
        self._retry = False
        self._connect = True
        self._next_conn_id = 1
        self._lock = threading.Lock()
        self._connection: Optional[TcpConnection] = None
        self._connector.new_connection_callback = self._new_connection
        _log.info("TcpClient[%s] - connector %r", name, self._connector)

    def __enter__(self) -> TcpClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"TcpClient({self._name!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def loop(self) -> Any:
        return self._loop

    def connect(self) -> None:
        _log.info("TcpClient[%s] - connecting to %s",
                  self._name, self._connector.server_address.to_ip_port())
        self._connect = True
        self._connector.start()

    def disconnect(self) -> None:
        """Shut down the current connection's writing half."""
        self._connect = False
        with self._lock:
            if self._connection is not None:
                self._connection.shutdown()

    def stop(self) -> None:
        """Stop connecting; an established connection is left alone."""
        self._connect = False
        self._connector.stop()

    def connection(self) -> Optional[TcpConnection]:
        with self._lock:
            return self._connection

    def retry(self) -> bool:
        return self._retry

    def enable_retry(self) -> None:
        """Reconnect whenever the connection is lost while still wanted."""
        self._retry = True

    def close(self) -> None:
        """Force the connection closed, or stop connecting if there is none."""
        _log.info("TcpClient[%s] closing", self._name)
        with self._lock:
            conn = self._connection
        if conn is not None:
            loop = self._loop

            def destroy_later(c: TcpConnection) -> None:
                loop.queue_in_loop(c.connect_destroyed)

            def install() -> None:
                conn.close_callback = destroy_later

            loop.run_in_loop(install)
            conn.force_close()
        else:
            self._connector.stop()

    def _new_connection(self, sock: socket.socket) -> None:
        self._loop.assert_in_loop_thread()
        try:
            peer_addr = sockets.get_peer_addr(sock)
            local_addr = sockets.get_local_addr(sock)
        except OSError:
            sockets.close(sock)
            return
        conn_name = f"{self._name}:{peer_addr.to_ip_port()}#{self._next_conn_id}"
        self._next_conn_id += 1
        conn = TcpConnection(self._loop, conn_name, sock, local_addr, peer_addr)
        conn.connection_callback = self.connection_callback
        conn.message_callback = self.message_callback
        conn.write_complete_callback = self.write_complete_callback
        conn.close_callback = self._remove_connection
        with self._lock:
            self._connection = conn
        conn.connect_established()

    def _remove_connection(self, conn: TcpConnection) -> None:
        self._loop.assert_in_loop_thread()
        with self._lock:
            if self._connection is not conn:
                raise RuntimeError(f"unknown connection {conn.name}")
            self._connection = None
        self._loop.queue_in_loop(conn.connect_destroyed)
        if self._retry and self._connect:
            _log.info("TcpClient[%s] - Reconnecting to %s",
                      self._name, self._connector.server_address.to_ip_port())
            self._connector.restart()