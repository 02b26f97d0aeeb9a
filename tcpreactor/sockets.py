"""Thin helpers over TCP sockets, plus an owning Socket wrapper."""

from __future__ import annotations

import errno
import logging
import socket
import struct

from tcpreactor.inetaddress import InetAddress

_log = logging.getLogger(__name__)

# Errors that a busy listening socket is expected to report from accept().
_EXPECTED_ACCEPT_ERRORS = frozenset(
    {
        errno.EAGAIN,
        errno.EWOULDBLOCK,
        errno.ECONNABORTED,
        errno.EINTR,
        errno.EPROTO,
        errno.EPERM,
        errno.EMFILE,
    }
)

_TCP_INFO = struct.Struct("8B24I")
_TCP_INFO_FIELDS = (
    "state", "ca_state", "retransmits", "probes", "backoff", "options",
    "wscale", "app_limited",
    "rto", "ato", "snd_mss", "rcv_mss",
    "unacked", "sacked", "lost", "retrans", "fackets",
    "last_data_sent", "last_ack_sent", "last_data_recv", "last_ack_recv",
    "pmtu", "rcv_ssthresh", "rtt", "rttvar", "snd_ssthresh", "snd_cwnd",
    "advmss", "reordering",
    "rcv_rtt", "rcv_space",
    "total_retrans",
)
_TCP_INFO_FORMAT = (
    "unrecovered={retransmits} "
    "rto={rto} ato={ato} snd_mss={snd_mss} rcv_mss={rcv_mss} "
    "lost={lost} retrans={retrans} rtt={rtt} rttvar={rttvar} "
    "sshthresh={snd_ssthresh} cwnd={snd_cwnd} total_retrans={total_retrans}"
)


def create_nonblocking_or_die(family: int) -> socket.socket:
    """Create a non-blocking, non-inheritable TCP socket; raise OSError on failure."""
    try:
        sock = socket.socket(family, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except OSError:
        _log.critical("create_nonblocking_or_die failed", exc_info=True)
        raise
    sock.setblocking(False)
    return sock


def bind_or_die(sock: socket.socket, addr: InetAddress) -> None:
    try:
        sock.bind(addr.sockaddr())
    except OSError:
        _log.critical("bind_or_die %s failed", addr, exc_info=True)
        raise


def listen_or_die(sock: socket.socket) -> None:
    try:
        sock.listen(socket.SOMAXCONN)
    except OSError:
        _log.critical("listen_or_die failed", exc_info=True)
        raise


def accept(sock: socket.socket) -> tuple[socket.socket, InetAddress]:
    """Accept one connection as a non-blocking socket together with its peer address.

    Raises OSError when nothing can be accepted; errors a busy server should
    expect (EAGAIN, EMFILE, ...) are logged as errors, others as critical.
    """
    try:
        conn, raw_addr = sock.accept()
    except OSError as exc:
        if exc.errno in _EXPECTED_ACCEPT_ERRORS:
            _log.error("accept: %s", exc)
        else:
            _log.critical("unexpected error of accept: %s", exc)
        raise
    conn.setblocking(False)
    return conn, InetAddress.from_sockaddr(conn.family, raw_addr)


def connect(sock: socket.socket, addr: InetAddress) -> int:
    """Start connecting; return 0 or the errno of the attempt, as connect_ex does."""
    return sock.connect_ex(addr.sockaddr())


def close(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError:
        _log.error("close failed", exc_info=True)


def shutdown_write(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError:
        _log.error("shutdown_write failed", exc_info=True)


def get_socket_error(sock: socket.socket) -> int:
    """Pending SO_ERROR of the socket, or the errno of reading it."""
    try:
        return sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    except OSError as exc:
        return exc.errno or 0


def get_local_addr(sock: socket.socket) -> InetAddress:
    try:
        raw = sock.getsockname()
    except OSError:
        _log.error("get_local_addr failed", exc_info=True)
        raise
    return InetAddress.from_sockaddr(sock.family, raw)


def get_peer_addr(sock: socket.socket) -> InetAddress:
    try:
        raw = sock.getpeername()
    except OSError:
        _log.error("get_peer_addr failed", exc_info=True)
        raise
    return InetAddress.from_sockaddr(sock.family, raw)


def is_self_connect(sock: socket.socket) -> bool:
    """True when the socket's local and peer endpoints are the same."""
    try:
        local = get_local_addr(sock)
        peer = get_peer_addr(sock)
    except (OSError, ValueError):
        return False
    return (
        local.family() == peer.family()
        and local.to_port() == peer.to_port()
        and local.to_ip() == peer.to_ip()
    )


class Socket:
    """Owns a socket and closes it when closed or used as a context manager."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def __enter__(self) -> Socket:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Socket(fd={self.fd()})"

    @property
    def sock(self) -> socket.socket:
        return self._sock

    def fd(self) -> int:
        return self._sock.fileno()

    def get_tcp_info(self) -> dict[str, int]:
        """Kernel TCP_INFO statistics as a dict; raise OSError if unavailable."""
        option = getattr(socket, "TCP_INFO", None)
        if option is None:
            raise OSError(errno.ENOPROTOOPT, "TCP_INFO is not supported")
        raw = self._sock.getsockopt(socket.IPPROTO_TCP, option, _TCP_INFO.size)
        raw = raw[:_TCP_INFO.size].ljust(_TCP_INFO.size, b"\0")
        return dict(zip(_TCP_INFO_FIELDS, _TCP_INFO.unpack(raw)))

    def get_tcp_info_string(self) -> str:
        return _TCP_INFO_FORMAT.format(**self.get_tcp_info())

    def bind_address(self, addr: InetAddress) -> None:
        bind_or_die(self._sock, addr)

    def listen(self) -> None:
        listen_or_die(self._sock)

    def accept(self) -> tuple[socket.socket, InetAddress]:
        return accept(self._sock)

    def shutdown_write(self) -> None:
        shutdown_write(self._sock)

    def _set_flag(self, level: int, option: int, on: bool) -> None:
        self._sock.setsockopt(level, option, 1 if on else 0)

    def set_tcp_no_delay(self, on: bool) -> None:
        self._set_flag(socket.IPPROTO_TCP, socket.TCP_NODELAY, on)

    def set_reuse_addr(self, on: bool) -> None:
        self._set_flag(socket.SOL_SOCKET, socket.SO_REUSEADDR, on)

    def set_reuse_port(self, on: bool) -> None:
        option = getattr(socket, "SO_REUSEPORT", None)
        if option is None:
            if on:
                _log.error("SO_REUSEPORT is not supported.")
            return
        try:
            self._set_flag(socket.SOL_SOCKET, option, on)
        except OSError:
            if on:
                _log.error("SO_REUSEPORT failed.", exc_info=True)

    def set_keep_alive(self, on: bool) -> None:
        self._set_flag(socket.SOL_SOCKET, socket.SO_KEEPALIVE, on)

    def close(self) -> None:
        close(self._sock)