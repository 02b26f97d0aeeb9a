import errno
import select
import socket

import pytest

from tcpreactor import sockets
from tcpreactor.inetaddress import InetAddress


@pytest.fixture
def listener():
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    sockets.bind_or_die(sock, InetAddress(0, loopback_only=True))
    sockets.listen_or_die(sock)
    yield sock
    sock.close()


def _accept(listener):
    select.select([listener], [], [], 5)
    return sockets.accept(listener)


@pytest.fixture
def pair(listener):
    port = sockets.get_local_addr(listener).to_port()
    client = socket.create_connection(("127.0.0.1", port), timeout=5)
    conn, peer = _accept(listener)
    yield client, conn, peer
    client.close()
    conn.close()


def test_create_nonblocking_socket():
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    try:
        assert sock.getblocking() is False
        assert sock.family == socket.AF_INET
        assert sock.type == socket.SOCK_STREAM
    finally:
        sock.close()


def test_listener_gets_ephemeral_port(listener):
    local = sockets.get_local_addr(listener)
    assert local.to_ip() == "127.0.0.1"
    assert local.to_port() > 0


def test_accept_on_idle_listener_raises(listener):
    with pytest.raises(OSError) as info:
        sockets.accept(listener)
    assert info.value.errno in (errno.EAGAIN, errno.EWOULDBLOCK)


def test_accept_returns_nonblocking_socket_and_peer(pair):
    client, conn, peer = pair
    assert conn.getblocking() is False
    assert peer.to_ip() == "127.0.0.1"
    assert peer.to_port() == client.getsockname()[1]


def test_peer_and_local_addresses_match(pair):
    client, conn, _ = pair
    assert sockets.get_peer_addr(conn).to_port() == client.getsockname()[1]
    assert sockets.get_local_addr(conn).to_port() == client.getpeername()[1]


def test_normal_connection_is_not_self_connect(pair):
    client, conn, _ = pair
    assert sockets.is_self_connect(client) is False
    assert sockets.is_self_connect(conn) is False


def test_self_connect_detected():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.settimeout(5)
        sock.connect(("127.0.0.1", port))
        assert sockets.is_self_connect(sock) is True
    finally:
        sock.close()


def test_unconnected_socket_is_not_self_connect():
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    try:
        assert sockets.is_self_connect(sock) is False
    finally:
        sock.close()


def test_get_peer_addr_of_unconnected_raises():
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    try:
        with pytest.raises(OSError):
            sockets.get_peer_addr(sock)
    finally:
        sock.close()


def test_fresh_socket_has_no_error():
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    try:
        assert sockets.get_socket_error(sock) == 0
    finally:
        sock.close()


def test_connect_to_closed_port_reports_errno():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    try:
        code = sockets.connect(sock, InetAddress.from_ip_port("127.0.0.1", port))
        assert code in (errno.EINPROGRESS, errno.ECONNREFUSED)
        select.select([], [sock], [], 5)
        assert sockets.get_socket_error(sock) in (0, errno.ECONNREFUSED)
    finally:
        sock.close()


def test_connect_to_listener_succeeds(listener):
    port = sockets.get_local_addr(listener).to_port()
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    try:
        code = sockets.connect(sock, InetAddress.from_ip_port("127.0.0.1", port))
        assert code in (0, errno.EINPROGRESS)
        select.select([], [sock], [], 5)
        assert sockets.get_socket_error(sock) == 0
    finally:
        sock.close()


def test_shutdown_write_gives_peer_eof(pair):
    client, conn, _ = pair
    sockets.shutdown_write(conn)
    assert client.recv(16) == b""


def test_close_closes_socket():
    sock = sockets.create_nonblocking_or_die(socket.AF_INET)
    sockets.close(sock)
    assert sock.fileno() == -1


def test_socket_wrapper_options():
    raw = sockets.create_nonblocking_or_die(socket.AF_INET)
    with sockets.Socket(raw) as sock:
        assert sock.fd() == raw.fileno()
        sock.set_reuse_addr(True)
        assert raw.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) != 0
        sock.set_reuse_addr(False)
        assert raw.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) == 0
        sock.set_keep_alive(True)
        assert raw.getsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE) != 0
        sock.set_tcp_no_delay(True)
        assert raw.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) != 0
        sock.set_reuse_port(True)
        assert raw.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT) != 0
    assert raw.fileno() == -1


def test_socket_wrapper_listen_and_accept():
    with sockets.Socket(sockets.create_nonblocking_or_die(socket.AF_INET)) as server:
        server.bind_address(InetAddress(0, loopback_only=True))
        server.listen()
        port = sockets.get_local_addr(server.sock).to_port()
        client = socket.create_connection(("127.0.0.1", port), timeout=5)
        try:
            select.select([server.sock], [], [], 5)
            conn, peer = server.accept()
            with sockets.Socket(conn) as accepted:
                assert peer.to_port() == client.getsockname()[1]
                accepted.shutdown_write()
                assert client.recv(4) == b""
        finally:
            client.close()


def test_tcp_info_of_connected_socket(pair):
    _, conn, _ = pair
    wrapped = sockets.Socket(conn)
    info = wrapped.get_tcp_info()
    assert info["snd_mss"] > 0
    text = wrapped.get_tcp_info_string()
    assert text.startswith("unrecovered=")
    assert f"snd_mss={info['snd_mss']}" in text
    assert "total_retrans=" in text