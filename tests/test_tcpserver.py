import socket
import threading

import pytest

from tcpreactor.eventloop import EventLoop
from tcpreactor.inetaddress import InetAddress
from tcpreactor.tcpserver import Option, TcpServer


@pytest.fixture
def loop():
    lp = EventLoop()
    yield lp
    lp.close()


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _client(port, payload, received):
    with socket.create_connection(("127.0.0.1", port), timeout=5) as s:
        s.sendall(payload)
        data = b""
        while len(data) < len(payload):
            chunk = s.recv(1024)
            if not chunk:
                break
            data += chunk
        received.append(data)


def _echo_server(loop, port, events, threads=0):
    server = TcpServer(loop, InetAddress.from_ip_port("127.0.0.1", port, ipv6=False), "Echo")
    server.set_thread_num(threads)

    def on_connection(conn):
        events.append((conn.name, conn.connected(), conn.loop))
        if not conn.connected():
            loop.quit()

    def on_message(conn, buf, receive_time):
        conn.send(buf.retrieve_all_as_bytes())

    server.connection_callback = on_connection
    server.message_callback = on_message
    return server


def test_echo_round_trip(loop):
    port = _free_port()
    events = []
    server = _echo_server(loop, port, events)
    server.start()
    received = []
    t = threading.Thread(target=_client, args=(port, b"hello", received))
    t.start()
    loop.run_after(5.0, loop.quit)
    loop.loop()
    t.join()
    server.close()
    assert received == [b"hello"]
    assert [up for _, up, _ in events] == [True, False]
    assert events[0][0] == f"Echo-127.0.0.1:{port}#1"
    assert events[0][2] is loop
    assert server.connections == {}


def test_echo_with_thread_pool(loop):
    port = _free_port()
    events = []
    server = _echo_server(loop, port, events, threads=1)
    server.start()
    received = []
    t = threading.Thread(target=_client, args=(port, b"pool", received))
    t.start()
    loop.run_after(5.0, loop.quit)
    loop.loop()
    t.join()
    server.close()
    assert received == [b"pool"]
    assert events[0][2] is not loop
    assert server.thread_pool().started()


def test_properties_and_repeated_start(loop):
    port = _free_port()
    server = TcpServer(loop, InetAddress.from_ip_port("127.0.0.1", port, ipv6=False),
                       "Props", Option.REUSE_PORT)
    assert server.ip_port == f"127.0.0.1:{port}"
    assert server.name == "Props"
    assert server.loop is loop
    server.start()
    server.start()
    with socket.create_connection(("127.0.0.1", port), timeout=5) as s:
        assert s.getpeername()[1] == port
    server.close()


def test_negative_thread_num_raises(loop):
    server = TcpServer(loop, InetAddress.from_ip_port("127.0.0.1", _free_port(), ipv6=False),
                       "Bad")
    with pytest.raises(ValueError):
        server.set_thread_num(-1)
    server.close()
    assert server.connections == {}


def test_none_loop_raises():
    with pytest.raises(ValueError):
        TcpServer(None, InetAddress.from_ip_port("127.0.0.1", _free_port(), ipv6=False), "X")