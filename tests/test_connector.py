import socket
import threading

import pytest

from tcpreactor.connector import Connector
from tcpreactor.eventloop import EventLoop, LoopThreadError
from tcpreactor.inetaddress import InetAddress


@pytest.fixture
def loop():
    lp = EventLoop()
    yield lp
    lp.close()


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _run_for(loop, seconds):
    loop.run_after(seconds, loop.quit)
    loop.loop()


def test_connects_to_listening_server(loop):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        port = listener.getsockname()[1]
        addr = InetAddress.from_ip_port("127.0.0.1", port, ipv6=False)
        connector = Connector(loop, addr)
        got = []

        def on_connected(sock):
            got.append(sock)
            loop.quit()

        connector.new_connection_callback = on_connected
        connector.start()
        loop.run_after(5.0, loop.quit)
        loop.loop()
        assert len(got) == 1
        assert got[0].getpeername()[1] == port
        got[0].close()


def test_server_address_is_kept(loop):
    addr = InetAddress.from_ip_port("127.0.0.1", 9, ipv6=False)
    connector = Connector(loop, addr)
    assert connector.server_address.to_ip_port() == addr.to_ip_port()
    assert connector.retry_delay_ms == Connector.INIT_RETRY_DELAY_MS


def test_refused_connection_schedules_retry_with_doubled_delay(loop):
    port = _free_port()
    connector = Connector(loop, InetAddress.from_ip_port("127.0.0.1", port, ipv6=False))
    got = []
    connector.new_connection_callback = got.append
    connector.start()
    _run_for(loop, 0.3)
    assert got == []
    assert connector.retry_delay_ms == 2 * Connector.INIT_RETRY_DELAY_MS
    connector.stop()
    _run_for(loop, 0.05)
    assert got == []


def test_start_while_connecting_raises(loop):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        port = listener.getsockname()[1]
        connector = Connector(loop, InetAddress.from_ip_port("127.0.0.1", port, ipv6=False))
        connector.start()
        with pytest.raises(RuntimeError):
            connector.start()
        connector.stop()
        _run_for(loop, 0.05)
        assert connector.retry_delay_ms == Connector.INIT_RETRY_DELAY_MS


def test_restart_outside_loop_thread_raises(loop):
    connector = Connector(loop, InetAddress.from_ip_port("127.0.0.1", 9, ipv6=False))
    errors = []

    def worker():
        try:
            connector.restart()
        except LoopThreadError as exc:
            errors.append(exc)

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    assert len(errors) == 1
    assert connector.retry_delay_ms == Connector.INIT_RETRY_DELAY_MS
    assert connector.server_address.to_ip_port() == "127.0.0.1:9"