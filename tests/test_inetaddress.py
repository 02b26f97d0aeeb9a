import socket
import sys

import pytest

from tcpreactor.inetaddress import InetAddress


def test_any_ipv4():
    addr = InetAddress(1234)
    assert addr.to_ip() == "0.0.0.0"
    assert addr.to_ip_port() == f"{addr.to_ip()}:1234"
    assert addr.to_port() == 1234
    assert addr.family() == socket.AF_INET


def test_loopback_ipv4():
    addr = InetAddress(4321, True)
    assert addr.to_ip() == "127.0.0.1"
    assert addr.to_port() == 4321


@pytest.mark.parametrize("ip, port", [("1.2.3.4", 8888), ("255.254.253.252", 65535)])
def test_from_ip_port(ip, port):
    addr = InetAddress.from_ip_port(ip, port)
    assert addr.to_ip() == ip
    assert addr.to_ip_port() == f"{ip}:{port}"
    assert addr.to_port() == port


def test_ipv6_loopback():
    addr = InetAddress(8080, True, True)
    assert addr.family() == socket.AF_INET6
    assert addr.to_ip() == "::1"
    assert addr.to_ip_port() == f"{addr.to_ip()}:8080"


def test_ipv6_any_matches_textual():
    assert InetAddress(0, False, True) == InetAddress.from_ip_port("::", 0, ipv6=True)


def test_ipv6_from_ip_port():
    addr = InetAddress.from_ip_port("fe80::1", 80, ipv6=True)
    assert addr.to_ip() == "fe80::1"
    assert addr.sockaddr() == ("fe80::1", 80, 0, 0)


def test_invalid_ip_raises():
    with pytest.raises(ValueError):
        InetAddress.from_ip_port("not an ip", 80)
    with pytest.raises(ValueError):
        InetAddress.from_ip_port("1.2.3.4", 80, ipv6=True)


def test_port_out_of_range_raises():
    with pytest.raises(ValueError):
        InetAddress(70000)
    with pytest.raises(ValueError):
        InetAddress.from_ip_port("1.2.3.4", -1)


@pytest.mark.parametrize(
    "addr",
    [
        InetAddress.from_ip_port("10.0.0.7", 443),
        InetAddress.from_ip_port("2001:db8::5", 9000, ipv6=True),
        InetAddress(99, True, True),
    ],
)
def test_sockaddr_round_trip(addr):
    assert InetAddress.from_sockaddr(addr.family(), addr.sockaddr()) == addr


def test_sockaddr_binds_real_socket():
    addr = InetAddress(0, True)
    with socket.socket(addr.family(), socket.SOCK_STREAM) as sock:
        sock.bind(addr.sockaddr())
        bound = InetAddress.from_sockaddr(sock.family, sock.getsockname())
    assert bound.to_ip() == addr.to_ip()
    assert bound.to_port() > 0


def test_from_sockaddr_strips_scope_suffix():
    addr = InetAddress.from_sockaddr(socket.AF_INET6, ("fe80::1%lo", 22, 0, 1))
    assert addr.to_ip() == "fe80::1"
    assert addr.sockaddr()[3] == 1


def test_from_sockaddr_unknown_family_raises():
    with pytest.raises(ValueError):
        InetAddress.from_sockaddr(-1, ("x", 1))


def test_ip_net_endian():
    addr = InetAddress.from_ip_port("192.168.1.20", 80)
    assert addr.ip_net_endian().to_bytes(4, sys.byteorder) == socket.inet_aton("192.168.1.20")


def test_port_net_endian():
    addr = InetAddress(0x1234)
    assert addr.port_net_endian().to_bytes(2, sys.byteorder) == (0x1234).to_bytes(2, "big")


def test_ip_net_endian_ipv6_raises():
    with pytest.raises(ValueError):
        InetAddress(80, ipv6=True).ip_net_endian()


def test_resolve_localhost():
    addr = InetAddress(80)
    assert addr.resolve("localhost") is True
    assert addr.to_ip() == socket.gethostbyname("localhost")
    assert addr.to_port() == 80
    assert addr.family() == socket.AF_INET


def test_resolve_failure_keeps_address():
    addr = InetAddress.from_ip_port("1.2.3.4", 80)
    assert addr.resolve("no-such-host.invalid") is False
    assert addr.to_ip() == "1.2.3.4"


def test_resolve_ipv6_raises():
    with pytest.raises(ValueError):
        InetAddress(80, ipv6=True).resolve("localhost")


def test_set_scope_id():
    addr6 = InetAddress.from_ip_port("fe80::1", 80, ipv6=True)
    addr6.set_scope_id(3)
    assert addr6.sockaddr()[3] == 3

    addr4 = InetAddress.from_ip_port("1.2.3.4", 80)
    addr4.set_scope_id(3)
    assert addr4.sockaddr() == ("1.2.3.4", 80)