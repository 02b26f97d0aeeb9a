"""IPv4/IPv6 socket endpoint."""

from __future__ import annotations

import socket
import sys

_ANY4 = bytes(4)
_LOOPBACK4 = bytes((127, 0, 0, 1))
_ANY6 = bytes(16)
_LOOPBACK6 = bytes(15) + b"\x01"


def _check_port(port: int) -> int:
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port {port} out of range")
    return port


class InetAddress:
    """An IP address and port, either IPv4 or IPv6."""

    __slots__ = ("_family", "_packed", "_port", "_flowinfo", "_scope_id")

    def __init__(self, port: int = 0, loopback_only: bool = False, ipv6: bool = False) -> None:
        """Wildcard or loopback endpoint on ``port``; mostly used for listening."""
        if ipv6:
            self._assign(socket.AF_INET6, _LOOPBACK6 if loopback_only else _ANY6, port)
        else:
            self._assign(socket.AF_INET, _LOOPBACK4 if loopback_only else _ANY4, port)

    def _assign(self, family: int, packed: bytes, port: int,
                flowinfo: int = 0, scope_id: int = 0) -> None:
        self._family = family
        self._packed = packed
        self._port = _check_port(port)
        self._flowinfo = flowinfo
        self._scope_id = scope_id

    @classmethod
    def from_ip_port(cls, ip: str, port: int, ipv6: bool = False) -> InetAddress:
        """Endpoint from a textual address such as "1.2.3.4"."""
        family = socket.AF_INET6 if ipv6 else socket.AF_INET
        try:
            packed = socket.inet_pton(family, ip)
        except (OSError, ValueError) as exc:
            raise ValueError(f"invalid address {ip!r}") from exc
        addr = cls.__new__(cls)
        addr._assign(family, packed, port)
        return addr

    @classmethod
    def from_sockaddr(cls, family: int, sockaddr: tuple) -> InetAddress:
        """Endpoint from a socket-module address tuple of the given family."""
        addr = cls.__new__(cls)
        if family == socket.AF_INET:
            host, port = sockaddr[:2]
            addr._assign(family, socket.inet_pton(family, host), port)
        elif family == socket.AF_INET6:
            host, port, flowinfo, scope_id = sockaddr
            host = host.split("%", 1)[0]
            addr._assign(family, socket.inet_pton(family, host), port, flowinfo, scope_id)
        else:
            raise ValueError(f"unsupported address family {family}")
        return addr

    def family(self) -> int:
        return self._family

    def to_ip(self) -> str:
        return socket.inet_ntop(self._family, self._packed)

    def to_ip_port(self) -> str:
        return f"{self.to_ip()}:{self._port}"

    def to_port(self) -> int:
        return self._port

    def sockaddr(self) -> tuple:
        """Address tuple suitable for bind() and connect()."""
        if self._family == socket.AF_INET6:
            return (self.to_ip(), self._port, self._flowinfo, self._scope_id)
        return (self.to_ip(), self._port)

    def ip_net_endian(self) -> int:
        """IPv4 address in network byte order, read as a native integer."""
        if self._family != socket.AF_INET:
            raise ValueError("ip_net_endian requires an IPv4 address")
        return int.from_bytes(self._packed, sys.byteorder)

    def port_net_endian(self) -> int:
        """Port in network byte order, read as a native integer."""
        return int.from_bytes(self._port.to_bytes(2, "big"), sys.byteorder)

    def resolve(self, hostname: str) -> bool:
        """Replace the IPv4 address with ``hostname``'s; keep the port.

        Returns False when the name cannot be resolved.
        """
        if self._family != socket.AF_INET:
            raise ValueError("resolve requires an IPv4 address")
        try:
            ip = socket.gethostbyname(hostname)
        except (OSError, UnicodeError):
            return False
        self._packed = socket.inet_aton(ip)
        return True

    def set_scope_id(self, scope_id: int) -> None:
        """Set the IPv6 scope id; ignored for IPv4."""
        if self._family == socket.AF_INET6:
            self._scope_id = scope_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InetAddress):
            return NotImplemented
        return (
            self._family == other._family
            and self._packed == other._packed
            and self._port == other._port
            and self._flowinfo == other._flowinfo
            and self._scope_id == other._scope_id
        )

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"InetAddress({self.to_ip_port()!r})"

    def __str__(self) -> str:
        return self.to_ip_port()