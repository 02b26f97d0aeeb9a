"""Reactor-style non-blocking TCP networking: event loops, timers, servers and clients."""

__version__ = "0.1.0"

__all__ = [
    "acceptor",
    "buffer",
    "channel",
    "connector",
    "eventloop",
    "eventloopthread",
    "eventloopthreadpool",
    "inetaddress",
    "poller",
    "sockets",
    "tcpclient",
    "tcpconnection",
    "tcpserver",
    "timer",
    "timerqueue",
    "zlibstream",
]