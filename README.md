# tcpreactor

A small reactor-pattern TCP networking library: one event loop per thread,
non-blocking sockets, poll/epoll multiplexing, timers, and a server and a
client built on top of them. It uses only the standard library.

## Installation

```
pip install .
```

Tests:

```
pip install .[test]
pytest
```

## Building blocks

- `tcpreactor.buffer.Buffer`: a growable byte buffer with a cheap prepend
  area, network-order integer helpers (`append_int32`, `read_int64`,
  `prepend_int16`, ...), line searching (`find_crlf`, `find_eol`, which
  return offsets into the readable bytes or `None`) and `read_fd` to read
  from a descriptor straight into the buffer.
- `tcpreactor.inetaddress.InetAddress`: an IPv4/IPv6 endpoint. Build one with
  `InetAddress(port, loopback_only, ipv6)`, `InetAddress.from_ip_port(ip, port)`
  or `InetAddress.from_sockaddr(family, sockaddr)`; read it with `to_ip`,
  `to_port`, `to_ip_port` and `sockaddr`; `resolve(hostname)` replaces an IPv4
  address and returns `False` when the name cannot be resolved.
- `tcpreactor.zlibstream.ZlibOutputStream`: compresses written data into a
  `Buffer`; `finish()` ends the stream. It also works as a context manager.
- `tcpreactor.sockets`: helpers over TCP sockets and the owning `Socket`
  wrapper (options such as `set_tcp_no_delay`, `set_reuse_port`, and
  `get_tcp_info` on Linux).
- `tcpreactor.timer.Timer` / `TimerId` and `tcpreactor.timerqueue.TimerQueue`:
  timers ordered by expiration; a `TimerId` cancels one.
- `tcpreactor.channel.Channel` and `tcpreactor.poller` (`PollPoller`,
  `EPollPoller`, `new_default_poller`): the descriptor/event machinery under
  the loop.
- `tcpreactor.eventloop.EventLoop`: the reactor, at most one per thread
  (`current_loop()` returns the calling thread's). Schedule work with
  `run_in_loop`, `queue_in_loop`, `run_at`, `run_after`, `run_every` and
  `cancel`; drive it with `loop` and `quit`; release it with `close`. Using a
  loop from the wrong thread raises `LoopThreadError`.
- `tcpreactor.eventloopthread.EventLoopThread` and
  `tcpreactor.eventloopthreadpool.EventLoopThreadPool`: loops running in their
  own threads, picked round-robin (`get_next_loop`) or by hash
  (`get_loop_for_hash`).
- `tcpreactor.tcpserver.TcpServer` and `tcpreactor.tcpclient.TcpClient`:
  accept or open connections, each a `tcpreactor.tcpconnection.TcpConnection`.
  Set `connection_callback`, `message_callback` and `write_complete_callback`
  as attributes; `TcpClient.enable_retry()` reconnects when the connection is
  lost.

## Example: an echo server

```python
from tcpreactor.eventloop import EventLoop
from tcpreactor.inetaddress import InetAddress
from tcpreactor.tcpserver import TcpServer


def on_message(conn, buf, receive_time):
    conn.send(buf.retrieve_all_as_bytes())


loop = EventLoop()
server = TcpServer(loop, InetAddress(2007), "echo")
server.message_callback = on_message
server.set_thread_num(2)
server.start()
loop.loop()
```

## Example: a client

```python
from tcpreactor.eventloop import EventLoop
from tcpreactor.inetaddress import InetAddress
from tcpreactor.tcpclient import TcpClient


def on_connection(conn):
    if conn.connected():
        conn.send(b"hello\n")


def on_message(conn, buf, receive_time):
    print(buf.retrieve_all_as_bytes())
    conn.loop.quit()


loop = EventLoop()
client = TcpClient(loop, InetAddress.from_ip_port("127.0.0.1", 2007), "client")
client.connection_callback = on_connection
client.message_callback = on_message
client.connect()
loop.loop()
```

## Example: a timer

```python
from tcpreactor.eventloop import EventLoop

loop = EventLoop()
loop.run_after(1.0, lambda: print("one second later"))
loop.run_after(2.5, loop.quit)
loop.loop()
loop.close()
```

The default poller uses epoll where available; set the environment variable
`TCPREACTOR_USE_POLL` to use poll instead.

## What is not included

- There is no command-line program; the package is a library to build
  servers and clients with.
- Compression goes one way only: there is a `ZlibOutputStream` but no
  decompressing stream.
- The pollers rely on `select.poll` and `select.epoll`, so the package runs on
  POSIX systems, not on Windows.