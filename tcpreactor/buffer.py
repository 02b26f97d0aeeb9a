"""Growable byte buffer with cheap prepend space and network-order integer helpers.

Layout::

    +-------------------+------------------+------------------+
    | prependable bytes |  readable bytes  |  writable bytes  |
    +-------------------+------------------+------------------+
    0      <=      reader index  <=  writer index   <=     size
"""

from __future__ import annotations

import os
import struct

_INT64 = struct.Struct(">q")
_INT32 = struct.Struct(">i")
_INT16 = struct.Struct(">h")
_INT8 = struct.Struct(">b")

_CRLF = b"\r\n"
_EOL = b"\n"


def _as_bytes_view(data) -> memoryview:
    if isinstance(data, str):
        data = data.encode("utf-8")
    view = memoryview(data)
    if view.format != "B" or view.ndim != 1:
        view = view.cast("B")
    return view


class Buffer:
    """A byte buffer modelled on a reader/writer index pair over one bytearray."""

    CHEAP_PREPEND = 8
    INITIAL_SIZE = 1024
    _EXTRA_BUF_SIZE = 65536

    def __init__(self, initial_size: int = INITIAL_SIZE) -> None:
        if initial_size < 0:
            raise ValueError("initial_size must not be negative")
        self._buffer = bytearray(self.CHEAP_PREPEND + initial_size)
        self._reader = self.CHEAP_PREPEND
        self._writer = self.CHEAP_PREPEND

    def __repr__(self) -> str:
        return (
            f"Buffer(readable={self.readable_bytes()}, "
            f"writable={self.writable_bytes()}, "
            f"prependable={self.prependable_bytes()})"
        )

    def __len__(self) -> int:
        return self.readable_bytes()

    def __bytes__(self) -> bytes:
        return self.peek()

    def swap(self, other: Buffer) -> None:
        """Exchange contents with another buffer."""
        self._buffer, other._buffer = other._buffer, self._buffer
        self._reader, other._reader = other._reader, self._reader
        self._writer, other._writer = other._writer, self._writer

    def readable_bytes(self) -> int:
        return self._writer - self._reader

    def writable_bytes(self) -> int:
        return len(self._buffer) - self._writer

    def prependable_bytes(self) -> int:
        return self._reader

    def peek(self) -> bytes:
        """Return a copy of the readable bytes without consuming them."""
        return bytes(self._buffer[self._reader:self._writer])

    def _check_offset(self, offset: int) -> None:
        if not 0 <= offset <= self.readable_bytes():
            raise ValueError(f"offset {offset} outside readable range")

    def _find(self, needle: bytes, start: int) -> int | None:
        self._check_offset(start)
        index = self._buffer.find(needle, self._reader + start, self._writer)
        return None if index < 0 else index - self._reader

    def find_crlf(self, start: int = 0) -> int | None:
        """Offset of the first CRLF at or after ``start`` in the readable bytes."""
        return self._find(_CRLF, start)

    def find_eol(self, start: int = 0) -> int | None:
        """Offset of the first newline at or after ``start`` in the readable bytes."""
        return self._find(_EOL, start)

    def retrieve(self, length: int) -> None:
        if not 0 <= length <= self.readable_bytes():
            raise ValueError(
                f"cannot retrieve {length} bytes, {self.readable_bytes()} readable"
            )
        if length < self.readable_bytes():
            self._reader += length
        else:
            self.retrieve_all()

    def retrieve_until(self, end: int) -> None:
        """Consume readable bytes up to offset ``end``."""
        self._check_offset(end)
        self.retrieve(end)

    def retrieve_int64(self) -> None:
        self.retrieve(_INT64.size)

    def retrieve_int32(self) -> None:
        self.retrieve(_INT32.size)

    def retrieve_int16(self) -> None:
        self.retrieve(_INT16.size)

    def retrieve_int8(self) -> None:
        self.retrieve(_INT8.size)

    def retrieve_all(self) -> None:
        self._reader = self.CHEAP_PREPEND
        self._writer = self.CHEAP_PREPEND

    def retrieve_all_as_bytes(self) -> bytes:
        return self.retrieve_as_bytes(self.readable_bytes())

    def retrieve_as_bytes(self, length: int) -> bytes:
        if not 0 <= length <= self.readable_bytes():
            raise ValueError(
                f"cannot retrieve {length} bytes, {self.readable_bytes()} readable"
            )
        result = bytes(self._buffer[self._reader:self._reader + length])
        self.retrieve(length)
        return result

    def append(self, data) -> None:
        """Append bytes-like data (or a str, encoded as UTF-8)."""
        view = _as_bytes_view(data)
        length = view.nbytes
        self.ensure_writable_bytes(length)
        self._buffer[self._writer:self._writer + length] = view
        self.has_written(length)

    def ensure_writable_bytes(self, length: int) -> None:
        if self.writable_bytes() < length:
            self._make_space(length)

    def has_written(self, length: int) -> None:
        if not 0 <= length <= self.writable_bytes():
            raise ValueError(
                f"cannot mark {length} bytes written, {self.writable_bytes()} writable"
            )
        self._writer += length

    def unwrite(self, length: int) -> None:
        if not 0 <= length <= self.readable_bytes():
            raise ValueError(
                f"cannot unwrite {length} bytes, {self.readable_bytes()} readable"
            )
        self._writer -= length

    @staticmethod
    def _pack(fmt: struct.Struct, x: int) -> bytes:
        try:
            return fmt.pack(x)
        except struct.error as exc:
            raise ValueError(f"{x} does not fit in {fmt.size * 8} bits") from exc

    def append_int64(self, x: int) -> None:
        self.append(self._pack(_INT64, x))

    def append_int32(self, x: int) -> None:
        self.append(self._pack(_INT32, x))

    def append_int16(self, x: int) -> None:
        self.append(self._pack(_INT16, x))

    def append_int8(self, x: int) -> None:
        self.append(self._pack(_INT8, x))

    def _peek_int(self, fmt: struct.Struct) -> int:
        if self.readable_bytes() < fmt.size:
            raise ValueError(
                f"need {fmt.size} readable bytes, have {self.readable_bytes()}"
            )
        return fmt.unpack_from(self._buffer, self._reader)[0]

    def read_int64(self) -> int:
        result = self.peek_int64()
        self.retrieve_int64()
        return result

    def read_int32(self) -> int:
        result = self.peek_int32()
        self.retrieve_int32()
        return result

    def read_int16(self) -> int:
        result = self.peek_int16()
        self.retrieve_int16()
        return result

    def read_int8(self) -> int:
        result = self.peek_int8()
        self.retrieve_int8()
        return result

    def peek_int64(self) -> int:
        return self._peek_int(_INT64)

    def peek_int32(self) -> int:
        return self._peek_int(_INT32)

    def peek_int16(self) -> int:
        return self._peek_int(_INT16)

    def peek_int8(self) -> int:
        return self._peek_int(_INT8)

    def prepend_int64(self, x: int) -> None:
        self.prepend(self._pack(_INT64, x))

    def prepend_int32(self, x: int) -> None:
        self.prepend(self._pack(_INT32, x))

    def prepend_int16(self, x: int) -> None:
        self.prepend(self._pack(_INT16, x))

    def prepend_int8(self, x: int) -> None:
        self.prepend(self._pack(_INT8, x))

    def prepend(self, data) -> None:
        """Put bytes in front of the readable data, using the prepend area."""
        view = _as_bytes_view(data)
        length = view.nbytes
        if length > self.prependable_bytes():
            raise ValueError(
                f"cannot prepend {length} bytes, {self.prependable_bytes()} prependable"
            )
        self._reader -= length
        self._buffer[self._reader:self._reader + length] = view

    def shrink(self, reserve: int) -> None:
        """Reallocate to fit the readable bytes plus ``reserve`` writable bytes."""
        other = Buffer()
        other.ensure_writable_bytes(self.readable_bytes() + reserve)
        other.append(self.peek())
        self.swap(other)

    def internal_capacity(self) -> int:
        return len(self._buffer)

    def read_fd(self, fd: int) -> int:
        """Read from ``fd`` straight into the buffer; return the byte count.

        Up to 64 KiB beyond the current writable space is read in one call.
        Raises OSError when the read fails.
        """
        writable = self.writable_bytes()
        extra = bytearray(self._EXTRA_BUF_SIZE)
        with memoryview(self._buffer) as whole, whole[self._writer:] as tail:
            targets = [tail]
            if writable < len(extra):
                targets.append(extra)
            n = os.readv(fd, targets)
        if n <= writable:
            self._writer += n
        else:
            self._writer = len(self._buffer)
            self.append(extra[:n - writable])
        return n

    def _make_space(self, length: int) -> None:
        if self.writable_bytes() + self.prependable_bytes() < length + self.CHEAP_PREPEND:
            self._buffer.extend(bytes(self._writer + length - len(self._buffer)))
        else:
            readable = self.readable_bytes()
            start = self.CHEAP_PREPEND
            self._buffer[start:start + readable] = self._buffer[self._reader:self._writer]
            self._reader = start
            self._writer = start + readable