"""Streaming zlib compression into a Buffer."""

from __future__ import annotations

import zlib

from tcpreactor.buffer import Buffer

Z_OK = 0
Z_STREAM_END = 1
Z_STREAM_ERROR = -2


class ZlibOutputStream:
    """Compresses written data and appends the zlib stream to an output Buffer."""

    _INITIAL_BUFFER_SIZE = 1024
    _MAX_BUFFER_SIZE = 65536

    def __init__(self, output: Buffer) -> None:
        self._output = output
        self._compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION)
        self._error = Z_OK
        self._buffer_size = self._INITIAL_BUFFER_SIZE
        self._input_bytes = 0
        self._output_bytes = 0

    def __enter__(self) -> ZlibOutputStream:
        return self

    def __exit__(self, *exc_info) -> None:
        self.finish()

    def error_code(self) -> int:
        return self._error

    def input_bytes(self) -> int:
        return self._input_bytes

    def output_bytes(self) -> int:
        return self._output_bytes

    def internal_output_buffer_size(self) -> int:
        return self._buffer_size

    def write(self, data) -> bool:
        """Compress ``data``; return False once the stream is finished or failed."""
        if self._error != Z_OK:
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        view = memoryview(data).cast("B")
        if view.nbytes == 0:
            return True
        try:
            chunk = self._compressor.compress(view)
        except zlib.error:
            self._error = Z_STREAM_ERROR
            return False
        self._input_bytes += view.nbytes
        self._emit(chunk)
        return True

    def write_buffer(self, source: Buffer) -> bool:
        """Compress and consume the readable bytes of ``source``."""
        if self._error != Z_OK:
            return False
        return self.write(source.retrieve_all_as_bytes())

    def finish(self) -> bool:
        """Flush the end of the stream; later writes are refused."""
        if self._error != Z_OK:
            return False
        try:
            chunk = self._compressor.flush(zlib.Z_FINISH)
        except zlib.error:
            self._error = Z_STREAM_ERROR
            return False
        self._emit(chunk)
        self._error = Z_STREAM_END
        return True

    def _emit(self, chunk: bytes) -> None:
        out = self._output
        offset = 0
        while True:
            out.ensure_writable_bytes(self._buffer_size)
            take = min(out.writable_bytes(), len(chunk) - offset)
            out.append(chunk[offset:offset + take])
            offset += take
            self._output_bytes += take
            if out.writable_bytes() == 0 and self._buffer_size < self._MAX_BUFFER_SIZE:
                self._buffer_size *= 2
            if offset >= len(chunk):
                break