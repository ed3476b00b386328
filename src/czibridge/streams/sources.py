"""Caller-side I/O capabilities consumed by the stream bridge.

The bridge needs only positioned access: ``read_at(offset, length)`` for
reading and ``write_at(offset, data)`` for writing, plus an optional
``size()``. Any object providing those works; the adapters here cover
in-memory buffers and ordinary binary file objects.
"""

from __future__ import annotations

import io
import os
import threading
from typing import BinaryIO, Protocol, runtime_checkable


@runtime_checkable
class PositionedReader(Protocol):
    """Source supporting reads at an absolute offset.

    ``read_at`` returns at most ``length`` bytes; fewer means a short read
    (end of data or a partial transfer) and is reported as such.
    """

    def read_at(self, offset: int, length: int) -> bytes: ...


@runtime_checkable
class SizedSource(Protocol):
    """Source that knows its total size in bytes."""

    def size(self) -> int: ...


@runtime_checkable
class PositionedWriter(Protocol):
    """Sink supporting writes at an absolute offset.

    ``write_at`` returns the number of bytes actually written. Offsets may
    arrive out of order, e.g. a header rewritten after the data.
    """

    def write_at(self, offset: int, data: bytes) -> int: ...


@runtime_checkable
class Flushable(Protocol):
    def flush(self) -> None: ...


class BytesSource:
    """Read-only view over an immutable in-memory buffer."""

    __slots__ = ("_view",)

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._view = memoryview(data).cast("B")

    def read_at(self, offset: int, length: int) -> bytes:
        return bytes(self._view[offset : offset + length])

    def size(self) -> int:
        return len(self._view)


class MemoryBuffer:
    """Growable in-memory storage usable as both sink and source.

    Writing past the end zero-fills the gap, matching a sparse file.
    """

    def __init__(self, initial: bytes = b"") -> None:
        self._data = bytearray(initial)
        self._lock = threading.Lock()

    def write_at(self, offset: int, data: bytes) -> int:
        with self._lock:
            end = offset + len(data)
            if offset > len(self._data):
                self._data.extend(b"\x00" * (offset - len(self._data)))
            self._data[offset:end] = data
            return len(data)

    def read_at(self, offset: int, length: int) -> bytes:
        with self._lock:
            return bytes(self._data[offset : offset + length])

    def size(self) -> int:
        return len(self._data)

    def flush(self) -> None:
        """Nothing is buffered."""

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._data)


class FileSource:
    """Positioned reads over a seekable binary file object.

    A seek and the following read form one critical section, so
    overlapping callbacks cannot interleave them.
    """

    def __init__(self, file: BinaryIO) -> None:
        if not file.seekable():
            raise TypeError("file object must be seekable")
        self._file = file
        self._lock = threading.Lock()

    def read_at(self, offset: int, length: int) -> bytes:
        with self._lock:
            self._file.seek(offset)
            return self._file.read(length) or b""

    def size(self) -> int:
        with self._lock:
            try:
                return os.fstat(self._file.fileno()).st_size
            except (AttributeError, OSError, io.UnsupportedOperation):
                position = self._file.tell()
                end = self._file.seek(0, io.SEEK_END)
                self._file.seek(position)
                return end


class FileSink:
    """Positioned writes over a seekable, writable binary file object."""

    def __init__(self, file: BinaryIO) -> None:
        if not file.seekable():
            raise TypeError("file object must be seekable")
        self._file = file
        self._lock = threading.Lock()

    def write_at(self, offset: int, data: bytes) -> int:
        with self._lock:
            self._file.seek(offset)
            written = self._file.write(data)
            # Buffered writers return None only when they accepted everything.
            return len(data) if written is None else written

    def flush(self) -> None:
        with self._lock:
            self._file.flush()


def as_source(obj: object) -> PositionedReader:
    """Coerce ``obj`` into a positioned reader.

    Accepts objects implementing ``read_at``, bytes-like buffers and
    seekable binary file objects.

    Raises:
        TypeError: If ``obj`` offers none of these capabilities.
    """
    if isinstance(obj, PositionedReader):
        return obj
    if isinstance(obj, bytes | bytearray | memoryview):
        return BytesSource(obj)
    if hasattr(obj, "read") and hasattr(obj, "seek"):
        return FileSource(obj)  # type: ignore[arg-type]
    raise TypeError(
        f"{type(obj).__name__} is not a readable source: expected read_at(), "
        "a bytes-like object or a seekable binary file"
    )


def as_sink(obj: object) -> PositionedWriter:
    """Coerce ``obj`` into a positioned writer.

    Raises:
        TypeError: If ``obj`` is neither a positioned writer nor a seekable
            binary file object.
    """
    if isinstance(obj, PositionedWriter):
        return obj
    if hasattr(obj, "write") and hasattr(obj, "seek"):
        return FileSink(obj)  # type: ignore[arg-type]
    raise TypeError(
        f"{type(obj).__name__} is not a writable sink: expected write_at() "
        "or a seekable binary file"
    )
