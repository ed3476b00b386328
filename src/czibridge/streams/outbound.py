"""Output streams: native libCZI writing into caller-supplied sinks."""

from __future__ import annotations

import ctypes
import logging
from pathlib import Path

from czibridge.native.exceptions import CziError, make_error
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.interop import (
    ExternalOutputStreamStructInterop,
    OutputStreamWriteFunction,
)
from czibridge.native.library import NativeLibrary, get_library
from czibridge.native.status import ErrorKind, NativeStatus, StreamErrorCode
from czibridge.streams.adapter import NativeStream, StreamAdapter, unexpected_failure
from czibridge.streams.sources import Flushable, PositionedWriter, as_sink

logger = logging.getLogger(__name__)


class OutputStreamAdapter(StreamAdapter):
    """Serves libCZI write callbacks into a :class:`PositionedWriter`.

    Writes are positioned and may revisit earlier offsets. A sink that
    accepts fewer bytes than offered fails the callback.
    """

    def __init__(self, sink: PositionedWriter) -> None:
        super().__init__(sink)
        self._write_cb = OutputStreamWriteFunction(self._on_write)
        self.struct = ExternalOutputStreamStructInterop(
            opaque_handle1=self.token,
            opaque_handle2=0,
            write_function=self._write_cb,
            close_function=self._close_cb,
        )

    def _write_to_sink(self, offset: int, data: bytes) -> int:
        with self._lock:
            sink = self._require_target("write")
            try:
                return int(sink.write_at(offset, data))  # type: ignore[attr-defined]
            except OSError as e:
                raise make_error(
                    ErrorKind.IO,
                    f"write of {len(data)} bytes at offset {offset} failed: {e}",
                    "write",
                    code=StreamErrorCode.UNSPECIFIED,
                ) from e

    def write_at(self, offset: int, data: bytes) -> int:
        """Write all of ``data`` at ``offset``.

        Raises:
            AlreadyClosedError: If the sink has been detached.
            CziIOError: If the sink fails or accepts only part of the data.
        """
        written = self._write_to_sink(offset, data)
        if written != len(data):
            raise _partial_write(offset, written, len(data))
        return written

    def flush(self) -> None:
        """Flush the sink if it buffers.

        Raises:
            AlreadyClosedError: If the sink has been detached.
            CziIOError: If the sink fails to flush.
        """
        with self._lock:
            sink = self._require_target("flush")
            if isinstance(sink, Flushable):
                try:
                    sink.flush()
                except OSError as e:
                    raise make_error(
                        ErrorKind.IO, f"flush failed: {e}", "flush",
                        code=StreamErrorCode.UNSPECIFIED,
                    ) from e

    def _on_write(
        self,
        opaque_handle1: int,
        opaque_handle2: int,
        offset: int,
        pv: int,
        size: int,
        bytes_written,  # noqa: ANN001
        error_info,  # noqa: ANN001
    ) -> int:
        if bytes_written:
            bytes_written[0] = 0
        try:
            self._check_token(opaque_handle1, "write")
            if size == 0:
                return StreamErrorCode.OK
            data = ctypes.string_at(pv, size)
            written = self._write_to_sink(offset, data)
            if bytes_written:
                bytes_written[0] = max(0, min(written, size))
            if written != size:
                return self._fail(_partial_write(offset, written, size).record, error_info)
            return StreamErrorCode.OK
        except CziError as e:
            return self._fail(e.record, error_info)
        except Exception as e:
            return self._fail(
                unexpected_failure(ErrorKind.IO, f"write at offset {offset} failed: {e}"),
                error_info,
            )


def _partial_write(offset: int, written: int, expected: int) -> CziError:
    return make_error(
        ErrorKind.IO,
        f"partial write at offset {offset}: {written} of {expected} bytes",
        "write",
        code=StreamErrorCode.UNSPECIFIED,
    )


class OutputStream(NativeStream):
    """A libCZI output stream.

    Usage:
        sink = MemoryBuffer()
        with OutputStream.from_sink(sink) as stream:
            with CziWriter.create(stream) as writer:
                writer.add_attachment("notes", b"...")
    """

    @classmethod
    def from_sink(
        cls, sink: object, *, library: NativeLibrary | None = None
    ) -> OutputStream:
        """Create a stream whose writes go to ``sink``.

        Args:
            sink: An object with ``write_at`` or a seekable binary file.
            library: Native library; defaults to the process-wide one.
        """
        library = library or get_library()
        adapter = OutputStreamAdapter(as_sink(sink))
        try:
            handle = OwnedHandle.acquire(
                library,
                HandleKind.OUTPUT_STREAM,
                "create output stream",
                lambda out: library.create_output_stream_from_external(adapter.struct, out),
                stream_error=adapter.take_error,
            )
        except CziError:
            adapter.detach()
            raise
        logger.debug("Created external output stream (adapter %d)", adapter.token)
        return cls(handle, adapter)

    @classmethod
    def for_path(
        cls,
        path: Path | str,
        *,
        overwrite: bool = False,
        library: NativeLibrary | None = None,
    ) -> OutputStream:
        """Create a file using libCZI's own file stream.

        Raises:
            CziIOError: If the file exists and ``overwrite`` is False, or it
                cannot be created.
        """
        library = library or get_library()
        path = Path(path)
        if path.exists() and not overwrite:
            raise make_error(
                ErrorKind.IO,
                "file exists and overwrite is disabled",
                "create output stream",
                code=NativeStatus.INVALID_ARGUMENT,
                path=path,
            )
        encoded = str(path).encode("utf-8")
        handle = OwnedHandle.acquire(
            library,
            HandleKind.OUTPUT_STREAM,
            f"create output stream {path}",
            lambda out: library.create_output_stream_for_file(encoded, overwrite, out),
            unspecified=ErrorKind.IO,
        )
        return cls(handle, None)

    def flush(self) -> None:
        """Flush the caller's sink. Native file streams flush on release."""
        if self.closed:
            raise make_error(
                ErrorKind.ALREADY_CLOSED,
                "stream has been closed",
                "flush output stream",
                code=NativeStatus.INVALID_HANDLE,
            )
        if isinstance(self._adapter, OutputStreamAdapter):
            self._adapter.flush()
