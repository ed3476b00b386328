"""Input streams: libCZI reading from caller-supplied sources or its own stream classes."""

from __future__ import annotations

import ctypes
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from czibridge.native.exceptions import CziError, make_error
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.interop import (
    ExternalInputStreamStructInterop,
    InputStreamReadFunction,
)
from czibridge.native.library import NativeLibrary, get_library
from czibridge.native.status import ErrorKind, NativeStatus, StreamErrorCode
from czibridge.streams.adapter import NativeStream, StreamAdapter, unexpected_failure
from czibridge.streams.sources import PositionedReader, SizedSource, as_source

logger = logging.getLogger(__name__)


class InputStreamAdapter(StreamAdapter):
    """Serves libCZI read callbacks from a :class:`PositionedReader`.

    Requests are clamped to the source size when the source reports one.
    The native side only asks for offsets the container points at, so an
    offset past the end means corrupt data; a short read is passed through
    as-is and the native side decides what it means.
    """

    def __init__(self, source: PositionedReader) -> None:
        super().__init__(source)
        self._size: int | None = None
        self._size_known = False
        self._read_cb = InputStreamReadFunction(self._on_read)
        self.struct = ExternalInputStreamStructInterop(
            opaque_handle1=self.token,
            opaque_handle2=0,
            read_function=self._read_cb,
            close_function=self._close_cb,
        )

    @property
    def size(self) -> int | None:
        """Total size reported by the source, queried once; None if unknown."""
        with self._lock:
            if not self._size_known:
                self._size_known = True
                source = self._target
                if isinstance(source, SizedSource):
                    try:
                        self._size = int(source.size())
                    except Exception as e:
                        logger.debug("Source size unavailable: %s", e)
            return self._size

    def read_at(self, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes at ``offset`` from the source.

        Raises:
            AlreadyClosedError: If the source has been detached.
            CorruptDataError: If ``offset`` lies beyond the source size.
            CziIOError: If the source fails or over-delivers.
        """
        with self._lock:
            source = self._require_target("read")
            total = self.size
            if total is not None:
                if offset > total:
                    raise make_error(
                        ErrorKind.CORRUPT,
                        f"offset {offset} is beyond the end of a {total}-byte source",
                        "read",
                        code=StreamErrorCode.UNSPECIFIED,
                    )
                length = min(length, total - offset)
            if length == 0:
                return b""
            try:
                data = source.read_at(offset, length)  # type: ignore[attr-defined]
            except OSError as e:
                raise make_error(
                    ErrorKind.IO,
                    f"read of {length} bytes at offset {offset} failed: {e}",
                    "read",
                    code=StreamErrorCode.UNSPECIFIED,
                ) from e
        if len(data) > length:
            raise make_error(
                ErrorKind.IO,
                f"source returned {len(data)} bytes for a {length}-byte request",
                "read",
                code=StreamErrorCode.UNSPECIFIED,
            )
        return bytes(data)

    def _on_read(
        self,
        opaque_handle1: int,
        opaque_handle2: int,
        offset: int,
        pv: int,
        size: int,
        bytes_read,  # noqa: ANN001
        error_info,  # noqa: ANN001
    ) -> int:
        if bytes_read:
            bytes_read[0] = 0
        try:
            self._check_token(opaque_handle1, "read")
            data = self.read_at(offset, size)
            if data:
                ctypes.memmove(pv, data, len(data))
            if bytes_read:
                bytes_read[0] = len(data)
            return StreamErrorCode.OK
        except CziError as e:
            return self._fail(e.record, error_info)
        except Exception as e:
            return self._fail(
                unexpected_failure(ErrorKind.IO, f"read at offset {offset} failed: {e}"),
                error_info,
            )


class InputStream(NativeStream):
    """A libCZI input stream.

    Usage:
        with open("image.czi", "rb") as f, InputStream.from_source(f) as stream:
            reader = CziReader.open(stream)
    """

    @classmethod
    def from_source(
        cls, source: object, *, library: NativeLibrary | None = None
    ) -> InputStream:
        """Create a stream whose reads are served by ``source``.

        Args:
            source: An object with ``read_at``, a bytes-like object or a
                seekable binary file.
            library: Native library; defaults to the process-wide one.
        """
        library = library or get_library()
        adapter = InputStreamAdapter(as_source(source))
        try:
            handle = OwnedHandle.acquire(
                library,
                HandleKind.INPUT_STREAM,
                "create input stream",
                lambda out: library.create_input_stream_from_external(adapter.struct, out),
                stream_error=adapter.take_error,
            )
        except CziError:
            adapter.detach()
            raise
        logger.debug("Created external input stream (adapter %d)", adapter.token)
        return cls(handle, adapter)

    @classmethod
    def from_path(
        cls, path: Path | str, *, library: NativeLibrary | None = None
    ) -> InputStream:
        """Open a file using libCZI's own file stream.

        Raises:
            CziIOError: If the file does not exist or cannot be opened.
        """
        library = library or get_library()
        path = Path(path)
        if not path.is_file():
            raise make_error(
                ErrorKind.IO,
                "file not found",
                "open input stream",
                code=NativeStatus.INVALID_ARGUMENT,
                path=path,
            )
        encoded = str(path).encode("utf-8")
        handle = OwnedHandle.acquire(
            library,
            HandleKind.INPUT_STREAM,
            f"open input stream {path}",
            lambda out: library.create_input_stream_from_file(encoded, out),
            unspecified=ErrorKind.IO,
        )
        return cls(handle, None)

    @classmethod
    def from_class(
        cls,
        class_name: str,
        identifier: str,
        properties: Mapping[str, Any] | None = None,
        *,
        library: NativeLibrary | None = None,
    ) -> InputStream:
        """Create a stream implemented inside libCZI, e.g. its HTTP stream.

        Args:
            class_name: One of the names reported by
                :func:`~czibridge.native.library.stream_classes`.
            identifier: File name or URI the stream class opens.
            properties: Creation properties, passed to libCZI as a JSON object.
            library: Native library; defaults to the process-wide one.

        Raises:
            InvalidArgumentError: If ``properties`` is not JSON-serializable
                or libCZI rejects the class name.
            CziIOError: If the stream cannot be opened.
        """
        library = library or get_library()
        operation = f"create {class_name} input stream"
        try:
            property_bag = json.dumps(dict(properties or {}))
        except (TypeError, ValueError) as e:
            raise make_error(ErrorKind.INVALID_ARGUMENT, f"properties: {e}", operation) from e
        handle = OwnedHandle.acquire(
            library,
            HandleKind.INPUT_STREAM,
            operation,
            lambda out: library.create_input_stream(
                class_name.encode("utf-8"),
                property_bag.encode("utf-8"),
                identifier.encode("utf-8"),
                out,
            ),
            unspecified=ErrorKind.IO,
        )
        logger.debug("Created %s input stream for %s", class_name, identifier)
        return cls(handle, None)
