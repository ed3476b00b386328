"""CZI reader wrapping libCZIApi reader objects.

This module provides the CziReader class. It owns one native reader handle
and holds (not borrows) the input stream it reads from, so the stream is
released only after the reader.
"""

from __future__ import annotations

import ctypes
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from czibridge.czi.segments import (
    Attachment,
    MetadataSegment,
    SubBlock,
    attachment_info_from_interop,
)
from czibridge.czi.types import (
    AttachmentInfo,
    Bitmap,
    Dimension,
    FileHeaderInfo,
    PyramidStatistics,
    SubBlockDescriptor,
    SubBlockStatistics,
    SubBlockStatisticsEx,
)
from czibridge.native.exceptions import make_error, raise_for_status
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.interop import (
    AttachmentInfoInterop,
    FileHeaderInfoInterop,
    ReaderOpenInfoInterop,
    SubBlockInfoInterop,
    SubBlockStatisticsInterop,
    sub_block_statistics_ex_type,
)
from czibridge.native.library import NativeLibrary, get_library, take_native_string
from czibridge.native.status import ErrorKind, NativeStatus
from czibridge.streams.inbound import InputStream

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


class CziReader:
    """Reader for CZI documents.

    Usage:
        with CziReader.open("/path/to/image.czi") as reader:
            for descriptor in reader.iter_sub_block_descriptors():
                print(descriptor.coordinate, descriptor.logical_rect)
            bitmap = reader.decode_sub_block(0)

    A reader opened over an :class:`InputStream` the caller created leaves
    that stream open on close; a stream the reader created itself is closed
    with it.
    """

    def __init__(
        self,
        handle: OwnedHandle,
        stream: InputStream,
        *,
        owns_stream: bool = False,
        path: Path | None = None,
    ) -> None:
        if handle.kind is not HandleKind.READER:
            raise ValueError(f"expected a reader handle, got {handle.kind.value}")
        self._handle = handle
        self._stream = stream
        self._owns_stream = owns_stream
        self._path = path
        self._statistics: SubBlockStatistics | None = None
        self._file_header: FileHeaderInfo | None = None
        self._attachment_count: int | None = None

    @classmethod
    def open(
        cls,
        source: InputStream | str | os.PathLike[str] | object,
        *,
        library: NativeLibrary | None = None,
    ) -> CziReader:
        """Open a CZI document.

        Args:
            source: An :class:`InputStream`, a filesystem path, or anything
                :func:`~czibridge.streams.sources.as_source` accepts.
            library: Native library; defaults to the stream's library or the
                process-wide one.

        Raises:
            CziIOError: If the source cannot be read.
            CorruptDataError: If the data is not a valid CZI document.
        """
        path: Path | None = None
        if isinstance(source, InputStream):
            stream = source
            owns_stream = False
            library = library or stream.library
        else:
            library = library or get_library()
            if isinstance(source, str | os.PathLike):
                path = Path(source)
                stream = InputStream.from_path(path, library=library)
            else:
                stream = InputStream.from_source(source, library=library)
            owns_stream = True

        try:
            stream.attach("reader")
        except BaseException:
            if owns_stream:
                stream.close()
            raise

        try:
            handle = OwnedHandle.acquire(
                library, HandleKind.READER, "create reader", library.create_reader
            )
        except BaseException:
            cls._release_stream(stream, owns_stream)
            raise

        try:
            with stream.handle.borrow() as stream_address, handle.borrow() as reader_address:
                status = library.reader_open(
                    reader_address, ReaderOpenInfoInterop(streamObject=stream_address)
                )
            raise_for_status(
                status,
                "open reader",
                lookup=library.describe_status,
                stream_error=stream.take_error(),
                unspecified=ErrorKind.CORRUPT,
                path=path,
            )
        except BaseException:
            handle.release()
            cls._release_stream(stream, owns_stream)
            raise

        logger.debug("Opened CZI reader%s", f" for {path}" if path else "")
        return cls(handle, stream, owns_stream=owns_stream, path=path)

    @staticmethod
    def _release_stream(stream: InputStream, owns_stream: bool) -> None:
        stream.detach()
        if owns_stream:
            stream.close()

    @property
    def path(self) -> Path | None:
        """Path of the document when opened from a path."""
        return self._path

    @property
    def stream(self) -> InputStream:
        return self._stream

    @property
    def closed(self) -> bool:
        return self._handle.closed

    def _ensure_open(self, operation: str) -> None:
        if self._handle.closed:
            raise make_error(
                ErrorKind.ALREADY_CLOSED,
                "reader is closed",
                operation,
                code=NativeStatus.INVALID_HANDLE,
                path=self._path,
            )

    def _check(
        self,
        status: int,
        operation: str,
        *,
        unspecified: ErrorKind = ErrorKind.NATIVE_INTERNAL,
    ) -> None:
        raise_for_status(
            status,
            operation,
            lookup=self._handle.library.describe_status,
            stream_error=self._stream.take_error(),
            unspecified=unspecified,
            path=self._path,
        )

    def _check_index(self, index: int, count: int, what: str, operation: str) -> int:
        if isinstance(index, bool) or not isinstance(index, int):
            raise make_error(
                ErrorKind.INVALID_ARGUMENT,
                f"{what} index must be an int, got {type(index).__name__}",
                operation,
                path=self._path,
            )
        if not 0 <= index < count:
            raise make_error(
                ErrorKind.INVALID_ARGUMENT,
                f"{what} index {index} out of range [0, {count})",
                operation,
                code=NativeStatus.INDEX_OUT_OF_RANGE,
                path=self._path,
            )
        return index

    def file_header(self) -> FileHeaderInfo:
        """File GUID and format version from the file header.

        Note:
            Cached after the first call.
        """
        self._ensure_open("get file header")
        if self._file_header is None:
            out = FileHeaderInfoInterop()
            with self._handle.borrow() as address:
                status = self._handle.library.reader_get_file_header_info(address, out)
            self._check(status, "get file header")
            self._file_header = FileHeaderInfo.from_interop(out)
        return self._file_header

    def statistics(self) -> SubBlockStatistics:
        """Sub-block count, M-index range, bounding boxes and dimension bounds.

        Note:
            Cached after the first call.
        """
        self._ensure_open("get statistics")
        if self._statistics is None:
            out = SubBlockStatisticsInterop()
            with self._handle.borrow() as address:
                status = self._handle.library.reader_get_statistics_simple(address, out)
            self._check(status, "get statistics")
            self._statistics = SubBlockStatistics.from_interop(out)
        return self._statistics

    def statistics_ex(self) -> SubBlockStatisticsEx:
        """:meth:`statistics` plus the bounding boxes of every scene.

        The per-scene array is sized from the S bounds first; if libCZI
        reports more scenes than fit, the call is repeated once with the
        reported count.
        """
        operation = "get extended statistics"
        self._ensure_open(operation)
        scenes = self.statistics().bounds(Dimension.S)
        capacity = max(scenes[1] if scenes else 0, 1)
        library = self._handle.library
        for _ in range(2):
            out = sub_block_statistics_ex_type(capacity)()
            available = ctypes.c_int32(capacity)
            with self._handle.borrow() as address:
                status = library.reader_get_statistics_ex(address, out, available)
            self._check(status, operation)
            if available.value <= capacity:
                count = min(out.number_of_per_scenes_bounding_boxes, available.value)
                return SubBlockStatisticsEx.from_interop(out, max(count, 0))
            capacity = available.value
        raise make_error(
            ErrorKind.NATIVE_INTERNAL,
            f"scene count kept growing past {capacity}",
            operation,
            code=NativeStatus.UNSPECIFIED_ERROR,
            path=self._path,
        )

    def pyramid_statistics(self) -> PyramidStatistics:
        """Sub-block counts per pyramid layer and scene.

        Raises:
            NativeInternalError: If libCZI returns a malformed report.
        """
        operation = "get pyramid statistics"
        self._ensure_open(operation)
        library = self._handle.library
        out = ctypes.c_void_p()
        with self._handle.borrow() as address:
            status = library.reader_get_pyramid_statistics(address, out)
        self._check(status, operation)
        raw = take_native_string(library, out.value)
        try:
            return PyramidStatistics.model_validate_json(raw)
        except ValidationError as e:
            raise make_error(
                ErrorKind.NATIVE_INTERNAL,
                f"malformed pyramid statistics: {e.error_count()} error(s)",
                operation,
                code=NativeStatus.UNSPECIFIED_ERROR,
                path=self._path,
            ) from e

    def sub_block_count(self) -> int:
        return self.statistics().sub_block_count

    def sub_block_descriptor(self, index: int) -> SubBlockDescriptor:
        """Describe sub-block ``index`` from the directory, without reading it.

        Raises:
            InvalidArgumentError: If ``index`` is out of range.
        """
        operation = f"get sub-block info {index}"
        index = self._check_index(index, self.sub_block_count(), "sub-block", operation)
        out = SubBlockInfoInterop()
        with self._handle.borrow() as address:
            status = self._handle.library.reader_try_get_sub_block_info(address, index, out)
        self._check(status, operation)
        return SubBlockDescriptor.from_interop(out, index, operation)

    def iter_sub_block_descriptors(self) -> Iterator[SubBlockDescriptor]:
        """Yield the descriptor of every sub-block in index order."""
        for index in range(self.sub_block_count()):
            yield self.sub_block_descriptor(index)

    def read_sub_block(self, index: int) -> SubBlock:
        """Read sub-block ``index`` into an owned :class:`SubBlock`.

        Raises:
            InvalidArgumentError: If ``index`` is out of range.
        """
        operation = f"read sub-block {index}"
        index = self._check_index(index, self.sub_block_count(), "sub-block", operation)
        library = self._handle.library
        with self._handle.borrow() as address:
            handle = OwnedHandle.acquire(
                library,
                HandleKind.SUB_BLOCK,
                operation,
                lambda out: library.reader_read_sub_block(address, index, out),
                missing=ErrorKind.INVALID_ARGUMENT,
                unspecified=ErrorKind.CORRUPT,
                stream_error=self._stream.take_error,
            )
        return SubBlock(handle, index)

    def decode_sub_block(self, index: int) -> Bitmap:
        """Read and decode sub-block ``index`` into a host-owned bitmap.

        Raises:
            InvalidArgumentError: If ``index`` is out of range.
            UnsupportedError: If its compression and pixel type cannot be decoded.
            CorruptDataError: If the native decoder rejects the payload.
        """
        with self.read_sub_block(index) as sub_block:
            return sub_block.decode()

    def metadata(self) -> MetadataSegment:
        """The document's XML metadata segment as an owned wrapper."""
        library = self._handle.library
        with self._handle.borrow() as address:
            handle = OwnedHandle.acquire(
                library,
                HandleKind.METADATA_SEGMENT,
                "get metadata segment",
                lambda out: library.reader_get_metadata_segment(address, out),
                missing=ErrorKind.CORRUPT,
                stream_error=self._stream.take_error,
            )
        return MetadataSegment(handle)

    def metadata_xml(self) -> str:
        """Copy out the XML metadata and release the segment."""
        with self.metadata() as segment:
            return segment.as_text()

    def attachment_count(self) -> int:
        self._ensure_open("get attachment count")
        if self._attachment_count is None:
            count = ctypes.c_int32(0)
            with self._handle.borrow() as address:
                status = self._handle.library.reader_get_attachment_count(address, count)
            self._check(status, "get attachment count")
            self._attachment_count = count.value
        return self._attachment_count

    def attachment_info(self, index: int) -> AttachmentInfo:
        """Directory entry of attachment ``index``, without reading its payload.

        Raises:
            InvalidArgumentError: If ``index`` is out of range.
        """
        operation = f"get attachment info {index}"
        index = self._check_index(index, self.attachment_count(), "attachment", operation)
        library = self._handle.library
        out = AttachmentInfoInterop()
        with self._handle.borrow() as address:
            status = library.reader_get_attachment_info(address, index, out)
        self._check(status, operation)
        return attachment_info_from_interop(library, out, index)

    def iter_attachment_infos(self) -> Iterator[AttachmentInfo]:
        for index in range(self.attachment_count()):
            yield self.attachment_info(index)

    def attachment(self, index: int) -> Attachment:
        """Read attachment ``index`` into an owned :class:`Attachment`.

        Raises:
            InvalidArgumentError: If ``index`` is out of range.
        """
        operation = f"read attachment {index}"
        index = self._check_index(index, self.attachment_count(), "attachment", operation)
        library = self._handle.library
        with self._handle.borrow() as address:
            handle = OwnedHandle.acquire(
                library,
                HandleKind.ATTACHMENT,
                operation,
                lambda out: library.reader_read_attachment(address, index, out),
                missing=ErrorKind.INVALID_ARGUMENT,
                unspecified=ErrorKind.CORRUPT,
                stream_error=self._stream.take_error,
            )
        return Attachment(handle, index)

    def close(self) -> None:
        """Release the reader, then let go of its stream.

        Safe to call more than once.
        """
        if self._handle.closed:
            return
        try:
            self._handle.release()
        finally:
            self._release_stream(self._stream, self._owns_stream)
            logger.debug("Closed CZI reader%s", f" for {self._path}" if self._path else "")

    def __enter__(self) -> CziReader:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            handle = getattr(self, "_handle", None)
            if handle is not None and not handle.closed:
                logger.warning("CziReader was not closed explicitly")
                self.close()
        except Exception:
            logger.exception("Failed to close CziReader in finalizer")

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        target = str(self._path) if self._path else "stream"
        return f"CziReader({target}, {state})"
