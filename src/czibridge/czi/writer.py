"""CZI writer wrapping libCZIApi writer objects.

A CziWriter holds its output stream for its whole life. ``finalize()``
writes the directories through the native writer, flushes the caller's
sink, and then releases the writer before letting go of the stream.
"""

from __future__ import annotations

import ctypes
import json
import logging
import os
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from czibridge.config import settings
from czibridge.czi.types import CompressionMode, SubBlockDescriptor
from czibridge.native.exceptions import CziError, make_error, raise_for_status
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.interop import (
    AddAttachmentInfoInterop,
    AddSubBlockInfoInterop,
    WriteMetadataInfoInterop,
)
from czibridge.native.library import NativeLibrary, get_library
from czibridge.native.status import ErrorKind, NativeStatus
from czibridge.streams.outbound import OutputStream

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_NAME_BYTES = 79
MAX_CONTENT_TYPE_BYTES = 8
_U32_MAX = 2**32 - 1


class WriterOptions(BaseModel):
    """Container-level parameters for a new CZI document.

    Reserved sizes of 0 leave the choice to libCZI. ``allow_duplicate_subblocks``
    is a writer-creation option; everything else is passed when the writer
    is bound to its stream.
    """

    file_guid: uuid.UUID | None = Field(
        default=None, description="Document GUID; libCZI generates one if omitted"
    )
    reserved_size_subblock_directory: int = Field(
        default_factory=lambda: settings.WRITER_RESERVED_SUBBLOCK_DIRECTORY,
        ge=0,
        description="Bytes reserved for the sub-block directory",
    )
    reserved_size_attachments_directory: int = Field(
        default_factory=lambda: settings.WRITER_RESERVED_ATTACHMENT_DIRECTORY,
        ge=0,
        description="Bytes reserved for the attachment directory",
    )
    reserved_size_metadata_segment: int = Field(
        default_factory=lambda: settings.WRITER_RESERVED_METADATA,
        ge=0,
        description="Bytes reserved for the metadata segment",
    )
    minimum_m_index: int | None = Field(default=None, description="Smallest M-index used")
    maximum_m_index: int | None = Field(default=None, description="Largest M-index used")
    allow_duplicate_subblocks: bool = Field(
        default=False, description="Accept sub-blocks with identical coordinates"
    )

    @model_validator(mode="after")
    def _check_m_index_range(self) -> WriterOptions:
        if (
            self.minimum_m_index is not None
            and self.maximum_m_index is not None
            and self.minimum_m_index > self.maximum_m_index
        ):
            raise ValueError(
                f"minimum_m_index {self.minimum_m_index} exceeds "
                f"maximum_m_index {self.maximum_m_index}"
            )
        return self

    def creation_options_json(self) -> str:
        return json.dumps({"allow_duplicate_subblocks": self.allow_duplicate_subblocks})

    def parameters_json(self) -> str:
        data = self.model_dump(
            mode="json", exclude={"allow_duplicate_subblocks"}, exclude_none=True
        )
        data = {k: v for k, v in data.items() if not (k.startswith("reserved_") and v == 0)}
        return json.dumps(data)


def _c_buffer(data: bytes) -> ctypes.Array[ctypes.c_char] | None:
    return ctypes.create_string_buffer(data, len(data)) if data else None


def _address(buffer: ctypes.Array[ctypes.c_char] | None) -> int | None:
    return ctypes.addressof(buffer) if buffer is not None else None


def _fixed_bytes(value: str, limit: int, field: str, operation: str) -> bytes:
    encoded = value.encode("utf-8")
    if len(encoded) > limit:
        raise make_error(
            ErrorKind.INVALID_ARGUMENT,
            f"{field} is {len(encoded)} bytes in UTF-8; at most {limit} are allowed",
            operation,
        )
    return encoded


class CziWriter:
    """Writer for CZI documents.

    Usage:
        sink = MemoryBuffer()
        with CziWriter.create(sink) as writer:
            writer.add_sub_block(descriptor, pixels)
            writer.add_attachment("Label", png_bytes, content_type="PNG")
        data = sink.getvalue()

    Leaving the ``with`` block finalizes the document. Any operation after
    :meth:`finalize` raises :class:`~czibridge.native.exceptions.AlreadyClosedError`.
    """

    def __init__(
        self,
        handle: OwnedHandle,
        stream: OutputStream,
        *,
        owns_stream: bool = False,
        path: Path | None = None,
        options: WriterOptions | None = None,
    ) -> None:
        if handle.kind is not HandleKind.WRITER:
            raise ValueError(f"expected a writer handle, got {handle.kind.value}")
        self._handle = handle
        self._stream = stream
        self._owns_stream = owns_stream
        self._path = path
        self._options = options or WriterOptions()
        self._finalized = False
        self._sub_blocks = 0
        self._attachments = 0

    @classmethod
    def create(
        cls,
        target: OutputStream | str | os.PathLike[str] | object,
        options: WriterOptions | None = None,
        *,
        overwrite: bool = False,
        library: NativeLibrary | None = None,
    ) -> CziWriter:
        """Start a new CZI document.

        Args:
            target: An :class:`OutputStream`, a filesystem path, or anything
                :func:`~czibridge.streams.sources.as_sink` accepts.
            options: Container-level parameters; defaults come from settings.
            overwrite: Replace an existing file when ``target`` is a path.
            library: Native library; defaults to the stream's library or the
                process-wide one.

        Raises:
            CziIOError: If the target cannot be created or written.
        """
        options = options or WriterOptions()
        path: Path | None = None
        if isinstance(target, OutputStream):
            stream = target
            owns_stream = False
            library = library or stream.library
        else:
            library = library or get_library()
            if isinstance(target, str | os.PathLike):
                path = Path(target)
                stream = OutputStream.for_path(path, overwrite=overwrite, library=library)
            else:
                stream = OutputStream.from_sink(target, library=library)
            owns_stream = True

        try:
            stream.attach("writer")
        except BaseException:
            if owns_stream:
                stream.close()
            raise

        creation_options = options.creation_options_json().encode("utf-8")
        try:
            handle = OwnedHandle.acquire(
                library,
                HandleKind.WRITER,
                "create writer",
                lambda out: library.create_writer(out, creation_options),
            )
        except BaseException:
            cls._release_stream(stream, owns_stream)
            raise

        parameters = options.parameters_json().encode("utf-8")
        try:
            with stream.handle.borrow() as stream_address, handle.borrow() as writer_address:
                status = library.writer_create(writer_address, stream_address, parameters)
            raise_for_status(
                status,
                "bind writer to stream",
                lookup=library.describe_status,
                stream_error=stream.take_error(),
                path=path,
            )
        except BaseException:
            handle.release()
            cls._release_stream(stream, owns_stream)
            raise

        logger.debug("Created CZI writer%s", f" for {path}" if path else "")
        return cls(handle, stream, owns_stream=owns_stream, path=path, options=options)

    @staticmethod
    def _release_stream(stream: OutputStream, owns_stream: bool) -> None:
        stream.detach()
        if owns_stream:
            stream.close()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def options(self) -> WriterOptions:
        return self._options

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def closed(self) -> bool:
        return self._handle.closed

    @property
    def sub_blocks_written(self) -> int:
        return self._sub_blocks

    @property
    def attachments_written(self) -> int:
        return self._attachments

    def _ensure_writable(self, operation: str) -> None:
        if self._finalized or self._handle.closed:
            raise make_error(
                ErrorKind.ALREADY_CLOSED,
                "writer has been finalized",
                operation,
                code=NativeStatus.INVALID_HANDLE,
                path=self._path,
            )

    def _check(self, status: int, operation: str) -> None:
        raise_for_status(
            status,
            operation,
            lookup=self._handle.library.describe_status,
            stream_error=self._stream.take_error(),
            path=self._path,
        )

    def add_sub_block(
        self,
        descriptor: SubBlockDescriptor,
        data: bytes | bytearray | memoryview,
        *,
        stride: int | None = None,
        metadata: str | None = None,
    ) -> None:
        """Append one sub-block.

        For uncompressed payloads ``data`` must be exactly
        ``stride * physical_size.h`` bytes, where ``stride`` defaults to
        ``physical_size.w * pixel_type.bytes_per_pixel``. Compressed payloads
        are passed through and only need to be non-empty.

        Raises:
            AlreadyClosedError: If the writer has been finalized.
            InvalidArgumentError: If the declared and actual lengths differ
                or the descriptor is malformed.
        """
        operation = f"add sub-block {descriptor.coordinate}"
        self._ensure_writable(operation)
        payload = bytes(data)
        size = descriptor.physical_size
        if size.w <= 0 or size.h <= 0:
            raise make_error(
                ErrorKind.INVALID_ARGUMENT,
                f"physical size {size.w}x{size.h} must be positive",
                operation,
            )

        if descriptor.compression is CompressionMode.UNCOMPRESSED:
            row_stride = stride if stride is not None else descriptor.default_stride()
            if row_stride < descriptor.default_stride():
                raise make_error(
                    ErrorKind.INVALID_ARGUMENT,
                    f"stride {row_stride} is smaller than a row of "
                    f"{descriptor.default_stride()} bytes",
                    operation,
                )
            expected = descriptor.uncompressed_length(row_stride)
            if len(payload) != expected:
                raise make_error(
                    ErrorKind.INVALID_ARGUMENT,
                    f"descriptor declares {expected} bytes but buffer holds {len(payload)}",
                    operation,
                )
        else:
            row_stride = 0
            if not payload:
                raise make_error(
                    ErrorKind.INVALID_ARGUMENT, "compressed payload is empty", operation
                )

        metadata_bytes = metadata.encode("utf-8") if metadata else b""
        if len(payload) > _U32_MAX or len(metadata_bytes) > _U32_MAX:
            raise make_error(ErrorKind.INVALID_ARGUMENT, "payload exceeds 4 GiB", operation)

        data_buffer = _c_buffer(payload)
        metadata_buffer = _c_buffer(metadata_bytes)
        rect = descriptor.logical_rect
        info = AddSubBlockInfoInterop(
            coordinate=descriptor.coordinate.to_interop(),
            m_index_valid=1 if descriptor.m_index is not None else 0,
            m_index=descriptor.m_index or 0,
            x=rect.x,
            y=rect.y,
            logical_width=rect.w,
            logical_height=rect.h,
            physical_width=size.w,
            physical_height=size.h,
            pixel_type=int(descriptor.pixel_type),
            compression_mode_raw=descriptor.raw_compression,
            size_data=len(payload),
            data=_address(data_buffer),
            stride=row_stride,
            size_metadata=len(metadata_bytes),
            metadata=_address(metadata_buffer),
            size_attachment=0,
            attachment=None,
        )
        with self._handle.borrow() as address:
            status = self._handle.library.writer_add_sub_block(address, info)
        self._check(status, operation)
        self._sub_blocks += 1

    def add_attachment(
        self,
        name: str,
        data: bytes | bytearray | memoryview,
        *,
        content_type: str = "",
        guid: uuid.UUID | None = None,
    ) -> uuid.UUID:
        """Append an attachment and return its GUID.

        Raises:
            AlreadyClosedError: If the writer has been finalized.
            InvalidArgumentError: If the name exceeds 79 or the content type
                8 UTF-8 bytes.
        """
        operation = f"add attachment {name!r}"
        self._ensure_writable(operation)
        if not name:
            raise make_error(ErrorKind.INVALID_ARGUMENT, "attachment name is empty", operation)
        name_bytes = _fixed_bytes(name, MAX_ATTACHMENT_NAME_BYTES, "name", operation)
        type_bytes = _fixed_bytes(content_type, MAX_CONTENT_TYPE_BYTES, "content type", operation)
        payload = bytes(data)
        if len(payload) > _U32_MAX:
            raise make_error(ErrorKind.INVALID_ARGUMENT, "attachment exceeds 4 GiB", operation)

        guid = guid or uuid.uuid4()
        buffer = _c_buffer(payload)
        info = AddAttachmentInfoInterop()
        info.guid[:] = list(guid.bytes_le)
        info.contentFileType[: len(type_bytes)] = list(type_bytes)
        info.name[: len(name_bytes)] = list(name_bytes)
        info.size_attachment_data = len(payload)
        info.attachment_data = _address(buffer)
        with self._handle.borrow() as address:
            status = self._handle.library.writer_add_attachment(address, info)
        self._check(status, operation)
        self._attachments += 1
        return guid

    def write_metadata(self, xml: str) -> None:
        """Write the document's XML metadata segment.

        Raises:
            AlreadyClosedError: If the writer has been finalized.
        """
        operation = "write metadata"
        self._ensure_writable(operation)
        encoded = xml.encode("utf-8")
        if len(encoded) > _U32_MAX:
            raise make_error(ErrorKind.INVALID_ARGUMENT, "metadata exceeds 4 GiB", operation)
        buffer = _c_buffer(encoded)
        info = WriteMetadataInfoInterop(size_metadata=len(encoded), metadata=_address(buffer))
        with self._handle.borrow() as address:
            status = self._handle.library.writer_write_metadata(address, info)
        self._check(status, operation)

    def finalize(self) -> None:
        """Write the directories, flush the sink and release the writer.

        Calling it again is a no-op. The writer and its stream are released
        even when finalization fails.

        Raises:
            CziError: If the native writer or the sink fails.
        """
        if self._finalized:
            return
        self._finalized = True
        try:
            with self._handle.borrow() as address:
                status = self._handle.library.writer_close(address)
            self._check(status, "finalize writer")
            self._stream.flush()
            logger.debug(
                "Finalized CZI writer: %d sub-block(s), %d attachment(s)",
                self._sub_blocks,
                self._attachments,
            )
        finally:
            self._release()

    def _release(self) -> None:
        try:
            self._handle.release()
        finally:
            self._release_stream(self._stream, self._owns_stream)

    def close(self) -> None:
        """Finalize if needed; errors propagate."""
        self.finalize()

    def __enter__(self) -> CziWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.finalize()
            return
        try:
            self.finalize()
        except CziError as e:
            logger.error("Finalizing writer failed while handling %s: %s", exc_type.__name__, e)

    def __del__(self) -> None:
        try:
            handle = getattr(self, "_handle", None)
            if handle is not None and not handle.closed:
                logger.error(
                    "CziWriter was neither finalized nor closed; releasing without finalizing"
                )
                self._finalized = True
                self._release()
        except Exception:
            logger.exception("Failed to release CziWriter in finalizer")

    def __repr__(self) -> str:
        state = "finalized" if self._finalized else "open"
        target = str(self._path) if self._path else "stream"
        return f"CziWriter({target}, {state})"
