"""Owned wrappers over sub-block, metadata-segment and attachment objects.

Payloads are always copied into host memory before the native object that
owns them is released; nothing returned here points into native memory.
"""

from __future__ import annotations

import ctypes
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from czibridge.czi.types import AttachmentInfo, Bitmap, SubBlockDescriptor
from czibridge.native.exceptions import make_error, raise_for_status
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.interop import (
    RAW_DATA_METADATA,
    RAW_DATA_PIXELS,
    AttachmentInfoInterop,
    BitmapInfoInterop,
    MetadataAsXmlInterop,
    SubBlockInfoInterop,
)
from czibridge.native.library import NativeLibrary, take_native_string
from czibridge.native.status import ErrorKind, NativeStatus

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


def copy_sized_payload(
    library: NativeLibrary,
    operation: str,
    call: Callable[[ctypes.c_uint64, ctypes.Array[ctypes.c_char] | None], int],
) -> bytes:
    """Copy a payload using libCZI's size-query-then-copy protocol.

    The first call passes no buffer and learns the size; the second copies
    at most that many bytes.
    """
    size = ctypes.c_uint64(0)
    raise_for_status(call(size, None), operation, lookup=library.describe_status)
    expected = size.value
    if expected == 0:
        return b""
    buffer = ctypes.create_string_buffer(expected)
    size.value = expected
    raise_for_status(call(size, buffer), operation, lookup=library.describe_status)
    return buffer.raw[: min(expected, size.value)]


def attachment_info_from_interop(
    library: NativeLibrary, interop: AttachmentInfoInterop, index: int | None
) -> AttachmentInfo:
    overflow = None
    if interop.name_overflow and interop.name_in_case_of_overflow:
        overflow = take_native_string(library, interop.name_in_case_of_overflow).decode(
            "utf-8", errors="replace"
        )
    elif interop.name_in_case_of_overflow:
        library.free(interop.name_in_case_of_overflow)
    return AttachmentInfo.from_interop(interop, index=index, overflow_name=overflow)


class _OwnedSegment:
    _handle: OwnedHandle

    @property
    def closed(self) -> bool:
        return self._handle.closed

    @property
    def library(self) -> NativeLibrary:
        return self._handle.library

    def close(self) -> None:
        self._handle.release()

    def __enter__(self):  # noqa: ANN204
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class SubBlock(_OwnedSegment):
    """A sub-block read from a document, holding its payload natively.

    Usage:
        with reader.read_sub_block(0) as sub_block:
            bitmap = sub_block.decode()
    """

    def __init__(self, handle: OwnedHandle, index: int | None = None) -> None:
        if handle.kind is not HandleKind.SUB_BLOCK:
            raise ValueError(f"expected a sub_block handle, got {handle.kind.value}")
        self._handle = handle
        self._index = index

    @property
    def index(self) -> int | None:
        return self._index

    def info(self) -> SubBlockDescriptor:
        """Descriptor of this sub-block, with ``materialized`` set."""
        operation = "get sub-block info"
        out = SubBlockInfoInterop()
        with self._handle.borrow() as address:
            status = self.library.sub_block_get_info(address, out)
        raise_for_status(status, operation, lookup=self.library.describe_status)
        descriptor = SubBlockDescriptor.from_interop(out, self._index, operation)
        return descriptor.with_materialized(True)

    def raw_data(self) -> bytes:
        """The stored pixel payload, still compressed if it was compressed."""
        return self._raw(RAW_DATA_PIXELS, "get sub-block data")

    def raw_metadata(self) -> bytes:
        """The sub-block's own XML metadata (UTF-8), possibly empty."""
        return self._raw(RAW_DATA_METADATA, "get sub-block metadata")

    def _raw(self, kind: int, operation: str) -> bytes:
        with self._handle.borrow() as address:
            return copy_sized_payload(
                self.library,
                operation,
                lambda size, buffer: self.library.sub_block_get_raw_data(
                    address, kind, size, buffer
                ),
            )

    def decode(self) -> Bitmap:
        """Decode the payload into a host-owned bitmap.

        Raises:
            UnsupportedError: If libCZI cannot decode this compression mode,
                or cannot decode it to the sub-block's pixel type.
            CorruptDataError: If the native decoder rejects the payload.
        """
        descriptor = self.info()
        compression = descriptor.compression
        if not compression.decodable:
            raise make_error(
                ErrorKind.UNSUPPORTED,
                f"compression {descriptor.raw_compression} ({compression.name}) cannot be decoded",
                "decode sub-block",
            )
        if not compression.can_decode(descriptor.pixel_type):
            raise make_error(
                ErrorKind.UNSUPPORTED,
                f"{compression.name} payloads cannot be decoded to {descriptor.pixel_type.name}",
                "decode sub-block",
            )
        library = self.library
        with self._handle.borrow() as address:
            bitmap = OwnedHandle.acquire(
                library,
                HandleKind.BITMAP,
                "decode sub-block",
                lambda out: library.sub_block_create_bitmap(address, out),
                unspecified=ErrorKind.CORRUPT,
            )
        with bitmap:
            return _copy_bitmap(library, bitmap)

    def __repr__(self) -> str:
        return f"SubBlock(index={self._index}, closed={self.closed})"


def _copy_bitmap(library: NativeLibrary, bitmap: OwnedHandle) -> Bitmap:
    operation = "copy bitmap"
    info = BitmapInfoInterop()
    with bitmap.borrow() as address:
        raise_for_status(
            library.bitmap_get_info(address, info), operation, lookup=library.describe_status
        )
        pixel_type, stride = Bitmap.layout_for(info, operation)
        buffer = ctypes.create_string_buffer(stride * info.height)
        if info.height and stride:
            raise_for_status(
                library.bitmap_copy_to(
                    address, info.width, info.height, int(pixel_type), stride, buffer
                ),
                operation,
                lookup=library.describe_status,
            )
    return Bitmap(
        width=info.width,
        height=info.height,
        pixel_type=pixel_type,
        stride=stride,
        data=buffer.raw,
    )


class MetadataSegment(_OwnedSegment):
    """The document's XML metadata segment.

    The XML is copied out on the first :meth:`as_text` call, after which the
    native segment is released; later calls return the same copy.
    """

    def __init__(self, handle: OwnedHandle) -> None:
        if handle.kind is not HandleKind.METADATA_SEGMENT:
            raise ValueError(f"expected a metadata_segment handle, got {handle.kind.value}")
        self._handle = handle
        self._text: str | None = None

    def as_text(self) -> str:
        """The XML as text.

        Raises:
            CorruptDataError: If the stored XML is not valid UTF-8.
        """
        if self._text is not None:
            return self._text
        operation = "get metadata xml"
        library = self.library
        out = MetadataAsXmlInterop()
        with self._handle.borrow() as address:
            status = library.metadata_segment_get_xml(address, out)
        raise_for_status(status, operation, lookup=library.describe_status)
        try:
            raw = take_native_string(library, out.data, out.size)
            self._text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise make_error(
                ErrorKind.CORRUPT,
                f"metadata is not valid UTF-8 (byte {e.start})",
                operation,
                code=NativeStatus.UNSPECIFIED_ERROR,
            ) from None
        finally:
            self._handle.release()
        return self._text


class Attachment(_OwnedSegment):
    """An attachment read from a document.

    :meth:`raw_bytes` copies the payload once and releases the native
    object; :meth:`info` stays available afterwards.
    """

    def __init__(self, handle: OwnedHandle, index: int | None = None) -> None:
        if handle.kind is not HandleKind.ATTACHMENT:
            raise ValueError(f"expected an attachment handle, got {handle.kind.value}")
        self._handle = handle
        self._index = index
        self._info: AttachmentInfo | None = None
        self._data: bytes | None = None

    def info(self) -> AttachmentInfo:
        if self._info is None:
            out = AttachmentInfoInterop()
            library = self.library
            with self._handle.borrow() as address:
                status = library.attachment_get_info(address, out)
            raise_for_status(status, "get attachment info", lookup=library.describe_status)
            self._info = attachment_info_from_interop(library, out, self._index)
        return self._info

    def raw_bytes(self) -> bytes:
        if self._data is not None:
            return self._data
        self.info()
        library = self.library
        with self._handle.borrow() as address:
            data = copy_sized_payload(
                library,
                "get attachment data",
                lambda size, buffer: library.attachment_get_raw_data(address, size, buffer),
            )
        self._data = data
        self._handle.release()
        logger.debug("Copied %d attachment bytes", len(data))
        return data

    def __repr__(self) -> str:
        name = self._info.name if self._info else "?"
        return f"Attachment(index={self._index}, name={name!r}, closed={self.closed})"

