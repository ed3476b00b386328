"""Binding to the libCZIApi shared library.

:class:`NativeLibrary` is the seam every wrapper calls through. Each method
mirrors exactly one native entry point: handles are passed as Python ints,
in/out structures as ctypes instances, and the raw ``int32`` status is
returned untranslated. :class:`LibCZILibrary` implements it with ctypes;
tests substitute an in-process fake.

The shared library is loaded at most once per process (:func:`get_library`).
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from czibridge.config import settings
from czibridge.native.exceptions import LibraryLoadError, error_for_status
from czibridge.native.interop import (
    AddAttachmentInfoInterop,
    AddSubBlockInfoInterop,
    AttachmentInfoInterop,
    BitmapInfoInterop,
    ExternalInputStreamStructInterop,
    ExternalOutputStreamStructInterop,
    FileHeaderInfoInterop,
    InputStreamClassInfoInterop,
    LibCZIBuildInformationInterop,
    LibCZIVersionInfoInterop,
    MetadataAsXmlInterop,
    ObjectHandle,
    ReaderOpenInfoInterop,
    SubBlockInfoInterop,
    SubBlockStatisticsInterop,
    WriteMetadataInfoInterop,
)
from czibridge.native.status import ErrorKind, ErrorRecord, NativeStatus, is_success

logger = logging.getLogger(__name__)

if sys.platform == "win32":  # pragma: no cover
    DEFAULT_LIBRARY_NAME = "libCZIAPI.dll"
elif sys.platform == "darwin":  # pragma: no cover
    DEFAULT_LIBRARY_NAME = "liblibCZIAPI.dylib"
else:  # pragma: no cover
    DEFAULT_LIBRARY_NAME = "liblibCZIAPI.so"

_STATUS_DESCRIPTIONS: dict[int, str] = {
    NativeStatus.INVALID_ARGUMENT: "An invalid argument was supplied to the function.",
    NativeStatus.INVALID_HANDLE: "An invalid object handle was supplied to the function.",
    NativeStatus.OUT_OF_MEMORY: "The operation failed due to an out-of-memory condition.",
    NativeStatus.INDEX_OUT_OF_RANGE: "The supplied index was out of range.",
    NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED: (
        "Lock/Unlock semantic was violated: unlock without lock, or release "
        "while locked."
    ),
    NativeStatus.UNSPECIFIED_ERROR: "An unspecified error occurred.",
}


@dataclass(frozen=True)
class BuildInfo:
    """How the loaded libCZIApi was built; fields the build left out are empty."""

    compiler: str
    repository_url: str
    repository_branch: str
    repository_tag: str


@dataclass(frozen=True)
class StreamClassInfo:
    """A stream class usable with :meth:`InputStream.from_class`."""

    name: str
    description: str


@dataclass(frozen=True)
class VersionInfo:
    """Version of the loaded libCZIApi (SemVer2; ``tweak`` has no meaning)."""

    major: int
    minor: int
    patch: int
    tweak: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class NativeLibrary(Protocol):
    """Protocol for the libCZIApi entry points used by czibridge.

    Out-parameters are ctypes instances that the implementation fills in.
    Every method returns the native status value.
    """

    def describe_status(self, code: int) -> str | None: ...

    # Memory
    def free(self, address: int) -> None: ...
    def allocate_memory(self, size: int, out_address: ctypes.c_void_p) -> int: ...
    def get_version_info(self, out: LibCZIVersionInfoInterop) -> int: ...
    def get_build_information(self, out: LibCZIBuildInformationInterop) -> int: ...

    # Streams
    def get_stream_classes_count(self, out_count: ctypes.c_int32) -> int: ...
    def get_stream_class_info(self, index: int, out: InputStreamClassInfoInterop) -> int: ...
    def create_input_stream(
        self, class_name: bytes, property_bag: bytes, identifier: bytes, out_stream: ObjectHandle
    ) -> int: ...
    def create_input_stream_from_external(
        self, external: ExternalInputStreamStructInterop, out_stream: ObjectHandle
    ) -> int: ...
    def create_input_stream_from_file(self, path: bytes, out_stream: ObjectHandle) -> int: ...
    def release_input_stream(self, stream: int) -> int: ...
    def create_output_stream_from_external(
        self, external: ExternalOutputStreamStructInterop, out_stream: ObjectHandle
    ) -> int: ...
    def create_output_stream_for_file(
        self, path: bytes, overwrite: bool, out_stream: ObjectHandle
    ) -> int: ...
    def release_output_stream(self, stream: int) -> int: ...

    # Reader
    def create_reader(self, out_reader: ObjectHandle) -> int: ...
    def reader_open(self, reader: int, open_info: ReaderOpenInfoInterop) -> int: ...
    def reader_get_file_header_info(self, reader: int, out: FileHeaderInfoInterop) -> int: ...
    def reader_get_statistics_simple(
        self, reader: int, out: SubBlockStatisticsInterop
    ) -> int: ...
    def reader_get_statistics_ex(
        self, reader: int, out: ctypes.Structure, count: ctypes.c_int32
    ) -> int: ...
    def reader_get_pyramid_statistics(self, reader: int, out_json: ctypes.c_void_p) -> int: ...
    def reader_try_get_sub_block_info(
        self, reader: int, index: int, out: SubBlockInfoInterop
    ) -> int: ...
    def reader_read_sub_block(self, reader: int, index: int, out_sub_block: ObjectHandle) -> int: ...
    def reader_get_metadata_segment(self, reader: int, out_segment: ObjectHandle) -> int: ...
    def reader_get_attachment_count(self, reader: int, out_count: ctypes.c_int32) -> int: ...
    def reader_get_attachment_info(
        self, reader: int, index: int, out: AttachmentInfoInterop
    ) -> int: ...
    def reader_read_attachment(self, reader: int, index: int, out_attachment: ObjectHandle) -> int: ...
    def release_reader(self, reader: int) -> int: ...

    # Sub-blocks and bitmaps
    def sub_block_get_info(self, sub_block: int, out: SubBlockInfoInterop) -> int: ...
    def sub_block_get_raw_data(
        self, sub_block: int, kind: int, size: ctypes.c_uint64, buffer: Any
    ) -> int: ...
    def sub_block_create_bitmap(self, sub_block: int, out_bitmap: ObjectHandle) -> int: ...
    def release_sub_block(self, sub_block: int) -> int: ...
    def bitmap_get_info(self, bitmap: int, out: BitmapInfoInterop) -> int: ...
    def bitmap_copy_to(
        self, bitmap: int, width: int, height: int, pixel_type: int, stride: int, buffer: Any
    ) -> int: ...
    def release_bitmap(self, bitmap: int) -> int: ...

    # Metadata and attachments
    def metadata_segment_get_xml(self, segment: int, out: MetadataAsXmlInterop) -> int: ...
    def release_metadata_segment(self, segment: int) -> int: ...
    def attachment_get_info(self, attachment: int, out: AttachmentInfoInterop) -> int: ...
    def attachment_get_raw_data(self, attachment: int, size: ctypes.c_uint64, buffer: Any) -> int: ...
    def release_attachment(self, attachment: int) -> int: ...

    # Writer
    def create_writer(self, out_writer: ObjectHandle, options: bytes) -> int: ...
    def writer_create(self, writer: int, stream: int, parameters: bytes) -> int: ...
    def writer_add_sub_block(self, writer: int, info: AddSubBlockInfoInterop) -> int: ...
    def writer_add_attachment(self, writer: int, info: AddAttachmentInfoInterop) -> int: ...
    def writer_write_metadata(self, writer: int, info: WriteMetadataInfoInterop) -> int: ...
    def writer_close(self, writer: int) -> int: ...
    def release_writer(self, writer: int) -> int: ...


_P = ctypes.POINTER
_H = ObjectHandle
_I32 = ctypes.c_int32
_VOIDP = ctypes.c_void_p

# symbol -> (argtypes, restype)
_PROTOTYPES: dict[str, tuple[list[Any], Any]] = {
    "libCZI_Free": ([_VOIDP], None),
    "libCZI_AllocateMemory": ([ctypes.c_uint64, _P(_VOIDP)], _I32),
    "libCZI_GetLibCZIVersionInfo": ([_P(LibCZIVersionInfoInterop)], _I32),
    "libCZI_GetLibCZIBuildInformation": ([_P(LibCZIBuildInformationInterop)], _I32),
    "libCZI_GetStreamClassesCount": ([_P(_I32)], _I32),
    "libCZI_GetStreamClassInfo": ([_I32, _P(InputStreamClassInfoInterop)], _I32),
    "libCZI_CreateInputStream": (
        [ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, _P(_H)],
        _I32,
    ),
    "libCZI_CreateInputStreamFromExternal": (
        [_P(ExternalInputStreamStructInterop), _P(_H)],
        _I32,
    ),
    "libCZI_CreateInputStreamFromFileUTF8": ([ctypes.c_char_p, _P(_H)], _I32),
    "libCZI_ReleaseInputStream": ([_H], _I32),
    "libCZI_CreateOutputStreamFromExternal": (
        [_P(ExternalOutputStreamStructInterop), _P(_H)],
        _I32,
    ),
    "libCZI_CreateOutputStreamForFileUTF8": (
        [ctypes.c_char_p, ctypes.c_bool, _P(_H)],
        _I32,
    ),
    "libCZI_ReleaseOutputStream": ([_H], _I32),
    "libCZI_CreateReader": ([_P(_H)], _I32),
    "libCZI_ReaderOpen": ([_H, _P(ReaderOpenInfoInterop)], _I32),
    "libCZI_ReaderGetFileHeaderInfo": ([_H, _P(FileHeaderInfoInterop)], _I32),
    "libCZI_ReaderGetStatisticsSimple": ([_H, _P(SubBlockStatisticsInterop)], _I32),
    # The statistics struct ends in a flexible array, so its type varies per call.
    "libCZI_ReaderGetStatisticsEx": ([_H, _VOIDP, _P(_I32)], _I32),
    "libCZI_ReaderGetPyramidStatistics": ([_H, _P(_VOIDP)], _I32),
    "libCZI_TryGetSubBlockInfoForIndex": ([_H, _I32, _P(SubBlockInfoInterop)], _I32),
    "libCZI_ReaderReadSubBlock": ([_H, _I32, _P(_H)], _I32),
    "libCZI_ReaderGetMetadataSegment": ([_H, _P(_H)], _I32),
    "libCZI_ReaderGetAttachmentCount": ([_H, _P(_I32)], _I32),
    "libCZI_ReaderGetAttachmentInfoFromDirectory": (
        [_H, _I32, _P(AttachmentInfoInterop)],
        _I32,
    ),
    "libCZI_ReaderReadAttachment": ([_H, _I32, _P(_H)], _I32),
    "libCZI_ReleaseReader": ([_H], _I32),
    "libCZI_SubBlockGetInfo": ([_H, _P(SubBlockInfoInterop)], _I32),
    "libCZI_SubBlockGetRawData": ([_H, _I32, _P(ctypes.c_uint64), _VOIDP], _I32),
    "libCZI_SubBlockCreateBitmap": ([_H, _P(_H)], _I32),
    "libCZI_ReleaseSubBlock": ([_H], _I32),
    "libCZI_BitmapGetInfo": ([_H, _P(BitmapInfoInterop)], _I32),
    "libCZI_BitmapCopyTo": (
        [_H, ctypes.c_uint32, ctypes.c_uint32, _I32, ctypes.c_uint32, _VOIDP],
        _I32,
    ),
    "libCZI_ReleaseBitmap": ([_H], _I32),
    "libCZI_MetadataSegmentGetMetadataAsXml": ([_H, _P(MetadataAsXmlInterop)], _I32),
    "libCZI_ReleaseMetadataSegment": ([_H], _I32),
    "libCZI_AttachmentGetInfo": ([_H, _P(AttachmentInfoInterop)], _I32),
    "libCZI_AttachmentGetRawData": ([_H, _P(ctypes.c_uint64), _VOIDP], _I32),
    "libCZI_ReleaseAttachment": ([_H], _I32),
    "libCZI_CreateWriter": ([_P(_H), ctypes.c_char_p], _I32),
    "libCZI_WriterCreate": ([_H, _H, ctypes.c_char_p], _I32),
    "libCZI_WriterAddSubBlock": ([_H, _P(AddSubBlockInfoInterop)], _I32),
    "libCZI_WriterAddAttachment": ([_H, _P(AddAttachmentInfoInterop)], _I32),
    "libCZI_WriterWriteMetadata": ([_H, _P(WriteMetadataInfoInterop)], _I32),
    "libCZI_WriterClose": ([_H], _I32),
    "libCZI_ReleaseWriter": ([_H], _I32),
}


def _buffer_arg(buffer: Any) -> Any:
    return None if buffer is None else ctypes.cast(buffer, _VOIDP)


class LibCZILibrary:
    """ctypes implementation of :class:`NativeLibrary`."""

    def __init__(self, name: str | None = None) -> None:
        """Load the shared library and declare its prototypes.

        Args:
            name: File name or path of the library. Defaults to
                ``settings.LIBCZI_LIBRARY``, then the platform default name.

        Raises:
            LibraryLoadError: If the library cannot be loaded or lacks a
                required export.
        """
        self.name = name or settings.LIBCZI_LIBRARY or _find_default()
        try:
            self._lib = ctypes.CDLL(self.name)
        except OSError as e:
            raise LibraryLoadError(
                ErrorRecord(
                    code=NativeStatus.UNSPECIFIED_ERROR,
                    kind=ErrorKind.NATIVE_INTERNAL,
                    detail=f"cannot load {self.name}: {e}",
                ),
                "load libCZIApi",
            ) from e

        missing = [symbol for symbol in _PROTOTYPES if not hasattr(self._lib, symbol)]
        if missing:
            raise LibraryLoadError(
                ErrorRecord(
                    code=NativeStatus.UNSPECIFIED_ERROR,
                    kind=ErrorKind.NATIVE_INTERNAL,
                    detail=(
                        f"{self.name} is missing required symbols: {', '.join(missing)}. "
                        "This indicates an incomplete build or a version mismatch."
                    ),
                ),
                "load libCZIApi",
            )
        for symbol, (argtypes, restype) in _PROTOTYPES.items():
            func = getattr(self._lib, symbol)
            func.argtypes = argtypes
            func.restype = restype
        logger.debug("Loaded native library %s", self.name)

    @classmethod
    def from_settings(cls) -> LibCZILibrary:
        """Load exactly the library named by ``LIBCZI_LIBRARY``, with no fallback.

        Raises:
            ConfigError: If LIBCZI_LIBRARY is not configured.
            LibraryLoadError: If the configured library cannot be loaded.
        """
        return cls(settings.require_library_path())

    def describe_status(self, code: int) -> str | None:
        # libCZIApi exports no message lookup; these are the header's descriptions.
        return _STATUS_DESCRIPTIONS.get(code)

    def free(self, address: int) -> None:
        self._lib.libCZI_Free(address)

    def allocate_memory(self, size: int, out_address: ctypes.c_void_p) -> int:
        return self._lib.libCZI_AllocateMemory(size, ctypes.byref(out_address))

    def get_version_info(self, out: LibCZIVersionInfoInterop) -> int:
        return self._lib.libCZI_GetLibCZIVersionInfo(ctypes.byref(out))

    def get_build_information(self, out: LibCZIBuildInformationInterop) -> int:
        return self._lib.libCZI_GetLibCZIBuildInformation(ctypes.byref(out))

    def get_stream_classes_count(self, out_count: ctypes.c_int32) -> int:
        return self._lib.libCZI_GetStreamClassesCount(ctypes.byref(out_count))

    def get_stream_class_info(self, index: int, out: InputStreamClassInfoInterop) -> int:
        return self._lib.libCZI_GetStreamClassInfo(index, ctypes.byref(out))

    def create_input_stream(
        self, class_name: bytes, property_bag: bytes, identifier: bytes, out_stream: ObjectHandle
    ) -> int:
        return self._lib.libCZI_CreateInputStream(
            class_name, property_bag, identifier, ctypes.byref(out_stream)
        )

    def create_input_stream_from_external(
        self, external: ExternalInputStreamStructInterop, out_stream: ObjectHandle
    ) -> int:
        return self._lib.libCZI_CreateInputStreamFromExternal(
            ctypes.byref(external), ctypes.byref(out_stream)
        )

    def create_input_stream_from_file(self, path: bytes, out_stream: ObjectHandle) -> int:
        return self._lib.libCZI_CreateInputStreamFromFileUTF8(path, ctypes.byref(out_stream))

    def release_input_stream(self, stream: int) -> int:
        return self._lib.libCZI_ReleaseInputStream(stream)

    def create_output_stream_from_external(
        self, external: ExternalOutputStreamStructInterop, out_stream: ObjectHandle
    ) -> int:
        return self._lib.libCZI_CreateOutputStreamFromExternal(
            ctypes.byref(external), ctypes.byref(out_stream)
        )

    def create_output_stream_for_file(
        self, path: bytes, overwrite: bool, out_stream: ObjectHandle
    ) -> int:
        return self._lib.libCZI_CreateOutputStreamForFileUTF8(
            path, overwrite, ctypes.byref(out_stream)
        )

    def release_output_stream(self, stream: int) -> int:
        return self._lib.libCZI_ReleaseOutputStream(stream)

    def create_reader(self, out_reader: ObjectHandle) -> int:
        return self._lib.libCZI_CreateReader(ctypes.byref(out_reader))

    def reader_open(self, reader: int, open_info: ReaderOpenInfoInterop) -> int:
        return self._lib.libCZI_ReaderOpen(reader, ctypes.byref(open_info))

    def reader_get_file_header_info(self, reader: int, out: FileHeaderInfoInterop) -> int:
        return self._lib.libCZI_ReaderGetFileHeaderInfo(reader, ctypes.byref(out))

    def reader_get_statistics_simple(self, reader: int, out: SubBlockStatisticsInterop) -> int:
        return self._lib.libCZI_ReaderGetStatisticsSimple(reader, ctypes.byref(out))

    def reader_get_statistics_ex(
        self, reader: int, out: ctypes.Structure, count: ctypes.c_int32
    ) -> int:
        return self._lib.libCZI_ReaderGetStatisticsEx(
            reader, ctypes.addressof(out), ctypes.byref(count)
        )

    def reader_get_pyramid_statistics(self, reader: int, out_json: ctypes.c_void_p) -> int:
        return self._lib.libCZI_ReaderGetPyramidStatistics(reader, ctypes.byref(out_json))

    def reader_try_get_sub_block_info(
        self, reader: int, index: int, out: SubBlockInfoInterop
    ) -> int:
        return self._lib.libCZI_TryGetSubBlockInfoForIndex(reader, index, ctypes.byref(out))

    def reader_read_sub_block(self, reader: int, index: int, out_sub_block: ObjectHandle) -> int:
        return self._lib.libCZI_ReaderReadSubBlock(reader, index, ctypes.byref(out_sub_block))

    def reader_get_metadata_segment(self, reader: int, out_segment: ObjectHandle) -> int:
        return self._lib.libCZI_ReaderGetMetadataSegment(reader, ctypes.byref(out_segment))

    def reader_get_attachment_count(self, reader: int, out_count: ctypes.c_int32) -> int:
        return self._lib.libCZI_ReaderGetAttachmentCount(reader, ctypes.byref(out_count))

    def reader_get_attachment_info(
        self, reader: int, index: int, out: AttachmentInfoInterop
    ) -> int:
        return self._lib.libCZI_ReaderGetAttachmentInfoFromDirectory(
            reader, index, ctypes.byref(out)
        )

    def reader_read_attachment(self, reader: int, index: int, out_attachment: ObjectHandle) -> int:
        return self._lib.libCZI_ReaderReadAttachment(reader, index, ctypes.byref(out_attachment))

    def release_reader(self, reader: int) -> int:
        return self._lib.libCZI_ReleaseReader(reader)

    def sub_block_get_info(self, sub_block: int, out: SubBlockInfoInterop) -> int:
        return self._lib.libCZI_SubBlockGetInfo(sub_block, ctypes.byref(out))

    def sub_block_get_raw_data(
        self, sub_block: int, kind: int, size: ctypes.c_uint64, buffer: Any
    ) -> int:
        return self._lib.libCZI_SubBlockGetRawData(
            sub_block, kind, ctypes.byref(size), _buffer_arg(buffer)
        )

    def sub_block_create_bitmap(self, sub_block: int, out_bitmap: ObjectHandle) -> int:
        return self._lib.libCZI_SubBlockCreateBitmap(sub_block, ctypes.byref(out_bitmap))

    def release_sub_block(self, sub_block: int) -> int:
        return self._lib.libCZI_ReleaseSubBlock(sub_block)

    def bitmap_get_info(self, bitmap: int, out: BitmapInfoInterop) -> int:
        return self._lib.libCZI_BitmapGetInfo(bitmap, ctypes.byref(out))

    def bitmap_copy_to(
        self, bitmap: int, width: int, height: int, pixel_type: int, stride: int, buffer: Any
    ) -> int:
        return self._lib.libCZI_BitmapCopyTo(
            bitmap, width, height, pixel_type, stride, _buffer_arg(buffer)
        )

    def release_bitmap(self, bitmap: int) -> int:
        return self._lib.libCZI_ReleaseBitmap(bitmap)

    def metadata_segment_get_xml(self, segment: int, out: MetadataAsXmlInterop) -> int:
        return self._lib.libCZI_MetadataSegmentGetMetadataAsXml(segment, ctypes.byref(out))

    def release_metadata_segment(self, segment: int) -> int:
        return self._lib.libCZI_ReleaseMetadataSegment(segment)

    def attachment_get_info(self, attachment: int, out: AttachmentInfoInterop) -> int:
        return self._lib.libCZI_AttachmentGetInfo(attachment, ctypes.byref(out))

    def attachment_get_raw_data(self, attachment: int, size: ctypes.c_uint64, buffer: Any) -> int:
        return self._lib.libCZI_AttachmentGetRawData(
            attachment, ctypes.byref(size), _buffer_arg(buffer)
        )

    def release_attachment(self, attachment: int) -> int:
        return self._lib.libCZI_ReleaseAttachment(attachment)

    def create_writer(self, out_writer: ObjectHandle, options: bytes) -> int:
        return self._lib.libCZI_CreateWriter(ctypes.byref(out_writer), options)

    def writer_create(self, writer: int, stream: int, parameters: bytes) -> int:
        return self._lib.libCZI_WriterCreate(writer, stream, parameters)

    def writer_add_sub_block(self, writer: int, info: AddSubBlockInfoInterop) -> int:
        return self._lib.libCZI_WriterAddSubBlock(writer, ctypes.byref(info))

    def writer_add_attachment(self, writer: int, info: AddAttachmentInfoInterop) -> int:
        return self._lib.libCZI_WriterAddAttachment(writer, ctypes.byref(info))

    def writer_write_metadata(self, writer: int, info: WriteMetadataInfoInterop) -> int:
        return self._lib.libCZI_WriterWriteMetadata(writer, ctypes.byref(info))

    def writer_close(self, writer: int) -> int:
        return self._lib.libCZI_WriterClose(writer)

    def release_writer(self, writer: int) -> int:
        return self._lib.libCZI_ReleaseWriter(writer)

    def __repr__(self) -> str:
        return f"LibCZILibrary(name={self.name!r})"


def _find_default() -> str:
    # The CMake target is named "libCZIAPI", so the file is liblibCZIAPI.so on Unix.
    found = ctypes.util.find_library("libCZIAPI") or ctypes.util.find_library("CZIAPI")
    return found or DEFAULT_LIBRARY_NAME


_library: NativeLibrary | None = None
_library_lock = threading.Lock()


def get_library() -> NativeLibrary:
    """Return the process-wide libCZIApi binding, loading it on first use.

    Loading runs at most once, however many threads ask concurrently. A
    failed load is not cached, so a later call retries.

    Raises:
        LibraryLoadError: If the library cannot be loaded.
    """
    global _library
    if _library is None:
        with _library_lock:
            if _library is None:
                _library = LibCZILibrary()
    return _library


def library_version(library: NativeLibrary | None = None) -> VersionInfo:
    """Return the version of the native library.

    Raises:
        NativeInternalError: If the version query fails.
    """
    library = library or get_library()
    out = LibCZIVersionInfoInterop()
    status = library.get_version_info(out)
    if not is_success(status):
        raise error_for_status(status, "query library version", lookup=library.describe_status)
    return VersionInfo(major=out.major, minor=out.minor, patch=out.patch, tweak=out.tweak)


def take_native_string(
    library: NativeLibrary, address: int | None, size: int | None = None
) -> bytes:
    """Copy a libCZI-allocated buffer and free it.

    Without ``size`` the buffer is read up to its NUL terminator.
    """
    if not address:
        return b""
    try:
        return ctypes.string_at(address, size) if size is not None else ctypes.string_at(address)
    finally:
        library.free(address)


def _take_text(library: NativeLibrary, address: int | None) -> str:
    return take_native_string(library, address).decode("utf-8", errors="replace")


def library_build_info(library: NativeLibrary | None = None) -> BuildInfo:
    """Return compiler and repository details of the native library.

    Raises:
        NativeInternalError: If the query fails.
    """
    library = library or get_library()
    out = LibCZIBuildInformationInterop()
    status = library.get_build_information(out)
    if not is_success(status):
        raise error_for_status(status, "query build information", lookup=library.describe_status)
    return BuildInfo(
        compiler=_take_text(library, out.compilerIdentification),
        repository_url=_take_text(library, out.repositoryUrl),
        repository_branch=_take_text(library, out.repositoryBranch),
        repository_tag=_take_text(library, out.repositoryTag),
    )


def stream_classes(library: NativeLibrary | None = None) -> list[StreamClassInfo]:
    """List the stream classes the native library was built with.

    Raises:
        NativeInternalError: If the query fails.
    """
    library = library or get_library()
    count = ctypes.c_int32(0)
    status = library.get_stream_classes_count(count)
    if not is_success(status):
        raise error_for_status(status, "count stream classes", lookup=library.describe_status)
    classes = []
    for index in range(count.value):
        out = InputStreamClassInfoInterop()
        status = library.get_stream_class_info(index, out)
        if not is_success(status):
            raise error_for_status(
                status, f"get stream class {index}", lookup=library.describe_status
            )
        classes.append(
            StreamClassInfo(
                name=_take_text(library, out.name),
                description=_take_text(library, out.description),
            )
        )
    return classes
