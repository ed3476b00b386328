"""ctypes declarations for the libCZIApi C ABI.

Structure layouts, callback prototypes and handle types must match the
native headers exactly; the native library cannot renegotiate them.
"""

import ctypes
import functools
import sys

# Object handles are intptr_t; 0 is kInvalidObjectHandle.
ObjectHandle = ctypes.c_ssize_t
INVALID_HANDLE = 0

# libCZIApi is built with LIBCZIAPI_STDCALL on Windows.
if sys.platform == "win32":  # pragma: no cover
    _FUNCTYPE = ctypes.WINFUNCTYPE
else:
    _FUNCTYPE = ctypes.CFUNCTYPE

MAX_DIMENSIONS = 9


class LibCZIVersionInfoInterop(ctypes.Structure):
    _fields_ = [
        ("major", ctypes.c_int32),
        ("minor", ctypes.c_int32),
        ("patch", ctypes.c_int32),
        ("tweak", ctypes.c_int32),
    ]


class LibCZIBuildInformationInterop(ctypes.Structure):
    """Build details; every non-null string must be released with libCZI_Free."""

    _fields_ = [
        ("compilerIdentification", ctypes.c_void_p),
        ("repositoryUrl", ctypes.c_void_p),
        ("repositoryBranch", ctypes.c_void_p),
        ("repositoryTag", ctypes.c_void_p),
    ]


class InputStreamClassInfoInterop(ctypes.Structure):
    """Name and description of a stream class; both released with libCZI_Free."""

    _fields_ = [("name", ctypes.c_void_p), ("description", ctypes.c_void_p)]


class ExternalStreamErrorInfoInterop(ctypes.Structure):
    """Additional information about an error in an external stream.

    ``error_message`` is a memory allocation (libCZI_AllocateMemory) owned by
    the native side once filled in; 0 means no message.
    """

    _fields_ = [
        ("error_code", ctypes.c_int32),
        ("error_message", ObjectHandle),
    ]


InputStreamReadFunction = _FUNCTYPE(
    ctypes.c_int32,
    ctypes.c_size_t,  # opaque_handle1
    ctypes.c_size_t,  # opaque_handle2
    ctypes.c_uint64,  # offset
    ctypes.c_void_p,  # destination buffer
    ctypes.c_uint64,  # size
    ctypes.POINTER(ctypes.c_uint64),  # bytes read
    ctypes.POINTER(ExternalStreamErrorInfoInterop),
)

OutputStreamWriteFunction = _FUNCTYPE(
    ctypes.c_int32,
    ctypes.c_size_t,
    ctypes.c_size_t,
    ctypes.c_uint64,  # offset
    ctypes.c_void_p,  # source buffer (const)
    ctypes.c_uint64,  # size
    ctypes.POINTER(ctypes.c_uint64),  # bytes written
    ctypes.POINTER(ExternalStreamErrorInfoInterop),
)

StreamCloseFunction = _FUNCTYPE(None, ctypes.c_size_t, ctypes.c_size_t)


class ExternalInputStreamStructInterop(ctypes.Structure):
    """Externally provided read functions for an input stream.

    The function pointers must stay valid until ``close_function`` has been
    called, which may happen after libCZI_ReleaseInputStream returns.
    """

    _fields_ = [
        ("opaque_handle1", ctypes.c_size_t),
        ("opaque_handle2", ctypes.c_size_t),
        ("read_function", InputStreamReadFunction),
        ("close_function", StreamCloseFunction),
    ]


class ExternalOutputStreamStructInterop(ctypes.Structure):
    """Externally provided write functions for an output stream."""

    _fields_ = [
        ("opaque_handle1", ctypes.c_size_t),
        ("opaque_handle2", ctypes.c_size_t),
        ("write_function", OutputStreamWriteFunction),
        ("close_function", StreamCloseFunction),
    ]


class ReaderOpenInfoInterop(ctypes.Structure):
    _fields_ = [("streamObject", ObjectHandle)]


class IntRectInterop(ctypes.Structure):
    _fields_ = [
        ("x", ctypes.c_int32),
        ("y", ctypes.c_int32),
        ("w", ctypes.c_int32),
        ("h", ctypes.c_int32),
    ]


class IntSizeInterop(ctypes.Structure):
    _fields_ = [("w", ctypes.c_int32), ("h", ctypes.c_int32)]


class DimBoundsInterop(ctypes.Structure):
    _fields_ = [
        ("dimensions_valid", ctypes.c_uint32),
        ("start", ctypes.c_int32 * MAX_DIMENSIONS),
        ("size", ctypes.c_int32 * MAX_DIMENSIONS),
    ]


class CoordinateInterop(ctypes.Structure):
    _fields_ = [
        ("dimensions_valid", ctypes.c_uint32),
        ("value", ctypes.c_int32 * MAX_DIMENSIONS),
    ]


class SubBlockStatisticsInterop(ctypes.Structure):
    _fields_ = [
        ("sub_block_count", ctypes.c_int32),
        ("min_m_index", ctypes.c_int32),
        ("max_m_index", ctypes.c_int32),
        ("bounding_box", IntRectInterop),
        ("bounding_box_layer0", IntRectInterop),
        ("dim_bounds", DimBoundsInterop),
    ]


class BoundingBoxesInterop(ctypes.Structure):
    _fields_ = [
        ("sceneIndex", ctypes.c_int32),
        ("bounding_box", IntRectInterop),
        ("bounding_box_layer0_only", IntRectInterop),
    ]


@functools.lru_cache(maxsize=16)
def sub_block_statistics_ex_type(capacity: int) -> type[ctypes.Structure]:
    """SubBlockStatisticsInteropEx with room for ``capacity`` per-scene boxes.

    The native struct ends in a flexible array; the caller allocates the
    trailing elements and passes their count separately.
    """
    return type(
        f"SubBlockStatisticsInteropEx_{capacity}",
        (ctypes.Structure,),
        {
            "_fields_": [
                ("sub_block_count", ctypes.c_int32),
                ("min_m_index", ctypes.c_int32),
                ("max_m_index", ctypes.c_int32),
                ("bounding_box", IntRectInterop),
                ("bounding_box_layer0", IntRectInterop),
                ("dim_bounds", DimBoundsInterop),
                ("number_of_per_scenes_bounding_boxes", ctypes.c_int32),
                ("per_scenes_bounding_boxes", BoundingBoxesInterop * capacity),
            ]
        },
    )


class MetadataAsXmlInterop(ctypes.Structure):
    """XML metadata; ``data`` must be released with libCZI_Free."""

    _fields_ = [("data", ctypes.c_void_p), ("size", ctypes.c_uint64)]


class BitmapInfoInterop(ctypes.Structure):
    _fields_ = [
        ("width", ctypes.c_uint32),
        ("height", ctypes.c_uint32),
        ("pixelType", ctypes.c_int32),
    ]


class SubBlockInfoInterop(ctypes.Structure):
    _fields_ = [
        ("compression_mode_raw", ctypes.c_int32),
        ("pixel_type", ctypes.c_int32),
        ("coordinate", CoordinateInterop),
        ("logical_rect", IntRectInterop),
        ("physical_size", IntSizeInterop),
        ("m_index", ctypes.c_int32),  # int32 min => not valid
    ]


class AttachmentInfoInterop(ctypes.Structure):
    """Directory entry of an attachment.

    When ``name_overflow`` is set, the full name is in
    ``name_in_case_of_overflow`` and must be released with libCZI_Free.
    """

    _fields_ = [
        ("guid", ctypes.c_uint8 * 16),
        ("content_file_type", ctypes.c_uint8 * 9),
        ("name", ctypes.c_char * 255),
        ("name_overflow", ctypes.c_bool),
        ("name_in_case_of_overflow", ctypes.c_void_p),
    ]


class FileHeaderInfoInterop(ctypes.Structure):
    _fields_ = [
        ("guid", ctypes.c_uint8 * 16),
        ("majorVersion", ctypes.c_int32),
        ("minorVersion", ctypes.c_int32),
    ]


class AddSubBlockInfoInterop(ctypes.Structure):
    _fields_ = [
        ("coordinate", CoordinateInterop),
        ("m_index_valid", ctypes.c_uint8),
        ("m_index", ctypes.c_int32),
        ("x", ctypes.c_int32),
        ("y", ctypes.c_int32),
        ("logical_width", ctypes.c_int32),
        ("logical_height", ctypes.c_int32),
        ("physical_width", ctypes.c_int32),
        ("physical_height", ctypes.c_int32),
        ("pixel_type", ctypes.c_int32),
        ("compression_mode_raw", ctypes.c_int32),
        ("size_data", ctypes.c_uint32),
        ("data", ctypes.c_void_p),
        ("stride", ctypes.c_uint32),
        ("size_metadata", ctypes.c_uint32),
        ("metadata", ctypes.c_void_p),
        ("size_attachment", ctypes.c_uint32),
        ("attachment", ctypes.c_void_p),
    ]


class AddAttachmentInfoInterop(ctypes.Structure):
    _fields_ = [
        ("guid", ctypes.c_uint8 * 16),
        ("contentFileType", ctypes.c_uint8 * 8),
        ("name", ctypes.c_uint8 * 80),
        ("size_attachment_data", ctypes.c_uint32),
        ("attachment_data", ctypes.c_void_p),
    ]


class WriteMetadataInfoInterop(ctypes.Structure):
    _fields_ = [
        ("size_metadata", ctypes.c_uint32),
        ("metadata", ctypes.c_void_p),
    ]


# SubBlockGetRawData "type" argument
RAW_DATA_PIXELS = 0
RAW_DATA_METADATA = 1
