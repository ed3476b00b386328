"""Native boundary for czibridge.

Everything that touches libCZIApi directly lives here:

    - status: translation of native status codes into ErrorKind/ErrorRecord
    - exceptions: the CziError hierarchy raised by all wrappers
    - interop: ctypes structures and callback prototypes
    - library: the NativeLibrary protocol, its ctypes binding and the
      init-once loader
    - handle: OwnedHandle, the exclusive owner of one native object
"""

from czibridge.native.exceptions import (
    AlreadyClosedError,
    ConcurrentUseError,
    CorruptDataError,
    CziError,
    CziIOError,
    InvalidArgumentError,
    LibraryLoadError,
    NativeInternalError,
    UnsupportedError,
    error_for_status,
    make_error,
    raise_for_status,
)
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.library import (
    BuildInfo,
    LibCZILibrary,
    NativeLibrary,
    StreamClassInfo,
    VersionInfo,
    get_library,
    library_build_info,
    library_version,
    stream_classes,
)
from czibridge.native.status import (
    ErrorKind,
    ErrorRecord,
    NativeStatus,
    StreamErrorCode,
    is_success,
    message_for,
    translate,
)

__all__ = [
    "AlreadyClosedError",
    "BuildInfo",
    "ConcurrentUseError",
    "CorruptDataError",
    "CziError",
    "CziIOError",
    "ErrorKind",
    "ErrorRecord",
    "HandleKind",
    "InvalidArgumentError",
    "LibCZILibrary",
    "LibraryLoadError",
    "NativeInternalError",
    "NativeLibrary",
    "NativeStatus",
    "OwnedHandle",
    "StreamClassInfo",
    "StreamErrorCode",
    "UnsupportedError",
    "VersionInfo",
    "error_for_status",
    "get_library",
    "is_success",
    "library_build_info",
    "library_version",
    "make_error",
    "message_for",
    "raise_for_status",
    "stream_classes",
    "translate",
]
