"""Exceptions raised by czibridge.

Each exception wraps an :class:`~czibridge.native.status.ErrorRecord`, so
callers can branch on ``error.kind`` or catch the subclass for that kind.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from czibridge.native.status import ErrorKind, ErrorRecord, NativeStatus, is_success


class CziError(Exception):
    """Base exception for all czibridge errors."""

    kind: ErrorKind = ErrorKind.NATIVE_INTERNAL
    # Status of the native call a stream-callback failure surfaced through
    native_code: int | None = None

    def __init__(
        self,
        record: ErrorRecord,
        operation: str | None = None,
        *,
        path: Path | str | None = None,
    ) -> None:
        """Initialize error from a record with optional context.

        Args:
            record: The structured failure.
            operation: Name of the operation that failed (e.g. "open reader").
            path: Path of the CZI document involved, if known.
        """
        self.record = record
        self.operation = operation
        self.path = Path(path) if path else None
        super().__init__(self._format_message())

    @property
    def code(self) -> int:
        """Native status (or stream error) code of the failure."""
        return self.record.code

    @property
    def message(self) -> str:
        return self.record.message

    def _format_message(self) -> str:
        """Format error message with operation and path context."""
        parts = [f"{self.operation}: {self.message}" if self.operation else self.message]
        context = [f"kind={self.record.kind.value}", f"code={self.record.code}"]
        if self.path:
            context.append(f"path={self.path}")
        return f"{parts[0]} ({', '.join(context)})"


class CziIOError(CziError):
    """The caller's storage (or a native file stream) failed."""

    kind = ErrorKind.IO


class InvalidArgumentError(CziError):
    """Out-of-range index, mismatched buffer length or malformed descriptor."""

    kind = ErrorKind.INVALID_ARGUMENT


class UnsupportedError(CziError):
    """Valid but undecodable pixel type / compression combination."""

    kind = ErrorKind.UNSUPPORTED


class CorruptDataError(CziError):
    """The native library detected malformed container data."""

    kind = ErrorKind.CORRUPT


class AlreadyClosedError(CziError):
    """Operation attempted on a released handle or finalized writer."""

    kind = ErrorKind.ALREADY_CLOSED


class NativeInternalError(CziError):
    """Unclassified native failure."""

    kind = ErrorKind.NATIVE_INTERNAL


class ConcurrentUseError(InvalidArgumentError):
    """A handle was used from a second thread while a call on it was in flight.

    Handles are confined to one logical owner at a time; callers that share
    them across threads must synchronise externally. The record carries
    ``NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED``.
    """


class LibraryLoadError(NativeInternalError):
    """The libCZIApi shared library could not be loaded or is incomplete."""


_EXCEPTION_BY_KIND: dict[ErrorKind, type[CziError]] = {
    ErrorKind.IO: CziIOError,
    ErrorKind.INVALID_ARGUMENT: InvalidArgumentError,
    ErrorKind.UNSUPPORTED: UnsupportedError,
    ErrorKind.CORRUPT: CorruptDataError,
    ErrorKind.ALREADY_CLOSED: AlreadyClosedError,
    ErrorKind.NATIVE_INTERNAL: NativeInternalError,
}


def error_from_record(
    record: ErrorRecord,
    operation: str | None = None,
    *,
    path: Path | str | None = None,
) -> CziError:
    """Build the exception subclass matching ``record.kind``."""
    return _EXCEPTION_BY_KIND[record.kind](record, operation, path=path)


def make_error(
    kind: ErrorKind,
    detail: str,
    operation: str | None = None,
    *,
    code: int = NativeStatus.INVALID_ARGUMENT,
    path: Path | str | None = None,
) -> CziError:
    """Build an exception for a failure detected on the host side."""
    return error_from_record(
        ErrorRecord(code=int(code), kind=kind, detail=detail), operation, path=path
    )


def error_for_status(
    code: int,
    operation: str,
    *,
    lookup: Callable[[int], str | None] | None = None,
    stream_error: ErrorRecord | None = None,
    unspecified: ErrorKind = ErrorKind.NATIVE_INTERNAL,
    path: Path | str | None = None,
) -> CziError:
    """Build the exception for a failed native call.

    Args:
        code: Non-success status returned by the native call.
        operation: Name of the operation for the message.
        lookup: Native description lookup used for the lazy message.
        stream_error: Failure captured by a stream adapter during the call.
            It takes precedence: the native code only says the stream failed.
        unspecified: Classification for UnspecifiedError at this call site.
        path: Path of the document involved, if known.
    """
    if stream_error is not None:
        error = error_from_record(stream_error, operation, path=path)
        error.native_code = int(code)
        return error
    kind = unspecified if int(code) == NativeStatus.UNSPECIFIED_ERROR else None
    record = ErrorRecord.from_status(code, lookup, kind=kind)
    return error_from_record(record, operation, path=path)


def raise_for_status(
    code: int,
    operation: str,
    *,
    lookup: Callable[[int], str | None] | None = None,
    stream_error: ErrorRecord | None = None,
    unspecified: ErrorKind = ErrorKind.NATIVE_INTERNAL,
    path: Path | str | None = None,
) -> None:
    """Raise the translated error if ``code`` is a failure status."""
    if is_success(code):
        return
    raise error_for_status(
        code,
        operation,
        lookup=lookup,
        stream_error=stream_error,
        unspecified=unspecified,
        path=path,
    )
