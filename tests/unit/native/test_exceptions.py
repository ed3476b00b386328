"""Unit tests for czibridge exceptions."""

from __future__ import annotations

from pathlib import Path

import pytest

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
    error_from_record,
    make_error,
    raise_for_status,
)
from czibridge.native.status import ErrorKind, ErrorRecord, NativeStatus


class TestCziError:
    """Tests for the base CziError class."""

    def test_message_includes_kind_and_code(self) -> None:
        """Test the formatted message carries the classification."""
        error = CziError(ErrorRecord(code=1, kind=ErrorKind.INVALID_ARGUMENT, detail="bad"))
        assert str(error) == "bad (kind=invalid_argument, code=1)"
        assert error.message == "bad"
        assert error.code == 1
        assert error.path is None

    def test_operation_and_path_context(self) -> None:
        """Test operation prefix and path suffix."""
        error = CziError(
            ErrorRecord(code=50, kind=ErrorKind.CORRUPT, detail="bad header"),
            "open reader",
            path="/data/image.czi",
        )
        assert str(error).startswith("open reader: bad header")
        assert "path=/data/image.czi" in str(error)
        assert error.path == Path("/data/image.czi")

    def test_lazy_native_message(self) -> None:
        """Test a record without detail asks the library for the message."""
        record = ErrorRecord.from_status(4, lambda code: "The supplied index was out of range.")
        error = CziError(record, "read sub-block 9")
        assert "The supplied index was out of range." in str(error)


class TestErrorFromRecord:
    """Tests for choosing the exception subclass."""

    @pytest.mark.parametrize(
        ("kind", "cls"),
        [
            (ErrorKind.IO, CziIOError),
            (ErrorKind.INVALID_ARGUMENT, InvalidArgumentError),
            (ErrorKind.UNSUPPORTED, UnsupportedError),
            (ErrorKind.CORRUPT, CorruptDataError),
            (ErrorKind.ALREADY_CLOSED, AlreadyClosedError),
            (ErrorKind.NATIVE_INTERNAL, NativeInternalError),
        ],
    )
    def test_subclass_per_kind(self, kind: ErrorKind, cls: type[CziError]) -> None:
        """Test every kind has its own exception type."""
        error = error_from_record(ErrorRecord(code=1, kind=kind, detail="x"))
        assert type(error) is cls
        assert error.kind is kind
        assert isinstance(error, CziError)

    def test_library_load_error_is_native_internal(self) -> None:
        """Test load failures are catchable as NativeInternalError."""
        error = LibraryLoadError(
            ErrorRecord(code=50, kind=ErrorKind.NATIVE_INTERNAL, detail="cannot load")
        )
        assert isinstance(error, NativeInternalError)

    def test_concurrent_use_error_is_invalid_argument(self) -> None:
        """Test thread-confinement violations stay inside the CziError taxonomy."""
        error = ConcurrentUseError(
            ErrorRecord(
                code=NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED,
                kind=ErrorKind.INVALID_ARGUMENT,
                detail="reader handle is in use by another thread",
            ),
            "use reader",
        )
        assert isinstance(error, InvalidArgumentError)
        assert error.kind is ErrorKind.INVALID_ARGUMENT
        assert error.code == 20
        assert "in use by another thread" in str(error)


class TestMakeError:
    """Tests for host-side errors."""

    def test_defaults_to_invalid_argument_code(self) -> None:
        """Test host-side errors use the INVALID_ARGUMENT status by default."""
        error = make_error(ErrorKind.UNSUPPORTED, "no codec", "decode sub-block")
        assert isinstance(error, UnsupportedError)
        assert error.code == NativeStatus.INVALID_ARGUMENT
        assert "decode sub-block: no codec" in str(error)


class TestErrorForStatus:
    """Tests for translating failed native calls."""

    def test_status_translated(self) -> None:
        """Test the kind follows the status table."""
        error = error_for_status(NativeStatus.INVALID_HANDLE, "use reader")
        assert isinstance(error, AlreadyClosedError)

    def test_unspecified_uses_call_site_kind(self) -> None:
        """Test an unspecified failure takes the call site's classification."""
        error = error_for_status(
            NativeStatus.UNSPECIFIED_ERROR, "open reader", unspecified=ErrorKind.CORRUPT
        )
        assert isinstance(error, CorruptDataError)

    def test_call_site_kind_only_for_unspecified(self) -> None:
        """Test documented statuses keep their own kind."""
        error = error_for_status(
            NativeStatus.INDEX_OUT_OF_RANGE, "read", unspecified=ErrorKind.CORRUPT
        )
        assert isinstance(error, InvalidArgumentError)

    def test_stream_error_takes_precedence(self) -> None:
        """Test a captured callback failure replaces the native status."""
        captured = ErrorRecord(code=1, kind=ErrorKind.IO, detail="disk unplugged")
        error = error_for_status(
            NativeStatus.UNSPECIFIED_ERROR,
            "open reader",
            stream_error=captured,
            unspecified=ErrorKind.CORRUPT,
        )
        assert isinstance(error, CziIOError)
        assert error.record is captured
        assert error.native_code == NativeStatus.UNSPECIFIED_ERROR


class TestRaiseForStatus:
    """Tests for raise_for_status."""

    def test_success_does_not_raise(self) -> None:
        """Test OK passes through."""
        raise_for_status(0, "anything")

    def test_failure_raises(self) -> None:
        """Test a failure raises with the operation in the message."""
        with pytest.raises(InvalidArgumentError, match="get attachment info"):
            raise_for_status(NativeStatus.INVALID_ARGUMENT, "get attachment info")
