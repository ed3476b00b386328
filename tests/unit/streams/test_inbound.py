"""Tests for czibridge.streams.inbound module."""

from __future__ import annotations

import ctypes
from pathlib import Path

import pytest
from fake_libczi import FILE_STREAM_CLASS, FakeLibCZI

from czibridge.czi.reader import CziReader
from czibridge.native.exceptions import (
    AlreadyClosedError,
    CorruptDataError,
    CziIOError,
    InvalidArgumentError,
    NativeInternalError,
)
from czibridge.native.interop import ExternalStreamErrorInfoInterop
from czibridge.native.status import ErrorKind, NativeStatus, StreamErrorCode
from czibridge.streams.inbound import InputStream, InputStreamAdapter
from czibridge.streams.sources import BytesSource


class FailingSource:
    """Source whose reads raise OSError."""

    def read_at(self, offset: int, length: int) -> bytes:
        raise OSError("device not ready")

    def size(self) -> int:
        return 1024


class GreedySource:
    """Source that returns more bytes than requested."""

    def read_at(self, offset: int, length: int) -> bytes:
        return b"x" * (length + 1)


class UnsizedSource:
    """Source that cannot report its size."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    def read_at(self, offset: int, length: int) -> bytes:
        return self._data[offset : offset + length]


def call_read(
    adapter: InputStreamAdapter, offset: int, size: int, *, token: int | None = None
) -> tuple[int, bytes, ExternalStreamErrorInfoInterop]:
    """Invoke the read trampoline the way the native library does."""
    buffer = ctypes.create_string_buffer(max(1, size))
    got = ctypes.c_uint64(999)
    error = ExternalStreamErrorInfoInterop()
    status = adapter.struct.read_function(
        adapter.token if token is None else token,
        0,
        offset,
        ctypes.addressof(buffer),
        size,
        ctypes.byref(got),
        ctypes.byref(error),
    )
    return status, buffer.raw[: got.value], error


class TestInputStreamAdapter:
    """Tests for read_at and size handling."""

    def test_read_at_clamps_to_size(self) -> None:
        """Test a request running past the end is shortened."""
        adapter = InputStreamAdapter(BytesSource(b"0123456789"))
        assert adapter.read_at(6, 100) == b"6789"
        assert adapter.read_at(10, 5) == b""

    def test_offset_beyond_size(self) -> None:
        """Test reading past the end of the source is reported as corrupt data."""
        adapter = InputStreamAdapter(BytesSource(b"0123"))
        with pytest.raises(CorruptDataError, match="beyond the end"):
            adapter.read_at(5, 1)

    def test_size_queried_once(self) -> None:
        """Test the source size is asked for only once."""
        calls: list[int] = []

        class CountingSource(BytesSource):
            def size(self) -> int:
                calls.append(1)
                return super().size()

        adapter = InputStreamAdapter(CountingSource(b"abcdef"))
        adapter.read_at(0, 2)
        adapter.read_at(2, 2)
        assert adapter.size == 6
        assert calls == [1]

    def test_unsized_source(self) -> None:
        """Test sources without size() pass short reads through."""
        adapter = InputStreamAdapter(UnsizedSource(b"abc"))
        assert adapter.size is None
        assert adapter.read_at(1, 10) == b"bc"

    def test_source_failure_is_io(self) -> None:
        """Test an OSError from the source becomes CziIOError."""
        adapter = InputStreamAdapter(FailingSource())
        with pytest.raises(CziIOError, match="device not ready"):
            adapter.read_at(0, 16)

    def test_over_delivery_is_io(self) -> None:
        """Test a source returning too much data is rejected."""
        adapter = InputStreamAdapter(GreedySource())
        with pytest.raises(CziIOError, match="returned"):
            adapter.read_at(0, 4)

    def test_detached_source(self) -> None:
        """Test reads after detach report ALREADY_CLOSED."""
        adapter = InputStreamAdapter(BytesSource(b"abc"))
        adapter.detach()
        assert not adapter.attached
        with pytest.raises(AlreadyClosedError):
            adapter.read_at(0, 1)


class TestReadTrampoline:
    """Tests for the C callback."""

    def test_successful_read(self) -> None:
        """Test the buffer and byte count are filled in."""
        adapter = InputStreamAdapter(BytesSource(b"hello world"))
        status, data, _ = call_read(adapter, 6, 5)
        assert status == StreamErrorCode.OK
        assert data == b"world"
        assert adapter.take_error() is None

    def test_short_read_reports_actual_count(self) -> None:
        """Test a read at the end reports fewer bytes than requested."""
        adapter = InputStreamAdapter(BytesSource(b"abc"))
        status, data, _ = call_read(adapter, 1, 10)
        assert status == StreamErrorCode.OK
        assert data == b"bc"

    def test_failure_sets_error_info(self) -> None:
        """Test a failing source fills the error struct and zero bytes."""
        adapter = InputStreamAdapter(FailingSource())
        status, data, error = call_read(adapter, 0, 8)
        assert status == StreamErrorCode.UNSPECIFIED
        assert data == b""
        assert error.error_code == StreamErrorCode.UNSPECIFIED
        assert error.error_message == 0
        record = adapter.take_error()
        assert record is not None
        assert record.kind is ErrorKind.IO
        assert adapter.take_error() is None

    def test_detached_callback(self) -> None:
        """Test a callback after detach fails as ALREADY_CLOSED."""
        adapter = InputStreamAdapter(BytesSource(b"abc"))
        adapter.detach()
        status, _, _ = call_read(adapter, 0, 1)
        assert status == StreamErrorCode.UNSPECIFIED
        record = adapter.take_error()
        assert record is not None
        assert record.kind is ErrorKind.ALREADY_CLOSED

    def test_foreign_token(self) -> None:
        """Test a callback with another stream's context is rejected."""
        adapter = InputStreamAdapter(BytesSource(b"abc"))
        other = InputStreamAdapter(BytesSource(b"xyz"))
        status, data, _ = call_read(adapter, 0, 3, token=other.token)
        assert status == StreamErrorCode.UNSPECIFIED
        assert data == b""
        record = adapter.take_error()
        assert record is not None
        assert record.kind is ErrorKind.INVALID_ARGUMENT

    def test_unexpected_exception_contained(self) -> None:
        """Test arbitrary exceptions never cross the callback."""

        class Broken:
            def read_at(self, offset: int, length: int) -> bytes:
                raise ZeroDivisionError("oops")

        adapter = InputStreamAdapter(Broken())
        status, _, _ = call_read(adapter, 0, 4)
        assert status == StreamErrorCode.UNSPECIFIED
        record = adapter.take_error()
        assert record is not None
        assert "oops" in record.message


class TestInputStream:
    """Tests for InputStream construction and release."""

    def test_from_source_and_close(self, fake_lib: FakeLibCZI) -> None:
        """Test an external stream is created and released cleanly."""
        stream = InputStream.from_source(b"data", library=fake_lib)
        assert stream.adapter is not None
        assert not stream.closed
        stream.close()
        assert stream.closed
        assert not stream.adapter.attached
        assert stream.adapter.native_closed
        fake_lib.assert_clean()

    def test_from_source_failure_detaches(self, fake_lib: FakeLibCZI) -> None:
        """Test a failed creation owns nothing."""
        fake_lib.fail_next("create_input_stream_from_external", NativeStatus.OUT_OF_MEMORY)
        with pytest.raises(NativeInternalError):
            InputStream.from_source(b"data", library=fake_lib)
        assert fake_lib.acquired == []

    def test_from_path(self, fake_lib: FakeLibCZI, tmp_path: Path) -> None:
        """Test a native file stream has no adapter."""
        path = tmp_path / "image.czi"
        path.write_bytes(b"content")
        with InputStream.from_path(path, library=fake_lib) as stream:
            assert stream.adapter is None
            assert stream.take_error() is None
        fake_lib.assert_clean()

    def test_from_missing_path(self, fake_lib: FakeLibCZI, tmp_path: Path) -> None:
        """Test a missing file is an I/O error and reaches no native call."""
        with pytest.raises(CziIOError, match="file not found"):
            InputStream.from_path(tmp_path / "missing.czi", library=fake_lib)
        assert fake_lib.calls == []

    def test_native_file_open_failure_is_io(self, fake_lib: FakeLibCZI, tmp_path: Path) -> None:
        """Test an unspecified native failure opening a file is classified as IO."""
        path = tmp_path / "image.czi"
        path.write_bytes(b"content")
        fake_lib.fail_next("create_input_stream_from_file")
        with pytest.raises(CziIOError):
            InputStream.from_path(path, library=fake_lib)


class TestInputStreamFromClass:
    """Tests for streams implemented by libCZI stream classes."""

    def test_file_class_opens_document(
        self, fake_lib: FakeLibCZI, tmp_path: Path, sample_container: bytes
    ) -> None:
        """Test a stream created by class name can back a reader."""
        path = tmp_path / "image.czi"
        path.write_bytes(sample_container)
        stream = InputStream.from_class(
            FILE_STREAM_CLASS, str(path), {"timeout": 5}, library=fake_lib
        )
        assert stream.adapter is None
        with CziReader.open(stream) as reader:
            assert reader.sub_block_count() == 3
        stream.close()
        assert fake_lib.stream_properties == [{"timeout": 5}]
        fake_lib.assert_clean()

    def test_properties_default_to_empty_object(
        self, fake_lib: FakeLibCZI, tmp_path: Path
    ) -> None:
        """Test omitted properties are sent as an empty JSON object."""
        path = tmp_path / "image.czi"
        path.write_bytes(b"content")
        InputStream.from_class(FILE_STREAM_CLASS, str(path), library=fake_lib).close()
        assert fake_lib.stream_properties == [{}]

    def test_unknown_class_is_invalid_argument(self, fake_lib: FakeLibCZI) -> None:
        """Test libCZI's rejection of the class name is reported as such."""
        with pytest.raises(InvalidArgumentError, match="create nosuch input stream"):
            InputStream.from_class("nosuch", "anything", library=fake_lib)
        assert fake_lib.acquired == []

    def test_unserializable_properties(self, fake_lib: FakeLibCZI) -> None:
        """Test properties that cannot become JSON never reach the native side."""
        with pytest.raises(InvalidArgumentError, match="properties"):
            InputStream.from_class(
                FILE_STREAM_CLASS, "x.czi", {"callback": object()}, library=fake_lib
            )
        assert fake_lib.calls == []

    def test_open_failure_is_io(self, fake_lib: FakeLibCZI) -> None:
        """Test a class that cannot reach its target reports an I/O error."""
        with pytest.raises(CziIOError):
            InputStream.from_class(
                "curl_http_inputstream", "https://example.invalid/a.czi", library=fake_lib
            )
        fake_lib.assert_clean()
