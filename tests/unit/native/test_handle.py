"""Tests for czibridge.native.handle module."""

from __future__ import annotations

import copy
import pickle
import threading

import pytest
from fake_libczi import FakeLibCZI

from czibridge.native.exceptions import (
    AlreadyClosedError,
    ConcurrentUseError,
    CorruptDataError,
    CziError,
    CziIOError,
    InvalidArgumentError,
    NativeInternalError,
)
from czibridge.native.handle import HandleKind, OwnedHandle
from czibridge.native.status import ErrorKind, ErrorRecord, NativeStatus


def _reader_handle(fake_lib: FakeLibCZI) -> OwnedHandle:
    return OwnedHandle.acquire(fake_lib, HandleKind.READER, "create reader", fake_lib.create_reader)


class TestAcquire:
    """Tests for OwnedHandle.acquire."""

    def test_success_owns_address(self, fake_lib: FakeLibCZI) -> None:
        """Test a successful call yields an open handle of the right kind."""
        handle = _reader_handle(fake_lib)
        assert handle.kind is HandleKind.READER
        assert not handle.closed
        assert fake_lib.live_handles() == [("reader", fake_lib.acquired[0][1])]
        handle.release()
        fake_lib.assert_clean()

    def test_failure_owns_nothing(self, fake_lib: FakeLibCZI) -> None:
        """Test a failed call produces no handle and nothing to release."""
        fake_lib.fail_next("create_reader", NativeStatus.OUT_OF_MEMORY)
        with pytest.raises(NativeInternalError):
            _reader_handle(fake_lib)
        assert fake_lib.acquired == []

    def test_unspecified_classification(self, fake_lib: FakeLibCZI) -> None:
        """Test the call site's classification applies to unspecified failures."""
        fake_lib.fail_next("create_reader")
        with pytest.raises(CorruptDataError):
            OwnedHandle.acquire(
                fake_lib,
                HandleKind.READER,
                "create reader",
                fake_lib.create_reader,
                unspecified=ErrorKind.CORRUPT,
            )

    def test_success_without_object(self, fake_lib: FakeLibCZI) -> None:
        """Test a successful call that leaves the out-parameter null."""
        with pytest.raises(InvalidArgumentError):
            OwnedHandle.acquire(
                fake_lib,
                HandleKind.SUB_BLOCK,
                "read sub-block",
                lambda out: 0,
                missing=ErrorKind.INVALID_ARGUMENT,
            )

    def test_stream_error_collected(self, fake_lib: FakeLibCZI) -> None:
        """Test a callback failure recorded during the call becomes the error."""
        captured = ErrorRecord(code=1, kind=ErrorKind.IO, detail="source failed")
        fake_lib.fail_next("create_reader")
        with pytest.raises(CziIOError) as exc_info:
            OwnedHandle.acquire(
                fake_lib,
                HandleKind.READER,
                "create reader",
                fake_lib.create_reader,
                stream_error=lambda: captured,
            )
        assert exc_info.value.record is captured

    def test_invalid_address_rejected(self, fake_lib: FakeLibCZI) -> None:
        """Test the null handle cannot be owned."""
        with pytest.raises(ValueError, match="invalid handle"):
            OwnedHandle(fake_lib, HandleKind.READER, 0)


class TestRelease:
    """Tests for releasing handles."""

    def test_release_exactly_once(self, fake_lib: FakeLibCZI) -> None:
        """Test the first release reaches the library, the second does not."""
        handle = _reader_handle(fake_lib)
        assert handle.release() is True
        assert handle.release() is False
        assert fake_lib.calls.count("release_reader") == 1
        fake_lib.assert_clean()

    def test_context_manager_releases(self, fake_lib: FakeLibCZI) -> None:
        """Test leaving the with block releases the object."""
        with _reader_handle(fake_lib) as handle:
            assert not handle.closed
        assert handle.closed
        fake_lib.assert_clean()

    def test_failed_release_still_invalidates(self, fake_lib: FakeLibCZI) -> None:
        """Test a native release failure raises but the handle is spent."""
        handle = _reader_handle(fake_lib)
        fake_lib.fail_next("release_reader", NativeStatus.INVALID_HANDLE)
        with pytest.raises(AlreadyClosedError):
            handle.release()
        assert handle.closed
        assert handle.release() is False

    def test_borrow_after_release(self, fake_lib: FakeLibCZI) -> None:
        """Test using a released handle raises AlreadyClosedError."""
        handle = _reader_handle(fake_lib)
        handle.release()
        with pytest.raises(AlreadyClosedError), handle.borrow():
            pass

    def test_release_inside_borrow_refused(self, fake_lib: FakeLibCZI) -> None:
        """Test the address cannot be freed while a call is using it."""
        handle = _reader_handle(fake_lib)
        with handle.borrow(), pytest.raises(RuntimeError):
            handle.release()
        handle.release()
        fake_lib.assert_clean()

    def test_finalizer_releases(self, fake_lib: FakeLibCZI) -> None:
        """Test an abandoned handle is released when collected."""
        handle = _reader_handle(fake_lib)
        del handle
        assert fake_lib.live_handles() == []


class TestOwnership:
    """Tests for move-only semantics."""

    def test_copy_refused(self, fake_lib: FakeLibCZI) -> None:
        """Test shallow and deep copies are refused."""
        with _reader_handle(fake_lib) as handle:
            with pytest.raises(TypeError):
                copy.copy(handle)
            with pytest.raises(TypeError):
                copy.deepcopy(handle)

    def test_pickle_refused(self, fake_lib: FakeLibCZI) -> None:
        """Test handles cannot be serialised."""
        with _reader_handle(fake_lib) as handle, pytest.raises(TypeError):
            pickle.dumps(handle)

    def test_transfer_moves_ownership(self, fake_lib: FakeLibCZI) -> None:
        """Test transfer invalidates the source and keeps one owner."""
        original = _reader_handle(fake_lib)
        moved = original.transfer()
        assert original.closed
        assert not moved.closed
        assert original.release() is False
        moved.release()
        fake_lib.assert_clean()

    def test_transfer_after_release(self, fake_lib: FakeLibCZI) -> None:
        """Test a spent handle cannot be transferred."""
        handle = _reader_handle(fake_lib)
        handle.release()
        with pytest.raises(AlreadyClosedError):
            handle.transfer()


class TestBorrow:
    """Tests for lending the address to native calls."""

    def test_nested_borrow_same_thread(self, fake_lib: FakeLibCZI) -> None:
        """Test re-entrant borrows from one thread are allowed."""
        with _reader_handle(fake_lib) as handle:
            with handle.borrow() as outer, handle.borrow() as inner:
                assert outer == inner

    def test_concurrent_borrow_rejected(self, fake_lib: FakeLibCZI) -> None:
        """Test a second thread cannot use a handle mid-call."""
        handle = _reader_handle(fake_lib)
        entered = threading.Event()
        finish = threading.Event()

        def hold() -> None:
            with handle.borrow():
                entered.set()
                finish.wait(timeout=5)

        worker = threading.Thread(target=hold)
        worker.start()
        try:
            assert entered.wait(timeout=5)
            with pytest.raises(ConcurrentUseError) as exc_info, handle.borrow():
                pass
        finally:
            finish.set()
            worker.join()
        error = exc_info.value
        assert isinstance(error, InvalidArgumentError)
        assert isinstance(error, CziError)
        assert error.code == NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED
        assert error.kind is ErrorKind.INVALID_ARGUMENT
        with handle.borrow():
            pass
        handle.release()

    def test_repr_shows_state(self, fake_lib: FakeLibCZI) -> None:
        """Test repr reports released handles."""
        handle = _reader_handle(fake_lib)
        handle.release()
        assert "released" in repr(handle)
