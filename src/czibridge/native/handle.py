"""Owned wrappers around opaque libCZIApi object handles.

An :class:`OwnedHandle` pairs one native address with the release function
for its kind and calls that function exactly once. The address is only
reachable through :meth:`OwnedHandle.borrow`, for the duration of a single
native call; it is never handed out for long-lived aliasing.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, NoReturn

from czibridge.native.exceptions import ConcurrentUseError, error_for_status, make_error
from czibridge.native.interop import INVALID_HANDLE, ObjectHandle
from czibridge.native.status import ErrorKind, ErrorRecord, NativeStatus, is_success

if TYPE_CHECKING:
    from types import TracebackType

    from czibridge.native.library import NativeLibrary

logger = logging.getLogger(__name__)


class HandleKind(enum.Enum):
    """Kinds of native objects, each with its own release entry point."""

    INPUT_STREAM = "input_stream"
    OUTPUT_STREAM = "output_stream"
    READER = "reader"
    WRITER = "writer"
    SUB_BLOCK = "sub_block"
    BITMAP = "bitmap"
    METADATA_SEGMENT = "metadata_segment"
    ATTACHMENT = "attachment"

    @property
    def release_function(self) -> str:
        """Name of the NativeLibrary method that releases this kind."""
        return f"release_{self.value}"


class OwnedHandle:
    """Exclusive owner of one native object.

    Handles are movable (:meth:`transfer`) but never duplicable: the native
    API has no reference counting for these objects, so copying, deep
    copying and pickling are refused.

    Usage:
        handle = OwnedHandle.acquire(
            library, HandleKind.READER, "create reader", library.create_reader
        )
        with handle:
            with handle.borrow() as address:
                status = library.reader_open(address, open_info)
    """

    __slots__ = (
        "__weakref__",
        "_address",
        "_borrow_depth",
        "_borrow_thread",
        "_kind",
        "_library",
        "_lock",
    )

    def __init__(self, library: NativeLibrary, kind: HandleKind, address: int) -> None:
        if address == INVALID_HANDLE:
            raise ValueError("cannot own the invalid handle")
        self._library = library
        self._kind = kind
        self._address: int | None = address
        self._lock = threading.Lock()
        self._borrow_depth = 0
        self._borrow_thread: int | None = None

    @classmethod
    def acquire(
        cls,
        library: NativeLibrary,
        kind: HandleKind,
        operation: str,
        call: Callable[[ObjectHandle], int],
        *,
        unspecified: ErrorKind = ErrorKind.NATIVE_INTERNAL,
        missing: ErrorKind = ErrorKind.NATIVE_INTERNAL,
        stream_error: Callable[[], ErrorRecord | None] | None = None,
    ) -> OwnedHandle:
        """Run a native acquisition call and take ownership of its result.

        A handle is produced only when the call reports success and yields
        a non-null address; otherwise nothing is owned and an error is
        raised.

        Args:
            library: Native library the object belongs to.
            kind: Kind of the object, selecting its release function.
            operation: Name of the operation for error messages.
            call: Invokes the native entry point with the out-parameter.
            unspecified: Classification for UnspecifiedError at this site.
            missing: Classification when the call succeeds without an object
                (libCZIApi does this for absent sub-blocks and attachments).
            stream_error: Returns the failure a stream callback captured
                during the call, if any.

        Raises:
            CziError: If the call fails or produces no object.
        """
        out = ObjectHandle(INVALID_HANDLE)
        status = call(out)
        if not is_success(status):
            raise error_for_status(
                status,
                operation,
                lookup=library.describe_status,
                stream_error=stream_error() if stream_error else None,
                unspecified=unspecified,
            )
        if out.value == INVALID_HANDLE:
            raise make_error(
                missing,
                "native call succeeded without producing an object",
                operation,
                code=NativeStatus.INVALID_HANDLE,
            )
        handle = cls(library, kind, out.value)
        logger.debug("Acquired %s handle %#x (%s)", kind.value, out.value, operation)
        return handle

    @property
    def kind(self) -> HandleKind:
        return self._kind

    @property
    def library(self) -> NativeLibrary:
        return self._library

    @property
    def closed(self) -> bool:
        """True once the handle has been released or transferred."""
        return self._address is None

    @contextmanager
    def borrow(self) -> Iterator[int]:
        """Lend the raw address for one native call.

        Raises:
            AlreadyClosedError: If the handle was released or transferred.
            ConcurrentUseError: If another thread is mid-call on this handle.
        """
        address = self._enter_call()
        try:
            yield address
        finally:
            with self._lock:
                self._borrow_depth -= 1
                if self._borrow_depth == 0:
                    self._borrow_thread = None

    def _enter_call(self) -> int:
        ident = threading.get_ident()
        with self._lock:
            if self._address is None:
                self._raise_closed("use")
            if self._borrow_depth and self._borrow_thread != ident:
                raise ConcurrentUseError(
                    ErrorRecord(
                        code=NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED,
                        kind=ErrorKind.INVALID_ARGUMENT,
                        detail=f"{self._kind.value} handle is in use by another thread",
                    ),
                    f"use {self._kind.value}",
                )
            self._borrow_depth += 1
            self._borrow_thread = ident
            return self._address

    def _raise_closed(self, action: str) -> NoReturn:
        raise make_error(
            ErrorKind.ALREADY_CLOSED,
            f"{self._kind.value} handle has already been released",
            f"{action} {self._kind.value}",
            code=NativeStatus.INVALID_HANDLE,
        )

    def _take_address(self) -> int | None:
        with self._lock:
            if self._borrow_depth:
                # A release from inside a borrowed call is a defect in this layer.
                raise RuntimeError(
                    f"{self._kind.value} handle released while a native call is using it"
                )
            address, self._address = self._address, None
            return address

    def release(self) -> bool:
        """Release the native object.

        The handle is invalidated before the native release runs, so a
        second call is a no-op and never reaches the native library.

        Returns:
            True if this call released the object, False if it was already
            released or transferred.

        Raises:
            CziError: If the native release reports failure. The handle is
                invalidated regardless.
        """
        address = self._take_address()
        if address is None:
            return False
        release = getattr(self._library, self._kind.release_function)
        status = release(address)
        logger.debug("Released %s handle %#x", self._kind.value, address)
        if not is_success(status):
            raise error_for_status(
                status,
                f"release {self._kind.value}",
                lookup=self._library.describe_status,
            )
        return True

    def transfer(self) -> OwnedHandle:
        """Move ownership into a new handle and invalidate this one."""
        address = self._take_address()
        if address is None:
            self._raise_closed("transfer")
        return OwnedHandle(self._library, self._kind, address)

    def __copy__(self) -> NoReturn:
        raise TypeError("native handles cannot be copied; use transfer()")

    def __deepcopy__(self, memo: object) -> NoReturn:
        raise TypeError("native handles cannot be copied; use transfer()")

    def __reduce__(self) -> NoReturn:
        raise TypeError("native handles cannot be pickled")

    def __enter__(self) -> OwnedHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    def __del__(self) -> None:
        # Finalizers must not raise.
        try:
            if getattr(self, "_address", None) is not None:
                logger.warning(
                    "%s handle %#x was not released explicitly; releasing in finalizer",
                    self._kind.value,
                    self._address,
                )
                self.release()
        except Exception:
            logger.exception("Failed to release %s handle in finalizer", self._kind.value)

    def __repr__(self) -> str:
        state = "released" if self._address is None else f"{self._address:#x}"
        return f"OwnedHandle(kind={self._kind.value}, address={state})"
