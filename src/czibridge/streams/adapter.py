"""Shared machinery for the native stream bridge.

A :class:`StreamAdapter` is the host-side object the native library calls
back into. It owns the ctypes trampolines, a lock serialising access to the
caller's I/O object, and a last-error slot. A failing callback stores its
:class:`ErrorRecord` there and returns a stream error code, so no exception
ever crosses the ABI; the wrapper that made the native call collects the
record with :meth:`StreamAdapter.take_error`.

A :class:`NativeStream` owns the native stream handle together with its
adapter and counts the readers/writers built on top of it. Closing a stream
that still has dependents is deferred until the last one detaches.
"""

from __future__ import annotations

import ctypes
import itertools
import logging
import threading
from typing import TYPE_CHECKING

from czibridge.native.exceptions import make_error
from czibridge.native.interop import (
    ExternalStreamErrorInfoInterop,
    StreamCloseFunction,
)
from czibridge.native.status import ErrorKind, ErrorRecord, NativeStatus, StreamErrorCode

if TYPE_CHECKING:
    from types import TracebackType

    from czibridge.native.handle import OwnedHandle
    from czibridge.native.library import NativeLibrary

logger = logging.getLogger(__name__)

_ErrorInfoPointer = "ctypes._Pointer[ExternalStreamErrorInfoInterop]"


class StreamAdapter:
    """Trampoline state shared by the inbound and outbound adapters.

    ``opaque_handle1`` of the native struct carries :attr:`token`; a
    callback presenting any other value is rejected.
    """

    _tokens = itertools.count(1)

    def __init__(self, target: object) -> None:
        self._target: object | None = target
        self._token = next(StreamAdapter._tokens)
        self._lock = threading.RLock()
        self._last_error: ErrorRecord | None = None
        self._native_closed = False
        self._close_cb = StreamCloseFunction(self._on_native_close)

    @property
    def token(self) -> int:
        return self._token

    @property
    def attached(self) -> bool:
        """True while the caller's I/O object is still reachable."""
        return self._target is not None

    @property
    def native_closed(self) -> bool:
        """True once the native side has invoked ``close_function``."""
        return self._native_closed

    def detach(self) -> None:
        """Drop the caller's I/O object; later callbacks fail as ALREADY_CLOSED."""
        with self._lock:
            self._target = None

    def take_error(self) -> ErrorRecord | None:
        """Return and clear the failure captured by the last failing callback."""
        with self._lock:
            record, self._last_error = self._last_error, None
            return record

    def _require_target(self, operation: str) -> object:
        target = self._target
        if target is None:
            raise make_error(
                ErrorKind.ALREADY_CLOSED,
                "the caller's I/O object has been released",
                operation,
                code=StreamErrorCode.UNSPECIFIED,
            )
        return target

    def _check_token(self, opaque_handle1: int, operation: str) -> None:
        if opaque_handle1 != self._token:
            raise make_error(
                ErrorKind.INVALID_ARGUMENT,
                f"callback context {opaque_handle1:#x} does not belong to this stream",
                operation,
                code=StreamErrorCode.UNSPECIFIED,
            )

    def _fail(self, record: ErrorRecord, error_info: _ErrorInfoPointer) -> int:
        with self._lock:
            self._last_error = record
        if error_info:
            error_info[0].error_code = StreamErrorCode.UNSPECIFIED
            error_info[0].error_message = 0
        logger.debug("Stream callback failed: %s (%s)", record.message, record.kind.value)
        return StreamErrorCode.UNSPECIFIED

    def _on_native_close(self, opaque_handle1: int, opaque_handle2: int) -> None:
        _ = opaque_handle2
        if opaque_handle1 != self._token:
            logger.warning("Ignoring close callback with foreign context %#x", opaque_handle1)
            return
        self._native_closed = True
        logger.debug("Native side closed stream adapter %d", self._token)


def unexpected_failure(kind: ErrorKind, detail: str) -> ErrorRecord:
    """Record for an exception raised by the caller's I/O object."""
    return ErrorRecord(code=StreamErrorCode.UNSPECIFIED, kind=kind, detail=detail)


class NativeStream:
    """A native stream handle plus the adapter serving its callbacks.

    Release order is strict: the native stream is released first (the
    native side may still call back until then), and only afterwards is
    the caller's I/O object detached from the adapter.
    """

    def __init__(self, handle: OwnedHandle, adapter: StreamAdapter | None) -> None:
        self._handle = handle
        self._adapter = adapter
        self._dependents = 0
        self._close_requested = False
        self._state_lock = threading.Lock()

    @property
    def handle(self) -> OwnedHandle:
        return self._handle

    @property
    def library(self) -> NativeLibrary:
        return self._handle.library

    @property
    def adapter(self) -> StreamAdapter | None:
        """The callback adapter, or None for native file streams."""
        return self._adapter

    @property
    def closed(self) -> bool:
        return self._handle.closed

    @property
    def dependents(self) -> int:
        return self._dependents

    def take_error(self) -> ErrorRecord | None:
        """Collect a failure captured by a callback during the last call."""
        return self._adapter.take_error() if self._adapter is not None else None

    def attach(self, dependent: str) -> None:
        """Register a reader/writer that will use this stream.

        Raises:
            AlreadyClosedError: If the stream is closed or closing.
        """
        with self._state_lock:
            if self._handle.closed or self._close_requested:
                raise make_error(
                    ErrorKind.ALREADY_CLOSED,
                    "stream has been closed",
                    f"attach {dependent}",
                    code=NativeStatus.INVALID_HANDLE,
                )
            self._dependents += 1

    def detach(self) -> None:
        """Unregister a dependent; completes a deferred close on the last one."""
        with self._state_lock:
            self._dependents = max(0, self._dependents - 1)
            release_now = self._dependents == 0 and self._close_requested
        if release_now:
            self._release()

    def close(self) -> None:
        """Release the stream, or defer until all dependents have detached."""
        with self._state_lock:
            if self._handle.closed:
                return
            if self._dependents:
                self._close_requested = True
                logger.debug(
                    "Deferring close of %s: %d dependent(s) alive",
                    self._handle.kind.value,
                    self._dependents,
                )
                return
        self._release()

    def _release(self) -> None:
        try:
            self._handle.release()
        finally:
            if self._adapter is not None:
                if not self._adapter.native_closed:
                    logger.warning(
                        "Native side still references %s after release",
                        self._handle.kind.value,
                    )
                self._adapter.detach()

    def __enter__(self) -> NativeStream:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __del__(self) -> None:
        # Release while the adapter is still alive; attribute teardown order
        # would otherwise be arbitrary.
        try:
            handle = getattr(self, "_handle", None)
            if handle is not None and not handle.closed:
                logger.warning("%s was not closed explicitly", handle.kind.value)
                self._release()
        except Exception:
            logger.exception("Failed to release stream in finalizer")
