"""Status-code translation for libCZIApi results.

Every native entry point returns an ``int32`` status. This module turns those
integers into a coarse :class:`ErrorKind` and a structured
:class:`ErrorRecord`, so no raw code crosses into wrapper-level APIs.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import cached_property

logger = logging.getLogger(__name__)


class NativeStatus(enum.IntEnum):
    """Status codes returned by libCZIApi entry points."""

    OK = 0
    INVALID_ARGUMENT = 1
    INVALID_HANDLE = 2
    OUT_OF_MEMORY = 3
    INDEX_OUT_OF_RANGE = 4
    LOCK_UNLOCK_SEMANTIC_VIOLATED = 20
    UNSPECIFIED_ERROR = 50


class StreamErrorCode(enum.IntEnum):
    """Codes written into ``ExternalStreamErrorInfo`` by stream callbacks."""

    OK = 0
    UNSPECIFIED = 1


class ErrorKind(enum.Enum):
    """Coarse classification of every failure this layer can report."""

    IO = "io"
    INVALID_ARGUMENT = "invalid_argument"
    UNSUPPORTED = "unsupported"
    CORRUPT = "corrupt"
    NATIVE_INTERNAL = "native_internal"
    ALREADY_CLOSED = "already_closed"


_KIND_BY_STATUS: dict[int, ErrorKind] = {
    NativeStatus.INVALID_ARGUMENT: ErrorKind.INVALID_ARGUMENT,
    NativeStatus.INVALID_HANDLE: ErrorKind.ALREADY_CLOSED,
    NativeStatus.OUT_OF_MEMORY: ErrorKind.NATIVE_INTERNAL,
    NativeStatus.INDEX_OUT_OF_RANGE: ErrorKind.INVALID_ARGUMENT,
    NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED: ErrorKind.NATIVE_INTERNAL,
    NativeStatus.UNSPECIFIED_ERROR: ErrorKind.NATIVE_INTERNAL,
}

GENERIC_MESSAGE = "native status {code}"


def is_success(code: int) -> bool:
    """Return True for status values libCZIApi documents as success (<= 0)."""
    return code <= 0


def translate(code: int) -> ErrorKind:
    """Map a native status value to its ErrorKind.

    The mapping is total: codes the table does not know (including values
    a newer native library may introduce) classify as NATIVE_INTERNAL.
    """
    return _KIND_BY_STATUS.get(int(code), ErrorKind.NATIVE_INTERNAL)


def message_for(code: int, lookup: Callable[[int], str | None] | None = None) -> str:
    """Return a best-effort human-readable message for a native status.

    Args:
        code: Native status value.
        lookup: Native description lookup (``NativeLibrary.describe_status``).

    Returns:
        The native description, or a generic message when the lookup is
        unavailable, returns nothing, or fails.
    """
    if lookup is not None:
        try:
            message = lookup(code)
        except Exception:  # the lookup must never fail the caller's operation
            logger.debug("Status lookup failed for code %d", code, exc_info=True)
        else:
            if message:
                return message
    return GENERIC_MESSAGE.format(code=code)


@dataclass(frozen=True)
class ErrorRecord:
    """A failure reported by the native library or a stream callback.

    Attributes:
        code: Native status value (or stream error code for callback failures).
        kind: Coarse classification of the failure.
        detail: Message known at the point of failure, if any. When absent,
            :attr:`message` asks the native library lazily.
    """

    code: int
    kind: ErrorKind
    detail: str | None = None
    lookup: Callable[[int], str | None] | None = field(
        default=None, repr=False, compare=False
    )

    @classmethod
    def from_status(
        cls,
        code: int,
        lookup: Callable[[int], str | None] | None = None,
        *,
        kind: ErrorKind | None = None,
    ) -> ErrorRecord:
        """Build a record for a failed native status."""
        return cls(code=int(code), kind=kind or translate(code), lookup=lookup)

    @cached_property
    def message(self) -> str:
        """Human-readable message, looked up on first access."""
        if self.detail:
            return self.detail
        return message_for(self.code, self.lookup)
