"""Tests for czibridge.native.status module."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from czibridge.native.status import (
    GENERIC_MESSAGE,
    ErrorKind,
    ErrorRecord,
    NativeStatus,
    is_success,
    message_for,
    translate,
)


class TestTranslate:
    """Tests for status-to-kind translation."""

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (NativeStatus.INVALID_ARGUMENT, ErrorKind.INVALID_ARGUMENT),
            (NativeStatus.INVALID_HANDLE, ErrorKind.ALREADY_CLOSED),
            (NativeStatus.OUT_OF_MEMORY, ErrorKind.NATIVE_INTERNAL),
            (NativeStatus.INDEX_OUT_OF_RANGE, ErrorKind.INVALID_ARGUMENT),
            (NativeStatus.LOCK_UNLOCK_SEMANTIC_VIOLATED, ErrorKind.NATIVE_INTERNAL),
            (NativeStatus.UNSPECIFIED_ERROR, ErrorKind.NATIVE_INTERNAL),
        ],
    )
    def test_documented_codes(self, status: NativeStatus, kind: ErrorKind) -> None:
        """Test each documented status maps to its kind."""
        assert translate(status) is kind

    @given(st.integers(min_value=-(2**31), max_value=2**31 - 1))
    def test_translation_is_total(self, code: int) -> None:
        """Test any int32 maps to some ErrorKind without raising."""
        assert isinstance(translate(code), ErrorKind)

    def test_unknown_code_is_native_internal(self) -> None:
        """Test codes a newer library might add fall back to NATIVE_INTERNAL."""
        assert translate(12345) is ErrorKind.NATIVE_INTERNAL


class TestIsSuccess:
    """Tests for the success predicate."""

    def test_zero_and_negative_are_success(self) -> None:
        """Test OK and negative warnings count as success."""
        assert is_success(0)
        assert is_success(-1)

    def test_positive_is_failure(self) -> None:
        """Test positive codes are failures."""
        assert not is_success(NativeStatus.INVALID_ARGUMENT)


class TestMessageFor:
    """Tests for best-effort messages."""

    def test_lookup_message_used(self) -> None:
        """Test the native description is returned when available."""
        assert message_for(1, lambda code: f"described {code}") == "described 1"

    def test_no_lookup_gives_generic_message(self) -> None:
        """Test the generic fallback without a lookup."""
        assert message_for(50) == GENERIC_MESSAGE.format(code=50)

    def test_empty_lookup_gives_generic_message(self) -> None:
        """Test a lookup returning None falls back."""
        assert message_for(7, lambda code: None) == "native status 7"

    def test_failing_lookup_gives_generic_message(self) -> None:
        """Test a lookup that raises never propagates."""

        def broken(code: int) -> str:
            raise RuntimeError("lookup crashed")

        assert message_for(3, broken) == "native status 3"


class TestErrorRecord:
    """Tests for ErrorRecord."""

    def test_from_status_translates_kind(self) -> None:
        """Test the kind is derived from the status."""
        record = ErrorRecord.from_status(NativeStatus.INDEX_OUT_OF_RANGE)
        assert record.code == 4
        assert record.kind is ErrorKind.INVALID_ARGUMENT

    def test_from_status_kind_override(self) -> None:
        """Test a call site can classify an unspecified failure."""
        record = ErrorRecord.from_status(NativeStatus.UNSPECIFIED_ERROR, kind=ErrorKind.CORRUPT)
        assert record.kind is ErrorKind.CORRUPT

    def test_detail_wins_over_lookup(self) -> None:
        """Test a known detail is reported without asking the library."""
        calls: list[int] = []

        def lookup(code: int) -> str:
            calls.append(code)
            return "from library"

        record = ErrorRecord(code=1, kind=ErrorKind.IO, detail="disk gone", lookup=lookup)
        assert record.message == "disk gone"
        assert calls == []

    def test_message_looked_up_once(self) -> None:
        """Test the lazy message is computed on first access only."""
        calls: list[int] = []

        def lookup(code: int) -> str:
            calls.append(code)
            return "described"

        record = ErrorRecord.from_status(2, lookup)
        assert record.message == "described"
        assert record.message == "described"
        assert calls == [2]

    def test_lookup_not_part_of_equality(self) -> None:
        """Test records compare by code, kind and detail."""
        a = ErrorRecord.from_status(1, lambda c: "a")
        b = ErrorRecord.from_status(1, lambda c: "b")
        assert a == b
