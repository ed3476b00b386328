"""Tests for czibridge.utils.logging module."""

from __future__ import annotations

import io
import json
import logging

import pytest

from czibridge.native.exceptions import make_error
from czibridge.native.status import ErrorKind
from czibridge.utils.logging import (
    clear_correlation_context,
    configure_logging,
    get_logger,
    set_correlation_context,
)


def _read_last_json_log_line(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    captured = capsys.readouterr()
    assert captured.out == "", "Log output must not reach stdout"
    lines = [line for line in captured.err.splitlines() if line.strip()]
    assert lines, "Expected at least one log line on stderr"
    return json.loads(lines[-1])


def test_configure_logging_sets_root_level() -> None:
    configure_logging(level="WARNING", log_format="console")
    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_default_settings_do_not_error() -> None:
    configure_logging()


def test_get_logger_returns_logger_proxy() -> None:
    configure_logging(level="DEBUG", log_format="console")
    logger = get_logger("test.module")
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")


def test_json_log_is_valid_and_contains_correlation_ids(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(level="INFO", log_format="json")
    set_correlation_context(document="/data/plate_01.czi", command="info")

    logger = get_logger("test.json")
    logger.info("hello", foo="bar")
    payload = _read_last_json_log_line(capsys)

    assert payload["event"] == "hello"
    assert payload["foo"] == "bar"
    assert payload["document"] == "/data/plate_01.czi"
    assert payload["command"] == "info"
    assert payload["level"] == "info"
    assert payload["logger"] == "test.json"
    assert "timestamp" in payload


def test_json_log_omits_correlation_ids_when_unset(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(level="INFO", log_format="json")
    clear_correlation_context()

    logger = get_logger("test.json")
    logger.info("hello")
    payload = _read_last_json_log_line(capsys)

    assert payload["event"] == "hello"
    assert "document" not in payload
    assert "command" not in payload


def test_library_loggers_follow_configured_level(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(level="WARNING", log_format="console")

    logging.getLogger("czibridge.native.handle").debug("hidden")
    logging.getLogger("czibridge.native.handle").warning("shown")

    captured = capsys.readouterr()
    assert "hidden" not in captured.err
    assert "shown" in captured.err
    assert captured.out == ""


def test_library_records_share_json_format_and_correlation_ids(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(level="DEBUG", log_format="json")
    set_correlation_context(document="/data/plate_01.czi", command="info")

    logging.getLogger("czibridge.native.handle").debug("Released %s handle %#x", "reader", 16)
    payload = _read_last_json_log_line(capsys)

    assert payload["event"] == "Released reader handle 0x10"
    assert payload["logger"] == "czibridge.native.handle"
    assert payload["level"] == "debug"
    assert payload["document"] == "/data/plate_01.czi"
    assert "timestamp" in payload


def test_czi_error_is_expanded_into_fields(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(level="INFO", log_format="json")
    error = make_error(
        ErrorKind.CORRUPT, "bad magic", "open reader", code=50, path="/data/broken.czi"
    )

    get_logger("test.json").error("Failed to read document", error=error)
    payload = _read_last_json_log_line(capsys)

    assert payload["error"] == "bad magic"
    assert payload["error_kind"] == "corrupt"
    assert payload["error_code"] == 50
    assert payload["operation"] == "open reader"
    assert payload["path"] == "/data/broken.czi"


def test_explicit_stream(capsys: pytest.CaptureFixture[str]) -> None:
    buffer = io.StringIO()
    configure_logging(level="INFO", log_format="json", stream=buffer)

    get_logger("test.json").info("to buffer")

    assert json.loads(buffer.getvalue().splitlines()[-1])["event"] == "to buffer"
    assert capsys.readouterr().err == ""
