"""Structured logging configuration using structlog.

Two kinds of events share one output: structlog events from the CLI, and
stdlib records from the library modules (handle releases, stream callback
failures, writer finalization). Both pass through the same processor chain,
so they carry the same timestamps, levels and correlation context (the
document being processed and the CLI command handling it).

Output always goes to stderr; stdout belongs to command results.
"""

import logging
import sys
from collections.abc import MutableMapping
from contextvars import ContextVar
from typing import Any, TextIO, cast

import structlog
from structlog.types import Processor

from czibridge.config import settings
from czibridge.native.exceptions import CziError

_document: ContextVar[str | None] = ContextVar("document", default=None)
_command: ContextVar[str | None] = ContextVar("command", default=None)


def set_correlation_context(
    document: str | None = None,
    command: str | None = None,
) -> None:
    """Set correlation IDs for the current context.

    Args:
        document: Path or identifier of the CZI document being processed
        command: Name of the CLI command handling the document
    """
    if document is not None:
        _document.set(document)
    if command is not None:
        _command.set(command)


def clear_correlation_context() -> None:
    """Clear all correlation context variables."""
    _document.set(None)
    _command.set(None)


def _add_correlation_ids(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor to add correlation IDs to log events."""
    _ = logger, method_name
    document = _document.get()
    command = _command.get()

    if document is not None:
        event_dict.setdefault("document", document)
    if command is not None:
        event_dict.setdefault("command", command)

    return event_dict


def _expand_czi_error(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Replace a ``CziError`` passed as ``error=`` with its record fields.

    ``log.error("open failed", error=exc)`` renders as ``error``,
    ``error_kind``, ``error_code`` and, when known, ``operation`` and
    ``path``, so JSON consumers can filter on the kind.
    """
    _ = logger, method_name
    error = event_dict.get("error")
    if isinstance(error, CziError):
        event_dict["error"] = error.message
        event_dict["error_kind"] = error.kind.value
        event_dict["error_code"] = error.code
        if error.operation:
            event_dict.setdefault("operation", error.operation)
        if error.path:
            event_dict.setdefault("path", str(error.path))
    return event_dict


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to settings.LOG_LEVEL.
        log_format: Output format ("console" or "json").
                    Defaults to settings.LOG_FORMAT.
        stream: Destination; defaults to the current ``sys.stderr``.
    """
    level = level or settings.LOG_LEVEL
    log_format = log_format or settings.LOG_FORMAT
    stream = stream or sys.stderr

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _add_correlation_ids,
        _expand_czi_error,
    ]

    renderer: list[Processor]
    if log_format == "json":
        renderer = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=stream.isatty())]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Records from plain stdlib loggers get the shared chain as a pre-chain.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderer],
    )
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name. If None, uses the calling module's name.

    Returns:
        A bound structlog logger instance.
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
