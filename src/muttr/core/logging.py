# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Logging for muttr.

Importing muttr never touches logging configuration. Applications that want
muttr's output on a console or in a file call :func:`configure_logging`,
which installs handlers on the ``muttr`` logger only.

Every send and every received notification runs inside a
:func:`pipeline_context`. Records emitted inside it carry the pipeline ID
(``send-1a2b3c4d``, ``recv-5e6f7a8b``), so the session, pod client and
storage gate lines for one message can be followed together.

Pod API calls are logged through :class:`RequestLogger`, which redacts
tokens and other credentials and attaches ``method``/``url``/``status``/
``duration_ms`` to the record for :class:`JSONFormatter` to emit as fields.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

PACKAGE_LOGGER = "muttr"

# Record attributes set by RequestLogger
REQUEST_FIELDS = ("method", "url", "status", "duration_ms", "fields")

_pipeline_id: ContextVar[str | None] = ContextVar("muttr_pipeline_id", default=None)


def current_pipeline_id() -> str | None:
    return _pipeline_id.get()


@contextmanager
def pipeline_context(kind: str, pipeline_id: str | None = None) -> Iterator[str]:
    """Tag every record logged inside the block with one pipeline ID.

    Args:
        kind: Short pipeline name, e.g. ``send`` or ``recv``.
        pipeline_id: Use this ID instead of generating ``{kind}-{8 hex}``.
    """
    pid = pipeline_id or f"{kind}-{uuid.uuid4().hex[:8]}"
    token = _pipeline_id.set(pid)
    try:
        yield pid
    finally:
        _pipeline_id.reset(token)


class PipelineFilter(logging.Filter):
    """Copy the active pipeline ID onto ``record.pipeline``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "pipeline", None) is None:
            record.pipeline = _pipeline_id.get()
        return True


def _pipeline_of(record: logging.LogRecord) -> str | None:
    return getattr(record, "pipeline", None) or _pipeline_id.get()


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with pod request fields promoted to keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        pipeline = _pipeline_of(record)
        if pipeline:
            entry["pipeline"] = pipeline
        for name in REQUEST_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``12:00:01 INFO    muttr.session [send-1a2b3c4d] Sent message ...``"""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-7s %(name)s %(pipeline_tag)s%(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        pipeline = _pipeline_of(record)
        record.pipeline_tag = f"[{pipeline}] " if pipeline else ""
        return super().format(record)


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """Send muttr's log records to stderr and, optionally, a JSON file.

    Replaces handlers from any earlier call and stops propagation to the
    root logger so records are not written twice. Unset arguments come from
    ``MUTTR_LOG_LEVEL``, ``MUTTR_LOG_FORMAT`` (``json``, ``text`` or empty
    for JSON when stderr is not a terminal) and ``MUTTR_LOG_FILE``.

    Returns:
        The configured ``muttr`` logger.
    """
    from .config import get_config

    config = get_config()

    if level is None:
        level = config.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if json_format is None:
        fmt = config.log_format.lower()
        json_format = fmt == "json" or (fmt != "text" and not sys.stderr.isatty())

    log_file = config.log_file if log_file is None else log_file

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if json_format else TextFormatter())
    handlers: list[logging.Handler] = [console]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(PipelineFilter())
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
    return package_logger


class RequestLogger:
    """Logger for pod API calls.

    Query parameters and body fields that carry credentials are redacted
    before they are written out.
    """

    SENSITIVE_PARAMS = {
        "token",
        "passphrase",
        "signature",
        "secret",
        "private",
    }

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("muttr.requests")

    def log_request(
        self,
        method: str,
        url: str,
        fields: dict[str, Any] | None = None,
        level: int = logging.DEBUG,
    ) -> None:
        """Log an outbound request with sanitized URL and fields."""
        safe_url = self.sanitize_url(url)
        self.logger.log(
            level,
            f"{method} {safe_url}",
            extra={"method": method, "url": safe_url, "fields": self._sanitize(fields) if fields else None},
        )

    def log_response(
        self,
        method: str,
        url: str,
        status: int | None,
        duration_ms: float | None = None,
        level: int = logging.DEBUG,
    ) -> None:
        """Log the outcome of a request."""
        safe_url = self.sanitize_url(url)
        msg = f"{method} {safe_url} -> {status if status is not None else 'failed'}"
        if duration_ms is not None:
            msg += f" ({duration_ms:.1f}ms)"
        self.logger.log(
            level,
            msg,
            extra={
                "method": method,
                "url": safe_url,
                "status": status,
                "duration_ms": round(duration_ms, 1) if duration_ms is not None else None,
            },
        )

    def sanitize_url(self, url: str) -> str:
        """Redact sensitive query parameters from a URL."""
        parts = urlsplit(url)
        if not parts.query:
            return url
        query = [
            (key, "[REDACTED]" if self._is_sensitive(key) else value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
        ]
        return urlunsplit(parts._replace(query=urlencode(query)))

    def _is_sensitive(self, key: str) -> bool:
        return any(s in key.lower() for s in self.SENSITIVE_PARAMS)

    def _sanitize(self, data: Any) -> Any:
        if isinstance(data, dict):
            result = {}
            for key, value in data.items():
                if self._is_sensitive(str(key)):
                    result[key] = "[REDACTED]"
                else:
                    result[key] = self._sanitize(value)
            return result
        elif isinstance(data, list):
            return [self._sanitize(item) for item in data]
        elif isinstance(data, str) and len(data) > 200:
            # Truncate armored blobs
            return data[:200] + "..."
        else:
            return data
