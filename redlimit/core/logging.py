"""Structured logging for limiter events.

Limiter log calls pass their context through ``extra``. :class:`LimiterRecordFilter`
normalises that context before any handler formats it:

- a raw ``key`` is replaced by ``key_hash`` so client addresses never reach
  log output;
- :class:`~redlimit.services.rate_limiter.LimitStatus` members become their
  string value;
- an ``error`` (usually a :class:`StoreAppError`) is flattened to its code,
  message and redacted details;
- connection URLs, passwords and forwarded headers are redacted.

:class:`JsonFormatter` then groups limiter fields under ``rate_limit`` and the
error under ``error`` so log pipelines can index them directly.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from logging import LogRecord
from typing import IO, Any, Iterable, Mapping

from redlimit.core.config import LogSettings, settings
from redlimit.core.errors import AppError

REDACTED = "[REDACTED]"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "identifier",
        "password",
        "redis_password",
        "redis_url",
        "url",
        "x-forwarded-for",
    }
)

# Promoted into the "rate_limit" object, in this order
LIMITER_FIELDS: tuple[str, ...] = (
    "key_hash",
    "limit_status",
    "limit",
    "remaining",
    "window_ms",
    "ttl_ms",
    "retry_after_ms",
    "reset_at_ms",
)

_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}


def hash_key(key: str) -> str:
    """Hash a limiter key for logging without exposing the identifier."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _redact(value: Any, sensitive_keys: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for name, item in value.items():
            lowered = str(name).lower()
            if lowered == "key" and isinstance(item, str):
                cleaned["key_hash"] = hash_key(item)
            elif lowered in sensitive_keys:
                cleaned[name] = REDACTED
            else:
                cleaned[name] = _redact(item, sensitive_keys)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [_redact(item, sensitive_keys) for item in value]
    return value


def describe_error(
    error: BaseException,
    sensitive_keys: frozenset[str] = SENSITIVE_KEYS,
) -> dict[str, Any]:
    """Flatten an exception into a loggable mapping.

    Application errors keep their code and details, with any limiter key in
    the details hashed and connection settings redacted.
    """

    if isinstance(error, AppError):
        described: dict[str, Any] = {"code": error.code, "message": error.message}
        if error.details:
            described["details"] = _redact(dict(error.details), sensitive_keys)
        return described
    return {"type": type(error).__name__, "message": str(error)}


def record_extras(record: LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields attached to ``record``."""
    return {
        name: value
        for name, value in record.__dict__.items()
        if name not in _RECORD_ATTRS and not name.startswith("_")
    }


class LimiterRecordFilter(logging.Filter):
    """Normalise limiter context on the record before formatting."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        fields = record.__dict__

        key = fields.pop("key", None)
        if isinstance(key, str):
            fields.setdefault("key_hash", hash_key(key))

        status = fields.get("limit_status")
        if isinstance(status, Enum):
            fields["limit_status"] = status.value

        error = fields.get("error")
        if error is None and record.exc_info and isinstance(record.exc_info[1], AppError):
            error = record.exc_info[1]
        if isinstance(error, BaseException):
            fields["error"] = describe_error(error, self.sensitive_keys)

        for name, value in record_extras(record).items():
            if name.lower() in self.sensitive_keys:
                fields[name] = REDACTED
            elif name != "error":
                fields[name] = _redact(value, self.sensitive_keys)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line.

    Expects :class:`LimiterRecordFilter` to have run on the logger or handler;
    extras are still redacted here so the formatter is safe on its own.
    """

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS))

    def format(self, record: LogRecord) -> str:  # noqa: D401
        extras = _redact(record_extras(record), self.sensitive_keys)

        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }

        limiter = {name: extras.pop(name) for name in LIMITER_FIELDS if name in extras}
        if limiter:
            payload["rate_limit"] = limiter

        error = extras.pop("error", None)
        if isinstance(error, BaseException):
            error = describe_error(error, self.sensitive_keys)
        if error is not None:
            payload["error"] = error

        payload.update(extras)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


_HANDLER_MARK = "_redlimit_handler"


def configure_logging(
    log_settings: LogSettings | None = None,
    *,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Attach a formatted handler to the ``redlimit`` logger.

    Only the library's own logger is touched, so the host application's root
    configuration is left alone. Calling this again replaces the handler.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
        stream: Output stream (stderr by default).

    Returns:
        The configured ``redlimit`` logger.
    """

    cfg = log_settings or settings.log

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(LimiterRecordFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())
    setattr(handler, _HANDLER_MARK, True)

    library_logger = logging.getLogger("redlimit")
    for existing in [h for h in library_logger.handlers if getattr(h, _HANDLER_MARK, False)]:
        library_logger.removeHandler(existing)
        existing.close()
    library_logger.addHandler(handler)
    library_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
    return library_logger
