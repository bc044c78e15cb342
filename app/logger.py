"""
Structured JSON Logging Module.

Every service receives a :class:`StructuredLogger` through its
constructor.  Output is one JSON object per line, to stdout and to a
size-rotated file.

Credentials must never reach a log sink.  Two scrubbing passes run on
every record:

* ``extra`` fields whose name looks like a credential (``access``,
  ``refresh``, ``token``, ``password``, ``secret``) are replaced by
  ``"***"``.
* Bearer headers and JWT-shaped strings inside the rendered message or
  exception text are masked, since ``httpx`` errors can echo request
  details.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

REDACTED: str = "***"

_SENSITIVE_MARKERS: tuple[str, ...] = ("token", "password", "refresh", "access", "secret")

_BEARER_RE: re.Pattern[str] = re.compile(r"(Bearer\s+)[^\s\"',]+", re.IGNORECASE)
# header.payload.signature, each part base64url
_JWT_RE: re.Pattern[str] = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")


def is_sensitive_field(field_name: str) -> bool:
    """``True`` when an ``extra`` key names credential material."""
    lowered = field_name.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def scrub_text(text: str) -> str:
    """Mask bearer credentials and JWTs embedded in free text."""
    text = _BEARER_RE.sub(rf"\g<1>{REDACTED}", text)
    return _JWT_RE.sub(REDACTED, text)


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Keys: ``timestamp`` (ISO-8601 UTC), ``level``, ``logger_name``,
    ``message``, and when present ``extra`` and ``exception``.
    """

    # LogRecord's own attributes; anything else on a record came from ``extra``.
    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": scrub_text(record.getMessage()),
        }

        extra_fields: dict[str, str] = {
            key: REDACTED if is_sensitive_field(key) else scrub_text(str(value))
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS
        }
        if extra_fields:
            entry["extra"] = extra_fields

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = scrub_text(record.exc_text)

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable logger wrapping a named ``logging.Logger``.

    Handlers are attached once per logger name, so constructing several
    ``StructuredLogger`` objects with the same name is cheap and does
    not duplicate output.

    Usage::

        log = StructuredLogger(name="http_client")
        log.info("Token refreshed", extra={"role": "patient"})
    """

    def __init__(
        self,
        name: str = "session_core",
        level: int = logging.INFO,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Lazy import so settings are only read when a logger is built.
        from app.config import get_config
        cfg = get_config()

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)

        if self._logger.handlers:
            return

        formatter = JSONFormatter()

        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target: str = log_file or cfg.LOG_FILE
        try:
            log_path = Path(target)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backupCount=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Could not open log file '%s': %s. Logging to console only.",
                target,
                exc,
            )
            return
        rotating.setLevel(level)
        rotating.setFormatter(formatter)
        self._logger.addHandler(rotating)

    @property
    def logger(self) -> logging.Logger:
        """The underlying ``logging.Logger``."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "session_core") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name*."""
    return StructuredLogger(name=name)
