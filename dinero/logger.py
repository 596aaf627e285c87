"""
Structured Logging.

JSON-lines logging for the sync layer.  Handlers are installed once on
the ``dinero`` logger; each component logs through a ``dinero.*`` child,
so a single rotating file holds the whole trail of local writes, pushes,
pulls and watermark moves for one device.

Context fields are passed with ``extra=`` or fixed up front with
:meth:`StructuredLogger.bind`.  Token-bearing fields are masked before
they reach any handler.
"""

import json
import logging
import sys
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO

ROOT_LOGGER_NAME = "dinero"

_MASKED_FIELDS: frozenset[str] = frozenset(
    {"access_token", "refresh_token", "id_token", "token", "password"}
)

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime"}

_install_lock = threading.Lock()


class JSONLineFormatter(logging.Formatter):
    """Render a record as one JSON object: ``ts``, ``level``, ``logger``, ``msg``, ``ctx``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        context = {
            key: "***" if key in _MASKED_FIELDS else value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        }
        if context:
            entry["ctx"] = context
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        # Decimals, datetimes and enums fall back to str().
        return json.dumps(entry, ensure_ascii=False, default=str)


def _qualified(name: str) -> str:
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return name
    return f"{ROOT_LOGGER_NAME}.{name}"


def _install_handlers(
    level: int,
    stream: Optional[TextIO],
    log_file: str,
    max_bytes: int,
    backup_count: int,
) -> None:
    """Attach console and rotating-file handlers to the ``dinero`` logger once."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _install_lock:
        if root.handlers:
            return

        root.setLevel(level)
        root.propagate = False
        formatter = JSONLineFormatter()

        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            root.warning(
                "Log file %s is not writable (%s); logging to console only.",
                log_file,
                exc,
            )
            return
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


class StructuredLogger:
    """Injectable logger for one component of the sync layer.

    *name* is placed under the ``dinero`` hierarchy (``"sync"`` becomes
    ``"dinero.sync"``).  Level, file and rotation default to the
    ``LOG_*`` settings and only take effect for the first logger
    created in the process.

    Usage::

        log = StructuredLogger(name="sync").bind(wallet_id="w-1")
        log.info("Pulled remote changes", extra={"pulled": 3})
    """

    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
        context: Optional[Mapping[str, object]] = None,
    ) -> None:
        # Imported here: config logs through this module.
        from dinero.config import get_config

        cfg = get_config()
        _install_handlers(
            level=level if level is not None else cfg.log_level,
            stream=stream,
            log_file=log_file or cfg.LOG_FILE,
            max_bytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
            backup_count=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
        )
        self._logger: logging.Logger = logging.getLogger(_qualified(name))
        self._context: dict[str, object] = dict(context or {})

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **context: object) -> "StructuredLogger":
        """Return a logger for the same component with extra fixed context."""
        bound = object.__new__(StructuredLogger)
        bound._logger = self._logger
        bound._context = {**self._context, **context}
        return bound

    def _log(
        self,
        level: int,
        msg: str,
        args: tuple[object, ...],
        exc_info: object = None,
        extra: Optional[Mapping[str, object]] = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = {**self._context, **extra} if extra else self._context
        self._logger.log(
            level, msg, *args, exc_info=exc_info, extra=fields or None, stacklevel=3,
        )

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log(logging.ERROR, msg, args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._log(logging.CRITICAL, msg, args, **kwargs)


def get_logger(name: str = ROOT_LOGGER_NAME) -> StructuredLogger:
    """Shorthand for ``StructuredLogger(name=name)`` with configured defaults."""
    return StructuredLogger(name=name)
