"""CourierLogger — one JSON logger shared by the transports and the dispatcher.

Records go to stdout and to a size-rotated ``courier.log`` under ``LOG_DIR``.
Polling cycles, webhook requests and subscriber failures carry their context
(``update_id``, ``offset``, ``endpoint``, ``category``, …) in ``extra``, and
the formatter lifts those keys to the top level of the JSON line.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class _JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line.

    ``logger.warning("Polling request failed", extra={"offset": 101})``
    becomes ``{"timestamp": …, "level": "WARNING", …, "offset": 101}``.
    Tracebacks attached with ``exc_info`` / ``logger.exception`` land under
    the ``exc_info`` key as text.
    """

    # Attributes every LogRecord has; anything else came in through ``extra``.
    _RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None,
    ))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._RECORD_ATTRS and key not in entry:
                entry[key] = value

        # Enums, exceptions and pydantic objects in ``extra`` fall back to str().
        return json.dumps(entry, ensure_ascii=False, default=str)


def _resolve_level(level: int | None) -> int:
    """*level* if given, else ``LOG_LEVEL`` from the environment, else INFO."""
    if level is not None:
        return level
    resolved = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


class CourierLogger:
    """Process-wide singleton owning the ``courier`` logger and its handlers.

    Usage::

        from core.logger import CourierLogger

        logger = CourierLogger.get_logger()
        logger.info("Webhook listening", extra={"port": 8443})
    """

    _instance: Optional["CourierLogger"] = None
    _logger: Optional[logging.Logger] = None

    _LOGGER_NAME: str = "courier"
    _LOG_DIR: str = os.environ.get("LOG_DIR", "logs")
    _LOG_FILE: str = "courier.log"
    _MAX_BYTES: int = 5 * 1024 * 1024  # 5 MB
    _BACKUP_COUNT: int = 5

    def __new__(cls, level: int = logging.INFO) -> "CourierLogger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._logger = cls._build_logger(level)
        return cls._instance

    @classmethod
    def _build_logger(cls, level: int) -> logging.Logger:
        logger = logging.getLogger(cls._LOGGER_NAME)
        logger.setLevel(level)
        # Handlers survive a re-import of this module; attach them only once.
        if logger.handlers:
            return logger

        formatter = _JsonFormatter()
        os.makedirs(cls._LOG_DIR, exist_ok=True)
        handlers: list[logging.Handler] = [
            logging.StreamHandler(),
            RotatingFileHandler(
                os.path.join(cls._LOG_DIR, cls._LOG_FILE),
                maxBytes=cls._MAX_BYTES,
                backupCount=cls._BACKUP_COUNT,
                encoding="utf-8",
            ),
        ]
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        return logger

    @staticmethod
    def get_logger(level: int | None = None) -> logging.Logger:
        """Return the shared logger, creating it on first use.

        Only the first call's *level* (or ``LOG_LEVEL``) takes effect.
        """
        logger = CourierLogger(_resolve_level(level))._logger
        if logger is None:
            raise RuntimeError("CourierLogger was created without a logger")
        return logger
