"""
Logging setup for sagadb.

Library modules only call ``get_logger(__name__)`` and tag their messages
with a bracketed event name (``[TX BEGIN]``, ``[BATCH CHUNK]``,
``[SLOW QUERY]``). Handlers are installed by the application: the CLI and
the scripts call ``configure_logging`` once at startup.

Two output formats are available:

- console: ``time | LEVEL | logger | message``
- JSON: one object per record with the event tag split out and every
  ``extra=`` field promoted to a top-level key

    from sagadb.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=True)
    log = get_logger(__name__)
    log.info("[BATCH DONE] bulk insert", extra={"rows": 1200, "chunks": 3})
    # {"level": "INFO", ..., "event": "BATCH DONE", "rows": 1200, "chunks": 3}
"""

from __future__ import annotations

import json
import logging
import logging.config
import re
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra"}

_EVENT_TAG = re.compile(r"^\[([A-Z][A-Z ]*)\]\s*")

# Third-party loggers that are too chatty at the application's level.
_QUIET_LOGGERS = ("psycopg.pool",)


def _json_formatter(record: logging.LogRecord) -> str:
    message = record.getMessage()
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": message,
    }
    tag = _EVENT_TAG.match(message)
    if tag:
        payload["event"] = tag.group(1)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    for key, value in record.__dict__.items():
        if key not in _RESERVED_ATTRS and not key.startswith("_"):
            payload[key] = value
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        payload.update(nested)
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Install a single stream handler on the root logger.

    Parameters
    ----------
    level : str
        Level name for the root logger and the ``sagadb`` loggers.
    json_logs : bool
        Emit ``JsonFormatter`` output instead of the console format.
    force : bool
        Replace handlers configured earlier. When False and the root logger
        already has handlers, nothing changes.
    """
    if not force and logging.getLogger().handlers:
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "loggers": {
                "sagadb": {"level": level},
                **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter"]
