"""Logging setup for applications embedding the translation engine.

With ``structured=True`` each record is rendered as one JSON object per
line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "WARNING",
        "logger": "dialect_engine.translator.base",
        "message": "[mysql-schema] MySQL has no partial indexes; ...",
        "dialect": "mysql",      // present when passed via ``extra``
        "rule": "partial-index", // present when passed via ``extra``
        "exc_info": "Traceback ..."
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

_EXTRAS = ("dialect", "rule")
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _EXTRAS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str | int = "WARNING", structured: bool = False) -> logging.Handler:
    """Replace the root handlers with one stream handler and return it."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if structured else logging.Formatter(_TEXT_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper() if isinstance(level, str) else level)
    if structured:
        logging.getLogger(__name__).debug("Structured JSON logging enabled")
    return handler
