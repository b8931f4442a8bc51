"""
Logging setup for the concrnt logger tree.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where those records go and how they are rendered.  Two formats are
supported:

  text  human-readable single line (default)
  json  one JSON object per line, suitable for log shippers
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from concrnt.core.config import LoggingConfig

ROOT_LOGGER = "concrnt"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonLineFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(
    config: LoggingConfig | None = None,
    *,
    stream=None,  # type: ignore[no-untyped-def]
) -> logging.Logger:
    """Install a single handler on the ``concrnt`` logger.

    Calling it again replaces the previous handler instead of stacking.
    """
    level = config.level if config else "INFO"
    fmt = config.format if config else "text"

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_concrnt", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._concrnt = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
