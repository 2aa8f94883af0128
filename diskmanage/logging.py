from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from .config import DiskConfig, DEFAULT_CONFIG


PACKAGE_LOGGER = 'diskmanage'
TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# extra= keys copied into the JSON payload when present on a record
_EXTRA_FIELDS = ('device', 'command', 'returncode', 'duration_ms')


class JsonFormatter(logging.Formatter):
    """Render log records as JSON lines with device/command metadata when available."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - base class contract
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True)


def init_logging(config: Optional[DiskConfig] = None,
                 handler: Optional[logging.Handler] = None) -> logging.Logger:
    """Configure the package logger from the config (JSON or plain text)."""

    config = config or DEFAULT_CONFIG
    handler = handler or logging.StreamHandler()
    if config.log_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logger = logging.getLogger(PACKAGE_LOGGER)
    # Reset handlers so repeated init does not duplicate output.
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, config.log_level, logging.INFO))
    logger.propagate = False
    return logger
