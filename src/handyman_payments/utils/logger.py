import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for Lambda logs.
    Produces one JSON object per log line, including any fields passed via
    ``extra=``. Easy to parse in CloudWatch / tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S,%f%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str = "app") -> logging.Logger:
    """
    Returns a singleton JSON-logging logger for the given name.
    Safe to call many times; it will only configure the logger once.
    """
    logger = logging.getLogger(name)

    # Avoid reconfiguring handlers on repeated calls
    if getattr(logger, "_configured", False):
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    # Do not propagate to the root logger; we emit JSON ourselves.
    logger.propagate = False

    logger._configured = True  # type: ignore[attr-defined]

    return logger


_base_logger = get_logger("handyman")


def log(message: str, **fields: Any) -> None:
    """
    Convenience function for quick logs without manually grabbing a logger.
    Example:
        log("health.check", path="/healthz", method="GET")
    """
    if fields:
        _base_logger.info(message, extra={"fields": fields})
    else:
        _base_logger.info(message)
