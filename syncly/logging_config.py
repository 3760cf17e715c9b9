"""JSON logging configuration for Syncly API."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger through a single stdout JSON handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"syncly.{name}")


class TurnLogger(logging.LoggerAdapter):
    """Adapter that stamps shop/sender ids onto every record of one turn.

    Per-call context passed as ``context=`` is merged over the bound ids.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        combined_context = {**(self.extra or {}), **(context or {})}
        if combined_context:
            kwargs["extra"] = {"context": combined_context}
        return msg, kwargs


def get_turn_logger(name: str, **ids: Any) -> TurnLogger:
    bound = {key: str(value) for key, value in ids.items() if value is not None}
    return TurnLogger(get_logger(name), bound)
