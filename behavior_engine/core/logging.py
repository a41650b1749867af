"""Structured logging for the behavior engine.

Lines are key=value. Turn correlation fields (user, session, flow context)
always come right after the message so one user's turn can be followed
across components.
"""

import logging
import sys
from typing import Any

CORRELATION_FIELDS = ("user_id", "session_id", "flow_context_id")


class StructuredFormatter(logging.Formatter):
    """key=value formatter with correlation fields first."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        for field in CORRELATION_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        log_data.update(getattr(record, "extra_data", {}))

        if record.exc_info:
            # Last line only: the exception type and message
            log_data["exc"] = self.formatException(record.exc_info).splitlines()[-1]

        return " ".join(f"{k}={v}" for k, v in log_data.items())


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the structured stdout handler attached.

    DEBUG when BEHAVIOR_ENGINE_ENV is "dev", INFO otherwise (including when
    settings cannot be loaded).
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        try:
            from behavior_engine.core.config import get_settings

            dev = get_settings().BEHAVIOR_ENGINE_ENV == "dev"
        except Exception:
            dev = False
        logger.setLevel(logging.DEBUG if dev else logging.INFO)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with turn context.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Context fields. user_id, session_id and flow_context_id are
            promoted to correlation fields; the rest (behavior ids, latencies)
            follow them.
    """
    extra: dict[str, Any] = {field: kwargs.pop(field) for field in CORRELATION_FIELDS if field in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
