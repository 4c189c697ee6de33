"""
Structured logging configuration.

Configuration:
- Development: Human-readable console output
- Production: JSON lines to stdout

Controlled by the LOG_FORMAT ("json" or "console") and LOG_LEVEL config keys.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone


_STANDARD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName", "taskName",
    "processName", "process", "exc_info", "exc_text", "stack_info",
    "message",
}


def get_logging_config(log_level: str = "INFO", log_format: str = "console") -> dict:
    """Build a logging.config.dictConfig payload for the app."""
    config = {
        "version": 1,
        "disable_existing_loggers": False,
    }

    if log_format == "json":
        config["formatters"] = {
            "json": {"()": "ledgerlink.logging_config.JsonFormatter"},
        }
        config["handlers"] = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
        }
    else:
        config["formatters"] = {
            "verbose": {
                "format": "[{asctime}] {levelname} {name} {message}",
                "style": "{",
            },
        }
        config["handlers"] = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "verbose",
            },
        }

    config["loggers"] = {
        "ledgerlink": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
        "sqlalchemy.engine": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    }

    return config


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Extra fields passed via ``logger.info(..., extra={...})`` are emitted
    under "extra".
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extras = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                extras[key] = value
            except (TypeError, ValueError):
                extras[key] = str(value)

        if extras:
            log_entry["extra"] = extras

        return json.dumps(log_entry, default=str)


def mask_email(email: str | None) -> str:
    """Mask an email address for log lines, e.g. "j***@example.com"."""
    if not email or "@" not in email:
        return "none"
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def short_id(value: str | None) -> str | None:
    """Last six characters of an identifier, enough to correlate log lines."""
    if not value:
        return None
    return value[-6:]
