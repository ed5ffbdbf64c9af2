"""JSON logs for crm-intake.

One JSON object per line on stdout. Records written through a session logger
carry ``chat_id`` and ``user_id`` as top-level keys, so every line of one
conversation can be pulled out with a single filter; anything else passed as
``context`` stays nested under ``"context"``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

SESSION_KEYS = ("chat_id", "user_id")

# Chatty libraries: request lines and SQL echo are not conversation events
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        for key in SESSION_KEYS:
            if key in context:
                log_data[key] = context.pop(key)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Payload fragments (pydantic models, datetimes) fall back to str
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every crm_intake logger to stdout as JSON. Unknown levels mean INFO."""
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
    return logging.getLogger(f"crm_intake.{name}")


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Stamps the session key into every record.

    Call sites add per-event detail with ``context={...}``; it is merged over
    the bound session keys.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = {**context, **(extra.get("context") or {})}
        kwargs["extra"] = extra
        return msg, kwargs


def session_logger(name: str, chat_id: int, user_id: int) -> SessionLoggerAdapter:
    """Logger bound to one (chat, user) conversation."""
    return SessionLoggerAdapter(get_logger(name), {"chat_id": chat_id, "user_id": user_id})
