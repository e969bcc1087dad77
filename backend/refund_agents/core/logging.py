"""Structured logging configuration."""
import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_QUIET_LOGGERS = ("httpx", "httpcore", "multipart")

# Base64 evidence and credentials never reach the log stream.
_REDACTED_FIELDS = frozenset({"data", "api_key", "llm_api_key", "x-goog-api-key"})
MAX_FIELD_CHARS = 2000


def _scrub(key: str, value: Any) -> Any:
    if key in _REDACTED_FIELDS:
        return "[redacted]"
    if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
        return f"{value[:MAX_FIELD_CHARS]}... [{len(value)} chars]"
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RECORD_ATTRS or key in payload:
                continue
            payload[key] = _scrub(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str) -> None:
    """Send app and uvicorn logs to stdout as JSON; keep HTTP client chatter at WARNING."""
    handler = {"class": "logging.StreamHandler", "stream": "ext://sys.stdout", "formatter": "json"}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonFormatter}},
            "handlers": {"stdout": handler},
            "loggers": {
                "uvicorn": {"level": level, "handlers": ["stdout"], "propagate": False},
                "uvicorn.access": {"level": "WARNING", "handlers": ["stdout"], "propagate": False},
                **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            },
            "root": {"level": level, "handlers": ["stdout"]},
        }
    )
