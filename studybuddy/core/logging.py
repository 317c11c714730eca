"""
Structured logging for the StudyBuddy config service.

- JSON lines in production, one-line pretty output in development.
- request_id bound per request through a ContextVar.
- Quota and tier decisions carry user_id / tier_id / quota_name as
  first-class fields so they can be filtered without parsing messages.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "studybuddy"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Promoted to top-level keys by both formatters
_STRUCTURED_FIELDS = ("user_id", "tier_id", "quota_name", "event_type", "error_code")

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

_EXTRA_VALUE_LIMIT = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


class RequestIdFilter(logging.Filter):
    """Fill record.request_id from the request context unless set explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class _ContextFormatter(logging.Formatter):
    @staticmethod
    def timestamp(record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        return created.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def context(record: logging.LogRecord) -> Dict[str, object]:
        return {
            field: getattr(record, field)
            for field in _STRUCTURED_FIELDS
            if getattr(record, field, None) is not None
        }


class JsonFormatter(_ContextFormatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            **self.context(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(_ContextFormatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [self.timestamp(record), record.levelname, "[studybuddy]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())

        context = self.context(record)
        if context:
            parts.append("(" + " ".join(f"{k}={v}" for k, v in context.items()) + ")")
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: Optional[str] = None) -> None:
    """Install the studybuddy handler; JSON when env is production."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel((level or os.getenv("LOG_LEVEL") or "INFO").upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn logs its own access lines
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False


def _truncate(value, limit: int = _EXTRA_VALUE_LIMIT) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    user_id: Optional[str] = None,
    tier_id: Optional[str] = None,
    quota_name: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """
    Log a quota/tier event.

    Structured fields go on the record as-is; free-form extras are
    stringified and truncated so a large payload never floods the log.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        # Scripts and tests that never ran the app lifespan
        configure_logging(os.getenv("ENV", "development"))

    fields = {
        "user_id": user_id,
        "tier_id": tier_id,
        "quota_name": quota_name,
        "event_type": event_type,
        "error_code": error_code,
    }
    payload = {"request_id": get_request_id()}
    payload.update({k: v for k, v in fields.items() if v is not None})
    for key, value in (extra or {}).items():
        payload[key] = _truncate(value)

    getattr(logger, level, logger.info)(msg, extra=payload)
