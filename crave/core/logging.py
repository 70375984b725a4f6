"""
Structured logging for the reward economy.

Every record carries the current request_id. Economy events (purchases, pause
activations, streak decisions, drift reports) go through log_event so the JSON
output always has the same keys: user_id, event_type, operation, error_code.
Development gets a single readable line per record instead.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOGGER_NAME = "crave"

# Record attributes promoted to top-level JSON keys
_STRUCTURED_FIELDS = (
    "user_id",
    "event_type",
    "operation",
    "attempt",
    "error_code",
    "status",
    "path",
    "method",
    "latency_bucket",
)

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

_EXTRA_VALUE_LIMIT = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class RequestIdFilter(logging.Filter):
    """Stamp request_id from context onto records that don't carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        for field in _STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        details = getattr(record, "details", None)
        if details:
            payload["details"] = details
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = []
        for label, attr in (("rid", "request_id"), ("user", "user_id"), ("op", "operation")):
            value = getattr(record, attr, None)
            if value:
                tags.append(f"[{label}={value}]")
        prefix = " ".join([_timestamp(record), record.levelname, f"[{LOGGER_NAME}]", *tags])
        line = f"{prefix} {record.getMessage()}"
        details = getattr(record, "details", None)
        if details:
            line = f"{line} {json.dumps(details, default=str, sort_keys=True)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Install one stdout handler on the crave logger (JSON in production)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn has its own handlers; keep its records out of ours
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False


def _truncate(value: Any, limit: int = _EXTRA_VALUE_LIMIT) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    operation: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Emit an economy event.

    Free-form ``extra`` values are truncated and nested under ``details`` so
    they can never collide with LogRecord attributes.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"), os.getenv("LOG_LEVEL", "INFO"))

    payload: Dict[str, Any] = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
    }
    if event_type:
        payload["event_type"] = event_type
    if operation:
        payload["operation"] = operation
    if error_code:
        payload["error_code"] = error_code
    if extra:
        payload["details"] = {k: _truncate(v) for k, v in extra.items()}

    log_fn = getattr(logger, level, logger.info)
    log_fn(msg, extra=payload)
