"""
Structured logging for the dispatch engine.

Every line is one JSON object. Quote, destination and schema-gate context
travels as ``extra=`` fields so log queries can filter on them; secrets and
contact addresses are scrubbed before anything is written.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rfqdispatch.core.config import settings

REDACTED = "***REDACTED***"

# key=value / key: value pairs whose value must not reach the log
_SENSITIVE_PATTERNS = re.compile(
    r'(password|secret|token|api_key|apikey|authorization|credential)'
    r'[\"\']?\s*[:=]\s*[\"\']?[^\s,;\"\'}{@]+',
    re.IGNORECASE,
)

# Supplier and customer addresses ride along in ops event payloads
_SENSITIVE_KEYS = frozenset({
    "password", "secret", "api_key", "apikey", "token", "access_token",
    "authorization", "credential", "email", "customer_email", "supplier_email",
})

# Context fields lifted from ``extra=`` onto the JSON line
CONTEXT_FIELDS = (
    "quote_id",
    "destination_id",
    "event_type",
    "relation",
    "reason",
    "missing",
    "action",
)


def _scrub_value(obj):
    if isinstance(obj, dict):
        return {
            k: REDACTED if str(k).lower() in _SENSITIVE_KEYS else _scrub_value(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_scrub_value(i) for i in obj]
    return obj


def _scrub_message(message: str) -> str:
    return _SENSITIVE_PATTERNS.sub(rf'\1={REDACTED}', message)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _scrub_message(record.getMessage()),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = _scrub_message(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging(level: Optional[str] = None, stream=None):
    """
    Install the JSON handler on the root logger.

    Safe to call more than once; an existing root handler is left alone.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level_name = level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
    root_logger.setLevel(logging.getLevelName(level_name.upper()))

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """Mirrors every appended ops event onto the ``audit`` channel."""

    def __init__(self):
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        quote_id: Optional[str] = None,
        destination_id: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        message = f"AUDIT: {action}"
        if quote_id:
            message += f" on quote:{quote_id}"
        if destination_id:
            message += f" destination:{destination_id}"
        if details:
            message += f" - {json.dumps(_scrub_value(details), default=str, sort_keys=True)}"

        self.logger.info(
            message,
            extra={"action": action, "quote_id": quote_id, "destination_id": destination_id},
        )


audit_logger = AuditLogger()
