"""
Structured logging configuration.

- Development: human-readable colored format
- Production: JSON format (log aggregator compatible)
- Log level: controlled via LOG_LEVEL env variable

Workflow code passes context through ``extra=``:

    logger.info("Document %s verified", doc.id,
                extra={"entity_type": "document", "entity_id": doc.id})

Inside a request, RequestContextFilter fills in request_id and actor_id
from the gateway identity so service modules never have to.  Records whose
event_type is in ALERT_EVENTS carry ``"alert": true`` in JSON output; the
alerting pipeline matches on that rather than on message text.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Who did what to which entity
WORKFLOW_FIELDS = ("actor_id", "action", "entity_type", "entity_id", "event_type")

# Set by the timing middleware on its per-request log line
REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")

# Events that mean a post-commit side effect was lost
ALERT_EVENTS = frozenset({"audit_append_failed", "notification_failed"})


class RequestContextFilter(logging.Filter):
    """Attach request_id / actor_id of the current request to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor_id", None) is None:
                record.actor_id = request.headers.get("X-User-Id") or None
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        for key in WORKFLOW_FIELDS + REQUEST_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        if log_entry.get("event_type") in ALERT_EVENTS:
            log_entry["alert"] = True
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Human-readable colored formatter for development.

    Appends ``[actor entity_type:entity_id]`` when the record names them,
    then ``<event_type>``.
    """

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    @staticmethod
    def _context(record):
        parts = []
        actor = getattr(record, "actor_id", None)
        if actor:
            parts.append(actor)
        entity_id = getattr(record, "entity_id", None)
        if entity_id:
            parts.append(f'{getattr(record, "entity_type", None) or "?"}:{entity_id}')
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        event = getattr(record, "event_type", None)
        event_str = f" <{event}>" if event else ""
        base = (f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: "
                f"{record.getMessage()}{dur_str}{self._context(record)}{event_str}")
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    Development  → ReadableFormatter on stderr
    Production   → JSONFormatter on stderr
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    # One certflow handler on the root logger; other handlers (pytest's caplog) stay
    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, "_certflow", False)]:
        root.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler._certflow = True
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
