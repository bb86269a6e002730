"""
Structured logging configuration.

- Development / testing: one readable line per record
- Production: JSON lines for the log aggregator
- LOG_LEVEL env variable overrides the level

Records emitted while a request is active carry its ``request_id`` and
acting user, so a denied share-link hit in the access log can be matched
with the service log lines it produced.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Attributes copied from ``extra={...}`` (or the context filter) into output.
_CONTEXT_KEYS = (
    "request_id",
    "actor",
    "session_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_HANDLER_NAME = "dataroom"


class RequestContextFilter(logging.Filter):
    """Attach request_id / actor from the active Flask request, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor", None) is None:
                record.actor = (
                    request.headers.get("X-User")
                    or request.headers.get("X-User-Email")
                    or None
                )
        return True


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in _CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [rid actor 12ms]``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = _context(record)
        tags = [ctx[k] for k in ("request_id", "actor") if k in ctx]
        if "duration_ms" in ctx:
            tags.append(f"{ctx['duration_ms']:.0f}ms")
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if tags:
            line += " [" + " ".join(str(t) for t in tags) + "]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install the data room log handler on the root logger.

    Reads LOG_LEVEL from env (default: DEBUG in dev/test, INFO in prod).
    Calling it again (one create_app() per test) replaces the previous
    handler instead of stacking a second one.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "flask_limiter"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
