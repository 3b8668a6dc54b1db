"""
Logging setup for the workflow service.

Two output formats share one set of context fields:

- ``json``: one JSON object per line, for the production log pipeline
- ``text``: compact coloured lines for local development

The format comes from ``LOG_FORMAT`` (json / text) and defaults to json
outside debug and testing. ``LOG_LEVEL`` sets the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from caredraft.middleware.request_context import RequestContextFilter

# Record attributes promoted into structured output when set
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "organization_id",
    "proposal_id",
    "from_status",
    "to_status",
    "job_name",
    "method",
    "path",
    "status",
    "duration_ms",
)


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
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


class ConsoleFormatter(logging.Formatter):
    """``09:14:02 INFO  caredraft.services.proposal_workflow: ... [req=ab12 proposal=…]``"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    _TAGS = (("request_id", "req"), ("proposal_id", "proposal"), ("job_name", "job"))

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = " ".join(f"{label}={getattr(record, key)}" for key, label in self._TAGS
                        if getattr(record, key, None))
        line = f"{color}{stamp} {record.levelname:<7}{self.RESET} {record.name}: {record.getMessage()}"
        if tags:
            line += f" [{tags}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    testing = app.config.get("TESTING", False)
    debug = app.config.get("DEBUG", False)

    fmt = (app.config.get("LOG_FORMAT") or ("text" if debug or testing else "json")).lower()
    level_name = (os.getenv("LOG_LEVEL") or ("DEBUG" if debug else "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ConsoleFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # create_app runs once per test session and once per worker; never stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for chatty in ("werkzeug", "sqlalchemy.engine", "urllib3"):
        logging.getLogger(chatty).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
