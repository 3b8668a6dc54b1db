"""
Request context middleware.

Each API request gets a request id (taken from ``X-Request-ID`` when the
caller sends one) and a start time on ``flask.g``. The acting user and the
proposal / organization named in the URL are captured alongside, so
``RequestContextFilter`` can stamp them on every log line written while the
request is handled, including the workflow engine's transition logs.

Response headers:
    X-Request-ID            echoed or generated id
    X-Request-Duration-Ms   wall time spent in the app
"""

import logging
import time
import uuid

from flask import Flask, g, has_request_context, request

logger = logging.getLogger(__name__)

# Probes are polled constantly; their access lines are dropped
_QUIET_PATHS = frozenset({"/api/v1/health/live", "/api/v1/health/ready"})

SLOW_REQUEST_MS = 1000


class RequestContextFilter(logging.Filter):
    """Copy request-scoped fields from ``g`` onto log records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        for attr, key in (("request_id", "request_id"), ("acting_user", "user_id"),
                          ("proposal_id", "proposal_id"), ("organization_id", "organization_id")):
            value = g.get(attr)
            if value and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


def init_request_context(app: Flask):
    """Register the before/after hooks for request ids, actors and timing."""

    @app.before_request
    def _open_request_context():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.acting_user = request.headers.get("X-User") or None
        view_args = request.view_args or {}
        g.proposal_id = view_args.get("pid")
        g.organization_id = view_args.get("oid")

    @app.after_request
    def _close_request_context(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path in _QUIET_PATHS:
            return response

        line = "%s %s → %d (%.0fms)"
        args = (request.method, request.path, response.status_code, elapsed_ms)
        extra = {"method": request.method, "path": request.path,
                 "status": response.status_code, "duration_ms": elapsed_ms}
        if response.status_code >= 500:
            logger.error(line, *args, extra=extra)
        elif elapsed_ms > SLOW_REQUEST_MS:
            logger.warning("Slow request: " + line, *args, extra=extra)
        elif response.status_code in (403, 409):
            # Denied and conflicting transitions are worth seeing in prod
            logger.info(line, *args, extra=extra)
        else:
            logger.debug(line, *args, extra=extra)
        return response
