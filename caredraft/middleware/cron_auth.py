"""
Cron secret decorator for routes that run or reconfigure scheduled jobs.

Usage:
    @bp.route("/cron/deadline-processor", methods=["POST"])
    @require_cron_secret
    def run_deadline_processor():
        ...

When ``CRON_SECRET`` is set the request must carry
``Authorization: Bearer <secret>``. An empty secret (development, tests)
lets every request through.
"""

import functools
import hmac
import logging

from flask import current_app, request

from caredraft.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def cron_secret_matches() -> bool:
    secret = current_app.config.get("CRON_SECRET")
    if not secret:
        return True
    supplied = request.headers.get("Authorization", "")
    return hmac.compare_digest(supplied, f"Bearer {secret}")


def require_cron_secret(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not cron_secret_matches():
            logger.warning("Rejected %s %s: bad or missing cron secret",
                           request.method, request.path)
            return api_error(E.UNAUTHORIZED, "Unauthorized")
        return f(*args, **kwargs)
    return decorated
