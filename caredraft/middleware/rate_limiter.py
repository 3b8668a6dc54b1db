"""
Rate limits per route group.

The Limiter lives in caredraft/__init__.py with no default limit. Workflow
and notification routes are keyed by the acting user (``X-User``) so a
shared office IP does not throttle a whole care provider; the cron
trigger and anonymous calls are keyed by remote address.

Usage:
    from caredraft.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

WORKFLOW_LIMIT = "60/minute"
NOTIFICATION_LIMIT = "200/minute"
CRON_LIMIT = "10/minute"


def actor_or_remote_address():
    user_id = request.headers.get("X-User")
    return f"user:{user_id}" if user_id else get_remote_address()


def init_rate_limits(app, limiter):
    """Attach limits to the registered blueprints. No-op when TESTING."""
    if app.config.get("TESTING"):
        return

    groups = (
        ("proposal_workflow_bp", WORKFLOW_LIMIT),
        ("notification_bp", NOTIFICATION_LIMIT),
    )
    for name, limit in groups:
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.limit(limit, key_func=actor_or_remote_address)(bp)

    cron_view = app.view_functions.get("proposal_workflow_bp.run_deadline_processor")
    if cron_view is not None:
        limiter.limit(CRON_LIMIT)(cron_view)

    if "health_bp" in app.blueprints:
        limiter.exempt(app.blueprints["health_bp"])

    logger.info("Rate limits: workflow=%s notifications=%s cron=%s",
                WORKFLOW_LIMIT, NOTIFICATION_LIMIT, CRON_LIMIT)
