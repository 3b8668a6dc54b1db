"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  – process is up (load balancer probe)
    GET /api/v1/health/live   – database, Redis and deadline cron status

Only the database decides the overall status. Redis backs rate limiting
and the deadline cron is external, so both are reported without failing
the probe.
"""

import logging
import time
from datetime import datetime, timedelta, timezone

from flask import Blueprint, current_app, jsonify

from caredraft.models import db
from caredraft.models.scheduling import ScheduledJob
from caredraft.utils.helpers import as_utc

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")

# The deadline processor runs hourly; two missed runs is worth flagging
CRON_STALE_AFTER = timedelta(hours=2)


def _timed(check):
    started = time.perf_counter()
    check()
    return round((time.perf_counter() - started) * 1000, 1)


def _check_database():
    try:
        latency = _timed(lambda: db.session.execute(db.text("SELECT 1")))
    except Exception as exc:
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": latency}


def _check_redis():
    url = current_app.config.get("REDIS_URL")
    if not url:
        return {"status": "skipped", "detail": "no REDIS_URL configured"}
    try:
        import redis
        latency = _timed(lambda: redis.from_url(url, socket_timeout=2).ping())
    except Exception as exc:
        logger.warning("Health check: redis unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": latency}


def _check_deadline_cron():
    try:
        job = ScheduledJob.query.filter_by(job_name="deadline_processor").first()
    except Exception as exc:
        db.session.rollback()
        return {"status": "error", "detail": str(exc)}
    last_run = as_utc(job.last_run_at) if job else None
    if last_run is None:
        return {"status": "never_run"}
    result = {
        "status": "ok",
        "last_run_at": last_run.isoformat(),
        "last_run_status": job.last_run_status,
        "enabled": job.is_enabled,
    }
    if datetime.now(timezone.utc) - last_run > CRON_STALE_AFTER:
        result["status"] = "stale"
    return result


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_database(),
        "redis": _check_redis(),
        "deadline_processor": _check_deadline_cron(),
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "service": "caredraft-workflow",
        "checks": checks,
    }), (200 if healthy else 503)
