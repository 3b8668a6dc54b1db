"""
Notification & Scheduler Blueprint.

Routes:
  GET    /notifications                       – the caller's notifications, newest first
  GET    /notifications/unread-count          – unread badge count
  POST   /notifications/<nid>/read            – mark one as read (own notifications only)
  POST   /notifications/mark-all-read         – mark all of the caller's as read
  GET    /scheduler/jobs                      – registered jobs with run bookkeeping
  GET    /scheduler/jobs/<job_name>           – one job
  POST   /scheduler/jobs/<job_name>/trigger   – run a job now
  PATCH  /scheduler/jobs/<job_name>/toggle    – enable / disable a job

The caller is identified by ``X-User`` (or ``?user_id=``). Trigger and
toggle need the cron secret bearer when ``CRON_SECRET`` is set.
"""

import logging

from flask import Blueprint, jsonify, request

from caredraft.middleware.cron_auth import require_cron_secret
from caredraft.models import db
from caredraft.models.notification import NOTIFICATION_TYPES, Notification
from caredraft.models.scheduling import ScheduledJob
from caredraft.services.notification import NotificationService
from caredraft.services.scheduler_service import SchedulerService, get_registered_jobs
from caredraft.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")

MAX_PAGE_SIZE = 200


def _caller():
    return request.headers.get("X-User") or request.args.get("user_id") or ""


def _missing_caller():
    return api_error(E.MISSING_FIELD, "X-User header or user_id is required",
                     details={"user_id": "required"})


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """Query: type?, unread_only?, limit (≤ 200), offset."""
    user_id = _caller()
    if not user_id:
        return _missing_caller()

    notification_type = request.args.get("type")
    if notification_type and notification_type not in NOTIFICATION_TYPES:
        return api_error(E.BAD_REQUEST, f"Unknown notification type '{notification_type}'",
                         details={"type": sorted(NOTIFICATION_TYPES)})

    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)
    if limit < 1 or offset < 0:
        return api_error(E.BAD_REQUEST, "limit must be positive and offset non-negative")

    items, total = NotificationService.list_for_user(
        user_id,
        unread_only=request.args.get("unread_only", "").lower() in ("1", "true", "yes"),
        notification_type=notification_type,
        limit=min(limit, MAX_PAGE_SIZE),
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    user_id = _caller()
    if not user_id:
        return _missing_caller()
    return jsonify({"unread_count": NotificationService.unread_count(user_id)})


@notification_bp.route("/notifications/<nid>/read", methods=["POST"])
def mark_notification_read(nid):
    user_id = _caller()
    if not user_id:
        return _missing_caller()
    notif = db.session.get(Notification, nid)
    # Someone else's notification is reported as missing
    if notif is None or notif.user_id != user_id:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(NotificationService.mark_read(nid).to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    user_id = _caller()
    if not user_id:
        return _missing_caller()
    return jsonify({"marked_read": NotificationService.mark_all_read(user_id)})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

def _unknown_job(job_name):
    return api_error(E.NOT_FOUND, f"Job '{job_name}' not found",
                     details={"registered": sorted(get_registered_jobs())})


@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_scheduled_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@notification_bp.route("/scheduler/jobs/<job_name>", methods=["GET"])
def get_job_status(job_name):
    if job_name not in get_registered_jobs():
        return _unknown_job(job_name)
    SchedulerService.ensure_jobs_registered()
    return jsonify(ScheduledJob.query.filter_by(job_name=job_name).one().to_dict())


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
@require_cron_secret
def trigger_job(job_name):
    if job_name not in get_registered_jobs():
        return _unknown_job(job_name)
    logger.info("Manual trigger of job %s by %s", job_name, _caller() or "anonymous",
                extra={"job_name": job_name})
    run = SchedulerService.run_job(job_name)
    return jsonify(run), (500 if run["status"] in ("failed", "error") else 200)


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
@require_cron_secret
def toggle_job_status(job_name):
    """Body: { enabled: true | false }"""
    enabled = (request.get_json(silent=True) or {}).get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.MISSING_FIELD, "'enabled' must be true or false",
                         details={"enabled": "required boolean"})
    job = SchedulerService.toggle_job(job_name, enabled)
    if job is None:
        return _unknown_job(job_name)
    return jsonify(job)
