"""
Proposal Workflow Blueprint.

Routes:
  POST   /proposals/<pid>/transition                – change proposal status
  GET    /proposals/<pid>/available-transitions     – statuses the caller may move to
  GET    /proposals/<pid>/status-history            – history, newest first
  POST   /proposals/<pid>/reviewers                 – (re)assign reviewers
  GET    /proposals/<pid>/reviewers/pending         – reviewers yet to decide
  POST   /proposals/<pid>/review-decision           – approve / reject as reviewer
  GET    /proposals/<pid>/deadline                  – current deadline check
  GET    /organizations/<oid>/workflow-settings     – organization workflow policy
  PUT    /organizations/<oid>/workflow-settings     – update policy (admin)
  GET    /organizations/<oid>/deadline-rules        – effective deadline rules
  PUT    /organizations/<oid>/deadline-rules        – replace organization rules (admin)
  GET    /organizations/<oid>/deadlines             – upcoming and overdue deadlines
  POST   /cron/deadline-processor                   – run the deadline batch

The acting user comes from the ``X-User`` header (falling back to a
``user_id`` body or query field).
"""

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from caredraft.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    PermissionDenied,
    PersistenceError,
    ValidationError,
)
from caredraft.middleware.cron_auth import require_cron_secret
from caredraft.services.deadline_processor import DEFAULT_HOURS_AHEAD, DeadlineProcessor
from caredraft.services.proposal_workflow import TransitionRequest, WorkflowEngine
from caredraft.services.reviewer_assignment import ReviewerAssignmentTracker
from caredraft.services.scheduler_service import SchedulerService
from caredraft.services.status_policy import Role
from caredraft.services.stores import SETTINGS_FIELDS
from caredraft.utils.errors import E, api_error
from caredraft.utils.helpers import as_utc, parse_datetime

logger = logging.getLogger(__name__)

proposal_workflow_bp = Blueprint("proposal_workflow_bp", __name__, url_prefix="/api/v1")

MAX_HOURS_AHEAD = 24 * 90


# ── Error handlers ───────────────────────────────────────────────────────

@proposal_workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@proposal_workflow_bp.errorhandler(PermissionDenied)
def _handle_permission_denied(error: PermissionDenied):
    return api_error(E.FORBIDDEN, error.reason)


@proposal_workflow_bp.errorhandler(ConcurrentModificationError)
def _handle_conflict(error: ConcurrentModificationError):
    return api_error(E.STATUS_CONFLICT, str(error),
                     details={"expected_status": error.expected, "current_status": error.actual})


@proposal_workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@proposal_workflow_bp.errorhandler(PersistenceError)
def _handle_persistence(error: PersistenceError):
    logger.error("Persistence failure in %s: %s", request.endpoint, error)
    return api_error(E.DATABASE, "Database error")


@proposal_workflow_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in proposal_workflow_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── helpers ──────────────────────────────────────────────────────────────

def _current_user_id():
    data = request.get_json(silent=True) or {}
    return (
        request.headers.get("X-User", "")
        or data.get("user_id")
        or request.args.get("user_id", "")
    )


def _require_actor(engine):
    user_id = _current_user_id()
    if not user_id:
        raise PermissionDenied("X-User header is required")
    return engine.resolve_actor(user_id)


# ═════════════════════════════════════════════════════════════════════════════
# STATUS TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════

@proposal_workflow_bp.route("/proposals/<pid>/transition", methods=["POST"])
def transition_proposal(pid):
    """Change a proposal's status.

    Body: { from_status, to_status, comment?, transition_reason? }
    """
    data = request.get_json(silent=True) or {}
    missing = [f for f in ("from_status", "to_status") if not data.get(f)]
    if missing:
        return api_error(E.MISSING_FIELD, f"{', '.join(missing)} required",
                         details={f: "required" for f in missing})

    engine = WorkflowEngine()
    actor = _require_actor(engine)
    result = engine.transition(TransitionRequest(
        proposal_id=pid,
        from_status=data["from_status"],
        to_status=data["to_status"],
        actor=actor,
        comment=data.get("comment"),
        transition_reason=data.get("transition_reason"),
    ))
    return jsonify(result.to_dict())


@proposal_workflow_bp.route("/proposals/<pid>/available-transitions", methods=["GET"])
def list_available_transitions(pid):
    engine = WorkflowEngine()
    actor = _require_actor(engine)
    proposal = engine.get_proposal(pid, actor)
    return jsonify({
        "proposal_id": pid,
        "current_status": proposal.status,
        "available_transitions": engine.available_transitions(pid, actor),
    })


@proposal_workflow_bp.route("/proposals/<pid>/status-history", methods=["GET"])
def get_status_history(pid):
    engine = WorkflowEngine()
    actor = _require_actor(engine)
    entries = engine.status_history(pid, actor)
    return jsonify({"proposal_id": pid, "items": [e.to_dict() for e in entries], "total": len(entries)})


# ═════════════════════════════════════════════════════════════════════════════
# REVIEWERS
# ═════════════════════════════════════════════════════════════════════════════

@proposal_workflow_bp.route("/proposals/<pid>/reviewers", methods=["POST"])
def assign_reviewers(pid):
    """Replace pending reviewers with a new review round.

    Body: { reviewer_ids: [user_id, ...] }
    """
    data = request.get_json(silent=True) or {}
    reviewer_ids = data.get("reviewer_ids")
    if not isinstance(reviewer_ids, list):
        return api_error(E.MISSING_FIELD, "reviewer_ids must be a list",
                         details={"reviewer_ids": "required"})

    tracker = ReviewerAssignmentTracker()
    actor = _require_actor(tracker.engine)
    created = tracker.assign_reviewers(pid, reviewer_ids, assigned_by=actor)
    return jsonify({
        "proposal_id": pid,
        "review_round": created[0].review_round,
        "assignments": [a.to_dict() for a in created],
    }), 201


@proposal_workflow_bp.route("/proposals/<pid>/reviewers/pending", methods=["GET"])
def list_pending_reviewers(pid):
    tracker = ReviewerAssignmentTracker()
    actor = _require_actor(tracker.engine)
    pending = tracker.pending_reviewers(pid, actor)
    return jsonify({"proposal_id": pid, "pending": [a.to_dict() for a in pending], "total": len(pending)})


@proposal_workflow_bp.route("/proposals/<pid>/review-decision", methods=["POST"])
def submit_review_decision(pid):
    """Record the calling reviewer's decision.

    Body: { decision: "approved" | "rejected", comments? }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("decision"):
        return api_error(E.MISSING_FIELD, "decision is required",
                         details={"decision": "required"})

    tracker = ReviewerAssignmentTracker()
    actor = _require_actor(tracker.engine)
    tracker.engine.get_proposal(pid, actor)
    outcome = tracker.submit_decision(pid, actor.id, data["decision"], data.get("comments"))
    return jsonify(outcome.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# DEADLINES
# ═════════════════════════════════════════════════════════════════════════════

@proposal_workflow_bp.route("/proposals/<pid>/deadline", methods=["GET"])
def get_proposal_deadline(pid):
    """Deadline state now, or at ``?at=<iso timestamp>``."""
    processor = DeadlineProcessor()
    actor = _require_actor(processor.engine)
    proposal = processor.engine.get_proposal(pid, actor)
    at = request.args.get("at")
    now = parse_datetime(at)
    if at and now is None:
        return api_error(E.BAD_REQUEST, "at must be an ISO-8601 timestamp",
                         details={"at": at})
    result = processor.check_proposal(proposal, now)
    return jsonify({"proposal_id": pid, "deadline": result.to_dict() if result else None})


@proposal_workflow_bp.route("/cron/deadline-processor", methods=["POST"])
@require_cron_secret
def run_deadline_processor():
    """Entry point for the external hourly cron."""
    run = SchedulerService.run_job("deadline_processor")
    status_code = 500 if run.get("status") in ("failed", "error") else 200
    return jsonify(run), status_code


# ═════════════════════════════════════════════════════════════════════════════
# ORGANIZATION CONFIGURATION
# ═════════════════════════════════════════════════════════════════════════════

def _require_member(engine, oid):
    actor = _require_actor(engine)
    if actor.organization_id != oid:
        raise PermissionDenied("cross-organization access")
    return actor


@proposal_workflow_bp.route("/organizations/<oid>/workflow-settings", methods=["GET"])
def get_workflow_settings(oid):
    engine = WorkflowEngine()
    _require_member(engine, oid)
    settings = engine.settings.for_organization(oid)
    return jsonify({"organization_id": oid, **settings.to_dict()})


@proposal_workflow_bp.route("/organizations/<oid>/workflow-settings", methods=["PUT"])
def update_workflow_settings(oid):
    """Body: any of require_comments_on_rejection, require_comments_on_approval, allow_self_approval."""
    engine = WorkflowEngine()
    actor = _require_member(engine, oid)
    if actor.role is not Role.ADMIN:
        raise PermissionDenied("only admins can change workflow settings")

    data = request.get_json(silent=True) or {}
    updates = {k: data[k] for k in SETTINGS_FIELDS if k in data}
    invalid = {k: "must be a boolean" for k, v in updates.items() if not isinstance(v, bool)}
    if invalid:
        raise ValidationError("Invalid workflow settings", details=invalid)
    if not updates:
        return api_error(E.MISSING_FIELD, "No workflow settings supplied",
                         details={"fields": list(SETTINGS_FIELDS)})

    settings = engine.settings.update(oid, updated_by=actor.id, **updates)
    return jsonify({"organization_id": oid, **settings.to_dict()})


@proposal_workflow_bp.route("/organizations/<oid>/deadline-rules", methods=["GET"])
def get_deadline_rules(oid):
    processor = DeadlineProcessor()
    _require_member(processor.engine, oid)
    custom = processor.rule_source.organization_rules(oid)
    rules = custom or list(processor.rule_source.defaults)
    return jsonify({
        "organization_id": oid,
        "source": "organization" if custom else "default",
        "rules": [r.to_dict() for r in rules],
    })


@proposal_workflow_bp.route("/organizations/<oid>/deadline-rules", methods=["PUT"])
def replace_deadline_rules(oid):
    """Replace the organization's deadline rules (admin).

    Body: { rules: [{ id, from_status, to_status, deadline_hours,
                      notification_hours?, auto_transition?, requires_approval?,
                      description?, is_enabled? }, ...] }

    An empty list drops the organization's rules and restores the defaults.
    """
    processor = DeadlineProcessor()
    actor = _require_member(processor.engine, oid)
    if actor.role is not Role.ADMIN:
        raise PermissionDenied("only admins can change deadline rules")

    rules = (request.get_json(silent=True) or {}).get("rules")
    if not isinstance(rules, list):
        return api_error(E.MISSING_FIELD, "rules must be a list",
                         details={"rules": "required"})

    effective = processor.rule_source.replace(oid, rules, updated_by=actor.id)
    return jsonify({
        "organization_id": oid,
        "source": "organization" if rules else "default",
        "rules": [r.to_dict() for r in effective],
    })


@proposal_workflow_bp.route("/organizations/<oid>/deadlines", methods=["GET"])
def list_upcoming_deadlines(oid):
    """Proposals whose deadline falls within ``?hours_ahead=`` (default 168, max 2160)."""
    hours_ahead = request.args.get("hours_ahead", DEFAULT_HOURS_AHEAD, type=int)
    if not 1 <= hours_ahead <= MAX_HOURS_AHEAD:
        return api_error(E.BAD_REQUEST, f"hours_ahead must be between 1 and {MAX_HOURS_AHEAD}",
                         details={"hours_ahead": hours_ahead})

    processor = DeadlineProcessor()
    _require_member(processor.engine, oid)
    proposals = {p.id: p for p in processor.engine.proposals.list_active(oid)}
    results = processor.upcoming(oid, hours_ahead, active_proposals=proposals.values())

    items = []
    for result in results:
        proposal = proposals[result.proposal_id]
        tender_deadline = as_utc(proposal.deadline)
        items.append({
            **result.to_dict(),
            "title": proposal.title,
            "owner_id": proposal.owner_id,
            "tender_deadline": tender_deadline.isoformat() if tender_deadline else None,
        })
    return jsonify({
        "organization_id": oid,
        "hours_ahead": hours_ahead,
        "items": items,
        "total": len(items),
        "overdue": sum(1 for r in results if r.hours_remaining <= 0),
        "urgent": sum(1 for r in results if 0 < r.hours_remaining <= 24),
        "upcoming": sum(1 for r in results if r.hours_remaining > 24),
    })
