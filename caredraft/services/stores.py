"""
CareDraft Proposal Workflow Service
Persistence collaborators for the workflow services.

Each store wraps one table behind the narrow interface the workflow
engine, reviewer tracker and deadline processor need, so those services
can be built with fakes in tests.

Stores:
    - ProposalStore: proposal lookup and the conditional status update
    - HistoryStore: append-only status history
    - ReviewerAssignmentStore: review rounds and decisions
    - UserDirectory: role / organization lookup
    - WorkflowSettingsStore: per-organization workflow policy
    - DeadlineRuleSource: per-organization deadline rules with defaults
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from caredraft.core.exceptions import PersistenceError, ValidationError
from caredraft.models import db
from caredraft.models.auth import User
from caredraft.models.proposal import Proposal, ProposalStatusHistory
from caredraft.models.workflow import (
    DeadlineRuleConfig,
    ProposalReviewerAssignment,
    ProposalWorkflowSettings,
)
from caredraft.services.deadline_rules import DEFAULT_DEADLINE_RULES, DeadlineRule
from caredraft.services.status_policy import (
    ALLOWED_TRANSITIONS,
    DEFAULT_SETTINGS,
    ProposalStatus,
    WorkflowSettings,
)

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Proposals
# ═════════════════════════════════════════════════════════════════════════════

class ProposalStore:
    """Proposal reads and the single status write path."""

    def get(self, proposal_id: str) -> Proposal | None:
        return db.session.get(Proposal, proposal_id)

    def get_status(self, proposal_id: str) -> str | None:
        return db.session.execute(
            select(Proposal.status).where(Proposal.id == proposal_id)
        ).scalar_one_or_none()

    def update_status(self, proposal_id: str, expected_status: str, new_status: str) -> bool:
        """Set ``new_status`` only if the row still holds ``expected_status``.

        Returns False when no row matched (someone else moved it first).
        Raises PersistenceError when the database rejects the write.
        """
        stmt = (
            update(Proposal)
            .where(Proposal.id == proposal_id, Proposal.status == expected_status)
            .values(status=new_status, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            if result.rowcount != 1:
                db.session.rollback()
                return False
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Status update failed for proposal %s: %s", proposal_id, exc,
                         extra={"proposal_id": proposal_id})
            raise PersistenceError(f"Could not update status of proposal {proposal_id}") from exc
        return True

    def list_active(self, organization_id: str | None = None) -> list[Proposal]:
        """Every proposal not yet archived, oldest first."""
        q = Proposal.query.filter(Proposal.status != "archived")
        if organization_id:
            q = q.filter_by(organization_id=organization_id)
        return q.order_by(Proposal.created_at.asc()).all()


# ═════════════════════════════════════════════════════════════════════════════
# Status history
# ═════════════════════════════════════════════════════════════════════════════

class HistoryStore:
    """Append-only access to ``proposal_status_history``."""

    def append(
        self,
        *,
        proposal_id: str,
        from_status: str | None,
        to_status: str,
        changed_by: str | None,
        automatic: bool = False,
        comment: str | None = None,
        transition_reason: str | None = None,
    ) -> ProposalStatusHistory:
        entry = ProposalStatusHistory(
            proposal_id=proposal_id,
            from_status=from_status,
            to_status=to_status,
            changed_by=changed_by,
            automatic=automatic,
            comment=comment,
            transition_reason=transition_reason,
            changed_at=_utcnow(),
        )
        try:
            db.session.add(entry)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"Could not write history for proposal {proposal_id}") from exc
        return entry

    def latest(self, proposal_id: str) -> ProposalStatusHistory | None:
        return (
            ProposalStatusHistory.query
            .filter_by(proposal_id=proposal_id)
            .order_by(ProposalStatusHistory.changed_at.desc())
            .first()
        )

    def list_for_proposal(self, proposal_id: str) -> list[ProposalStatusHistory]:
        """Newest first."""
        return (
            ProposalStatusHistory.query
            .filter_by(proposal_id=proposal_id)
            .order_by(ProposalStatusHistory.changed_at.desc())
            .all()
        )


# ═════════════════════════════════════════════════════════════════════════════
# Reviewer assignments
# ═════════════════════════════════════════════════════════════════════════════

class ReviewerAssignmentStore:
    """Review rounds. A round is the set of assignments created together."""

    def current_round(self, proposal_id: str) -> int:
        value = db.session.execute(
            select(func.max(ProposalReviewerAssignment.review_round))
            .where(ProposalReviewerAssignment.proposal_id == proposal_id)
        ).scalar()
        return value or 0

    def replace_pending(
        self,
        proposal_id: str,
        reviewer_ids: list[str],
        assigned_by: str | None,
    ) -> list[ProposalReviewerAssignment]:
        """Drop pending assignments and open a new round for ``reviewer_ids``."""
        try:
            review_round = self.current_round(proposal_id) + 1
            removed = (
                ProposalReviewerAssignment.query
                .filter_by(proposal_id=proposal_id)
                .filter(ProposalReviewerAssignment.completed_at.is_(None))
                .delete(synchronize_session="fetch")
            )
            created = []
            for reviewer_id in reviewer_ids:
                assignment = ProposalReviewerAssignment(
                    proposal_id=proposal_id,
                    reviewer_id=reviewer_id,
                    assigned_by=assigned_by,
                    review_round=review_round,
                    assigned_at=_utcnow(),
                )
                db.session.add(assignment)
                created.append(assignment)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"Could not assign reviewers for proposal {proposal_id}") from exc
        if removed:
            logger.info("Replaced %d pending reviewer assignment(s) on proposal %s",
                        removed, proposal_id, extra={"proposal_id": proposal_id})
        return created

    def pending_assignment(self, proposal_id: str, reviewer_id: str) -> ProposalReviewerAssignment | None:
        return (
            ProposalReviewerAssignment.query
            .filter_by(proposal_id=proposal_id, reviewer_id=reviewer_id)
            .filter(ProposalReviewerAssignment.completed_at.is_(None))
            .order_by(ProposalReviewerAssignment.review_round.desc())
            .first()
        )

    def pending_for(self, proposal_id: str) -> list[ProposalReviewerAssignment]:
        return (
            ProposalReviewerAssignment.query
            .filter_by(proposal_id=proposal_id)
            .filter(ProposalReviewerAssignment.completed_at.is_(None))
            .order_by(ProposalReviewerAssignment.assigned_at.asc())
            .all()
        )

    def for_round(self, proposal_id: str, review_round: int) -> list[ProposalReviewerAssignment]:
        return (
            ProposalReviewerAssignment.query
            .filter_by(proposal_id=proposal_id, review_round=review_round)
            .all()
        )

    def is_assigned(self, proposal_id: str, user_id: str) -> bool:
        return (
            ProposalReviewerAssignment.query
            .filter_by(proposal_id=proposal_id, reviewer_id=user_id)
            .first()
        ) is not None

    def complete(
        self,
        assignment: ProposalReviewerAssignment,
        decision: str,
        comments: str | None = None,
    ) -> ProposalReviewerAssignment:
        assignment.decision = decision
        assignment.review_comments = comments
        assignment.completed_at = _utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"Could not record review decision {assignment.id}") from exc
        return assignment


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════

class UserDirectory:
    """Read-only mirror of the identity provider's users."""

    def get(self, user_id: str) -> User | None:
        if not user_id:
            return None
        return db.session.get(User, user_id)

    def active_member_ids(self, organization_id: str, user_ids: list[str]) -> set[str]:
        """Subset of ``user_ids`` that are active members of the organization."""
        if not user_ids:
            return set()
        rows = db.session.execute(
            select(User.id).where(
                User.id.in_(user_ids),
                User.organization_id == organization_id,
                User.is_active.is_(True),
            )
        ).scalars().all()
        return set(rows)


# ═════════════════════════════════════════════════════════════════════════════
# Workflow settings
# ═════════════════════════════════════════════════════════════════════════════

SETTINGS_FIELDS = (
    "require_comments_on_rejection",
    "require_comments_on_approval",
    "allow_self_approval",
)


class WorkflowSettingsStore:
    """Per-organization workflow policy; defaults when nothing is stored."""

    def for_organization(self, organization_id: str) -> WorkflowSettings:
        row = ProposalWorkflowSettings.query.filter_by(organization_id=organization_id).first()
        if row is None:
            return DEFAULT_SETTINGS
        return WorkflowSettings(
            require_comments_on_rejection=row.require_comments_on_rejection,
            require_comments_on_approval=row.require_comments_on_approval,
            allow_self_approval=row.allow_self_approval,
        )

    def update(self, organization_id: str, *, updated_by: str | None = None, **fields) -> WorkflowSettings:
        row = ProposalWorkflowSettings.query.filter_by(organization_id=organization_id).first()
        if row is None:
            row = ProposalWorkflowSettings(organization_id=organization_id)
            for name in SETTINGS_FIELDS:
                setattr(row, name, getattr(DEFAULT_SETTINGS, name))
            db.session.add(row)
        for name, value in fields.items():
            if name in SETTINGS_FIELDS:
                setattr(row, name, value)
        row.updated_by = updated_by
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"Could not save workflow settings for {organization_id}") from exc
        logger.info("Workflow settings updated for organization %s by %s",
                    organization_id, updated_by, extra={"organization_id": organization_id})
        return self.for_organization(organization_id)


# ═════════════════════════════════════════════════════════════════════════════
# Deadline rules
# ═════════════════════════════════════════════════════════════════════════════

class DeadlineRuleSource:
    """Rule configuration: enabled organization rows replace the defaults."""

    def __init__(self, defaults: tuple[DeadlineRule, ...] = DEFAULT_DEADLINE_RULES):
        self.defaults = defaults

    def organization_rules(self, organization_id: str) -> list[DeadlineRule]:
        rows = (
            DeadlineRuleConfig.query
            .filter_by(organization_id=organization_id, is_enabled=True)
            .order_by(DeadlineRuleConfig.sort_order.asc(), DeadlineRuleConfig.rule_key.asc())
            .all()
        )
        return [
            DeadlineRule(
                id=row.rule_key,
                from_status=row.from_status,
                to_status=row.to_status,
                deadline_hours=row.deadline_hours,
                notification_hours=tuple(row.notification_hours or ()),
                auto_transition=row.auto_transition,
                requires_approval=row.requires_approval,
                description=row.description or "",
            )
            for row in rows
        ]

    def rules_for_organization(self, organization_id: str | None) -> list[DeadlineRule]:
        if organization_id:
            custom = self.organization_rules(organization_id)
            if custom:
                return custom
        return list(self.defaults)

    def replace(
        self,
        organization_id: str,
        rules: list[dict],
        *,
        updated_by: str | None = None,
    ) -> list[DeadlineRule]:
        """Swap the organization's rules for ``rules``; an empty list restores the defaults.

        List order becomes evaluation order. Raises ValidationError before
        touching the table when any rule is malformed.
        """
        errors = {}
        seen = set()
        for position, item in enumerate(rules):
            for name, problem in _rule_errors(item).items():
                errors[f"rules[{position}].{name}"] = problem
            key = item.get("id") if isinstance(item, dict) else None
            if key in seen:
                errors[f"rules[{position}].id"] = "duplicate rule id"
            seen.add(key)
        if errors:
            raise ValidationError("Invalid deadline rules", details=errors)

        try:
            DeadlineRuleConfig.query.filter_by(organization_id=organization_id).delete(
                synchronize_session="fetch")
            db.session.add_all([
                DeadlineRuleConfig(
                    organization_id=organization_id,
                    rule_key=item["id"],
                    from_status=item["from_status"],
                    to_status=item["to_status"],
                    deadline_hours=item["deadline_hours"],
                    notification_hours=sorted(item.get("notification_hours") or [], reverse=True),
                    auto_transition=item.get("auto_transition", False),
                    requires_approval=item.get("requires_approval", False),
                    description=item.get("description") or "",
                    is_enabled=item.get("is_enabled", True),
                    sort_order=position,
                )
                for position, item in enumerate(rules)
            ])
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"Could not save deadline rules for {organization_id}") from exc
        logger.info("Deadline rules for organization %s replaced by %s (%d rule(s))",
                    organization_id, updated_by, len(rules),
                    extra={"organization_id": organization_id})
        return self.rules_for_organization(organization_id)


def _rule_errors(item) -> dict[str, str]:
    """Field problems of one rule payload; empty when it is usable."""
    if not isinstance(item, dict):
        return {"rule": "must be an object"}
    errors = {}
    if not isinstance(item.get("id"), str) or not item["id"].strip():
        errors["id"] = "required"

    from_status = _status_or_none(item.get("from_status"))
    to_status = _status_or_none(item.get("to_status"))
    if from_status is None:
        errors["from_status"] = "unknown status"
    elif from_status is ProposalStatus.ARCHIVED:
        errors["from_status"] = "archived proposals have no deadlines"
    if to_status is None:
        errors["to_status"] = "unknown status"
    elif from_status is not None and to_status is not from_status \
            and to_status not in ALLOWED_TRANSITIONS[from_status]:
        errors["to_status"] = f"'{from_status.value}' cannot move to '{to_status.value}'"

    hours = item.get("deadline_hours")
    if isinstance(hours, bool) or not isinstance(hours, int) or hours <= 0:
        errors["deadline_hours"] = "must be a positive whole number of hours"

    offsets = item.get("notification_hours", [])
    if not isinstance(offsets, list) or any(
        isinstance(h, bool) or not isinstance(h, (int, float)) or h < 0 for h in offsets
    ):
        errors["notification_hours"] = "must be a list of non-negative hours"

    for flag in ("auto_transition", "requires_approval", "is_enabled"):
        if flag in item and not isinstance(item[flag], bool):
            errors[flag] = "must be a boolean"
    return errors


def _status_or_none(value) -> ProposalStatus | None:
    try:
        return ProposalStatus(value)
    except (ValueError, TypeError):
        return None
