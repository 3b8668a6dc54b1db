"""
CareDraft Proposal Workflow Service
Workflow configuration & review models.

Models:
    - ProposalReviewerAssignment: one reviewer's slot in a review round
    - ProposalWorkflowSettings: per-organization comment / approval policy
    - DeadlineRuleConfig: per-organization deadline rule override
"""

from datetime import datetime, timezone

from caredraft.models import db
from caredraft.models.auth import _uuid
from caredraft.utils.helpers import as_utc


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

REVIEW_DECISIONS = {"approved", "rejected"}


class ProposalReviewerAssignment(db.Model):
    """
    Reviewer assignment.

    Pending while ``completed_at`` is NULL. Reassignment deletes pending
    rows and opens a new ``review_round``; completed rows are kept.
    """

    __tablename__ = "proposal_reviewer_assignments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    proposal_id = db.Column(
        db.String(36), db.ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    reviewer_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    assigned_by = db.Column(db.String(36), nullable=True)
    review_round = db.Column(db.Integer, nullable=False, default=1)
    assigned_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decision = db.Column(db.String(20), nullable=True, comment="approved, rejected")
    review_comments = db.Column(db.Text, nullable=True)

    @property
    def is_pending(self):
        return self.completed_at is None

    def to_dict(self):
        assigned_at = as_utc(self.assigned_at)
        completed_at = as_utc(self.completed_at)
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "reviewer_id": self.reviewer_id,
            "assigned_by": self.assigned_by,
            "review_round": self.review_round,
            "assigned_at": assigned_at.isoformat() if assigned_at else None,
            "completed_at": completed_at.isoformat() if completed_at else None,
            "decision": self.decision,
            "review_comments": self.review_comments,
            "is_pending": self.is_pending,
        }

    def __repr__(self):
        return f"<ProposalReviewerAssignment {self.proposal_id}:{self.reviewer_id} r{self.review_round}>"


class ProposalWorkflowSettings(db.Model):
    """Organization-level workflow policy. A missing row means defaults."""

    __tablename__ = "proposal_workflow_settings"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    require_comments_on_rejection = db.Column(db.Boolean, nullable=False, default=True)
    require_comments_on_approval = db.Column(db.Boolean, nullable=False, default=False)
    allow_self_approval = db.Column(db.Boolean, nullable=False, default=False)
    updated_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        updated_at = as_utc(self.updated_at)
        return {
            "organization_id": self.organization_id,
            "require_comments_on_rejection": self.require_comments_on_rejection,
            "require_comments_on_approval": self.require_comments_on_approval,
            "allow_self_approval": self.allow_self_approval,
            "updated_by": self.updated_by,
            "updated_at": updated_at.isoformat() if updated_at else None,
        }

    def __repr__(self):
        return f"<ProposalWorkflowSettings org={self.organization_id}>"


class DeadlineRuleConfig(db.Model):
    """
    Organization-specific deadline rule.

    When an organization has at least one enabled row, its rows replace
    the built-in default rule set entirely.
    """

    __tablename__ = "deadline_rules"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "rule_key", name="uq_deadline_rule_org_key"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    rule_key = db.Column(db.String(100), nullable=False)
    from_status = db.Column(db.String(20), nullable=False)
    to_status = db.Column(db.String(20), nullable=False)
    deadline_hours = db.Column(db.Integer, nullable=False)
    notification_hours = db.Column(db.JSON, default=list, comment="Hours before deadline, e.g. [48, 24, 6]")
    auto_transition = db.Column(db.Boolean, nullable=False, default=False)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)
    description = db.Column(db.String(500), default="")
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "rule_key": self.rule_key,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "deadline_hours": self.deadline_hours,
            "notification_hours": self.notification_hours or [],
            "auto_transition": self.auto_transition,
            "requires_approval": self.requires_approval,
            "description": self.description,
            "is_enabled": self.is_enabled,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<DeadlineRuleConfig {self.rule_key} org={self.organization_id}>"
