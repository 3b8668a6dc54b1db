"""
CareDraft Proposal Workflow Service
Proposal domain models.

Models:
    - Proposal: tender response moving through draft → review → submitted → archived
    - ProposalStatusHistory: append-only audit trail of status changes
"""

from datetime import datetime, timezone

from caredraft.models import db
from caredraft.models.auth import _uuid
from caredraft.utils.helpers import as_utc


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

PROPOSAL_STATUSES = {"draft", "review", "submitted", "archived"}


class Proposal(db.Model):
    """
    Proposal entity.

    ``status`` is written only by the workflow engine's conditional update.
    Proposals are never deleted here; archival is a status.
    """

    __tablename__ = "proposals"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True,
                       comment="draft, review, submitted, archived")
    owner_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True, comment="Creator; receives deadline alerts",
    )
    deadline = db.Column(db.DateTime(timezone=True), nullable=True,
                         comment="Tender submission date (informational)")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        created_at = as_utc(self.created_at)
        updated_at = as_utc(self.updated_at)
        deadline = as_utc(self.deadline)
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "status": self.status,
            "owner_id": self.owner_id,
            "deadline": deadline.isoformat() if deadline else None,
            "created_at": created_at.isoformat() if created_at else None,
            "updated_at": updated_at.isoformat() if updated_at else None,
        }

    def __repr__(self):
        return f"<Proposal {self.id} [{self.status}]>"


class ProposalStatusHistory(db.Model):
    """
    Append-only status change record.

    ``changed_by`` is NULL for system-initiated changes; ``automatic``
    is then true and the API renders the actor as ``"system"``.
    """

    __tablename__ = "proposal_status_history"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    proposal_id = db.Column(
        db.String(36), db.ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.String(36), nullable=True)
    automatic = db.Column(db.Boolean, nullable=False, default=False)
    comment = db.Column(db.Text, nullable=True)
    transition_reason = db.Column(db.String(100), nullable=True,
                                  comment="e.g. deadline_exceeded, review_completed")
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def to_dict(self):
        changed_at = as_utc(self.changed_at)
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": "system" if self.automatic else self.changed_by,
            "automatic": self.automatic,
            "comment": self.comment,
            "transition_reason": self.transition_reason,
            "changed_at": changed_at.isoformat() if changed_at else None,
        }

    def __repr__(self):
        return f"<ProposalStatusHistory {self.proposal_id}: {self.from_status} → {self.to_status}>"
