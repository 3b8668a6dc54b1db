"""
CareDraft Proposal Workflow Service
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from caredraft.models import db
from caredraft.models.auth import _uuid
from caredraft.utils.helpers import as_utc


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {"deadline", "proposal_update", "review_request", "system_announcement"}
PRIORITY_LOW = 1
PRIORITY_URGENT = 5


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``priority`` runs 1 (low) to 5 (urgent).
    """

    __tablename__ = "notifications"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    organization_id = db.Column(db.String(36), nullable=True, index=True)
    type = db.Column(db.String(30), nullable=False, default="system_announcement",
                     comment="deadline, proposal_update, review_request, system_announcement")
    priority = db.Column(db.Integer, nullable=False, default=3)
    title = db.Column(db.String(300), nullable=False)
    content = db.Column(db.JSON, default=dict)

    # Link to source entity
    related_entity_type = db.Column(db.String(30), default="", comment="proposal, ...")
    related_entity_id = db.Column(db.String(36), nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        read_at = as_utc(self.read_at)
        created_at = as_utc(self.created_at)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "content": self.content or {},
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "is_read": self.is_read,
            "read_at": read_at.isoformat() if read_at else None,
            "created_at": created_at.isoformat() if created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
