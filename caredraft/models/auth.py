"""
CareDraft Proposal Workflow Service
Organization & User models.

Identity and sessions are owned by the external identity provider; these
tables mirror just enough of it (role + organization) for workflow
permission decisions.

Models:
    - Organization: tenant boundary for proposals, users and settings
    - User: organization member with a workflow role
"""

import uuid
from datetime import datetime, timezone

from caredraft.models import db


def _uuid():
    """Generate a new UUID4 string for primary keys."""
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {"admin", "manager", "writer"}


class Organization(db.Model):
    """Tenant boundary. Nothing crosses organizations."""

    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.slug}>"


class User(db.Model):
    """Organization member. ``role`` drives the proposal status policy."""

    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200), default="")
    role = db.Column(db.String(20), nullable=False, default="writer",
                     comment="admin, manager, writer")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email} [{self.role}]>"
