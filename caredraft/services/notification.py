"""
CareDraft Proposal Workflow Service
Notification Service.

In-app notification sink for deadline reminders, review requests and
proposal status alerts. ``send`` is the sink contract the workflow
services depend on: it reports delivery as a bool instead of raising.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from caredraft.models import db
from caredraft.models.notification import (
    NOTIFICATION_TYPES,
    PRIORITY_LOW,
    PRIORITY_URGENT,
    Notification,
)

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def send(user_id, notification_type, priority, title, content=None, *,
             organization_id=None, related_entity_type="", related_entity_id=None):
        """
        Store one in-app notification for ``user_id``.

        Returns:
            True when the notification was committed, False otherwise.
        """
        if notification_type not in NOTIFICATION_TYPES:
            raise ValueError(
                f"Invalid notification type '{notification_type}'. "
                f"Must be one of: {sorted(NOTIFICATION_TYPES)}"
            )
        priority = min(max(int(priority), PRIORITY_LOW), PRIORITY_URGENT)

        notif = Notification(
            user_id=user_id,
            organization_id=organization_id,
            type=notification_type,
            priority=priority,
            title=title,
            content=content or {},
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
        try:
            db.session.add(notif)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to store %s notification for user %s: %s",
                         notification_type, user_id, exc)
            return False
        return True

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, notification_type=None, limit=50, offset=0):
        """Retrieve notifications for a user, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        if notification_type:
            q = q.filter_by(type=notification_type)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count

    @staticmethod
    def cleanup_stale(retention_days=30):
        """Delete read notifications older than ``retention_days``."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        deleted = Notification.query.filter(
            Notification.is_read.is_(True),
            Notification.read_at < cutoff,
        ).delete(synchronize_session="fetch")
        db.session.commit()
        return deleted, cutoff
