"""
CareDraft Proposal Workflow Service
Scheduled Jobs.

Concrete job implementations run by the external cron.

Jobs:
    - deadline_processor: Deadline reminders and automatic transitions
    - stale_notification_cleanup: Deletes old read notifications
"""

from __future__ import annotations

import logging
from typing import Any

from caredraft.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Deadline Processor
# ═══════════════════════════════════════════════════════════════════════════

@register_job("deadline_processor", cron="0 * * * *")
def process_deadlines(app) -> dict[str, Any]:
    """Send due deadline reminders and apply overdue automatic transitions."""
    from caredraft.services.deadline_processor import DeadlineProcessor

    processor = DeadlineProcessor(budget_ms=app.config.get("DEADLINE_PROPOSAL_BUDGET_MS"))
    report = processor.process_all()
    return report.to_dict()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Stale Notification Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("stale_notification_cleanup", cron="0 2 * * *")
def cleanup_stale_notifications(app) -> dict[str, Any]:
    """Delete read notifications older than the retention window."""
    from caredraft.services.notification import NotificationService

    retention_days = app.config.get("NOTIFICATION_RETENTION_DAYS", 30)
    deleted, cutoff = NotificationService.cleanup_stale(retention_days)
    logger.info("Stale notification cleanup: deleted %d old read notifications", deleted,
                extra={"job_name": "stale_notification_cleanup"})
    return {"deleted": deleted, "cutoff": cutoff.isoformat()}
