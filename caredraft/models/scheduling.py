"""
CareDraft Proposal Workflow Service
Scheduling model.

Models:
    - ScheduledJob: one row per registered job; holds its cron line, the
      enabled flag and the outcome of recent runs
"""

from datetime import datetime, timezone

from caredraft.models import db

RUN_STATUSES = {"success", "failed", "skipped"}


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """
    Run bookkeeping for a job triggered by the external cron.

    ``cron_expression`` documents when the platform cron is expected to
    call the job; this service does not schedule anything itself.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    cron_expression = db.Column(db.String(100), nullable=False, default="0 0 * * *",
                                comment="Expected trigger, standard 5-field cron")
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    consecutive_failures = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Fold one execution into the counters. Skipped runs only touch ``last_run_*``."""
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        if status == "skipped":
            return
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.consecutive_failures = (self.consecutive_failures or 0) + 1
            self.last_error = str(error) if error else None
        else:
            self.consecutive_failures = 0

    def to_dict(self):
        return {
            "job_name": self.job_name,
            "description": self.description,
            "cron_expression": self.cron_expression,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }

    def __repr__(self):
        state = "on" if self.is_enabled else "off"
        return f"<ScheduledJob {self.job_name} [{state}]>"
