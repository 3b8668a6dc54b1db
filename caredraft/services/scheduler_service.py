"""
CareDraft Proposal Workflow Service
Scheduler Service.

Registry and runner for jobs that an external cron triggers. Nothing here
keeps time: the platform cron calls ``flask run-job <name>`` or the cron
endpoint, and this module runs the job in the current app context and
records the outcome on its ScheduledJob row.

Usage:
    @register_job("deadline_processor", cron="0 * * * *")
    def process_deadlines(app):
        ...

    SchedulerService.run_job("deadline_processor")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from flask import Flask

from caredraft.models import db
from caredraft.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

# Consecutive failures after which every further failure logs at CRITICAL
ALERT_AFTER_FAILURES = 3


@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: Callable[[Flask], Any]
    cron: str

    @property
    def description(self) -> str:
        return (self.fn.__doc__ or f"Scheduled job: {self.name}").strip().splitlines()[0]


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, cron: str = "0 0 * * *"):
    """Decorator adding ``fn(app)`` to the registry under ``name``."""
    def decorator(fn):
        _job_registry[name] = JobSpec(name=name, fn=fn, cron=cron)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, JobSpec]:
    return dict(_job_registry)


class SchedulerService:
    """Class-level facade over the registry; holds the app handed to jobs."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        known = {name for (name,) in db.session.query(ScheduledJob.job_name)}
        created = [
            ScheduledJob(job_name=spec.name, description=spec.description,
                         cron_expression=spec.cron, is_enabled=True)
            for spec in _job_registry.values()
            if spec.name not in known
        ]
        if created:
            db.session.add_all(created)
            db.session.commit()
            logger.info("Registered %d scheduled job record(s): %s",
                        len(created), ", ".join(j.job_name for j in created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """Run one job now and record the outcome.

        Returns ``{"job_name", "status", "duration_ms", "result", "error"}``
        where status is success, failed, skipped (disabled) or error (the
        job could not be started at all).
        """
        spec = _job_registry.get(job_name)
        if spec is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        cls.ensure_jobs_registered()
        record = ScheduledJob.query.filter_by(job_name=job_name).one()
        log_extra = {"job_name": job_name}

        if not record.is_enabled:
            logger.info("Job %s is disabled; skipping", job_name, extra=log_extra)
            record.record_run(status="skipped")
            db.session.commit()
            return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                    "result": None, "error": None}

        started = time.monotonic()
        result, error, status = None, None, "success"
        try:
            result = spec.fn(cls._app)
        except Exception as exc:
            db.session.rollback()
            status, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra=log_extra)
        duration_ms = int((time.monotonic() - started) * 1000)

        # Re-read: the job may have rolled the session back
        record = ScheduledJob.query.filter_by(job_name=job_name).one()
        record.record_run(
            status=status,
            duration_ms=duration_ms,
            result=result if isinstance(result, dict) else {"output": str(result)},
            error=error,
        )
        db.session.commit()

        if record.consecutive_failures >= ALERT_AFTER_FAILURES:
            logger.critical("Job %s has failed %d times in a row", job_name,
                            record.consecutive_failures, extra=log_extra)

        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @classmethod
    def list_jobs(cls) -> list[dict]:
        cls.ensure_jobs_registered()
        records = {j.job_name: j for j in ScheduledJob.query.all()}
        return [records[name].to_dict() for name in sorted(_job_registry) if name in records]

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        if job_name not in _job_registry:
            return None
        cls.ensure_jobs_registered()
        record = ScheduledJob.query.filter_by(job_name=job_name).one()
        record.is_enabled = enabled
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "disabled",
                    extra={"job_name": job_name})
        return record.to_dict()
