"""
CareDraft Proposal Workflow Service
Batch Deadline Processor.

Runs every active proposal through the deadline rule engine, sends the
reminders that are due and performs the automatic transitions that are
owed. Each proposal is processed independently: a failure is recorded in
the report and the batch moves on.

Invoked hourly by an external cron through either
``flask process-deadlines`` or ``POST /api/v1/cron/deadline-processor``.

Usage:
    from caredraft.services.deadline_processor import DeadlineProcessor

    report = DeadlineProcessor().process_all()
    print(report.to_dict())
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from caredraft.core.exceptions import NotificationDeliveryError
from caredraft.models import db
from caredraft.services.deadline_rules import (
    DeadlineCheckResult,
    DeadlineRule,
    check_deadline,
    notification_priority,
)
from caredraft.services.notification import NotificationService
from caredraft.services.proposal_workflow import TransitionRequest, WorkflowEngine
from caredraft.services.reviewer_assignment import ReviewerAssignmentTracker
from caredraft.services.status_policy import SYSTEM, ProposalStatus
from caredraft.services.stores import DeadlineRuleSource

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED_REASON = "deadline_exceeded"
DEFAULT_PROPOSAL_BUDGET_MS = 2000
DEFAULT_HOURS_AHEAD = 168


@dataclass
class ProcessingReport:
    processed_at: datetime
    proposals_checked: int = 0
    notifications_sent: int = 0
    transitions_performed: int = 0
    errors: list[dict] = field(default_factory=list)
    duration_ms: int = 0

    def record_error(self, proposal_id: str, exc: Exception) -> None:
        self.errors.append({
            "proposal_id": proposal_id,
            "error": str(exc),
            "type": type(exc).__name__,
        })

    def to_dict(self) -> dict:
        return {
            "processed_at": self.processed_at.isoformat(),
            "proposals_checked": self.proposals_checked,
            "notifications_sent": self.notifications_sent,
            "transitions_performed": self.transitions_performed,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


class DeadlineProcessor:
    """Sequential batch over active proposals."""

    def __init__(
        self,
        engine: WorkflowEngine | None = None,
        sink=None,
        rule_source: DeadlineRuleSource | None = None,
        budget_ms: int | None = None,
        reviews: ReviewerAssignmentTracker | None = None,
    ):
        self.engine = engine or WorkflowEngine()
        self.sink = sink or NotificationService
        self.rule_source = rule_source or DeadlineRuleSource()
        self.budget_ms = budget_ms or DEFAULT_PROPOSAL_BUDGET_MS
        self.reviews = reviews or ReviewerAssignmentTracker(engine=self.engine, sink=self.sink)

    # ── Single proposal ───────────────────────────────────────────────────

    def status_changed_at(self, proposal) -> datetime:
        """Latest history timestamp, or creation time when there is no history."""
        latest = self.engine.history.latest(proposal.id)
        if latest is not None:
            return latest.changed_at
        return proposal.created_at

    def check_proposal(
        self,
        proposal,
        now: datetime | None = None,
        rules: list[DeadlineRule] | None = None,
    ) -> DeadlineCheckResult | None:
        if rules is None:
            rules = self.rule_source.rules_for_organization(proposal.organization_id)
        return check_deadline(proposal, self.status_changed_at(proposal), rules, now)

    def _send_reminder(self, proposal, result: DeadlineCheckResult) -> None:
        rule = result.applicable_rule
        if rule.notify_only:
            title = f"Reminder: '{proposal.title}' is still in {result.current_status}"
        else:
            title = (f"Deadline approaching: '{proposal.title}' moves to {rule.to_status} "
                     f"in {result.hours_remaining:.0f}h")
        content = {
            "proposal_id": proposal.id,
            "from_status": rule.from_status,
            "to_status": rule.to_status,
            "hours_remaining": round(result.hours_remaining, 1),
            "rule_id": rule.id,
            "deadline_at": result.deadline_at.isoformat(),
        }
        try:
            delivered = self.sink.send(
                proposal.owner_id,
                "deadline",
                notification_priority(result.hours_remaining),
                title,
                content,
                organization_id=proposal.organization_id,
                related_entity_type="proposal",
                related_entity_id=proposal.id,
            )
        except Exception as exc:
            raise NotificationDeliveryError(proposal.owner_id, "deadline") from exc
        if not delivered:
            raise NotificationDeliveryError(proposal.owner_id, "deadline")

    def _alert_owner(self, proposal, rule: DeadlineRule) -> None:
        try:
            delivered = self.sink.send(
                proposal.owner_id,
                "proposal_update",
                4,
                f"'{proposal.title}' moved to {rule.to_status}: deadline exceeded",
                {"proposal_id": proposal.id, "from_status": rule.from_status,
                 "to_status": rule.to_status, "rule_id": rule.id},
                organization_id=proposal.organization_id,
                related_entity_type="proposal",
                related_entity_id=proposal.id,
            )
        except Exception:
            logger.exception("Transition alert for proposal %s failed", proposal.id,
                             extra={"proposal_id": proposal.id})
            return
        if not delivered:
            logger.warning("Transition alert for proposal %s not delivered", proposal.id,
                           extra={"proposal_id": proposal.id})

    def process_proposal(
        self,
        proposal,
        report: ProcessingReport,
        now: datetime | None = None,
        rules: list[DeadlineRule] | None = None,
    ) -> DeadlineCheckResult | None:
        """Check one proposal and act on the result, updating ``report``.

        Reminder delivery failures are recorded and do not block an owed
        transition. Anything else propagates to the caller.

        A proposal in review whose reviewers have all decided gets the
        round's outcome applied first and is not checked further this run.
        """
        if proposal.status == ProposalStatus.REVIEW.value:
            settled = self.reviews.reconcile(proposal.id)
            if settled is not None and settled.transition is not None:
                report.transitions_performed += 1
                return None

        result = self.check_proposal(proposal, now, rules)
        if result is None:
            return None

        if result.should_notify:
            if not proposal.owner_id:
                logger.warning("Proposal %s has no owner; deadline reminder skipped", proposal.id,
                               extra={"proposal_id": proposal.id})
            else:
                try:
                    self._send_reminder(proposal, result)
                    report.notifications_sent += 1
                except NotificationDeliveryError as exc:
                    logger.error("Deadline reminder for proposal %s failed: %s", proposal.id, exc,
                                 extra={"proposal_id": proposal.id})
                    report.record_error(proposal.id, exc)

        if result.should_transition:
            rule = result.applicable_rule
            self.engine.transition(TransitionRequest(
                proposal_id=proposal.id,
                from_status=rule.from_status,
                to_status=rule.to_status,
                actor=SYSTEM,
                comment=f"Automatic transition: {rule.id} deadline of {rule.deadline_hours:g}h exceeded",
                transition_reason=DEADLINE_EXCEEDED_REASON,
            ))
            report.transitions_performed += 1
            if proposal.owner_id:
                self._alert_owner(proposal, rule)

        return result

    # ── Dashboard ─────────────────────────────────────────────────────────

    def upcoming(
        self,
        organization_id: str,
        hours_ahead: float = DEFAULT_HOURS_AHEAD,
        now: datetime | None = None,
        active_proposals=None,
    ) -> list[DeadlineCheckResult]:
        """Deadline checks due within ``hours_ahead``, soonest first.

        Overdue proposals (``hours_remaining == 0``) are included. Read-only:
        nothing is sent and nothing transitions.
        """
        if active_proposals is None:
            active_proposals = self.engine.proposals.list_active(organization_id)
        rules = self.rule_source.rules_for_organization(organization_id)

        results = []
        for proposal in active_proposals:
            result = self.check_proposal(proposal, now, rules)
            if result is not None and result.hours_remaining <= hours_ahead:
                results.append(result)
        results.sort(key=lambda r: (r.hours_remaining, r.deadline_at))
        return results

    # ── Batch ─────────────────────────────────────────────────────────────

    def process_all(self, active_proposals=None, now: datetime | None = None) -> ProcessingReport:
        """Process ``active_proposals`` (default: every non-archived proposal)."""
        started = time.monotonic()
        report = ProcessingReport(processed_at=now or datetime.now(timezone.utc))

        if active_proposals is None:
            active_proposals = self.engine.proposals.list_active()

        rules_cache: dict[str, list[DeadlineRule]] = {}
        for proposal in active_proposals:
            report.proposals_checked += 1
            proposal_id = proposal.id
            proposal_started = time.monotonic()
            try:
                org_id = proposal.organization_id
                if org_id not in rules_cache:
                    rules_cache[org_id] = self.rule_source.rules_for_organization(org_id)
                self.process_proposal(proposal, report, now, rules_cache[org_id])
            except Exception as exc:
                db.session.rollback()
                logger.error("Deadline processing failed for proposal %s: %s", proposal_id, exc,
                             extra={"proposal_id": proposal_id})
                report.record_error(proposal_id, exc)
            elapsed_ms = (time.monotonic() - proposal_started) * 1000
            if elapsed_ms > self.budget_ms:
                logger.warning("Deadline check for proposal %s took %.0fms (budget %dms)",
                               proposal_id, elapsed_ms, self.budget_ms,
                               extra={"proposal_id": proposal_id, "duration_ms": elapsed_ms})

        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Deadline processor: checked=%d notified=%d transitioned=%d errors=%d",
            report.proposals_checked, report.notifications_sent,
            report.transitions_performed, len(report.errors),
            extra={"job_name": "deadline_processor", "duration_ms": report.duration_ms},
        )
        return report
