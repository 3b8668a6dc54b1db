"""
CareDraft Proposal Workflow Service
Reviewer Assignment Tracker.

Tracks who must review a proposal and resolves the collective outcome:
once every reviewer of the current round has decided, any rejection sends
the proposal back to draft; otherwise it is submitted. The outcome is
applied through the workflow engine by the system actor.

Usage:
    from caredraft.services.reviewer_assignment import ReviewerAssignmentTracker

    tracker = ReviewerAssignmentTracker()
    tracker.assign_reviewers(pid, ["u-1", "u-2"], assigned_by=actor)
    outcome = tracker.submit_decision(pid, "u-1", "approved")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from caredraft.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)
from caredraft.models.workflow import ProposalReviewerAssignment
from caredraft.services.notification import NotificationService
from caredraft.services.proposal_workflow import (
    TransitionRequest,
    TransitionResult,
    WorkflowEngine,
)
from caredraft.services.status_policy import (
    COMMENT_REQUIRED_ON_APPROVAL,
    COMMENT_REQUIRED_ON_REJECTION,
    SYSTEM,
    Actor,
    ProposalStatus,
)
from caredraft.services.stores import ReviewerAssignmentStore
from caredraft.utils.helpers import as_utc

logger = logging.getLogger(__name__)

REVIEW_COMPLETED_REASON = "review_completed"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ReviewOutcome:
    """Result of recording one reviewer's decision."""
    assignment: ProposalReviewerAssignment
    pending: bool
    pending_count: int = 0
    approvals: int = 0
    rejections: int = 0
    outcome_status: ProposalStatus | None = None
    transition: TransitionResult | None = None

    def to_dict(self) -> dict:
        return {
            "assignment": self.assignment.to_dict(),
            "pending": self.pending,
            "pending_count": self.pending_count,
            "approvals": self.approvals,
            "rejections": self.rejections,
            "outcome_status": self.outcome_status.value if self.outcome_status else None,
            "transition": self.transition.to_dict() if self.transition else None,
        }


def resolve_review_outcome(decisions: Iterable[ReviewDecision | str]) -> ProposalStatus:
    """Tally a completed round: any rejection → draft, otherwise submitted."""
    decisions = [ReviewDecision(d) for d in decisions]
    if not decisions:
        raise ValueError("cannot resolve a review round with no decisions")
    if ReviewDecision.REJECTED in decisions:
        return ProposalStatus.DRAFT
    return ProposalStatus.SUBMITTED


def _coerce_decision(value) -> ReviewDecision:
    try:
        return ReviewDecision(value)
    except ValueError:
        raise ValidationError(
            f"Unknown review decision '{value}'",
            details={"decision": f"must be one of {[d.value for d in ReviewDecision]}"},
        ) from None


class ReviewerAssignmentTracker:
    """Reviewer rounds and decision tally over injected collaborators."""

    def __init__(
        self,
        engine: WorkflowEngine | None = None,
        assignments: ReviewerAssignmentStore | None = None,
        sink=None,
    ):
        self.engine = engine or WorkflowEngine()
        self.assignments = assignments or ReviewerAssignmentStore()
        self.sink = sink or NotificationService

    # ── Assignment ────────────────────────────────────────────────────────

    def assign_reviewers(
        self,
        proposal_id: str,
        reviewer_ids: list[str],
        assigned_by: Actor | None = None,
    ) -> list[ProposalReviewerAssignment]:
        """Replace pending assignments with a new round for ``reviewer_ids``.

        Completed assignments are left untouched. Every reviewer must be
        an active member of the proposal's organization.
        """
        proposal = self.engine.get_proposal(proposal_id, assigned_by)
        if proposal.status not in (ProposalStatus.DRAFT.value, ProposalStatus.REVIEW.value):
            raise ValidationError(
                f"Reviewers cannot be assigned to a proposal in status '{proposal.status}'",
                details={"status": proposal.status},
            )

        unique_ids = list(dict.fromkeys(r for r in (reviewer_ids or []) if r))
        if not unique_ids:
            raise ValidationError("At least one reviewer is required",
                                  details={"reviewer_ids": "required"})

        members = self.engine.users.active_member_ids(proposal.organization_id, unique_ids)
        invalid = [r for r in unique_ids if r not in members]
        if invalid:
            raise ValidationError(
                "Reviewers must be active members of the proposal's organization",
                details={"reviewer_ids": invalid},
            )

        assigned_by_id = getattr(assigned_by, "id", None)
        created = self.assignments.replace_pending(proposal.id, unique_ids, assigned_by_id)
        logger.info("Assigned %d reviewer(s) to proposal %s (round %d)",
                    len(created), proposal.id, created[0].review_round,
                    extra={"proposal_id": proposal.id, "organization_id": proposal.organization_id})

        for assignment in created:
            delivered = self.sink.send(
                assignment.reviewer_id,
                "review_request",
                3,
                f"Review requested: {proposal.title}",
                {"proposal_id": proposal.id, "review_round": assignment.review_round,
                 "assigned_by": assigned_by_id},
                organization_id=proposal.organization_id,
                related_entity_type="proposal",
                related_entity_id=proposal.id,
            )
            if not delivered:
                logger.warning("Review request for proposal %s not delivered to %s",
                               proposal.id, assignment.reviewer_id,
                               extra={"proposal_id": proposal.id})
        return created

    # ── Decisions ─────────────────────────────────────────────────────────

    def submit_decision(
        self,
        proposal_id: str,
        reviewer_id: str,
        decision: ReviewDecision | str,
        comments: str | None = None,
    ) -> ReviewOutcome:
        """Record ``reviewer_id``'s decision and resolve the round when complete.

        A reviewer retrying after their round's outcome failed to apply gets
        the outcome applied instead of a NotFoundError.
        """
        decision = _coerce_decision(decision)
        comments = (comments or "").strip() or None

        proposal = self.engine.get_proposal(proposal_id)
        assignment = self.assignments.pending_assignment(proposal.id, reviewer_id)
        if assignment is None:
            outcome = self.reconcile(proposal.id, reviewer_id=reviewer_id)
            if outcome is not None:
                return outcome
            raise NotFoundError(resource="Pending review assignment",
                                resource_id=f"{proposal_id}/{reviewer_id}")
        if proposal.status != ProposalStatus.REVIEW.value:
            raise ConcurrentModificationError(proposal.id, ProposalStatus.REVIEW.value, proposal.status)

        settings = self.engine.settings.for_organization(proposal.organization_id)
        if not comments:
            if decision is ReviewDecision.REJECTED and settings.require_comments_on_rejection:
                raise ValidationError(COMMENT_REQUIRED_ON_REJECTION,
                                      details={"comments": COMMENT_REQUIRED_ON_REJECTION})
            if decision is ReviewDecision.APPROVED and settings.require_comments_on_approval:
                raise ValidationError(COMMENT_REQUIRED_ON_APPROVAL,
                                      details={"comments": COMMENT_REQUIRED_ON_APPROVAL})

        self.assignments.complete(assignment, decision.value, comments)
        logger.info("Reviewer %s %s proposal %s", reviewer_id, decision.value, proposal.id,
                    extra={"proposal_id": proposal.id, "organization_id": proposal.organization_id})

        round_assignments = self.assignments.for_round(proposal.id, assignment.review_round)
        pending = [a for a in round_assignments if a.is_pending]
        if pending:
            return ReviewOutcome(assignment=assignment, pending=True, pending_count=len(pending))
        return self._resolve_round(proposal, assignment, round_assignments)

    def reconcile(self, proposal_id: str, reviewer_id: str | None = None) -> ReviewOutcome | None:
        """Apply the outcome of a fully decided round that never moved the proposal.

        Happens when the tally transition failed after the last decision was
        stored. Only a round finished after the proposal entered review
        counts; with ``reviewer_id`` the reviewer must belong to that round.
        Returns None when there is nothing to settle.
        """
        proposal = self.engine.get_proposal(proposal_id)
        if proposal.status != ProposalStatus.REVIEW.value:
            return None
        review_round = self.assignments.current_round(proposal.id)
        if not review_round:
            return None
        round_assignments = self.assignments.for_round(proposal.id, review_round)
        if not round_assignments or any(a.is_pending for a in round_assignments):
            return None

        latest = self.engine.history.latest(proposal.id)
        entered_review_at = as_utc(latest.changed_at if latest is not None else proposal.created_at)
        finished_at = max(as_utc(a.completed_at) for a in round_assignments)
        if entered_review_at is not None and finished_at < entered_review_at:
            return None

        if reviewer_id is None:
            assignment = max(round_assignments, key=lambda a: as_utc(a.completed_at))
        else:
            assignment = next((a for a in round_assignments if a.reviewer_id == reviewer_id), None)
            if assignment is None:
                return None

        logger.warning("Review round %d of proposal %s was decided but not applied; applying it now",
                       review_round, proposal.id,
                       extra={"proposal_id": proposal.id, "organization_id": proposal.organization_id})
        return self._resolve_round(proposal, assignment, round_assignments)

    def _resolve_round(
        self,
        proposal,
        assignment: ProposalReviewerAssignment,
        round_assignments: list[ProposalReviewerAssignment],
    ) -> ReviewOutcome:
        decisions = [ReviewDecision(a.decision) for a in round_assignments]
        approvals = decisions.count(ReviewDecision.APPROVED)
        rejections = decisions.count(ReviewDecision.REJECTED)
        outcome_status = resolve_review_outcome(decisions)

        try:
            result = self.engine.transition(TransitionRequest(
                proposal_id=proposal.id,
                from_status=ProposalStatus.REVIEW,
                to_status=outcome_status,
                actor=SYSTEM,
                comment=f"Review completed: {approvals} approvals, {rejections} rejections",
                transition_reason=REVIEW_COMPLETED_REASON,
            ))
        except ConcurrentModificationError as exc:
            # Another request finishing the same round got there first
            logger.info("Review outcome for proposal %s already applied: %s", proposal.id, exc,
                        extra={"proposal_id": proposal.id})
            result = None
        else:
            self._notify_owner(result, outcome_status, approvals, rejections)

        return ReviewOutcome(
            assignment=assignment,
            pending=False,
            approvals=approvals,
            rejections=rejections,
            outcome_status=outcome_status,
            transition=result,
        )

    def _notify_owner(self, result: TransitionResult, outcome_status: ProposalStatus,
                      approvals: int, rejections: int) -> None:
        proposal = result.proposal
        if not proposal.owner_id:
            return
        verb = "approved" if outcome_status is ProposalStatus.SUBMITTED else "returned to draft"
        delivered = self.sink.send(
            proposal.owner_id,
            "proposal_update",
            4,
            f"Review completed: {proposal.title} {verb}",
            {"proposal_id": proposal.id, "status": outcome_status.value,
             "approvals": approvals, "rejections": rejections},
            organization_id=proposal.organization_id,
            related_entity_type="proposal",
            related_entity_id=proposal.id,
        )
        if not delivered:
            logger.warning("Review outcome alert for proposal %s not delivered", proposal.id,
                           extra={"proposal_id": proposal.id})

    # ── Queries ───────────────────────────────────────────────────────────

    def pending_reviewers(self, proposal_id: str, actor: Actor | None = None) -> list[ProposalReviewerAssignment]:
        self.engine.get_proposal(proposal_id, actor)
        return self.assignments.pending_for(proposal_id)

    def is_assigned_reviewer(self, proposal_id: str, user_id: str) -> bool:
        return self.assignments.is_assigned(proposal_id, user_id)
