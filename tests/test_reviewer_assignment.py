"""
Reviewer Assignment Tracker tests.

Tests cover:
  - Tally resolution (any rejection → draft, else submitted)
  - Assigning, re-assigning and validating reviewers
  - Decisions leaving the round pending
  - Round completion applying the outcome through the workflow engine
  - Review request / outcome notifications
  - Settling a decided round whose outcome was never applied
"""

from unittest.mock import patch

import pytest

from caredraft.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    PermissionDenied,
    PersistenceError,
    ValidationError,
)
from caredraft.models import db
from caredraft.models.notification import Notification
from caredraft.models.proposal import Proposal, ProposalStatusHistory
from caredraft.models.workflow import ProposalReviewerAssignment
from caredraft.services.proposal_workflow import TransitionRequest, WorkflowEngine
from caredraft.services.reviewer_assignment import (
    ReviewDecision,
    ReviewerAssignmentTracker,
    resolve_review_outcome,
)
from caredraft.services.status_policy import ProposalStatus


@pytest.fixture()
def tracker():
    return ReviewerAssignmentTracker()


def _actor(user):
    return WorkflowEngine().resolve_actor(user.id)


# ═════════════════════════════════════════════════════════════════════════
# TALLY
# ═════════════════════════════════════════════════════════════════════════

class TestResolveOutcome:
    @pytest.mark.parametrize("decisions,expected", [
        (["approved"], ProposalStatus.SUBMITTED),
        (["approved", "approved", "approved"], ProposalStatus.SUBMITTED),
        (["rejected"], ProposalStatus.DRAFT),
        (["approved", "rejected"], ProposalStatus.DRAFT),
        (["rejected", "rejected", "approved"], ProposalStatus.DRAFT),
    ])
    def test_any_rejection_means_draft(self, decisions, expected):
        assert resolve_review_outcome(decisions) is expected

    def test_accepts_enum(self):
        assert resolve_review_outcome([ReviewDecision.APPROVED]) is ProposalStatus.SUBMITTED

    def test_empty_round_rejected(self):
        with pytest.raises(ValueError):
            resolve_review_outcome([])


# ═════════════════════════════════════════════════════════════════════════
# ASSIGNMENT
# ═════════════════════════════════════════════════════════════════════════

class TestAssignReviewers:
    def test_assign_creates_round(self, tracker, make_proposal, manager, second_manager, writer):
        p = make_proposal("review")
        created = tracker.assign_reviewers(p.id, [manager.id, second_manager.id], _actor(writer))
        assert len(created) == 2
        assert {a.review_round for a in created} == {1}
        assert all(a.is_pending for a in created)
        assert all(a.assigned_by == writer.id for a in created)

    def test_duplicates_collapsed(self, tracker, make_proposal, manager):
        p = make_proposal("review")
        created = tracker.assign_reviewers(p.id, [manager.id, manager.id])
        assert len(created) == 1

    def test_empty_list_rejected(self, tracker, make_proposal):
        p = make_proposal("review")
        with pytest.raises(ValidationError):
            tracker.assign_reviewers(p.id, [])

    def test_reviewer_outside_org_rejected(self, tracker, make_proposal, manager, outsider):
        p = make_proposal("review")
        with pytest.raises(ValidationError) as exc:
            tracker.assign_reviewers(p.id, [manager.id, outsider.id])
        assert exc.value.details["reviewer_ids"] == [outsider.id]
        assert ProposalReviewerAssignment.query.count() == 0

    def test_assigner_outside_org_denied(self, tracker, make_proposal, manager, outsider):
        p = make_proposal("review")
        with pytest.raises(PermissionDenied):
            tracker.assign_reviewers(p.id, [manager.id], _actor(outsider))

    def test_archived_proposal_rejected(self, tracker, make_proposal, manager):
        p = make_proposal("archived")
        with pytest.raises(ValidationError):
            tracker.assign_reviewers(p.id, [manager.id])

    def test_reassign_replaces_pending_keeps_completed(
        self, tracker, make_proposal, manager, second_manager, admin,
    ):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "approved")

        created = tracker.assign_reviewers(p.id, [admin.id])
        assert created[0].review_round == 2

        rows = ProposalReviewerAssignment.query.filter_by(proposal_id=p.id).all()
        assert len(rows) == 2  # completed round-1 row + new admin row
        completed = [r for r in rows if not r.is_pending]
        assert completed[0].reviewer_id == manager.id
        assert [a.reviewer_id for a in tracker.pending_reviewers(p.id)] == [admin.id]

    def test_review_request_notifications(self, tracker, make_proposal, manager, second_manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        notes = Notification.query.filter_by(type="review_request").all()
        assert {n.user_id for n in notes} == {manager.id, second_manager.id}
        assert all(n.related_entity_id == p.id for n in notes)

    def test_is_assigned_reviewer(self, tracker, make_proposal, manager, writer):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        assert tracker.is_assigned_reviewer(p.id, manager.id)
        assert not tracker.is_assigned_reviewer(p.id, writer.id)


# ═════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════

class TestSubmitDecision:
    def test_partial_round_stays_pending(self, tracker, make_proposal, manager, second_manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        outcome = tracker.submit_decision(p.id, manager.id, "approved")
        assert outcome.pending is True
        assert outcome.pending_count == 1
        assert outcome.transition is None
        assert ProposalStatusHistory.query.count() == 0

    def test_all_approved_submits(self, tracker, make_proposal, manager, second_manager, writer):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "approved")
        outcome = tracker.submit_decision(p.id, second_manager.id, ReviewDecision.APPROVED)

        assert outcome.pending is False
        assert outcome.outcome_status is ProposalStatus.SUBMITTED
        assert outcome.transition.proposal.status == "submitted"
        entry = outcome.transition.history_entry
        assert entry.comment == "Review completed: 2 approvals, 0 rejections"
        assert entry.transition_reason == "review_completed"
        assert entry.automatic is True

        alert = Notification.query.filter_by(type="proposal_update", user_id=writer.id).one()
        assert alert.content["status"] == "submitted"

    def test_one_rejection_returns_to_draft(self, tracker, make_proposal, manager, second_manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "approved")
        outcome = tracker.submit_decision(p.id, second_manager.id, "rejected", "Missing CQC evidence")

        assert outcome.outcome_status is ProposalStatus.DRAFT
        assert outcome.approvals == 1
        assert outcome.rejections == 1
        assert outcome.transition.history_entry.comment == "Review completed: 1 approvals, 1 rejections"

    def test_rejection_requires_comment(self, tracker, make_proposal, manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        with pytest.raises(ValidationError):
            tracker.submit_decision(p.id, manager.id, "rejected", "  ")
        assert tracker.pending_reviewers(p.id)[0].reviewer_id == manager.id

    def test_unknown_decision(self, tracker, make_proposal, manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        with pytest.raises(ValidationError):
            tracker.submit_decision(p.id, manager.id, "maybe")

    def test_not_assigned(self, tracker, make_proposal, manager, admin):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        with pytest.raises(NotFoundError):
            tracker.submit_decision(p.id, admin.id, "approved")

    def test_decision_twice(self, tracker, make_proposal, manager, second_manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "approved")
        with pytest.raises(NotFoundError):
            tracker.submit_decision(p.id, manager.id, "rejected", "changed my mind")

    def test_proposal_left_review(self, tracker, make_proposal, manager):
        p = make_proposal("draft")
        tracker.assign_reviewers(p.id, [manager.id])
        with pytest.raises(ConcurrentModificationError):
            tracker.submit_decision(p.id, manager.id, "approved")

    def test_tally_counts_current_round_only(
        self, tracker, make_proposal, manager, second_manager, admin,
    ):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "rejected", "Wrong lot")
        # Reassign before the round finished: the rejection belongs to round 1
        tracker.assign_reviewers(p.id, [admin.id])
        outcome = tracker.submit_decision(p.id, admin.id, "approved")
        assert outcome.outcome_status is ProposalStatus.SUBMITTED
        assert outcome.rejections == 0


# ═════════════════════════════════════════════════════════════════════════
# RECONCILIATION
# ═════════════════════════════════════════════════════════════════════════

def _stored_status(proposal_id):
    db.session.expire_all()
    return db.session.get(Proposal, proposal_id).status


def _decide_with_failing_transition(tracker, proposal_id, reviewer_id, decision="approved"):
    with patch.object(WorkflowEngine, "transition", autospec=True,
                      side_effect=PersistenceError("db down")):
        with pytest.raises(PersistenceError):
            tracker.submit_decision(proposal_id, reviewer_id, decision)


class TestReconcile:
    def test_retry_applies_outcome_after_failed_transition(
        self, tracker, make_proposal, manager, second_manager,
    ):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "approved")
        _decide_with_failing_transition(tracker, p.id, second_manager.id)

        assert tracker.pending_reviewers(p.id) == []
        assert _stored_status(p.id) == "review"

        outcome = tracker.submit_decision(p.id, second_manager.id, "approved")
        assert outcome.pending is False
        assert outcome.outcome_status is ProposalStatus.SUBMITTED
        assert outcome.assignment.reviewer_id == second_manager.id
        assert outcome.transition.history_entry.comment == "Review completed: 2 approvals, 0 rejections"
        assert _stored_status(p.id) == "submitted"

    def test_reconcile_without_reviewer(self, tracker, make_proposal, manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        _decide_with_failing_transition(tracker, p.id, manager.id)

        outcome = tracker.reconcile(p.id)
        assert outcome.outcome_status is ProposalStatus.SUBMITTED
        assert _stored_status(p.id) == "submitted"

    def test_non_member_of_round_still_not_found(self, tracker, make_proposal, manager, admin):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        _decide_with_failing_transition(tracker, p.id, manager.id)
        with pytest.raises(NotFoundError):
            tracker.submit_decision(p.id, admin.id, "approved")
        assert _stored_status(p.id) == "review"

    def test_nothing_to_settle_while_pending(self, tracker, make_proposal, manager, second_manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id, second_manager.id])
        tracker.submit_decision(p.id, manager.id, "approved")
        assert tracker.reconcile(p.id) is None

    def test_applied_round_not_reused_on_next_review(self, tracker, make_proposal, manager):
        p = make_proposal("review")
        tracker.assign_reviewers(p.id, [manager.id])
        tracker.submit_decision(p.id, manager.id, "rejected", "Pricing schedule incomplete")
        assert _stored_status(p.id) == "draft"

        WorkflowEngine().transition(TransitionRequest(
            proposal_id=p.id, from_status="draft", to_status="review", actor=_actor(manager),
        ))
        assert tracker.reconcile(p.id) is None
        assert _stored_status(p.id) == "review"
