"""
Workflow Engine tests.

Tests cover:
  - Happy-path transitions with history entries
  - Denied transitions never mutate status or history
  - Optimistic concurrency (stale from_status, lost update race)
  - Comment requirement on rejection
  - History append failure keeps the transition
  - Persistence failure writes no history
  - System actor history attribution
  - Status history ordering and actor resolution
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
from caredraft.models.proposal import Proposal, ProposalStatusHistory
from caredraft.services.proposal_workflow import TransitionRequest, WorkflowEngine
from caredraft.services.status_policy import SYSTEM, Role
from caredraft.services.stores import HistoryStore, ProposalStore, WorkflowSettingsStore


def _history_count(proposal_id):
    return ProposalStatusHistory.query.filter_by(proposal_id=proposal_id).count()


def _stored_status(proposal_id):
    db.session.expire_all()
    return db.session.get(Proposal, proposal_id).status


# ═════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═════════════════════════════════════════════════════════════════════════

class TestTransition:
    def test_writer_sends_own_draft_to_review(self, make_proposal, writer):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        result = engine.transition(TransitionRequest(
            p.id, "draft", "review", engine.resolve_actor(writer.id), comment="Ready for review",
        ))
        assert result.proposal.status == "review"
        assert result.history_entry is not None
        assert result.history_entry.from_status == "draft"
        assert result.history_entry.to_status == "review"
        assert result.history_entry.changed_by == writer.id
        assert result.history_entry.automatic is False
        assert result.history_entry.comment == "Ready for review"

    def test_manager_rejects_with_comment(self, make_proposal, manager):
        p = make_proposal("review")
        engine = WorkflowEngine()
        result = engine.transition(TransitionRequest(
            p.id, "review", "draft", engine.resolve_actor(manager.id), comment="Pricing missing",
        ))
        assert result.proposal.status == "draft"
        assert _history_count(p.id) == 1

    def test_full_lifecycle(self, make_proposal, writer, manager, admin):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        engine.transition(TransitionRequest(p.id, "draft", "review", engine.resolve_actor(writer.id)))
        engine.transition(TransitionRequest(p.id, "review", "submitted", engine.resolve_actor(manager.id)))
        engine.transition(TransitionRequest(p.id, "submitted", "archived", engine.resolve_actor(admin.id)))
        assert _stored_status(p.id) == "archived"
        assert _history_count(p.id) == 3

    def test_system_actor_history(self, make_proposal):
        p = make_proposal("review")
        result = WorkflowEngine().transition(TransitionRequest(
            p.id, "review", "draft", SYSTEM, transition_reason="deadline_exceeded",
        ))
        entry = result.history_entry
        assert entry.changed_by is None
        assert entry.automatic is True
        assert entry.to_dict()["changed_by"] == "system"
        assert entry.transition_reason == "deadline_exceeded"


# ═════════════════════════════════════════════════════════════════════════
# DENIALS
# ═════════════════════════════════════════════════════════════════════════

class TestDenials:
    @pytest.mark.parametrize("role_fixture,src,dst", [
        ("other_writer", "draft", "review"),
        ("writer", "review", "submitted"),
        ("writer", "review", "draft"),
        ("writer", "draft", "archived"),
        ("manager", "draft", "submitted"),
        ("admin", "archived", "draft"),
    ])
    def test_denied_transition_does_not_mutate(self, request, make_proposal, role_fixture, src, dst):
        user = request.getfixturevalue(role_fixture)
        p = make_proposal(src)
        engine = WorkflowEngine()
        with pytest.raises(PermissionDenied):
            engine.transition(TransitionRequest(p.id, src, dst, engine.resolve_actor(user.id),
                                                comment="x"))
        assert _stored_status(p.id) == src
        assert _history_count(p.id) == 0

    def test_non_creator_writer_denied_reason(self, make_proposal, other_writer):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        with pytest.raises(PermissionDenied) as exc:
            engine.transition(TransitionRequest(p.id, "draft", "review",
                                                engine.resolve_actor(other_writer.id)))
        assert "creator" in exc.value.reason

    def test_cross_organization(self, make_proposal, outsider):
        p = make_proposal("review")
        engine = WorkflowEngine()
        with pytest.raises(PermissionDenied) as exc:
            engine.transition(TransitionRequest(p.id, "review", "draft",
                                                engine.resolve_actor(outsider.id), comment="no"))
        assert exc.value.reason == "cross-organization access"

    def test_missing_proposal(self, manager):
        engine = WorkflowEngine()
        with pytest.raises(NotFoundError):
            engine.transition(TransitionRequest("missing", "draft", "review",
                                                engine.resolve_actor(manager.id)))

    def test_unknown_status_value(self, make_proposal, manager):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        with pytest.raises(ValidationError) as exc:
            engine.transition(TransitionRequest(p.id, "draft", "published",
                                                engine.resolve_actor(manager.id)))
        assert "to_status" in exc.value.details

    def test_unknown_user(self):
        with pytest.raises(PermissionDenied):
            WorkflowEngine().resolve_actor("nobody")

    def test_resolve_actor(self, manager, org):
        actor = WorkflowEngine().resolve_actor(manager.id)
        assert actor.role is Role.MANAGER
        assert actor.organization_id == org.id


# ═════════════════════════════════════════════════════════════════════════
# COMMENTS
# ═════════════════════════════════════════════════════════════════════════

class TestComments:
    @pytest.mark.parametrize("comment", [None, "", "   "])
    def test_rejection_without_comment(self, make_proposal, manager, comment):
        p = make_proposal("review")
        engine = WorkflowEngine()
        with pytest.raises(ValidationError) as exc:
            engine.transition(TransitionRequest(p.id, "review", "draft",
                                                engine.resolve_actor(manager.id), comment=comment))
        assert str(exc.value) == "Comments are required when rejecting a proposal"
        assert "comment" in exc.value.details
        assert _stored_status(p.id) == "review"
        assert _history_count(p.id) == 0

    def test_rejection_without_comment_when_not_required(self, make_proposal, manager, org):
        WorkflowSettingsStore().update(org.id, require_comments_on_rejection=False)
        p = make_proposal("review")
        engine = WorkflowEngine()
        result = engine.transition(TransitionRequest(p.id, "review", "draft",
                                                     engine.resolve_actor(manager.id)))
        assert result.proposal.status == "draft"
        assert result.history_entry.comment is None

    def test_approval_comment_when_required(self, make_proposal, manager, org):
        WorkflowSettingsStore().update(org.id, require_comments_on_approval=True)
        p = make_proposal("review")
        engine = WorkflowEngine()
        with pytest.raises(ValidationError):
            engine.transition(TransitionRequest(p.id, "review", "submitted",
                                                engine.resolve_actor(manager.id)))


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENCY & PERSISTENCE
# ═════════════════════════════════════════════════════════════════════════

class TestConcurrency:
    def test_stale_from_status_second_call_fails(self, make_proposal, manager):
        p = make_proposal("review")
        engine = WorkflowEngine()
        actor = engine.resolve_actor(manager.id)
        engine.transition(TransitionRequest(p.id, "review", "draft", actor, comment="Fix pricing"))
        with pytest.raises(ConcurrentModificationError) as exc:
            engine.transition(TransitionRequest(p.id, "review", "submitted", actor))
        assert exc.value.actual == "draft"
        assert _history_count(p.id) == 1

    def test_lost_race_on_conditional_update(self, make_proposal, manager):
        p = make_proposal("review")
        engine = WorkflowEngine()
        actor = engine.resolve_actor(manager.id)
        with patch.object(ProposalStore, "update_status", return_value=False):
            with pytest.raises(ConcurrentModificationError):
                engine.transition(TransitionRequest(p.id, "review", "submitted", actor))
        assert _history_count(p.id) == 0

    def test_conditional_update_only_matches_expected(self, make_proposal):
        p = make_proposal("review")
        store = ProposalStore()
        assert store.update_status(p.id, "draft", "archived") is False
        assert store.get_status(p.id) == "review"
        assert store.update_status(p.id, "review", "submitted") is True
        assert store.get_status(p.id) == "submitted"

    def test_history_failure_keeps_transition(self, make_proposal, manager, caplog):
        p = make_proposal("review")
        engine = WorkflowEngine()
        actor = engine.resolve_actor(manager.id)
        with patch.object(HistoryStore, "append", side_effect=PersistenceError("disk full")):
            result = engine.transition(TransitionRequest(p.id, "review", "submitted", actor))
        assert result.history_entry is None
        assert result.proposal.status == "submitted"
        assert _stored_status(p.id) == "submitted"
        assert _history_count(p.id) == 0
        assert any("History inconsistency" in r.getMessage() for r in caplog.records)

    def test_persistence_failure_writes_no_history(self, make_proposal, manager):
        p = make_proposal("review")
        engine = WorkflowEngine()
        actor = engine.resolve_actor(manager.id)
        with patch.object(ProposalStore, "update_status", side_effect=PersistenceError("db down")):
            with pytest.raises(PersistenceError):
                engine.transition(TransitionRequest(p.id, "review", "submitted", actor))
        assert _history_count(p.id) == 0
        assert _stored_status(p.id) == "review"


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════

class TestQueries:
    def test_status_history_newest_first(self, make_proposal, writer, manager):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        engine.transition(TransitionRequest(p.id, "draft", "review", engine.resolve_actor(writer.id)))
        engine.transition(TransitionRequest(p.id, "review", "draft", engine.resolve_actor(manager.id),
                                            comment="Needs work"))
        entries = engine.status_history(p.id)
        assert [e.to_status for e in entries] == ["draft", "review"]

    def test_status_history_cross_org(self, make_proposal, outsider):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        with pytest.raises(PermissionDenied):
            engine.status_history(p.id, engine.resolve_actor(outsider.id))

    def test_available_transitions(self, make_proposal, writer):
        p = make_proposal("draft")
        engine = WorkflowEngine()
        assert engine.available_transitions(p.id, engine.resolve_actor(writer.id)) == ["review"]
