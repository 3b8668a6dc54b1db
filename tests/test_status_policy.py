"""
Status Transition Policy tests.

Tests cover:
  - Transition table (allowed / disallowed / terminal / no-op)
  - Role gates for admin, manager and writer
  - Cross-organization denial
  - System actor bypassing role rules but not the table
  - Self-approval and comment requirements from workflow settings
  - Available transitions per actor
"""

from types import SimpleNamespace

import pytest

from caredraft.services.status_policy import (
    COMMENT_REQUIRED_ON_APPROVAL,
    COMMENT_REQUIRED_ON_REJECTION,
    SYSTEM,
    ProposalStatus,
    Role,
    UserActor,
    WorkflowSettings,
    available_transitions,
    can_transition,
)

ORG = "org-1"
CREATOR = "user-creator"


def _proposal(status="draft", owner_id=CREATOR, organization_id=ORG):
    return SimpleNamespace(id="p-1", status=status, owner_id=owner_id, organization_id=organization_id)


def _actor(role, user_id="user-x", organization_id=ORG):
    return UserActor(id=user_id, role=Role(role), organization_id=organization_id)


ADMIN = _actor("admin", "user-admin")
MANAGER = _actor("manager", "user-manager")
WRITER_CREATOR = _actor("writer", CREATOR)
WRITER_OTHER = _actor("writer", "user-other")


# ═════════════════════════════════════════════════════════════════════════
# TRANSITION TABLE
# ═════════════════════════════════════════════════════════════════════════

class TestTransitionTable:
    @pytest.mark.parametrize("src,dst", [
        ("draft", "review"),
        ("draft", "archived"),
        ("review", "submitted"),
        ("review", "draft"),
        ("review", "archived"),
        ("submitted", "archived"),
    ])
    def test_admin_allowed_edges(self, src, dst):
        decision = can_transition(_proposal(src), src, dst, ADMIN, WorkflowSettings(
            require_comments_on_rejection=False))
        assert decision.allowed, decision.reason

    @pytest.mark.parametrize("src,dst", [
        ("draft", "submitted"),
        ("submitted", "review"),
        ("submitted", "draft"),
    ])
    def test_edges_outside_table_denied(self, src, dst):
        decision = can_transition(_proposal(src), src, dst, ADMIN)
        assert not decision.allowed
        assert "not allowed" in decision.reason

    @pytest.mark.parametrize("dst", ["draft", "review", "submitted"])
    def test_archived_is_terminal(self, dst):
        decision = can_transition(_proposal("archived"), "archived", dst, ADMIN)
        assert not decision.allowed
        assert "archived" in decision.reason

    def test_no_op_denied(self):
        decision = can_transition(_proposal("review"), "review", "review", ADMIN)
        assert not decision.allowed
        assert decision.reason == "no-op transition"

    def test_unknown_status_denied(self):
        decision = can_transition(_proposal(), "draft", "published", ADMIN)
        assert not decision.allowed
        assert "unknown status" in decision.reason

    def test_accepts_enum_values(self):
        decision = can_transition(_proposal(), ProposalStatus.DRAFT, ProposalStatus.REVIEW, ADMIN)
        assert decision.allowed


# ═════════════════════════════════════════════════════════════════════════
# ROLES
# ═════════════════════════════════════════════════════════════════════════

class TestRoleGates:
    def test_creator_writer_can_send_to_review(self):
        assert can_transition(_proposal(), "draft", "review", WRITER_CREATOR).allowed

    def test_non_creator_writer_cannot_send_to_review(self):
        decision = can_transition(_proposal(), "draft", "review", WRITER_OTHER)
        assert not decision.allowed
        assert "creator" in decision.reason

    def test_manager_can_send_any_draft_to_review(self):
        assert can_transition(_proposal(), "draft", "review", MANAGER).allowed

    @pytest.mark.parametrize("dst", ["submitted", "draft"])
    def test_writer_cannot_decide_review(self, dst):
        decision = can_transition(_proposal("review"), "review", dst, WRITER_CREATOR)
        assert not decision.allowed
        assert "managers and admins" in decision.reason

    @pytest.mark.parametrize("src", ["draft", "review", "submitted"])
    def test_writer_cannot_archive(self, src):
        decision = can_transition(_proposal(src), src, "archived", WRITER_CREATOR)
        assert not decision.allowed
        assert "archive" in decision.reason

    @pytest.mark.parametrize("src", ["draft", "review", "submitted"])
    def test_manager_can_archive(self, src):
        assert can_transition(_proposal(src), src, "archived", MANAGER).allowed

    def test_cross_organization_denied_first(self):
        outsider = _actor("admin", "user-out", organization_id="org-2")
        # Even a no-op reports the organization problem
        decision = can_transition(_proposal("review"), "review", "review", outsider)
        assert not decision.allowed
        assert decision.reason == "cross-organization access"


# ═════════════════════════════════════════════════════════════════════════
# SYSTEM ACTOR
# ═════════════════════════════════════════════════════════════════════════

class TestSystemActor:
    @pytest.mark.parametrize("src,dst", [
        ("review", "draft"),
        ("review", "submitted"),
        ("submitted", "archived"),
    ])
    def test_system_allowed_table_edges(self, src, dst):
        decision = can_transition(_proposal(src, organization_id="any-org"), src, dst, SYSTEM)
        assert decision.allowed
        assert decision.comment_required is False

    def test_system_cannot_leave_archived(self):
        assert not can_transition(_proposal("archived"), "archived", "draft", SYSTEM).allowed

    def test_system_obeys_table(self):
        assert not can_transition(_proposal("draft"), "draft", "submitted", SYSTEM).allowed

    def test_system_label(self):
        assert SYSTEM.label == "system"


# ═════════════════════════════════════════════════════════════════════════
# SETTINGS
# ═════════════════════════════════════════════════════════════════════════

class TestSettings:
    def test_rejection_comment_required_by_default(self):
        decision = can_transition(_proposal("review"), "review", "draft", MANAGER)
        assert decision.allowed
        assert decision.comment_required
        assert decision.comment_reason == COMMENT_REQUIRED_ON_REJECTION

    def test_rejection_comment_optional_when_disabled(self):
        settings = WorkflowSettings(require_comments_on_rejection=False)
        decision = can_transition(_proposal("review"), "review", "draft", MANAGER, settings)
        assert decision.allowed
        assert not decision.comment_required

    def test_approval_comment_required_when_enabled(self):
        settings = WorkflowSettings(require_comments_on_approval=True)
        decision = can_transition(_proposal("review"), "review", "submitted", MANAGER, settings)
        assert decision.comment_required
        assert decision.comment_reason == COMMENT_REQUIRED_ON_APPROVAL

    def test_self_approval_denied_by_default(self):
        creator_manager = _actor("manager", CREATOR)
        decision = can_transition(_proposal("review"), "review", "submitted", creator_manager)
        assert not decision.allowed
        assert decision.reason == "self-approval is not allowed"

    def test_self_approval_allowed_when_enabled(self):
        creator_manager = _actor("manager", CREATOR)
        settings = WorkflowSettings(allow_self_approval=True)
        decision = can_transition(_proposal("review"), "review", "submitted", creator_manager, settings)
        assert decision.allowed


# ═════════════════════════════════════════════════════════════════════════
# AVAILABLE TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════

class TestAvailableTransitions:
    def test_writer_creator_on_draft(self):
        assert available_transitions(_proposal("draft"), WRITER_CREATOR) == [ProposalStatus.REVIEW]

    def test_manager_on_review(self):
        result = available_transitions(_proposal("review"), MANAGER)
        assert set(result) == {ProposalStatus.DRAFT, ProposalStatus.SUBMITTED, ProposalStatus.ARCHIVED}

    def test_nothing_from_archived(self):
        assert available_transitions(_proposal("archived"), ADMIN) == []

    def test_outsider_gets_nothing(self):
        outsider = _actor("admin", "user-out", organization_id="org-2")
        assert available_transitions(_proposal("draft"), outsider) == []
