"""
CareDraft Proposal Workflow Service
Workflow Engine.

Executes proposal status transitions:
  - Optimistic concurrency check against the caller's expected status
  - Status policy gate (organization, transition table, roles, comments)
  - Conditional status update keyed by id + expected status
  - Append-only history entry

A transition is committed before its history entry is written. If the
history write fails the status change stands, the inconsistency is logged
at ERROR level and the result carries ``history_entry=None``.

Usage:
    from caredraft.services.proposal_workflow import WorkflowEngine, TransitionRequest

    engine = WorkflowEngine()
    actor = engine.resolve_actor(user_id)
    result = engine.transition(TransitionRequest(
        proposal_id=pid, from_status="review", to_status="draft",
        actor=actor, comment="Pricing section incomplete",
    ))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from caredraft.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from caredraft.models.proposal import Proposal, ProposalStatusHistory
from caredraft.services.status_policy import (
    Actor,
    ProposalStatus,
    Role,
    SystemActor,
    UserActor,
    available_transitions,
    can_transition,
)
from caredraft.services.stores import (
    HistoryStore,
    ProposalStore,
    UserDirectory,
    WorkflowSettingsStore,
)

logger = logging.getLogger(__name__)


@dataclass
class TransitionRequest:
    proposal_id: str
    from_status: ProposalStatus | str
    to_status: ProposalStatus | str
    actor: Actor
    comment: str | None = None
    transition_reason: str | None = None


@dataclass
class TransitionResult:
    proposal: Proposal
    history_entry: ProposalStatusHistory | None

    def to_dict(self) -> dict:
        return {
            "proposal": self.proposal.to_dict(),
            "history_entry": self.history_entry.to_dict() if self.history_entry else None,
            "history_recorded": self.history_entry is not None,
        }


def _status_value(value, field_name: str) -> str:
    try:
        return ProposalStatus(value).value
    except ValueError:
        allowed = sorted(s.value for s in ProposalStatus)
        raise ValidationError(
            f"Unknown status '{value}'",
            details={field_name: f"must be one of {allowed}"},
        ) from None


class WorkflowEngine:
    """Stateless transition executor built over injected stores."""

    def __init__(
        self,
        proposals: ProposalStore | None = None,
        history: HistoryStore | None = None,
        users: UserDirectory | None = None,
        settings: WorkflowSettingsStore | None = None,
    ):
        self.proposals = proposals or ProposalStore()
        self.history = history or HistoryStore()
        self.users = users or UserDirectory()
        self.settings = settings or WorkflowSettingsStore()

    # ── Actors & lookups ──────────────────────────────────────────────────

    def resolve_actor(self, user_id: str) -> UserActor:
        """Build a UserActor from the user directory."""
        user = self.users.get(user_id)
        if user is None or not user.is_active:
            raise PermissionDenied("unknown user")
        try:
            role = Role(user.role)
        except ValueError:
            raise PermissionDenied(f"unknown role '{user.role}'") from None
        return UserActor(id=user.id, role=role, organization_id=user.organization_id)

    def get_proposal(self, proposal_id: str, actor: Actor | None = None) -> Proposal:
        """Load a proposal, enforcing the organization boundary for user actors."""
        proposal = self.proposals.get(proposal_id)
        if proposal is None:
            raise NotFoundError(resource="Proposal", resource_id=proposal_id)
        if isinstance(actor, UserActor) and actor.organization_id != proposal.organization_id:
            raise PermissionDenied("cross-organization access")
        return proposal

    # ── Transition ────────────────────────────────────────────────────────

    def transition(self, request: TransitionRequest) -> TransitionResult:
        """Move a proposal between statuses.

        Raises:
            NotFoundError: no such proposal.
            ConcurrentModificationError: stored status differs from
                ``request.from_status``, before or during the update.
            PermissionDenied: the status policy refused the move.
            ValidationError: unknown status value, or a required comment
                is missing.
            PersistenceError: the status update itself failed; nothing
                was written.
        """
        from_status = _status_value(request.from_status, "from_status")
        to_status = _status_value(request.to_status, "to_status")
        actor = request.actor
        log_extra = {"proposal_id": request.proposal_id,
                     "from_status": from_status, "to_status": to_status}

        proposal = self.proposals.get(request.proposal_id)
        if proposal is None:
            raise NotFoundError(resource="Proposal", resource_id=request.proposal_id)
        log_extra["organization_id"] = proposal.organization_id

        if proposal.status != from_status:
            raise ConcurrentModificationError(proposal.id, from_status, proposal.status)

        settings = self.settings.for_organization(proposal.organization_id)
        decision = can_transition(proposal, from_status, to_status, actor, settings)
        if not decision.allowed:
            logger.info("Transition denied for %s: %s", actor.label, decision.reason, extra=log_extra)
            raise PermissionDenied(decision.reason)

        comment = (request.comment or "").strip() or None
        if decision.comment_required and not comment:
            raise ValidationError(decision.comment_reason,
                                  details={"comment": decision.comment_reason})

        if not self.proposals.update_status(proposal.id, from_status, to_status):
            actual = self.proposals.get_status(proposal.id)
            raise ConcurrentModificationError(proposal.id, from_status, actual)

        is_system = isinstance(actor, SystemActor)
        entry = None
        try:
            entry = self.history.append(
                proposal_id=proposal.id,
                from_status=from_status,
                to_status=to_status,
                changed_by=None if is_system else actor.id,
                automatic=is_system,
                comment=comment,
                transition_reason=request.transition_reason,
            )
        except Exception:
            logger.exception(
                "History inconsistency: proposal %s moved %s → %s but no history entry was written",
                proposal.id, from_status, to_status, extra=log_extra,
            )

        logger.info("Proposal %s: %s → %s by %s", proposal.id, from_status, to_status,
                    actor.label, extra=log_extra)
        return TransitionResult(proposal=self.proposals.get(proposal.id), history_entry=entry)

    # ── Queries ───────────────────────────────────────────────────────────

    def status_history(self, proposal_id: str, actor: Actor | None = None) -> list[ProposalStatusHistory]:
        """History entries for a proposal, newest first."""
        self.get_proposal(proposal_id, actor)
        return self.history.list_for_proposal(proposal_id)

    def available_transitions(self, proposal_id: str, actor: Actor) -> list[str]:
        proposal = self.get_proposal(proposal_id, actor)
        settings = self.settings.for_organization(proposal.organization_id)
        return [status.value for status in available_transitions(proposal, actor, settings)]
