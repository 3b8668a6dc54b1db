"""
CareDraft Proposal Workflow Service
Status Transition Policy.

Pure decision function over (proposal, from, to, actor, settings). It never
touches the database; the workflow engine feeds it loaded state and acts on
the returned decision.

State machine:
    draft     → review, archived
    review    → submitted, draft, archived
    submitted → archived
    archived  → (terminal)

Usage:
    from caredraft.services.status_policy import can_transition, UserActor, SYSTEM

    decision = can_transition(proposal, "review", "draft", actor, settings)
    if not decision.allowed:
        raise PermissionDenied(decision.reason)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


# ═════════════════════════════════════════════════════════════════════════════
# Enums & Data Classes
# ═════════════════════════════════════════════════════════════════════════════

class ProposalStatus(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    SUBMITTED = "submitted"
    ARCHIVED = "archived"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    WRITER = "writer"


@dataclass(frozen=True)
class UserActor:
    """A signed-in organization member."""
    id: str
    role: Role
    organization_id: str

    @property
    def label(self) -> str:
        return self.id


@dataclass(frozen=True)
class SystemActor:
    """Scheduled jobs and review tallies acting on behalf of an organization."""

    @property
    def label(self) -> str:
        return "system"


SYSTEM = SystemActor()

Actor = Union[UserActor, SystemActor]


@dataclass(frozen=True)
class WorkflowSettings:
    """Per-organization policy knobs. Defaults apply when none are stored."""
    require_comments_on_rejection: bool = True
    require_comments_on_approval: bool = False
    allow_self_approval: bool = False

    def to_dict(self) -> dict:
        return {
            "require_comments_on_rejection": self.require_comments_on_rejection,
            "require_comments_on_approval": self.require_comments_on_approval,
            "allow_self_approval": self.allow_self_approval,
        }


DEFAULT_SETTINGS = WorkflowSettings()


@dataclass
class TransitionDecision:
    """Outcome of a policy check."""
    allowed: bool
    reason: str | None = None
    comment_required: bool = False
    comment_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "comment_required": self.comment_required,
            "comment_reason": self.comment_reason,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════

ALLOWED_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.REVIEW, ProposalStatus.ARCHIVED}),
    ProposalStatus.REVIEW: frozenset({
        ProposalStatus.SUBMITTED, ProposalStatus.DRAFT, ProposalStatus.ARCHIVED,
    }),
    ProposalStatus.SUBMITTED: frozenset({ProposalStatus.ARCHIVED}),
    ProposalStatus.ARCHIVED: frozenset(),
}

_MANAGERS = frozenset({Role.ADMIN, Role.MANAGER})

COMMENT_REQUIRED_ON_REJECTION = "Comments are required when rejecting a proposal"
COMMENT_REQUIRED_ON_APPROVAL = "Comments are required when approving a proposal"


def _coerce_status(value) -> ProposalStatus | None:
    try:
        return ProposalStatus(value)
    except ValueError:
        return None


def _is_rejection(from_status: ProposalStatus, to_status: ProposalStatus) -> bool:
    return from_status is ProposalStatus.REVIEW and to_status is ProposalStatus.DRAFT


def _is_approval(from_status: ProposalStatus, to_status: ProposalStatus) -> bool:
    return from_status is ProposalStatus.REVIEW and to_status is ProposalStatus.SUBMITTED


def _role_denial(
    proposal,
    from_status: ProposalStatus,
    to_status: ProposalStatus,
    actor: UserActor,
    settings: WorkflowSettings,
) -> str | None:
    """Return the reason a user actor may not make this move, or None."""
    try:
        role = Role(actor.role)
    except ValueError:
        return f"unknown role '{actor.role}'"

    is_creator = getattr(proposal, "owner_id", None) == actor.id

    if to_status is ProposalStatus.ARCHIVED:
        if role not in _MANAGERS:
            return "only managers and admins can archive proposals"
        return None

    if from_status is ProposalStatus.DRAFT and to_status is ProposalStatus.REVIEW:
        if role in _MANAGERS or is_creator:
            return None
        return "only the proposal creator, a manager or an admin can send a draft to review"

    if from_status is ProposalStatus.REVIEW:
        if role not in _MANAGERS:
            return "only managers and admins can approve or reject proposals"
        if to_status is ProposalStatus.SUBMITTED and is_creator and not settings.allow_self_approval:
            return "self-approval is not allowed"
        return None

    return None


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def can_transition(
    proposal,
    from_status,
    to_status,
    actor: Actor,
    settings: WorkflowSettings | None = None,
) -> TransitionDecision:
    """Decide whether ``actor`` may move ``proposal`` from one status to another.

    ``proposal`` only needs ``organization_id`` and ``owner_id`` attributes.
    Checks run in a fixed order so the first failing rule supplies the
    reason: status validity, organization, no-op, terminal state, the
    transition table, then role rules. The system actor skips the
    organization and role rules but not the table.

    When the move is allowed, ``comment_required`` reports whether the
    organization demands a comment for it (user actors only).
    """
    settings = settings or DEFAULT_SETTINGS

    src = _coerce_status(from_status)
    if src is None:
        return TransitionDecision(False, f"unknown status '{from_status}'")
    dst = _coerce_status(to_status)
    if dst is None:
        return TransitionDecision(False, f"unknown status '{to_status}'")

    is_user = isinstance(actor, UserActor)

    if is_user and actor.organization_id != getattr(proposal, "organization_id", None):
        return TransitionDecision(False, "cross-organization access")

    if src is dst:
        return TransitionDecision(False, "no-op transition")

    if src is ProposalStatus.ARCHIVED:
        return TransitionDecision(False, "archived proposals cannot change status")

    if dst not in ALLOWED_TRANSITIONS[src]:
        return TransitionDecision(False, f"transition {src.value} → {dst.value} is not allowed")

    if not is_user:
        return TransitionDecision(True)

    denial = _role_denial(proposal, src, dst, actor, settings)
    if denial:
        return TransitionDecision(False, denial)

    if _is_rejection(src, dst) and settings.require_comments_on_rejection:
        return TransitionDecision(True, comment_required=True,
                                  comment_reason=COMMENT_REQUIRED_ON_REJECTION)
    if _is_approval(src, dst) and settings.require_comments_on_approval:
        return TransitionDecision(True, comment_required=True,
                                  comment_reason=COMMENT_REQUIRED_ON_APPROVAL)
    return TransitionDecision(True)


def available_transitions(
    proposal,
    actor: Actor,
    settings: WorkflowSettings | None = None,
) -> list[ProposalStatus]:
    """Every status ``actor`` may move ``proposal`` to from its current status."""
    current = getattr(proposal, "status", None)
    return [
        status for status in ProposalStatus
        if status.value != current
        and can_transition(proposal, current, status, actor, settings).allowed
    ]
