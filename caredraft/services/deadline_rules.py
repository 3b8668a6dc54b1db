"""
CareDraft Proposal Workflow Service
Deadline Rule Engine.

Read-only evaluation of how long a proposal has been sitting in its
current status against a set of deadline rules. It decides whether a
reminder is due this hour and whether an automatic transition is owed;
acting on that decision is the batch processor's job.

Default rules:
    review_timeout     review    → draft     72h   notify at 48h, 24h, 6h   auto
    submitted_archive  submitted → archived  720h  notify at 168h, 24h      auto
    draft_reminder     draft     → draft     168h  notify at 168h, 24h      reminder only

Usage:
    from caredraft.services.deadline_rules import check_deadline, DEFAULT_DEADLINE_RULES

    result = check_deadline(proposal, last_change_at, DEFAULT_DEADLINE_RULES)
    if result and result.should_notify:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from caredraft.utils.helpers import as_utc

# Reminders fire during the hour that starts ``h`` hours before the deadline;
# the processor runs hourly so each reminder is sent once.
NOTIFICATION_WINDOW = timedelta(hours=1)


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DeadlineRule:
    """One time limit on a status.

    ``to_status == from_status`` marks a reminder-only rule.
    ``requires_approval`` is carried through for configuration parity and
    is not evaluated.
    """
    id: str
    from_status: str
    to_status: str
    deadline_hours: float
    notification_hours: tuple[float, ...] = ()
    auto_transition: bool = False
    requires_approval: bool = False
    description: str = ""

    def __post_init__(self):
        ordered = tuple(sorted((float(h) for h in self.notification_hours), reverse=True))
        object.__setattr__(self, "notification_hours", ordered)

    @property
    def notify_only(self) -> bool:
        return self.from_status == self.to_status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "deadline_hours": self.deadline_hours,
            "notification_hours": list(self.notification_hours),
            "auto_transition": self.auto_transition,
            "requires_approval": self.requires_approval,
            "description": self.description,
        }


@dataclass
class DeadlineCheckResult:
    """Derived deadline state for one proposal at one instant."""
    proposal_id: str
    current_status: str
    status_changed_at: datetime
    deadline_at: datetime
    hours_remaining: float
    should_notify: bool
    should_transition: bool
    applicable_rule: DeadlineRule
    next_notification_hours: float | None = None
    checked_at: datetime | None = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "current_status": self.current_status,
            "status_changed_at": self.status_changed_at.isoformat(),
            "deadline_at": self.deadline_at.isoformat(),
            "hours_remaining": round(self.hours_remaining, 2),
            "should_notify": self.should_notify,
            "should_transition": self.should_transition,
            "applicable_rule": self.applicable_rule.to_dict(),
            "next_notification_hours": self.next_notification_hours,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


DEFAULT_DEADLINE_RULES: tuple[DeadlineRule, ...] = (
    DeadlineRule(
        id="review_timeout",
        from_status="review",
        to_status="draft",
        deadline_hours=72,
        notification_hours=(48, 24, 6),
        auto_transition=True,
        description="Proposals in review for more than 72 hours return to draft",
    ),
    DeadlineRule(
        id="submitted_archive",
        from_status="submitted",
        to_status="archived",
        deadline_hours=720,
        notification_hours=(168, 24),
        auto_transition=True,
        description="Submitted proposals are archived after 30 days",
    ),
    DeadlineRule(
        id="draft_reminder",
        from_status="draft",
        to_status="draft",
        deadline_hours=168,
        notification_hours=(168, 24),
        auto_transition=False,
        description="Remind owners about drafts untouched for a week",
    ),
)


# ═════════════════════════════════════════════════════════════════════════════
# Evaluation
# ═════════════════════════════════════════════════════════════════════════════

def find_applicable_rule(status: str, rules: Iterable[DeadlineRule]) -> DeadlineRule | None:
    """First rule whose ``from_status`` matches; order of ``rules`` is significant."""
    for rule in rules:
        if rule.from_status == status:
            return rule
    return None


def check_deadline(
    proposal,
    last_status_change_at: datetime,
    rules: Iterable[DeadlineRule],
    now: datetime | None = None,
) -> DeadlineCheckResult | None:
    """Evaluate ``proposal`` against ``rules`` at ``now`` (default: current UTC time).

    Returns None when no rule applies to the proposal's status.
    """
    status = getattr(proposal, "status", None)
    if hasattr(status, "value"):
        status = status.value
    rule = find_applicable_rule(status, rules)
    if rule is None:
        return None

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    changed_at = as_utc(last_status_change_at)
    deadline_at = changed_at + timedelta(hours=rule.deadline_hours)

    hours_remaining = max(0.0, (deadline_at - now).total_seconds() / 3600)

    should_notify = False
    for offset in rule.notification_hours:
        window_start = deadline_at - timedelta(hours=offset)
        if window_start <= now < window_start + NOTIFICATION_WINDOW:
            should_notify = True
            break

    # A reminder-only rule never moves the proposal, whatever auto_transition says
    should_transition = rule.auto_transition and not rule.notify_only and hours_remaining <= 0

    # notification_hours is sorted descending: first offset below what is
    # left is the next reminder still to come. Offsets at or above
    # hours_remaining have already fired.
    next_notification_hours = next(
        (offset for offset in rule.notification_hours if offset < hours_remaining),
        None,
    )

    return DeadlineCheckResult(
        proposal_id=getattr(proposal, "id", None),
        current_status=status,
        status_changed_at=changed_at,
        deadline_at=deadline_at,
        hours_remaining=hours_remaining,
        should_notify=should_notify,
        should_transition=should_transition,
        applicable_rule=rule,
        next_notification_hours=next_notification_hours,
        checked_at=now,
    )


def notification_priority(hours_remaining: float) -> int:
    """Reminder priority on the 1 (low) to 5 (urgent) scale."""
    if hours_remaining <= 6:
        return 5
    if hours_remaining <= 24:
        return 4
    return 3
