"""
Deadline Rule Engine tests.

Tests cover:
  - Rule selection by status (first match wins, no match → None)
  - hours_remaining clamping and fractional hours
  - Hourly notification windows
  - Automatic transition boundary
  - next_notification_hours
  - Reminder priority
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from caredraft.services.deadline_rules import (
    DEFAULT_DEADLINE_RULES,
    DeadlineRule,
    check_deadline,
    notification_priority,
)

T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _proposal(status):
    return SimpleNamespace(id="p-1", status=status)


def _check(status, hours_after, rules=DEFAULT_DEADLINE_RULES):
    return check_deadline(_proposal(status), T, rules, now=T + timedelta(hours=hours_after))


# ═════════════════════════════════════════════════════════════════════════
# RULE SELECTION
# ═════════════════════════════════════════════════════════════════════════

class TestRuleSelection:
    def test_review_rule(self):
        result = _check("review", 1)
        assert result.applicable_rule.id == "review_timeout"
        assert result.deadline_at == T + timedelta(hours=72)

    def test_no_rule_for_archived(self):
        assert _check("archived", 1) is None

    def test_first_matching_rule_wins(self):
        rules = (
            DeadlineRule(id="fast", from_status="review", to_status="draft", deadline_hours=10),
            DeadlineRule(id="slow", from_status="review", to_status="draft", deadline_hours=100),
        )
        assert _check("review", 1, rules).applicable_rule.id == "fast"

    def test_notification_hours_sorted_descending(self):
        rule = DeadlineRule(id="x", from_status="review", to_status="draft",
                            deadline_hours=72, notification_hours=(6, 48, 24))
        assert rule.notification_hours == (48, 24, 6)

    def test_notify_only_rule(self):
        result = _check("draft", 1)
        assert result.applicable_rule.notify_only
        assert result.should_transition is False

    def test_naive_timestamps_treated_as_utc(self):
        naive = T.replace(tzinfo=None)
        result = check_deadline(_proposal("review"), naive, DEFAULT_DEADLINE_RULES,
                                now=T + timedelta(hours=24))
        assert result.hours_remaining == pytest.approx(48)


# ═════════════════════════════════════════════════════════════════════════
# HOURS REMAINING & TRANSITION
# ═════════════════════════════════════════════════════════════════════════

class TestHoursRemaining:
    def test_fractional_hours(self):
        assert _check("review", 1.5).hours_remaining == pytest.approx(70.5)

    @pytest.mark.parametrize("hours_after", [72, 73, 500])
    def test_never_negative_past_deadline(self, hours_after):
        result = _check("review", hours_after)
        assert result.hours_remaining == 0
        assert result.should_transition is True

    def test_no_transition_before_deadline(self):
        result = _check("review", 71.99)
        assert result.hours_remaining > 0
        assert result.should_transition is False

    def test_no_transition_without_auto(self):
        result = _check("draft", 400)
        assert result.hours_remaining == 0
        assert result.should_transition is False

    def test_submitted_archive_boundary(self):
        assert _check("submitted", 719).should_transition is False
        assert _check("submitted", 720).should_transition is True

    def test_notify_only_rule_ignores_auto_transition(self):
        rules = (DeadlineRule(id="stale_draft", from_status="draft", to_status="draft",
                              deadline_hours=24, notification_hours=(6,), auto_transition=True),)
        result = _check("draft", 30, rules)
        assert result.hours_remaining == 0
        assert result.should_transition is False


# ═════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════

class TestNotificationWindows:
    def test_notify_at_48h_remaining(self):
        result = _check("review", 24)
        assert result.should_notify is True
        assert result.hours_remaining == pytest.approx(48)

    def test_no_notify_at_47h_remaining(self):
        result = _check("review", 25)
        assert result.hours_remaining == pytest.approx(47)
        assert result.should_notify is False

    def test_notify_within_window(self):
        assert _check("review", 24.5).should_notify is True

    @pytest.mark.parametrize("hours_after", [48, 66])
    def test_notify_at_24h_and_6h(self, hours_after):
        assert _check("review", hours_after).should_notify is True

    @pytest.mark.parametrize("hours_after", [0, 10, 23.99, 30, 60, 70])
    def test_quiet_outside_windows(self, hours_after):
        assert _check("review", hours_after).should_notify is False

    def test_next_notification_hours(self):
        assert _check("review", 0).next_notification_hours == 48
        assert _check("review", 24).next_notification_hours == 24
        assert _check("review", 70).next_notification_hours is None

    @pytest.mark.parametrize("hours_after,expected", [
        (12, 48),   # 60h left
        (30, 24),   # 42h left, 48h reminder already sent
        (50, 6),    # 22h left, 24h reminder already sent
    ])
    def test_next_notification_between_offsets(self, hours_after, expected):
        assert _check("review", hours_after).next_notification_hours == expected


class TestPriority:
    @pytest.mark.parametrize("hours,expected", [
        (0, 5), (6, 5), (6.5, 4), (24, 4), (24.1, 3), (48, 3),
    ])
    def test_priority_scale(self, hours, expected):
        assert notification_priority(hours) == expected
