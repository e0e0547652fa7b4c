"""
Tests for recipient resolution and audit recording.
"""

from dataclasses import replace

import pytest

from src.config import AuditAction, Priority, TransitionKind
from src.issues.application import AuditRecorder, NotificationDispatcher
from src.issues.domain import EscalationRule, IssueChange, new_issue

from conftest import at


@pytest.fixture
def dispatcher(policy_provider) -> NotificationDispatcher:
    return NotificationDispatcher(policy_provider)


@pytest.fixture
def issue():
    return new_issue("GRV-1", "payroll", at(3, 9), assigned_to="agent-7", assigned_at=at(3, 9))


def priority_change(previous: str, new: str) -> IssueChange:
    return IssueChange(
        issue_id="GRV-1",
        kind=TransitionKind.PRIORITY,
        actor_id="system",
        occurred_at=at(4, 9),
        previous_priority=previous,
        new_priority=new,
    )


class TestDispatch:

    def test_escalation_notifies_assignee_and_targets(self, dispatcher, issue):
        recipients = dispatcher.dispatch(issue, priority_change(Priority.MEDIUM, Priority.HIGH))
        assert recipients == ["agent-7", "hr_admin", "super_admin"]

    def test_de_escalation_notifies_nobody(self, dispatcher, issue):
        assert dispatcher.dispatch(issue, priority_change(Priority.HIGH, Priority.LOW)) == []

    def test_unassigned_issue_notifies_targets_only(self, dispatcher, issue):
        unassigned = replace(issue, assigned_to=None)
        recipients = dispatcher.dispatch(unassigned, priority_change(Priority.LOW, Priority.MEDIUM))
        assert recipients == ["hr_admin"]

    def test_recipients_are_deduplicated(self, dispatcher, issue):
        admin_owned = replace(issue, assigned_to="hr_admin")
        recipients = dispatcher.dispatch(admin_owned, priority_change(Priority.HIGH, Priority.CRITICAL))
        assert recipients == ["hr_admin", "super_admin"]

    def test_manual_escalation_uses_rule_target(self, dispatcher, issue):
        change = IssueChange(
            issue_id="GRV-1", kind=TransitionKind.ESCALATION, actor_id="lead-1", occurred_at=at(3, 12)
        )
        rule = EscalationRule(id="r1", priority=Priority.MEDIUM, escalate_after_hours=8,
                              escalate_to_role="hr_admin", escalate_to_user="director-1")
        assert dispatcher.dispatch(issue, change, [rule]) == ["agent-7", "director-1"]

    def test_assignment_notifies_new_assignee(self, dispatcher, issue):
        change = IssueChange(
            issue_id="GRV-1", kind=TransitionKind.ASSIGNMENT, actor_id="lead-1", occurred_at=at(3, 12)
        )
        assert dispatcher.dispatch(issue, change) == ["agent-7"]

    def test_reopen_notifies_assignee_and_default_recipients(self, dispatcher, issue):
        change = IssueChange(
            issue_id="GRV-1", kind=TransitionKind.REOPEN, actor_id="employee-1",
            occurred_at=at(3, 12), details={"reason": "not fixed"}
        )
        assert dispatcher.dispatch(issue, change) == ["agent-7", "hr_admin"]

    @pytest.mark.parametrize("kind", [TransitionKind.STATUS, TransitionKind.MAPPING, TransitionKind.UNMAPPING])
    def test_silent_kinds(self, dispatcher, issue, kind):
        change = IssueChange(issue_id="GRV-1", kind=kind, actor_id="agent-7", occurred_at=at(3, 12))
        assert dispatcher.dispatch(issue, change) == []


class TestBuildNotifications:

    def test_one_notification_per_recipient(self, dispatcher, issue):
        notifications = dispatcher.build_notifications(
            issue, priority_change(Priority.MEDIUM, Priority.CRITICAL)
        )

        assert [n.recipient_id for n in notifications] == ["agent-7", "hr_admin", "super_admin"]
        assert all(n.issue_id == "GRV-1" for n in notifications)
        assert all(not n.is_read for n in notifications)
        assert all(n.created_at == at(4, 9) for n in notifications)
        assert "medium to critical" in notifications[0].content

    def test_reopen_content_includes_reason(self, dispatcher, issue):
        change = IssueChange(
            issue_id="GRV-1", kind=TransitionKind.REOPEN, actor_id="employee-1",
            occurred_at=at(3, 12), details={"reason": "not fixed"}
        )
        assert NotificationDispatcher.content_for(issue, change) == "Issue GRV-1 was reopened: not fixed"


class TestAuditRecorder:

    async def test_priority_change_records_both_priorities(self, audit_repo):
        recorder = AuditRecorder(audit_repo)
        entry = await recorder.record_change(priority_change(Priority.LOW, Priority.MEDIUM))

        assert entry.id == 1
        assert entry.action == AuditAction.PRIORITY_CHANGED
        assert entry.details["previous_priority"] == Priority.LOW
        assert entry.details["new_priority"] == Priority.MEDIUM

    async def test_comment_records_privacy_flag(self, audit_repo):
        recorder = AuditRecorder(audit_repo)
        entry = await recorder.record_comment("GRV-1", "agent-7", "c-1", at(3, 12), internal=True)

        assert entry.action == AuditAction.COMMENT_ADDED
        assert entry.details == {"comment_id": "c-1", "internal": True}
