"""
Issue State Machine
===================

Owns valid status transitions, priority changes, assignment, type mapping,
reopen eligibility and manual escalation.

Every operation is pure: it takes the current Issue and returns a new Issue
plus an IssueChange descriptor, or raises a typed error. The input issue is
never mutated, so a rejected transition leaves no partial state behind and
all field writes for one transition reach the store as a unit.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple

from src.config import (
    IssueStatus, TransitionKind, OTHERS_TYPE_ID, VALID_PRIORITIES,
    TERMINAL_STATUSES
)
from src.core import (
    InvalidTransitionError, InvalidMappingError, ValidationException
)
from src.issues.domain.entities import Issue, IssueChange, EscalationRule
from src.issues.domain.value_objects import WorkingTimeCalculator

Transition = Tuple[Issue, IssueChange]

# Active issues may skip ahead or step back; terminal -> open only goes through reopen
STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    IssueStatus.OPEN: frozenset({IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED, IssueStatus.CLOSED}),
    IssueStatus.IN_PROGRESS: frozenset({IssueStatus.OPEN, IssueStatus.RESOLVED, IssueStatus.CLOSED}),
    IssueStatus.RESOLVED: frozenset({IssueStatus.CLOSED}),
    IssueStatus.CLOSED: frozenset(),
}


class IssueStateMachine:
    """Applies lifecycle transitions to issues."""

    def __init__(self, calculator: WorkingTimeCalculator, reopen_window_hours: float):
        self.calculator = calculator
        self.reopen_window_hours = reopen_window_hours

    # ========== Priority ==========

    def change_priority(
        self,
        issue: Issue,
        new_priority: str,
        actor_id: str,
        now: datetime,
        automatic: bool = False
    ) -> Optional[Transition]:
        """Returns None when the priority is unchanged; callers must then write nothing."""
        if new_priority not in VALID_PRIORITIES:
            raise ValidationException(
                f"Unknown priority '{new_priority}'",
                {"allowed": list(VALID_PRIORITIES)}
            )
        if new_priority == issue.priority:
            return None

        updated = replace(issue, priority=new_priority, updated_at=now)
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.PRIORITY,
            actor_id=actor_id,
            occurred_at=now,
            previous_priority=issue.priority,
            new_priority=new_priority,
            details={"automatic": automatic},
        )
        return updated, change

    # ========== Status ==========

    def change_status(
        self,
        issue: Issue,
        new_status: str,
        actor_id: str,
        now: datetime
    ) -> Optional[Transition]:
        """Move along the transition table; closed_at tracks entry into resolved/closed."""
        if new_status == issue.status:
            return None

        if issue.status in TERMINAL_STATUSES and new_status == IssueStatus.OPEN:
            raise InvalidTransitionError(issue.id, issue.status, new_status, "use reopen")

        allowed = STATUS_TRANSITIONS.get(issue.status, frozenset())
        if new_status not in allowed:
            raise InvalidTransitionError(issue.id, issue.status, new_status)

        closed_at = now if new_status in TERMINAL_STATUSES else None
        updated = replace(issue, status=new_status, closed_at=closed_at, updated_at=now)
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.STATUS,
            actor_id=actor_id,
            occurred_at=now,
            previous_status=issue.status,
            new_status=new_status,
        )
        return updated, change

    def start_progress(self, issue: Issue, actor_id: str, now: datetime) -> Optional[Transition]:
        return self.change_status(issue, IssueStatus.IN_PROGRESS, actor_id, now)

    def resolve(self, issue: Issue, actor_id: str, now: datetime) -> Optional[Transition]:
        return self.change_status(issue, IssueStatus.RESOLVED, actor_id, now)

    def close(self, issue: Issue, actor_id: str, now: datetime) -> Optional[Transition]:
        return self.change_status(issue, IssueStatus.CLOSED, actor_id, now)

    def reopen(self, issue: Issue, reason: str, actor_id: str, now: datetime) -> Transition:
        """
        Return a resolved/closed issue to open.

        Only allowed while the working time since closure is within the
        reopen window (the boundary itself is inside). Escalation level is kept.
        """
        if issue.status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(issue.id, issue.status, IssueStatus.OPEN, "issue is not resolved or closed")
        if issue.closed_at is None:
            raise InvalidTransitionError(issue.id, issue.status, IssueStatus.OPEN, "closure time is unknown")

        elapsed = self.calculator.elapsed_hours(issue.closed_at, now)
        if elapsed > self.reopen_window_hours:
            raise InvalidTransitionError(
                issue.id, issue.status, IssueStatus.OPEN,
                f"reopen window of {self.reopen_window_hours:g} working hours has elapsed"
            )

        updated = replace(issue, status=IssueStatus.OPEN, closed_at=None, updated_at=now)
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.REOPEN,
            actor_id=actor_id,
            occurred_at=now,
            previous_status=issue.status,
            new_status=IssueStatus.OPEN,
            details={
                "reason": reason,
                "closed_at": issue.closed_at.isoformat(),
                "working_hours_since_close": round(elapsed, 2),
            },
        )
        return updated, change

    # ========== Assignment ==========

    def assign(self, issue: Issue, agent_id: str, actor_id: str, now: datetime) -> Transition:
        """Always produces a change, even when re-assigning the same agent."""
        if issue.is_terminal:
            raise InvalidTransitionError(
                issue.id, issue.status, issue.status, "cannot assign a resolved or closed issue"
            )
        if not agent_id:
            raise ValidationException("agent_id is required")

        updated = replace(issue, assigned_to=agent_id, assigned_at=now, updated_at=now)
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.ASSIGNMENT,
            actor_id=actor_id,
            occurred_at=now,
            details={"previous_assignee": issue.assigned_to, "assignee": agent_id},
        )
        return updated, change

    # ========== Type mapping ==========

    def map_type(
        self,
        issue: Issue,
        new_type_id: str,
        new_sub_type_id: Optional[str],
        actor_id: str,
        now: datetime
    ) -> Transition:
        if issue.type_id != OTHERS_TYPE_ID:
            raise InvalidMappingError(issue.id, f"only '{OTHERS_TYPE_ID}' issues can be mapped")
        if not new_type_id:
            raise InvalidMappingError(issue.id, "target type is required")
        if new_type_id == OTHERS_TYPE_ID:
            raise InvalidMappingError(issue.id, f"cannot map onto '{OTHERS_TYPE_ID}'")

        updated = replace(
            issue,
            mapped_type_id=new_type_id,
            mapped_sub_type_id=new_sub_type_id,
            mapped_at=now,
            mapped_by=actor_id,
            updated_at=now,
        )
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.MAPPING,
            actor_id=actor_id,
            occurred_at=now,
            details={
                "original_type_id": issue.type_id,
                "original_sub_type_id": issue.sub_type_id,
                "previous_mapped_type_id": issue.mapped_type_id,
                "mapped_type_id": new_type_id,
                "mapped_sub_type_id": new_sub_type_id,
            },
        )
        return updated, change

    def unmap_type(self, issue: Issue, actor_id: str, now: datetime) -> Transition:
        if not issue.is_mapped:
            raise InvalidMappingError(issue.id, "issue is not mapped")

        updated = replace(
            issue,
            mapped_type_id=None,
            mapped_sub_type_id=None,
            mapped_at=None,
            mapped_by=None,
            updated_at=now,
        )
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.UNMAPPING,
            actor_id=actor_id,
            occurred_at=now,
            details={
                "mapped_type_id": issue.mapped_type_id,
                "mapped_sub_type_id": issue.mapped_sub_type_id,
            },
        )
        return updated, change

    @staticmethod
    def effective_type(issue: Issue) -> Tuple[str, Optional[str]]:
        """Type and sub-type that grouping and reporting must use."""
        return issue.effective_type

    # ========== Escalation ==========

    def escalate(
        self,
        issue: Issue,
        actor_id: str,
        reason: str,
        rule: Optional[EscalationRule],
        now: datetime
    ) -> Transition:
        """Manual escalation: bump the level, stamp escalated_at, keep priority."""
        if issue.is_terminal:
            raise InvalidTransitionError(
                issue.id, issue.status, issue.status, "cannot escalate a resolved or closed issue"
            )

        level = issue.escalation_level + 1
        updated = replace(issue, escalation_level=level, escalated_at=now, updated_at=now)
        change = IssueChange(
            issue_id=issue.id,
            kind=TransitionKind.ESCALATION,
            actor_id=actor_id,
            occurred_at=now,
            previous_priority=issue.priority,
            new_priority=issue.priority,
            details={
                "reason": reason,
                "escalation_level": level,
                "rule_id": rule.id if rule else None,
                "escalated_to": rule.target if rule else None,
            },
        )
        return updated, change
