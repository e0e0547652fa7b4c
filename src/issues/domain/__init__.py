"""
Issue Domain Layer
==================

Domain layer for the issue lifecycle and escalation engine.

Contains:
- Entities: Issue, IssueChange, AuditTrailEntry, Notification, EscalationRule, DomainEvent
- Value Objects: BusinessCalendar, EscalationConfig, SLAEvaluation, EscalationPolicy
- Domain Services: WorkingTimeCalculator, SLAPolicy, PriorityResolver, IssueStateMachine

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.issues.domain.entities import (
    Issue,
    IssueChange,
    AuditTrailEntry,
    Notification,
    EscalationRule,
    DomainEvent,
    new_issue,
)
from src.issues.domain.value_objects import (
    Clock,
    SystemClock,
    BusinessCalendar,
    WorkingTimeCalculator,
    SLAPolicy,
    SLAEvaluation,
    PriorityResolver,
    EscalationConfig,
    WorkingHoursConfig,
    LadderStep,
    EscalationPolicy,
)
from src.issues.domain.state_machine import IssueStateMachine, STATUS_TRANSITIONS

__all__ = [
    # Entities
    "Issue",
    "IssueChange",
    "AuditTrailEntry",
    "Notification",
    "EscalationRule",
    "DomainEvent",
    "new_issue",
    # Value Objects & Services
    "Clock",
    "SystemClock",
    "BusinessCalendar",
    "WorkingTimeCalculator",
    "SLAPolicy",
    "SLAEvaluation",
    "PriorityResolver",
    "EscalationConfig",
    "WorkingHoursConfig",
    "LadderStep",
    "EscalationPolicy",
    "IssueStateMachine",
    "STATUS_TRANSITIONS",
]
