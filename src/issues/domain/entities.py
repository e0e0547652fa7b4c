"""
Issue Domain Entities
=====================

Pure Python domain entities for the issue lifecycle engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Field names are
the canonical snake_case representation; conversion from external
payloads happens only at the store and API boundaries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, Tuple

from src.config import (
    IssueStatus, Priority, TransitionKind, OTHERS_TYPE_ID,
    ACTIVE_STATUSES, TERMINAL_STATUSES, priority_rank
)


@dataclass
class Issue:
    """
    Grievance issue entity.

    The engine exclusively owns status, priority and escalation fields.
    Comments and attachments live with collaborator services.
    """

    # Core attributes
    id: str
    status: str
    priority: str
    type_id: str
    sub_type_id: Optional[str]

    # Timestamps
    created_at: datetime
    updated_at: datetime

    description: str = ""
    employee_id: Optional[str] = None

    # Assignment
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None

    # Closure
    closed_at: Optional[datetime] = None

    # Type mapping (only for the generic "others" bucket)
    mapped_type_id: Optional[str] = None
    mapped_sub_type_id: Optional[str] = None
    mapped_at: Optional[datetime] = None
    mapped_by: Optional[str] = None

    # Escalation
    escalation_level: int = 0
    escalated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate issue on initialization."""
        if self.escalation_level < 0:
            raise ValueError("escalation_level cannot be negative")

        if self.mapped_type_id is not None and self.type_id != OTHERS_TYPE_ID:
            raise ValueError("mapped_type_id is only allowed on 'others' issues")

        if self.closed_at is not None:
            if self.status in ACTIVE_STATUSES:
                raise ValueError("closed_at is only allowed on resolved or closed issues")
            if self.closed_at < self.created_at:
                raise ValueError("closed_at cannot be before created_at")

    @property
    def is_active(self) -> bool:
        """Check if issue is still being worked."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Check if issue has been resolved or closed."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_mapped(self) -> bool:
        return self.mapped_type_id is not None

    @property
    def effective_type_id(self) -> str:
        """Mapped type if present, else the original type."""
        return self.mapped_type_id if self.mapped_type_id is not None else self.type_id

    @property
    def effective_sub_type_id(self) -> Optional[str]:
        if self.mapped_type_id is not None:
            return self.mapped_sub_type_id
        return self.sub_type_id

    @property
    def effective_type(self) -> Tuple[str, Optional[str]]:
        return self.effective_type_id, self.effective_sub_type_id

    @property
    def age_reference(self) -> datetime:
        """Later of creation and last assignment; the start of the priority clock."""
        if self.assigned_at is not None and self.assigned_at > self.created_at:
            return self.assigned_at
        return self.created_at


@dataclass(frozen=True)
class IssueChange:
    """
    Descriptor of one applied transition.

    Produced by the state machine and consumed by the notification
    dispatcher and the audit recorder.
    """

    issue_id: str
    kind: str
    actor_id: str
    occurred_at: datetime
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    previous_priority: Optional[str] = None
    new_priority: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_escalation(self) -> bool:
        """True when the change moves the issue up the escalation ladder."""
        if self.kind == TransitionKind.ESCALATION:
            return True
        if self.kind == TransitionKind.PRIORITY:
            return priority_rank(self.new_priority) > priority_rank(self.previous_priority)
        return False


@dataclass(frozen=True)
class AuditTrailEntry:
    """
    Immutable audit record.

    Created once per mutating action; never updated or deleted.
    """

    issue_id: str
    action: str
    actor_id: str
    created_at: datetime
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "details": dict(self.details),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Notification:
    """
    In-app notification for one recipient.

    Read state is the only field mutated after creation.
    """

    issue_id: str
    recipient_id: str
    content: str
    created_at: datetime
    is_read: bool = False
    id: Optional[str] = None

    def mark_read(self) -> None:
        self.is_read = True


@dataclass(frozen=True)
class EscalationRule:
    """
    Externally supplied escalation configuration.

    Read-only to the engine; used by manual escalation to resolve a target.
    """

    id: str
    priority: str
    escalate_after_hours: float
    escalate_to_role: Optional[str] = None
    escalate_to_user: Optional[str] = None
    is_active: bool = True

    @property
    def target(self) -> Optional[str]:
        """Explicit user wins over role."""
        return self.escalate_to_user or self.escalate_to_role


@dataclass(frozen=True)
class DomainEvent:
    """Event handed to the realtime transport after a persisted transition."""

    event_type: str
    issue_id: str
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.event_type,
            "issue_id": self.issue_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": dict(self.payload),
        }


def new_issue(
    issue_id: str,
    type_id: str,
    created_at: datetime,
    sub_type_id: Optional[str] = None,
    priority: str = Priority.MEDIUM,
    status: str = IssueStatus.OPEN,
    **extra: Any
) -> Issue:
    """Build an issue the way the creation flow does (open / medium unless given)."""
    return Issue(
        id=issue_id,
        status=status,
        priority=priority,
        type_id=type_id,
        sub_type_id=sub_type_id,
        created_at=created_at,
        updated_at=extra.pop("updated_at", created_at),
        **extra
    )
