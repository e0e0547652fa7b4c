"""
Issue Application DTOs
======================

Data Transfer Objects for the issue API layer.

Request models accept the camelCase field names used by the web and mobile
clients as well as snake_case; they are converted into the canonical domain
representation here and nowhere else. Responses are snake_case.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.issues.domain import Issue, AuditTrailEntry, Notification, SLAEvaluation, new_issue


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "critical"]
IssueStatusStr = Literal["open", "in_progress", "resolved", "closed"]
SLABucketStr = Literal["onTime", "atRisk", "breached", "pending"]


class CamelModel(BaseModel):
    """Accepts both camelCase and snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Request DTOs ==========

class IssueCreateDTO(CamelModel):
    """DTO for ingesting a single issue from the creation flow."""
    id: str = Field(..., min_length=1, description="Opaque issue id")
    type_id: str = Field(..., min_length=1)
    sub_type_id: Optional[str] = None
    status: IssueStatusStr = Field(default="open")
    priority: PriorityStr = Field(default="medium")
    description: str = Field(default="")
    employee_id: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: datetime = Field(..., description="Issue creation timestamp")
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "closed_at")
    @classmethod
    def ensure_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are taken as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("updated_at")
    @classmethod
    def validate_updated_at(cls, v: Optional[datetime], info) -> Optional[datetime]:
        """Ensure updated_at is not before created_at."""
        created_at = info.data.get("created_at")
        if v is not None and created_at is not None and v < created_at:
            raise ValueError("updated_at cannot be before created_at")
        return v

    @model_validator(mode="after")
    def validate_closed_at(self) -> "IssueCreateDTO":
        """closed_at belongs to resolved or closed issues and follows created_at."""
        if self.closed_at is None:
            return self
        if self.status in ("open", "in_progress"):
            raise ValueError(f"closed_at is not allowed on a '{self.status}' issue")
        if self.closed_at < self.created_at:
            raise ValueError("closed_at cannot be before created_at")
        return self

    def to_entity(self) -> Issue:
        closed_at = self.closed_at
        if closed_at is None and self.status in ("resolved", "closed"):
            closed_at = self.updated_at or self.created_at
        return new_issue(
            issue_id=self.id,
            type_id=self.type_id,
            sub_type_id=self.sub_type_id,
            created_at=self.created_at,
            priority=self.priority,
            status=self.status,
            updated_at=self.updated_at or self.created_at,
            description=self.description,
            employee_id=self.employee_id,
            assigned_to=self.assigned_to,
            assigned_at=self.created_at if self.assigned_to else None,
            closed_at=closed_at,
        )


class IssueIngestRequest(CamelModel):
    """Request model for batch issue ingestion."""
    issues: List[IssueCreateDTO] = Field(..., min_length=1)


class AssignRequest(CamelModel):
    agent_id: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)


class MapTypeRequest(CamelModel):
    type_id: str = Field(..., min_length=1)
    sub_type_id: Optional[str] = None
    actor_id: str = Field(..., min_length=1)


class ActorRequest(CamelModel):
    actor_id: str = Field(..., min_length=1)


class ReopenRequest(CamelModel):
    reason: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)


class StatusChangeRequest(CamelModel):
    status: IssueStatusStr
    actor_id: str = Field(..., min_length=1)


class PriorityChangeRequest(CamelModel):
    priority: PriorityStr
    actor_id: str = Field(..., min_length=1)


class EscalateRequest(CamelModel):
    actor_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    rule_id: Optional[str] = None


class CommentAuditRequest(CamelModel):
    """Notification from the comment service that a comment was added."""
    actor_id: str = Field(..., min_length=1)
    comment_id: str = Field(..., min_length=1)
    internal: bool = Field(default=False, description="Explicit visibility flag owned by the comment service")


class IssueQueryDTO(BaseModel):
    """Query parameters for the issue listing endpoint."""
    status: Optional[IssueStatusStr] = None
    priority: Optional[PriorityStr] = None
    assigned_to: Optional[str] = None
    effective_type_id: Optional[str] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    def to_filters(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"limit", "offset"}, exclude_none=True)


# ========== Response DTOs ==========

class IssueResponse(BaseModel):
    """Response model for an issue."""
    id: str
    status: IssueStatusStr
    priority: PriorityStr
    type_id: str
    sub_type_id: Optional[str] = None
    effective_type_id: str
    effective_sub_type_id: Optional[str] = None
    mapped_type_id: Optional[str] = None
    mapped_sub_type_id: Optional[str] = None
    mapped_at: Optional[datetime] = None
    mapped_by: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    escalation_level: int
    escalated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, issue: Issue) -> "IssueResponse":
        return cls(
            id=issue.id,
            status=issue.status,
            priority=issue.priority,
            type_id=issue.type_id,
            sub_type_id=issue.sub_type_id,
            effective_type_id=issue.effective_type_id,
            effective_sub_type_id=issue.effective_sub_type_id,
            mapped_type_id=issue.mapped_type_id,
            mapped_sub_type_id=issue.mapped_sub_type_id,
            mapped_at=issue.mapped_at,
            mapped_by=issue.mapped_by,
            assigned_to=issue.assigned_to,
            assigned_at=issue.assigned_at,
            escalation_level=issue.escalation_level,
            escalated_at=issue.escalated_at,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
            closed_at=issue.closed_at,
        )


class IngestResponse(BaseModel):
    """Response model for batch ingestion."""
    created: List[str]
    existing: List[str]
    created_count: int
    existing_count: int


class SLAEvaluationResponse(BaseModel):
    """SLA view of one issue."""
    issue_id: str
    priority: str
    bucket: SLABucketStr
    threshold_hours: float
    elapsed_working_hours: float
    deadline: datetime
    effective_type_id: str

    @classmethod
    def from_evaluation(cls, issue: Issue, evaluation: SLAEvaluation) -> "SLAEvaluationResponse":
        return cls(
            issue_id=issue.id,
            priority=evaluation.priority,
            bucket=evaluation.bucket,
            threshold_hours=evaluation.threshold_hours,
            elapsed_working_hours=evaluation.elapsed_hours,
            deadline=evaluation.deadline,
            effective_type_id=issue.effective_type_id,
        )


class SLABucketSummary(BaseModel):
    counts: Dict[str, int]
    total: int
    breach_rate: float


class SLASummaryResponse(BaseModel):
    """SLA buckets per effective type."""
    overall: SLABucketSummary
    by_type: Dict[str, SLABucketSummary]


class AuditEntryResponse(BaseModel):
    id: Optional[int] = None
    issue_id: str
    action: str
    actor_id: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_entity(cls, entry: AuditTrailEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            issue_id=entry.issue_id,
            action=entry.action,
            actor_id=entry.actor_id,
            previous_status=entry.previous_status,
            new_status=entry.new_status,
            details=dict(entry.details),
            created_at=entry.created_at,
        )


class NotificationResponse(BaseModel):
    id: str
    issue_id: str
    recipient_id: str
    content: str
    is_read: bool
    created_at: datetime

    @classmethod
    def from_entity(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            issue_id=notification.issue_id,
            recipient_id=notification.recipient_id,
            content=notification.content,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )


class UnreadCountResponse(BaseModel):
    recipient_id: str
    unread_count: int


class MarkAllReadResponse(BaseModel):
    recipient_id: str
    marked_count: int


class SweepResultResponse(BaseModel):
    """Last-sweep stats for the operational surface."""
    updated_count: int
    failed_ids: List[str]
    last_run_at: Optional[datetime] = None
    scanned_count: int = 0
    skipped_ids: List[str] = Field(default_factory=list)
    pending_side_effects: int = 0
    duration_ms: float = 0.0
    running: bool = False
