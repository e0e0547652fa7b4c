"""
Issue Application Layer
=======================

Application layer for the issue lifecycle and escalation engine.

Contains:
- Services: manual lifecycle actions, the escalation sweep, SLA reporting,
  the notification inbox
- Collaborators: NotificationDispatcher, AuditRecorder, TransitionRunner
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.issues.application.dto import (
    IssueCreateDTO,
    IssueIngestRequest,
    IssueQueryDTO,
    AssignRequest,
    MapTypeRequest,
    ActorRequest,
    ReopenRequest,
    StatusChangeRequest,
    PriorityChangeRequest,
    EscalateRequest,
    CommentAuditRequest,
    IssueResponse,
    IngestResponse,
    SLAEvaluationResponse,
    SLASummaryResponse,
    AuditEntryResponse,
    NotificationResponse,
    UnreadCountResponse,
    MarkAllReadResponse,
    SweepResultResponse,
)
from src.issues.application.services import (
    IssueLifecycleService,
    EscalationService,
    SLAReportingService,
    NotificationInboxService,
    NotificationDispatcher,
    AuditRecorder,
    TransitionRunner,
    PendingSideEffects,
    IssueLockRegistry,
    SweepResult,
    StaticPolicyProvider,
    NullEventPublisher,
    build_state_machine,
    IIssueRepository,
    IEscalationRuleRepository,
    INotificationRepository,
    IAuditRepository,
    IEventPublisher,
    IEscalationPolicyProvider,
)

__all__ = [
    # DTOs
    "IssueCreateDTO",
    "IssueIngestRequest",
    "IssueQueryDTO",
    "AssignRequest",
    "MapTypeRequest",
    "ActorRequest",
    "ReopenRequest",
    "StatusChangeRequest",
    "PriorityChangeRequest",
    "EscalateRequest",
    "CommentAuditRequest",
    "IssueResponse",
    "IngestResponse",
    "SLAEvaluationResponse",
    "SLASummaryResponse",
    "AuditEntryResponse",
    "NotificationResponse",
    "UnreadCountResponse",
    "MarkAllReadResponse",
    "SweepResultResponse",
    # Services
    "IssueLifecycleService",
    "EscalationService",
    "SLAReportingService",
    "NotificationInboxService",
    "NotificationDispatcher",
    "AuditRecorder",
    "TransitionRunner",
    "PendingSideEffects",
    "IssueLockRegistry",
    "SweepResult",
    "StaticPolicyProvider",
    "NullEventPublisher",
    "build_state_machine",
    # Repository Interfaces
    "IIssueRepository",
    "IEscalationRuleRepository",
    "INotificationRepository",
    "IAuditRepository",
    "IEventPublisher",
    "IEscalationPolicyProvider",
]
