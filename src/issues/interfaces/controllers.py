"""
Issue Controllers (API Routes)
==============================

FastAPI routes for the issue lifecycle engine.

Controllers are thin - they delegate to application services held on
app.state. Typed application errors are translated to HTTP responses by the
exception handlers registered in shared.api.middleware.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request, status

from src.issues.application import (
    IssueLifecycleService, EscalationService, SLAReportingService,
    NotificationInboxService,
    IssueIngestRequest, IssueQueryDTO, AssignRequest, MapTypeRequest,
    ActorRequest, ReopenRequest, StatusChangeRequest, PriorityChangeRequest,
    EscalateRequest, CommentAuditRequest,
    IssueResponse, IngestResponse, SLAEvaluationResponse, SLASummaryResponse,
    AuditEntryResponse, NotificationResponse, UnreadCountResponse,
    MarkAllReadResponse, SweepResultResponse
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

issues_router = APIRouter(prefix="/issues", tags=["Issues"])
notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])
escalation_router = APIRouter(prefix="/escalation", tags=["Escalation"])


# ========== Example payloads for Swagger ==========

ISSUE_CREATE_EXAMPLE = {
    "id": "GRV-1042",
    "typeId": "others",
    "subTypeId": None,
    "status": "open",
    "priority": "medium",
    "description": "Salary slip for March not generated",
    "employeeId": "EMP-2231",
    "createdAt": "2025-03-03T09:00:00+05:30"
}

SWEEP_RESPONSE_EXAMPLE = {
    "updated_count": 99,
    "failed_ids": ["GRV-42"],
    "last_run_at": "2025-03-04T09:00:00Z",
    "scanned_count": 100,
    "skipped_ids": [],
    "pending_side_effects": 0,
    "duration_ms": 412.5,
    "running": False
}


# ========== Dependencies ==========

def get_lifecycle_service(request: Request) -> IssueLifecycleService:
    return request.app.state.lifecycle_service


def get_escalation_service(request: Request) -> EscalationService:
    return request.app.state.escalation_service


def get_sla_reporting_service(request: Request) -> SLAReportingService:
    return request.app.state.sla_reporting_service


def get_inbox_service(request: Request) -> NotificationInboxService:
    return request.app.state.inbox_service


# ========== Issues ==========

@issues_router.post(
    "",
    response_model=IngestResponse,
    summary="Ingest issues",
    description="""
    Create-if-missing batch ingest from the issue creation flow.

    **Idempotent**: issues are identified by `id`; an id that already exists
    is reported under `existing` and left untouched.

    Field names may be camelCase (`typeId`, `createdAt`) or snake_case.

    **Example Request**:
    ```json
    {"issues": [{"id": "GRV-1042", "typeId": "others", "createdAt": "2025-03-03T09:00:00+05:30"}]}
    ```
    """,
    responses={200: {"content": {"application/json": {"example": {
        "created": [ISSUE_CREATE_EXAMPLE["id"]], "existing": [],
        "created_count": 1, "existing_count": 0
    }}}}}
)
async def ingest_issues(
    request: IssueIngestRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    created, existing = await service.ingest([dto.to_entity() for dto in request.issues])
    return IngestResponse(
        created=created,
        existing=existing,
        created_count=len(created),
        existing_count=len(existing)
    )


@issues_router.get(
    "",
    response_model=List[IssueResponse],
    summary="List issues"
)
async def list_issues(
    query: IssueQueryDTO = Depends(),
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issues = await service.list_issues(query.to_filters(), limit=query.limit, offset=query.offset)
    return [IssueResponse.from_entity(issue) for issue in issues]


@issues_router.get(
    "/sla/summary",
    response_model=SLASummaryResponse,
    summary="SLA buckets per effective type",
    description="Groups by mapped type when present, else the original type."
)
async def sla_summary(
    query: IssueQueryDTO = Depends(),
    service: SLAReportingService = Depends(get_sla_reporting_service)
):
    return SLASummaryResponse(**await service.summary(query.to_filters()))


@issues_router.get(
    "/{issue_id}",
    response_model=IssueResponse,
    summary="Get issue",
    responses={404: {"description": "Issue not found"}}
)
async def get_issue(
    issue_id: str,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    return IssueResponse.from_entity(await service.get_issue(issue_id))


@issues_router.get(
    "/{issue_id}/sla",
    response_model=SLAEvaluationResponse,
    summary="SLA evaluation of one issue"
)
async def get_issue_sla(
    issue_id: str,
    service: SLAReportingService = Depends(get_sla_reporting_service)
):
    issue, evaluation = await service.evaluate(issue_id)
    return SLAEvaluationResponse.from_evaluation(issue, evaluation)


@issues_router.get(
    "/{issue_id}/audit",
    response_model=List[AuditEntryResponse],
    summary="Audit trail of one issue, oldest first"
)
async def get_issue_audit(
    issue_id: str,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    return [AuditEntryResponse.from_entity(entry) for entry in await service.audit_trail(issue_id)]


@issues_router.post("/{issue_id}/assign", response_model=IssueResponse, summary="Assign to an agent")
async def assign_issue(
    issue_id: str,
    request: AssignRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.assign(issue_id, request.agent_id, request.actor_id)
    return IssueResponse.from_entity(issue)


@issues_router.post(
    "/{issue_id}/map",
    response_model=IssueResponse,
    summary="Map an 'others' issue to a concrete type",
    responses={422: {"description": "Issue is not of type 'others' or target is 'others'"}}
)
async def map_issue_type(
    issue_id: str,
    request: MapTypeRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.map_type(issue_id, request.type_id, request.sub_type_id, request.actor_id)
    return IssueResponse.from_entity(issue)


@issues_router.post("/{issue_id}/unmap", response_model=IssueResponse, summary="Clear a type mapping")
async def unmap_issue_type(
    issue_id: str,
    request: ActorRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    return IssueResponse.from_entity(await service.unmap_type(issue_id, request.actor_id))


@issues_router.post(
    "/{issue_id}/reopen",
    response_model=IssueResponse,
    summary="Reopen within the working-hour window",
    responses={422: {"description": "Issue not terminal or reopen window elapsed"}}
)
async def reopen_issue(
    issue_id: str,
    request: ReopenRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.reopen(issue_id, request.reason, request.actor_id)
    return IssueResponse.from_entity(issue)


@issues_router.post("/{issue_id}/status", response_model=IssueResponse, summary="Change status")
async def change_issue_status(
    issue_id: str,
    request: StatusChangeRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.change_status(issue_id, request.status, request.actor_id)
    return IssueResponse.from_entity(issue)


@issues_router.post("/{issue_id}/priority", response_model=IssueResponse, summary="Change priority")
async def change_issue_priority(
    issue_id: str,
    request: PriorityChangeRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.set_priority(issue_id, request.priority, request.actor_id)
    return IssueResponse.from_entity(issue)


@issues_router.post(
    "/{issue_id}/escalate",
    response_model=IssueResponse,
    summary="Escalate now",
    description="Bumps the escalation level and notifies the rule's target without recomputing priority."
)
async def escalate_issue(
    issue_id: str,
    request: EscalateRequest,
    service: EscalationService = Depends(get_escalation_service)
):
    issue = await service.escalate_now(issue_id, request.actor_id, request.reason, request.rule_id)
    return IssueResponse.from_entity(issue)


@issues_router.post(
    "/{issue_id}/comments",
    response_model=AuditEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record that a comment was added"
)
async def record_comment(
    issue_id: str,
    request: CommentAuditRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    entry = await service.record_comment(
        issue_id, request.actor_id, request.comment_id, internal=request.internal
    )
    return AuditEntryResponse.from_entity(entry)


# ========== Notifications ==========

@notifications_router.get("", response_model=List[NotificationResponse], summary="Recipient inbox")
async def list_notifications(
    recipient_id: str = Query(..., min_length=1),
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: NotificationInboxService = Depends(get_inbox_service)
):
    notifications = await service.list(recipient_id, unread_only=unread_only, limit=limit, offset=offset)
    return [NotificationResponse.from_entity(n) for n in notifications]


@notifications_router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    recipient_id: str = Query(..., min_length=1),
    service: NotificationInboxService = Depends(get_inbox_service)
):
    return UnreadCountResponse(recipient_id=recipient_id, unread_count=await service.unread_count(recipient_id))


@notifications_router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    recipient_id: str = Query(..., min_length=1),
    service: NotificationInboxService = Depends(get_inbox_service)
):
    return MarkAllReadResponse(recipient_id=recipient_id, marked_count=await service.mark_all_read(recipient_id))


@notifications_router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    responses={404: {"description": "No such notification for this recipient"}}
)
async def mark_read(
    notification_id: str,
    recipient_id: str = Query(..., min_length=1),
    service: NotificationInboxService = Depends(get_inbox_service)
):
    return NotificationResponse.from_entity(await service.mark_read(notification_id, recipient_id))


# ========== Escalation sweep (operational surface) ==========

def _sweep_response(service: EscalationService) -> SweepResultResponse:
    last = service.last_sweep
    if last is None:
        return SweepResultResponse(updated_count=0, failed_ids=[], running=service.is_running)
    return SweepResultResponse(**last.to_dict(), running=service.is_running)


@escalation_router.post(
    "/sweep",
    response_model=SweepResultResponse,
    summary="Run one escalation sweep now",
    description="If a sweep is already running this one is skipped and the previous stats are returned.",
    responses={200: {"content": {"application/json": {"example": SWEEP_RESPONSE_EXAMPLE}}}}
)
async def trigger_sweep(service: EscalationService = Depends(get_escalation_service)):
    result = await service.run_sweep()
    if result is None:
        logger.info("Manual sweep skipped")
    return _sweep_response(service)


@escalation_router.get(
    "/sweep/last",
    response_model=SweepResultResponse,
    summary="Last sweep stats"
)
async def last_sweep(service: EscalationService = Depends(get_escalation_service)):
    return _sweep_response(service)
