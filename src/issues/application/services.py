"""
Issue Application Services
==========================

Application services orchestrate the domain layer and coordinate
repositories, sinks and the realtime publisher.

Following SOLID principles:
- Single Responsibility: recipient resolution, auditing, transition
  execution, manual actions and the sweep each live in their own class
- Dependency Inversion: depend on the store/sink interfaces below, not on
  SQLAlchemy or httpx
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from src.config import (
    AuditAction, EventType, TransitionKind, SYSTEM_ACTOR,
    VALID_STATUSES, VALID_SLA_BUCKETS, SLABucket
)
from src.core import ConflictError, NotFoundError, RepositoryException, ValidationException
from src.issues.domain import (
    Issue, IssueChange, AuditTrailEntry, Notification, EscalationRule,
    DomainEvent, Clock, EscalationPolicy, IssueStateMachine, SLAEvaluation
)
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

Transition = Tuple[Issue, IssueChange]
TransitionFn = Callable[[Issue], Optional[Transition]]


# ========== Repository Interfaces (Dependency Inversion) ==========

class IIssueRepository(ABC):
    """Interface for the issue store."""

    @abstractmethod
    async def load_active_issues(self) -> List[Issue]:
        """All issues in open or in_progress."""

    @abstractmethod
    async def load(self, issue_id: str) -> Issue:
        """Load one issue; raises NotFoundError when absent."""

    @abstractmethod
    async def save(self, issue: Issue, expected_updated_at: datetime) -> Issue:
        """Persist all fields of an issue; raises ConflictError if updated_at moved."""

    @abstractmethod
    async def create(self, issue: Issue) -> Optional[Issue]:
        """Create an issue; returns None when the id already exists."""

    @abstractmethod
    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Issue]:
        """List issues with filters."""


class IEscalationRuleRepository(ABC):
    """Interface for escalation rule configuration (read-only to the engine)."""

    @abstractmethod
    async def rules_for(self, priority: str) -> List[EscalationRule]:
        """Rules configured for a priority."""

    @abstractmethod
    async def get_by_id(self, rule_id: str) -> Optional[EscalationRule]:
        """Get a rule by id."""


class INotificationRepository(ABC):
    """Interface for the notification sink and inbox."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Persist a new notification."""

    @abstractmethod
    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[Notification]:
        """Newest-first notifications of one recipient."""

    @abstractmethod
    async def mark_read(self, notification_id: str, recipient_id: str) -> Notification:
        """Mark as read; only the recipient may do so."""

    @abstractmethod
    async def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notification of a recipient; returns the count."""

    @abstractmethod
    async def unread_count(self, recipient_id: str) -> int:
        """Number of unread notifications."""


class IAuditRepository(ABC):
    """Interface for the append-only audit sink."""

    @abstractmethod
    async def append(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        """Append an entry."""

    @abstractmethod
    async def list_for_issue(self, issue_id: str) -> List[AuditTrailEntry]:
        """Entries of one issue in the order they were appended."""


class IEventPublisher(ABC):
    """Interface for the realtime transport ingress."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> bool:
        """Hand an event to the transport. Must not raise."""


class IEscalationPolicyProvider(ABC):
    """Interface for escalation policy access."""

    @abstractmethod
    def get_policy(self) -> EscalationPolicy:
        """Get current escalation policy."""


class StaticPolicyProvider(IEscalationPolicyProvider):
    """Provider for a fixed policy."""

    def __init__(self, policy: EscalationPolicy):
        self._policy = policy

    def get_policy(self) -> EscalationPolicy:
        return self._policy


class NullEventPublisher(IEventPublisher):
    """Publisher used when no realtime transport is configured."""

    async def publish(self, event: DomainEvent) -> bool:
        return False


def build_state_machine(policy: EscalationPolicy) -> IssueStateMachine:
    return IssueStateMachine(policy.calculator, policy.reopen_window_hours)


def _dedupe(recipients: Sequence[Optional[str]]) -> List[str]:
    seen = []
    for recipient in recipients:
        if recipient and recipient not in seen:
            seen.append(recipient)
    return seen


# ========== Notification / Audit ==========

class NotificationDispatcher:
    """
    Decides who is notified for a transition.

    dispatch() is pure; persisting the resulting notifications is a separate
    step performed by the caller, once per recipient. Recipients are
    de-duplicated within one dispatch only; repeated escalations notify again.
    """

    def __init__(self, policy_provider: IEscalationPolicyProvider):
        self._policy_provider = policy_provider

    def dispatch(
        self,
        issue: Issue,
        change: IssueChange,
        rules: Sequence[EscalationRule] = ()
    ) -> List[str]:
        config = self._policy_provider.get_policy().config

        if change.kind == TransitionKind.PRIORITY:
            if not change.is_escalation:
                return []
            return _dedupe([issue.assigned_to, *config.get_escalation_targets(change.new_priority)])

        if change.kind == TransitionKind.ESCALATION:
            return _dedupe([issue.assigned_to, *[rule.target for rule in rules]])

        if change.kind == TransitionKind.ASSIGNMENT:
            return _dedupe([issue.assigned_to])

        if change.kind == TransitionKind.REOPEN:
            return _dedupe([issue.assigned_to, *config.reopen_default_recipients])

        return []

    @staticmethod
    def content_for(issue: Issue, change: IssueChange) -> str:
        if change.kind == TransitionKind.PRIORITY:
            return (
                f"Issue {issue.id} priority escalated from "
                f"{change.previous_priority} to {change.new_priority}"
            )
        if change.kind == TransitionKind.ESCALATION:
            reason = change.details.get("reason")
            text = f"Issue {issue.id} escalated to level {issue.escalation_level}"
            return f"{text}: {reason}" if reason else text
        if change.kind == TransitionKind.ASSIGNMENT:
            return f"Issue {issue.id} has been assigned to you"
        if change.kind == TransitionKind.REOPEN:
            reason = change.details.get("reason")
            text = f"Issue {issue.id} was reopened"
            return f"{text}: {reason}" if reason else text
        return f"Issue {issue.id} was updated"

    def build_notifications(
        self,
        issue: Issue,
        change: IssueChange,
        rules: Sequence[EscalationRule] = ()
    ) -> List[Notification]:
        content = self.content_for(issue, change)
        return [
            Notification(
                issue_id=issue.id,
                recipient_id=recipient,
                content=content,
                created_at=change.occurred_at,
            )
            for recipient in self.dispatch(issue, change, rules)
        ]


_ACTION_BY_KIND = {
    TransitionKind.PRIORITY: AuditAction.PRIORITY_CHANGED,
    TransitionKind.STATUS: AuditAction.STATUS_CHANGED,
    TransitionKind.ASSIGNMENT: AuditAction.ASSIGNED,
    TransitionKind.MAPPING: AuditAction.MAPPED,
    TransitionKind.UNMAPPING: AuditAction.UNMAPPED,
    TransitionKind.REOPEN: AuditAction.REOPENED,
    TransitionKind.ESCALATION: AuditAction.ESCALATED,
}

_EVENT_BY_KIND = {
    TransitionKind.PRIORITY: EventType.PRIORITY_CHANGED,
    TransitionKind.STATUS: EventType.STATUS_CHANGED,
    TransitionKind.ASSIGNMENT: EventType.ISSUE_ASSIGNED,
    TransitionKind.REOPEN: EventType.ISSUE_REOPENED,
    TransitionKind.ESCALATION: EventType.ISSUE_ESCALATED,
}


class AuditRecorder:
    """Append-only writer for the audit trail. Never reads the trail back."""

    def __init__(self, audit_repository: IAuditRepository):
        self._audit_repo = audit_repository

    async def record(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        return await self._audit_repo.append(entry)

    async def record_change(self, change: IssueChange) -> AuditTrailEntry:
        details = dict(change.details)
        if change.kind in (TransitionKind.PRIORITY, TransitionKind.ESCALATION):
            details.setdefault("previous_priority", change.previous_priority)
            details.setdefault("new_priority", change.new_priority)

        return await self.record(AuditTrailEntry(
            issue_id=change.issue_id,
            action=_ACTION_BY_KIND[change.kind],
            actor_id=change.actor_id,
            created_at=change.occurred_at,
            previous_status=change.previous_status,
            new_status=change.new_status,
            details=details,
        ))

    async def record_comment(
        self,
        issue_id: str,
        actor_id: str,
        comment_id: str,
        now: datetime,
        internal: bool = False
    ) -> AuditTrailEntry:
        return await self.record(AuditTrailEntry(
            issue_id=issue_id,
            action=AuditAction.COMMENT_ADDED,
            actor_id=actor_id,
            created_at=now,
            details={"comment_id": comment_id, "internal": internal},
        ))


# ========== Transition execution ==========

class IssueLockRegistry:
    """Per-issue asyncio locks, created on demand and dropped when unused."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, issue_id: str):
        lock = self._locks.setdefault(issue_id, asyncio.Lock())
        self._holders[issue_id] = self._holders.get(issue_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[issue_id] -= 1
            if self._holders[issue_id] == 0:
                del self._holders[issue_id]
                del self._locks[issue_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class PendingSideEffects:
    """Audit entry, notifications and event still owed for a saved transition."""

    issue: Issue
    change: IssueChange
    notifications: List[Notification]
    audited: bool = False


class TransitionRunner:
    """
    Executes one transition for one issue with all of its side effects.

    Under the per-issue lock: apply the pure transition, save with the
    expected updated_at, then append the audit entry, persist notifications
    and publish the domain event. A lost optimistic-concurrency race is
    retried once against a fresh copy, then surfaced as ConflictError.

    Once the save has committed the transition is not undone. If the audit
    or notification sink fails, the remaining writes stay queued for that
    issue and are retried, in order, before the issue's next transition and
    on every sweep. Each audit entry and notification is written once.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        notification_repository: INotificationRepository,
        audit_recorder: AuditRecorder,
        dispatcher: NotificationDispatcher,
        event_publisher: IEventPublisher,
        locks: Optional[IssueLockRegistry] = None
    ):
        self._issue_repo = issue_repository
        self._notification_repo = notification_repository
        self._audit = audit_recorder
        self._dispatcher = dispatcher
        self._publisher = event_publisher
        self.locks = locks or IssueLockRegistry()
        self._pending: Dict[str, List[PendingSideEffects]] = {}

    @property
    def pending_count(self) -> int:
        return sum(len(queue) for queue in self._pending.values())

    def pending_for(self, issue_id: str) -> List[PendingSideEffects]:
        return list(self._pending.get(issue_id, ()))

    async def apply(
        self,
        issue_id: str,
        transition: TransitionFn,
        issue: Optional[Issue] = None,
        rules: Sequence[EscalationRule] = ()
    ) -> Optional[Transition]:
        async with self.locks.hold(issue_id):
            await self._drain(issue_id)
            current = issue if issue is not None else await self._issue_repo.load(issue_id)

            for attempt in range(2):
                result = transition(current)
                if result is None:
                    return None

                updated, change = result
                try:
                    saved = await self._issue_repo.save(updated, expected_updated_at=current.updated_at)
                except ConflictError:
                    if attempt == 1:
                        raise
                    logger.warning(
                        "Concurrent update detected, retrying transition",
                        extra={"issue_id": issue_id, "kind": change.kind}
                    )
                    current = await self._issue_repo.load(issue_id)
                    continue

                self._pending.setdefault(issue_id, []).append(PendingSideEffects(
                    issue=saved,
                    change=change,
                    notifications=self._dispatcher.build_notifications(saved, change, rules),
                ))
                await self._drain(issue_id)
                return saved, change

        return None

    async def retry_pending(self) -> int:
        """
        Retry queued side effects of every issue.

        Returns:
            Number of transitions still owing side effects
        """
        for issue_id in list(self._pending):
            async with self.locks.hold(issue_id):
                await self._drain(issue_id)
        return self.pending_count

    async def _drain(self, issue_id: str) -> bool:
        """Deliver queued side effects of one issue in order; stop at the first failure."""
        queue = self._pending.get(issue_id)
        while queue:
            pending = queue[0]
            try:
                await self._deliver(pending)
            except RepositoryException as e:
                logger.error(
                    "Transition side effects failed, queued for retry",
                    extra={
                        "issue_id": issue_id,
                        "kind": pending.change.kind,
                        "audited": pending.audited,
                        "notifications_left": len(pending.notifications),
                        "queued": len(queue),
                        "error": str(e),
                    }
                )
                return False
            queue.pop(0)

        self._pending.pop(issue_id, None)
        return True

    async def _deliver(self, pending: PendingSideEffects) -> None:
        if not pending.audited:
            await self._audit.record_change(pending.change)
            pending.audited = True

        while pending.notifications:
            await self._notification_repo.create(pending.notifications[0])
            pending.notifications.pop(0)

        await self._publish(pending.issue, pending.change)

    async def _publish(self, issue: Issue, change: IssueChange) -> None:
        event_type = _EVENT_BY_KIND.get(change.kind)
        if event_type is None:
            return

        event = DomainEvent(
            event_type=event_type,
            issue_id=issue.id,
            occurred_at=change.occurred_at,
            payload={
                "actor_id": change.actor_id,
                "status": issue.status,
                "priority": issue.priority,
                "previous_status": change.previous_status,
                "previous_priority": change.previous_priority,
                "assigned_to": issue.assigned_to,
                "escalation_level": issue.escalation_level,
            },
        )
        try:
            await self._publisher.publish(event)
        except Exception as e:
            logger.error(
                "Domain event publish failed",
                extra={"issue_id": issue.id, "event_type": event_type, "error": str(e)}
            )


# ========== Application Services ==========

class IssueLifecycleService:
    """
    Manual lifecycle actions on the request path.

    Pure computation errors (bad ranges, illegal moves) surface to the
    caller as typed exceptions.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        runner: TransitionRunner,
        audit_recorder: AuditRecorder,
        audit_repository: IAuditRepository,
        policy_provider: IEscalationPolicyProvider,
        clock: Clock
    ):
        self._issue_repo = issue_repository
        self._runner = runner
        self._audit = audit_recorder
        self._audit_repo = audit_repository
        self._policy_provider = policy_provider
        self._clock = clock

    def _state_machine(self) -> IssueStateMachine:
        return build_state_machine(self._policy_provider.get_policy())

    async def _run(self, issue_id: str, transition: TransitionFn) -> Issue:
        result = await self._runner.apply(issue_id, transition)
        if result is None:
            return await self._issue_repo.load(issue_id)
        return result[0]

    async def get_issue(self, issue_id: str) -> Issue:
        return await self._issue_repo.load(issue_id)

    async def list_issues(self, filters: dict, limit: int = 100, offset: int = 0) -> List[Issue]:
        return await self._issue_repo.list(filters, limit=limit, offset=offset)

    async def ingest(self, issues: Sequence[Issue]) -> Tuple[List[str], List[str]]:
        """
        Create-if-missing batch ingest.

        Returns:
            (created ids, ids that already existed)
        """
        created, existing = [], []
        for issue in issues:
            stored = await self._issue_repo.create(issue)
            (created if stored is not None else existing).append(issue.id)

        logger.info(
            "Issues ingested",
            extra={"created": len(created), "existing": len(existing)}
        )
        return created, existing

    async def assign(self, issue_id: str, agent_id: str, actor_id: str) -> Issue:
        sm, now = self._state_machine(), self._clock.now()
        return await self._run(issue_id, lambda issue: sm.assign(issue, agent_id, actor_id, now))

    async def map_type(
        self,
        issue_id: str,
        type_id: str,
        sub_type_id: Optional[str],
        actor_id: str
    ) -> Issue:
        sm, now = self._state_machine(), self._clock.now()
        return await self._run(
            issue_id, lambda issue: sm.map_type(issue, type_id, sub_type_id, actor_id, now)
        )

    async def unmap_type(self, issue_id: str, actor_id: str) -> Issue:
        sm, now = self._state_machine(), self._clock.now()
        return await self._run(issue_id, lambda issue: sm.unmap_type(issue, actor_id, now))

    async def reopen(self, issue_id: str, reason: str, actor_id: str) -> Issue:
        sm, now = self._state_machine(), self._clock.now()
        return await self._run(issue_id, lambda issue: sm.reopen(issue, reason, actor_id, now))

    async def change_status(self, issue_id: str, status: str, actor_id: str) -> Issue:
        if status not in VALID_STATUSES:
            raise ValidationException(f"Unknown status '{status}'", {"allowed": list(VALID_STATUSES)})
        sm, now = self._state_machine(), self._clock.now()
        return await self._run(issue_id, lambda issue: sm.change_status(issue, status, actor_id, now))

    async def set_priority(self, issue_id: str, priority: str, actor_id: str) -> Issue:
        sm, now = self._state_machine(), self._clock.now()
        return await self._run(
            issue_id, lambda issue: sm.change_priority(issue, priority, actor_id, now)
        )

    async def record_comment(
        self,
        issue_id: str,
        actor_id: str,
        comment_id: str,
        internal: bool = False
    ) -> AuditTrailEntry:
        await self._issue_repo.load(issue_id)
        return await self._audit.record_comment(
            issue_id, actor_id, comment_id, self._clock.now(), internal=internal
        )

    async def audit_trail(self, issue_id: str) -> List[AuditTrailEntry]:
        await self._issue_repo.load(issue_id)
        return await self._audit_repo.list_for_issue(issue_id)


@dataclass
class SweepResult:
    """Aggregate outcome of one sweep."""

    updated_count: int
    failed_ids: List[str]
    last_run_at: datetime
    scanned_count: int = 0
    skipped_ids: List[str] = field(default_factory=list)
    pending_side_effects: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated_count": self.updated_count,
            "failed_ids": list(self.failed_ids),
            "last_run_at": self.last_run_at.isoformat(),
            "scanned_count": self.scanned_count,
            "skipped_ids": list(self.skipped_ids),
            "pending_side_effects": self.pending_side_effects,
            "duration_ms": self.duration_ms,
        }


class EscalationService:
    """
    Scan-and-converge reconciliation of priorities, plus manual escalation.

    Sweeps are single-flight: a sweep requested while another one runs is
    skipped. Within a sweep issues are processed concurrently up to
    `workers`; the per-issue lock in the runner serializes writes to the
    same issue. After request_shutdown() no further issues are started.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        rule_repository: IEscalationRuleRepository,
        runner: TransitionRunner,
        policy_provider: IEscalationPolicyProvider,
        clock: Clock,
        workers: int = 4
    ):
        self._issue_repo = issue_repository
        self._rule_repo = rule_repository
        self._runner = runner
        self._policy_provider = policy_provider
        self._clock = clock
        self._workers = max(1, workers)
        self._sweep_lock = asyncio.Lock()
        self._shutdown = asyncio.Event()
        self._last_sweep: Optional[SweepResult] = None

    @property
    def last_sweep(self) -> Optional[SweepResult]:
        return self._last_sweep

    @property
    def is_running(self) -> bool:
        return self._sweep_lock.locked()

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def wait_idle(self) -> None:
        """Wait for an in-flight sweep to finish."""
        async with self._sweep_lock:
            return

    async def run_sweep(self) -> Optional[SweepResult]:
        """
        Run one sweep over all active issues.

        Returns:
            SweepResult, or None when skipped because a sweep is already running
            or shutdown was requested
        """
        if self._sweep_lock.locked():
            logger.warning("Escalation sweep already running, skipping")
            return None
        if self._shutdown.is_set():
            logger.info("Escalation sweep skipped, shutdown requested")
            return None

        async with self._sweep_lock:
            started = asyncio.get_running_loop().time()
            now = self._clock.now()
            policy = self._policy_provider.get_policy()
            sm = build_state_machine(policy)

            with log_latency(logger, "escalation_sweep"):
                await self._runner.retry_pending()
                issues = await self._issue_repo.load_active_issues()
                semaphore = asyncio.Semaphore(self._workers)

                def converge(issue: Issue) -> Optional[Transition]:
                    if issue.is_terminal:
                        return None
                    target = policy.resolver.resolve(issue, now, strict=False)
                    return sm.change_priority(issue, target, SYSTEM_ACTOR, now, automatic=True)

                async def process(issue: Issue) -> str:
                    async with semaphore:
                        if self._shutdown.is_set():
                            return "skipped"
                        try:
                            result = await self._runner.apply(issue.id, converge, issue=issue)
                        except Exception as e:
                            logger.error(
                                "Escalation sweep failed for issue",
                                extra={"issue_id": issue.id, "error": str(e)}
                            )
                            return "failed"
                        if result is None:
                            return "unchanged"
                        _, change = result
                        logger.info(
                            "Issue priority recomputed",
                            extra={
                                "issue_id": issue.id,
                                "old_priority": change.previous_priority,
                                "new_priority": change.new_priority,
                            }
                        )
                        return "updated"

                outcomes = await asyncio.gather(*(process(issue) for issue in issues))

            result = SweepResult(
                updated_count=sum(1 for o in outcomes if o == "updated"),
                failed_ids=[i.id for i, o in zip(issues, outcomes) if o == "failed"],
                skipped_ids=[i.id for i, o in zip(issues, outcomes) if o == "skipped"],
                last_run_at=now,
                scanned_count=len(issues),
                pending_side_effects=self._runner.pending_count,
                duration_ms=round((asyncio.get_running_loop().time() - started) * 1000, 2),
            )
            self._last_sweep = result

            logger.info(
                "Escalation sweep finished",
                extra={
                    "scanned": result.scanned_count,
                    "updated_count": result.updated_count,
                    "failed_count": len(result.failed_ids),
                    "skipped_count": len(result.skipped_ids),
                    "pending_side_effects": result.pending_side_effects,
                }
            )
            return result

    async def _select_rule(self, issue: Issue, rule_id: Optional[str]) -> Optional[EscalationRule]:
        if rule_id is not None:
            rule = await self._rule_repo.get_by_id(rule_id)
            if rule is None or not rule.is_active:
                raise NotFoundError("EscalationRule", rule_id)
            return rule

        tiers = sorted(
            (rule for rule in await self._rule_repo.rules_for(issue.priority) if rule.is_active),
            key=lambda rule: rule.escalate_after_hours,
        )
        if not tiers:
            return None
        return tiers[min(issue.escalation_level, len(tiers) - 1)]

    async def escalate_now(
        self,
        issue_id: str,
        actor_id: str,
        reason: str,
        rule_id: Optional[str] = None
    ) -> Issue:
        """
        Manual escalation: bypasses priority recomputation, bumps the
        escalation level and notifies the assignee and the rule's target.
        """
        issue = await self._issue_repo.load(issue_id)
        rule = await self._select_rule(issue, rule_id)
        if rule is None:
            logger.warning(
                "No active escalation rule, notifying assignee only",
                extra={"issue_id": issue_id, "priority": issue.priority}
            )

        sm, now = build_state_machine(self._policy_provider.get_policy()), self._clock.now()
        result = await self._runner.apply(
            issue_id,
            lambda current: sm.escalate(current, actor_id, reason, rule, now),
            issue=issue,
            rules=(rule,) if rule else (),
        )
        return result[0]


class SLAReportingService:
    """Read-side SLA views; grouping always uses the effective type."""

    PAGE_SIZE = 500

    def __init__(
        self,
        issue_repository: IIssueRepository,
        policy_provider: IEscalationPolicyProvider,
        clock: Clock
    ):
        self._issue_repo = issue_repository
        self._policy_provider = policy_provider
        self._clock = clock

    async def evaluate(self, issue_id: str) -> Tuple[Issue, SLAEvaluation]:
        issue = await self._issue_repo.load(issue_id)
        return issue, self._policy_provider.get_policy().sla.evaluate(issue, self._clock.now())

    async def summary(self, filters: Optional[dict] = None) -> Dict[str, Any]:
        sla = self._policy_provider.get_policy().sla
        now = self._clock.now()

        def empty() -> Dict[str, int]:
            return {bucket: 0 for bucket in VALID_SLA_BUCKETS}

        by_type: Dict[str, Dict[str, int]] = {}
        overall = empty()
        offset = 0
        while True:
            page = await self._issue_repo.list(filters or {}, limit=self.PAGE_SIZE, offset=offset)
            for issue in page:
                bucket = sla.classify(issue.created_at, issue.closed_at, now, issue.priority)
                by_type.setdefault(issue.effective_type_id, empty())[bucket] += 1
                overall[bucket] += 1
            if len(page) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

        def with_rate(counts: Dict[str, int]) -> Dict[str, Any]:
            total = sum(counts.values())
            return {
                "counts": counts,
                "total": total,
                "breach_rate": round(counts[SLABucket.BREACHED] / total, 4) if total else 0.0,
            }

        return {
            "overall": with_rate(overall),
            "by_type": {type_id: with_rate(counts) for type_id, counts in sorted(by_type.items())},
        }


class NotificationInboxService:
    """Recipient-facing notification reads and read-state updates."""

    def __init__(self, notification_repository: INotificationRepository):
        self._notification_repo = notification_repository

    async def list(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[Notification]:
        return await self._notification_repo.list_for_recipient(
            recipient_id, unread_only=unread_only, limit=limit, offset=offset
        )

    async def unread_count(self, recipient_id: str) -> int:
        return await self._notification_repo.unread_count(recipient_id)

    async def mark_read(self, notification_id: str, recipient_id: str) -> Notification:
        return await self._notification_repo.mark_read(notification_id, recipient_id)

    async def mark_all_read(self, recipient_id: str) -> int:
        return await self._notification_repo.mark_all_read(recipient_id)
