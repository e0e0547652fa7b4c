"""
Pytest configuration and fixtures.

Provides a controllable clock, the default escalation policy on a UTC
calendar, in-memory stores and sinks, and fully wired services.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Set
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from src.config import ACTIVE_STATUSES
from src.core import ConflictError, NotFoundError, PersistenceError
from src.infrastructure.database import build_session_maker, create_tables
from src.issues.application import (
    IIssueRepository, IEscalationRuleRepository, INotificationRepository,
    IAuditRepository, IEventPublisher, StaticPolicyProvider,
    NotificationDispatcher, AuditRecorder, TransitionRunner,
    IssueLifecycleService, EscalationService, SLAReportingService
)
from src.issues.domain import (
    Clock, Issue, AuditTrailEntry, Notification, EscalationRule, DomainEvent,
    EscalationConfig, EscalationPolicy
)

UTC = timezone.utc

# 2025-03-03 is a Monday
MONDAY_9 = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    """Timestamp in the week of 2025-03-03 (day=3 is Monday, 9 is Sunday)."""
    return datetime(2025, 3, day, hour, minute, tzinfo=UTC)


class FixedClock(Clock):
    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


class InMemoryIssueRepository(IIssueRepository):
    """Issue store with the same optimistic-concurrency contract as the SQL one."""

    def __init__(self):
        self.issues: Dict[str, Issue] = {}
        self.fail_on: Set[str] = set()
        self.conflicts: Dict[str, int] = {}
        self.save_count = 0
        self.on_save: Optional[Callable[[Issue], None]] = None

    def add(self, issue: Issue) -> Issue:
        self.issues[issue.id] = issue
        return issue

    async def load_active_issues(self) -> List[Issue]:
        return [i for i in self.issues.values() if i.status in ACTIVE_STATUSES]

    async def load(self, issue_id: str) -> Issue:
        if issue_id not in self.issues:
            raise NotFoundError("Issue", issue_id)
        return self.issues[issue_id]

    async def save(self, issue: Issue, expected_updated_at: datetime) -> Issue:
        if self.on_save is not None:
            self.on_save(issue)
        if issue.id in self.fail_on:
            raise PersistenceError(f"write failed for {issue.id}")
        if issue.id not in self.issues:
            raise NotFoundError("Issue", issue.id)

        if self.conflicts.get(issue.id, 0) > 0:
            # Simulate another writer landing first
            self.conflicts[issue.id] -= 1
            stored = self.issues[issue.id]
            self.issues[issue.id] = replace(stored, updated_at=stored.updated_at + timedelta(seconds=1))

        if self.issues[issue.id].updated_at != expected_updated_at:
            raise ConflictError(issue.id, expected_updated_at)

        self.issues[issue.id] = issue
        self.save_count += 1
        return issue

    async def create(self, issue: Issue) -> Optional[Issue]:
        if issue.id in self.issues:
            return None
        self.issues[issue.id] = issue
        return issue

    async def list(self, filters: dict, limit: int = 100, offset: int = 0) -> List[Issue]:
        items = list(self.issues.values())
        if "status" in filters:
            items = [i for i in items if i.status == filters["status"]]
        if "effective_type_id" in filters:
            items = [i for i in items if i.effective_type_id == filters["effective_type_id"]]
        return items[offset:offset + limit]


class InMemoryAuditRepository(IAuditRepository):
    def __init__(self):
        self.entries: List[AuditTrailEntry] = []
        self.failures = 0

    async def append(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("audit sink unavailable")
        stored = replace(entry, id=len(self.entries) + 1)
        self.entries.append(stored)
        return stored

    async def list_for_issue(self, issue_id: str) -> List[AuditTrailEntry]:
        return [e for e in self.entries if e.issue_id == issue_id]


class InMemoryNotificationRepository(INotificationRepository):
    def __init__(self):
        self.notifications: List[Notification] = []
        self.failures = 0

    async def create(self, notification: Notification) -> Notification:
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("notification sink unavailable")
        notification.id = notification.id or str(uuid4())
        self.notifications.append(notification)
        return notification

    async def list_for_recipient(self, recipient_id, unread_only=False, limit=50, offset=0):
        items = [
            n for n in reversed(self.notifications)
            if n.recipient_id == recipient_id and not (unread_only and n.is_read)
        ]
        return items[offset:offset + limit]

    async def mark_read(self, notification_id: str, recipient_id: str) -> Notification:
        for n in self.notifications:
            if n.id == notification_id and n.recipient_id == recipient_id:
                n.mark_read()
                return n
        raise NotFoundError("Notification", notification_id)

    async def mark_all_read(self, recipient_id: str) -> int:
        unread = [n for n in self.notifications if n.recipient_id == recipient_id and not n.is_read]
        for n in unread:
            n.mark_read()
        return len(unread)

    async def unread_count(self, recipient_id: str) -> int:
        return sum(1 for n in self.notifications if n.recipient_id == recipient_id and not n.is_read)

    def recipients_for(self, issue_id: str) -> List[str]:
        return [n.recipient_id for n in self.notifications if n.issue_id == issue_id]


class InMemoryRuleRepository(IEscalationRuleRepository):
    def __init__(self, rules: Optional[List[EscalationRule]] = None):
        self.rules = list(rules or [])

    async def rules_for(self, priority: str) -> List[EscalationRule]:
        return [r for r in self.rules if r.priority == priority]

    async def get_by_id(self, rule_id: str) -> Optional[EscalationRule]:
        return next((r for r in self.rules if r.id == rule_id), None)


class RecordingPublisher(IEventPublisher):
    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> bool:
        self.events.append(event)
        return True


# ========== Fixtures ==========

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(MONDAY_9)


@pytest.fixture
def policy() -> EscalationPolicy:
    return EscalationPolicy.from_config(EscalationConfig(), UTC)


@pytest.fixture
def policy_provider(policy) -> StaticPolicyProvider:
    return StaticPolicyProvider(policy)


@pytest.fixture
def issue_repo() -> InMemoryIssueRepository:
    return InMemoryIssueRepository()


@pytest.fixture
def audit_repo() -> InMemoryAuditRepository:
    return InMemoryAuditRepository()


@pytest.fixture
def notification_repo() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def rule_repo() -> InMemoryRuleRepository:
    return InMemoryRuleRepository()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def runner(issue_repo, notification_repo, audit_repo, policy_provider, publisher) -> TransitionRunner:
    return TransitionRunner(
        issue_repo,
        notification_repo,
        AuditRecorder(audit_repo),
        NotificationDispatcher(policy_provider),
        publisher,
    )


@pytest.fixture
def lifecycle(issue_repo, runner, audit_repo, policy_provider, clock) -> IssueLifecycleService:
    return IssueLifecycleService(
        issue_repo, runner, AuditRecorder(audit_repo), audit_repo, policy_provider, clock
    )


@pytest.fixture
def escalation(issue_repo, rule_repo, runner, policy_provider, clock) -> EscalationService:
    return EscalationService(issue_repo, rule_repo, runner, policy_provider, clock, workers=4)


@pytest.fixture
def reporting(issue_repo, policy_provider, clock) -> SLAReportingService:
    return SLAReportingService(issue_repo, policy_provider, clock)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine with the schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'grievances.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(engine)
