"""
Issue Infrastructure Repositories
=================================

Concrete implementations of the store and sink interfaces using SQLAlchemy.

Each call runs in its own transaction from the injected session factory.
Timestamps are written in UTC; naive values read back (SQLite) are taken
as UTC. Store failures surface as PersistenceError.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import ACTIVE_STATUSES
from src.core import ConflictError, NotFoundError, PersistenceError
from src.issues.application import (
    IIssueRepository, IEscalationRuleRepository, INotificationRepository,
    IAuditRepository
)
from src.issues.domain import Issue, AuditTrailEntry, Notification, EscalationRule
from src.issues.infrastructure.models import (
    IssueModel, AuditTrailModel, NotificationModel, EscalationRuleModel
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _SQLAlchemyRepository:
    """Shared transaction handling."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(
                "Store operation failed",
                extra={"operation": operation, "error": str(e)}
            )
            raise PersistenceError(f"{operation} failed", {"error": str(e)}) from e


# ========== Issues ==========

def _issue_from_model(model: IssueModel) -> Issue:
    return Issue(
        id=model.id,
        status=model.status,
        priority=model.priority,
        type_id=model.type_id,
        sub_type_id=model.sub_type_id,
        created_at=to_utc(model.created_at),
        updated_at=to_utc(model.updated_at),
        description=model.description or "",
        employee_id=model.employee_id,
        assigned_to=model.assigned_to,
        assigned_at=to_utc(model.assigned_at),
        closed_at=to_utc(model.closed_at),
        mapped_type_id=model.mapped_type_id,
        mapped_sub_type_id=model.mapped_sub_type_id,
        mapped_at=to_utc(model.mapped_at),
        mapped_by=model.mapped_by,
        escalation_level=model.escalation_level,
        escalated_at=to_utc(model.escalated_at),
    )


def _mutable_columns(issue: Issue) -> dict:
    """Everything the engine may change; written together as one unit."""
    return {
        "status": issue.status,
        "priority": issue.priority,
        "assigned_to": issue.assigned_to,
        "assigned_at": to_utc(issue.assigned_at),
        "closed_at": to_utc(issue.closed_at),
        "mapped_type_id": issue.mapped_type_id,
        "mapped_sub_type_id": issue.mapped_sub_type_id,
        "mapped_at": to_utc(issue.mapped_at),
        "mapped_by": issue.mapped_by,
        "escalation_level": issue.escalation_level,
        "escalated_at": to_utc(issue.escalated_at),
        "updated_at": to_utc(issue.updated_at),
    }


class SQLAlchemyIssueRepository(_SQLAlchemyRepository, IIssueRepository):
    """
    Issue store with optimistic concurrency on updated_at.
    """

    async def load_active_issues(self) -> List[Issue]:
        async with self._transaction("load_active_issues") as session:
            stmt = (
                select(IssueModel)
                .where(IssueModel.status.in_(ACTIVE_STATUSES))
                .order_by(IssueModel.created_at.asc(), IssueModel.id.asc())
            )
            result = await session.execute(stmt)
            return [_issue_from_model(m) for m in result.scalars().all()]

    async def load(self, issue_id: str) -> Issue:
        async with self._transaction("load_issue") as session:
            model = await session.get(IssueModel, issue_id)
            if model is None:
                raise NotFoundError("Issue", issue_id)
            return _issue_from_model(model)

    async def save(self, issue: Issue, expected_updated_at: datetime) -> Issue:
        async with self._transaction("save_issue") as session:
            stmt = (
                update(IssueModel)
                .where(
                    IssueModel.id == issue.id,
                    IssueModel.updated_at == to_utc(expected_updated_at),
                )
                .values(**_mutable_columns(issue))
            )
            result = await session.execute(stmt)

            if result.rowcount == 0:
                exists = await session.scalar(select(IssueModel.id).where(IssueModel.id == issue.id))
                if exists is None:
                    raise NotFoundError("Issue", issue.id)
                raise ConflictError(issue.id, expected_updated_at)

        return replace(issue, updated_at=to_utc(issue.updated_at))

    async def create(self, issue: Issue) -> Optional[Issue]:
        try:
            async with self._transaction("create_issue") as session:
                if await session.get(IssueModel, issue.id) is not None:
                    return None
                session.add(IssueModel(
                    id=issue.id,
                    type_id=issue.type_id,
                    sub_type_id=issue.sub_type_id,
                    description=issue.description,
                    employee_id=issue.employee_id,
                    created_at=to_utc(issue.created_at),
                    **_mutable_columns(issue),
                ))
        except PersistenceError as e:
            # Lost a create race for the same id
            if isinstance(e.__cause__, IntegrityError):
                return None
            raise
        return issue

    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Issue]:
        stmt = select(IssueModel)

        if "status" in filters:
            status = filters["status"]
            if isinstance(status, (list, tuple)):
                stmt = stmt.where(IssueModel.status.in_(status))
            else:
                stmt = stmt.where(IssueModel.status == status)

        if "priority" in filters:
            stmt = stmt.where(IssueModel.priority == filters["priority"])

        if "assigned_to" in filters:
            stmt = stmt.where(IssueModel.assigned_to == filters["assigned_to"])

        if "effective_type_id" in filters:
            effective = func.coalesce(IssueModel.mapped_type_id, IssueModel.type_id)
            stmt = stmt.where(effective == filters["effective_type_id"])

        stmt = (
            stmt.order_by(IssueModel.created_at.desc(), IssueModel.id.asc())
            .limit(limit)
            .offset(offset)
        )

        async with self._transaction("list_issues") as session:
            result = await session.execute(stmt)
            return [_issue_from_model(m) for m in result.scalars().all()]


# ========== Audit ==========

class SQLAlchemyAuditRepository(_SQLAlchemyRepository, IAuditRepository):
    """Append-only audit sink."""

    async def append(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        async with self._transaction("append_audit") as session:
            model = AuditTrailModel(
                issue_id=entry.issue_id,
                action=entry.action,
                actor_id=entry.actor_id,
                previous_status=entry.previous_status,
                new_status=entry.new_status,
                details=dict(entry.details),
                created_at=to_utc(entry.created_at),
            )
            session.add(model)
            await session.flush()
            return replace(entry, id=model.id)

    async def list_for_issue(self, issue_id: str) -> List[AuditTrailEntry]:
        async with self._transaction("list_audit") as session:
            stmt = (
                select(AuditTrailModel)
                .where(AuditTrailModel.issue_id == issue_id)
                .order_by(AuditTrailModel.id.asc())
            )
            result = await session.execute(stmt)
            return [
                AuditTrailEntry(
                    id=m.id,
                    issue_id=m.issue_id,
                    action=m.action,
                    actor_id=m.actor_id,
                    previous_status=m.previous_status,
                    new_status=m.new_status,
                    details=dict(m.details or {}),
                    created_at=to_utc(m.created_at),
                )
                for m in result.scalars().all()
            ]


# ========== Notifications ==========

def _notification_from_model(model: NotificationModel) -> Notification:
    return Notification(
        id=model.id,
        issue_id=model.issue_id,
        recipient_id=model.recipient_id,
        content=model.content,
        is_read=model.is_read,
        created_at=to_utc(model.created_at),
    )


class SQLAlchemyNotificationRepository(_SQLAlchemyRepository, INotificationRepository):
    """Notification sink and recipient inbox."""

    async def create(self, notification: Notification) -> Notification:
        notification_id = notification.id or str(uuid4())
        async with self._transaction("create_notification") as session:
            session.add(NotificationModel(
                id=notification_id,
                issue_id=notification.issue_id,
                recipient_id=notification.recipient_id,
                content=notification.content,
                is_read=notification.is_read,
                created_at=to_utc(notification.created_at),
            ))
        notification.id = notification_id
        return notification

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[Notification]:
        stmt = select(NotificationModel).where(NotificationModel.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        stmt = (
            stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id.asc())
            .limit(limit)
            .offset(offset)
        )

        async with self._transaction("list_notifications") as session:
            result = await session.execute(stmt)
            return [_notification_from_model(m) for m in result.scalars().all()]

    async def mark_read(self, notification_id: str, recipient_id: str) -> Notification:
        async with self._transaction("mark_notification_read") as session:
            stmt = select(NotificationModel).where(
                NotificationModel.id == notification_id,
                NotificationModel.recipient_id == recipient_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                raise NotFoundError("Notification", notification_id)
            model.is_read = True
            return _notification_from_model(model)

    async def mark_all_read(self, recipient_id: str) -> int:
        async with self._transaction("mark_all_notifications_read") as session:
            stmt = (
                update(NotificationModel)
                .where(
                    NotificationModel.recipient_id == recipient_id,
                    NotificationModel.is_read.is_(False),
                )
                .values(is_read=True)
            )
            result = await session.execute(stmt)
            return result.rowcount

    async def unread_count(self, recipient_id: str) -> int:
        async with self._transaction("count_unread_notifications") as session:
            stmt = select(func.count()).select_from(NotificationModel).where(
                NotificationModel.recipient_id == recipient_id,
                NotificationModel.is_read.is_(False),
            )
            return int(await session.scalar(stmt) or 0)


# ========== Escalation rules ==========

def _rule_from_model(model: EscalationRuleModel) -> EscalationRule:
    return EscalationRule(
        id=model.id,
        priority=model.priority,
        escalate_after_hours=model.escalate_after_hours,
        escalate_to_role=model.escalate_to_role,
        escalate_to_user=model.escalate_to_user,
        is_active=model.is_active,
    )


class SQLAlchemyEscalationRuleRepository(_SQLAlchemyRepository, IEscalationRuleRepository):
    """
    Escalation rules with a cache refreshed at most every `refresh_seconds`.

    Rules are configuration; a bounded staleness window is acceptable.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        refresh_seconds: float = 300,
        monotonic: Callable[[], float] = time.monotonic
    ):
        super().__init__(session_maker)
        self._refresh_seconds = refresh_seconds
        self._monotonic = monotonic
        self._cache: Optional[List[EscalationRule]] = None
        self._loaded_at = 0.0

    def invalidate(self) -> None:
        self._cache = None

    async def _all_rules(self) -> List[EscalationRule]:
        now = self._monotonic()
        if self._cache is None or now - self._loaded_at >= self._refresh_seconds:
            async with self._transaction("load_escalation_rules") as session:
                result = await session.execute(select(EscalationRuleModel))
                self._cache = [_rule_from_model(m) for m in result.scalars().all()]
            self._loaded_at = now
            logger.debug("Escalation rules refreshed", extra={"count": len(self._cache)})
        return self._cache

    async def rules_for(self, priority: str) -> List[EscalationRule]:
        return [rule for rule in await self._all_rules() if rule.priority == priority]

    async def get_by_id(self, rule_id: str) -> Optional[EscalationRule]:
        for rule in await self._all_rules():
            if rule.id == rule_id:
                return rule
        return None

    async def create(self, rule: EscalationRule) -> EscalationRule:
        """Seed a rule (admin tooling and tests); invalidates the cache."""
        async with self._transaction("create_escalation_rule") as session:
            session.add(EscalationRuleModel(
                id=rule.id,
                priority=rule.priority,
                escalate_after_hours=rule.escalate_after_hours,
                escalate_to_role=rule.escalate_to_role,
                escalate_to_user=rule.escalate_to_user,
                is_active=rule.is_active,
            ))
        self.invalidate()
        return rule
